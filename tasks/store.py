"""
Document-style access to the Task and Field tables.

Handlers talk to a DocumentStore instead of the ORM so that they deal in
plain JSON-ready dicts keyed the way clients see them (``fieldIDs``,
``isDone``), the same shape the API accepts and returns.

Filters are dicts of document keys:
  {"text": "Buy milk"}           exact match
  {"fieldIDs": "<id>"}           array contains the id
  {"id": {"$in": [...]}}         id is one of the given ids
"""
import contextlib
import logging
import uuid
from itertools import islice

from django.db import DatabaseError, connections

from .models import Field, Task

logger = logging.getLogger(__name__)


class StoreError(Exception):
    pass


class InvalidIdentifier(StoreError):
    pass


def parse_id(value):
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise InvalidIdentifier(f"malformed identifier: {value!r}") from exc


@contextlib.contextmanager
def _database(action):
    try:
        yield
    except DatabaseError as exc:
        raise StoreError(f"{action} failed") from exc


class Collection:
    def __init__(self, model):
        self.model = model
        self.name = str(model._meta.verbose_name_plural)

    def __repr__(self):
        return f"<Collection {self.name}>"

    def _attribute(self, key):
        if key == "id":
            return "pk"
        try:
            return self.model.DOCUMENT_KEYS[key]
        except KeyError:
            raise StoreError(f"unknown {self.model.__name__} key: {key!r}") from None

    def _prepare(self, key, value):
        # references are stored in canonical form so containment is a plain string compare
        if key in self.model.REFERENCE_KEYS:
            return [str(parse_id(item)) for item in value]
        return value

    def _changes(self, document):
        return {self._attribute(key): self._prepare(key, value) for key, value in document.items()}

    def _select(self, filter):
        """
        Returns (queryset, residual). residual holds (attribute, id) pairs
        the database could not test itself and which must be checked on
        each fetched row.
        """
        queryset = self.model.objects.all()
        residual = []
        features = connections[queryset.db].features
        for key, value in (filter or {}).items():
            attribute = self._attribute(key)
            if key == "id":
                if isinstance(value, dict):
                    queryset = queryset.filter(pk__in=[parse_id(item) for item in value["$in"]])
                else:
                    queryset = queryset.filter(pk=parse_id(value))
            elif key in self.model.REFERENCE_KEYS:
                reference = str(parse_id(value))
                if features.supports_json_field_contains:
                    queryset = queryset.filter(**{f"{attribute}__contains": [reference]})
                else:
                    residual.append((attribute, reference))
            else:
                queryset = queryset.filter(**{attribute: value})
        return queryset, residual

    @staticmethod
    def _matches(obj, residual):
        return all(reference in (getattr(obj, attribute) or []) for attribute, reference in residual)

    def create(self, document):
        changes = self._changes(document)
        with _database(f"create {self.name}"):
            obj = self.model.objects.create(**changes)
        logger.debug("created %s %s", self.name, obj.pk)
        return obj.to_document()

    def find(self, filter=None, limit=None, projection=None):
        with _database(f"find {self.name}"):
            queryset, residual = self._select(filter)
            if residual:
                objects = (obj for obj in queryset if self._matches(obj, residual))
                if limit is not None:
                    objects = islice(objects, limit)
            else:
                objects = queryset if limit is None else queryset[:limit]
            documents = [obj.to_document() for obj in objects]
        if projection:
            documents = [{key: doc[key] for key in projection if key in doc} for doc in documents]
        return documents

    def find_by_id(self, id):
        pk = parse_id(id)
        with _database(f"find {self.name} by id"):
            obj = self.model.objects.filter(pk=pk).first()
        return obj.to_document() if obj is not None else None

    def find_by_id_and_update(self, id, changes):
        pk = parse_id(id)
        updates = self._changes(changes)
        with _database(f"update {self.name}"):
            obj = self.model.objects.filter(pk=pk).first()
            if obj is None:
                return None
            for attribute, value in updates.items():
                setattr(obj, attribute, value)
            if updates:
                obj.save(update_fields=list(updates))
        return obj.to_document()

    def find_by_id_and_delete(self, id):
        pk = parse_id(id)
        with _database(f"delete {self.name}"):
            obj = self.model.objects.filter(pk=pk).first()
            if obj is None:
                return None
            document = obj.to_document()
            obj.delete()
        logger.debug("deleted %s %s", self.name, pk)
        return document

    def count(self, filter=None):
        with _database(f"count {self.name}"):
            queryset, residual = self._select(filter)
            if not residual:
                return queryset.count()
            return sum(1 for obj in queryset if self._matches(obj, residual))


class DocumentStore:
    """The two collections the API serves. Build one and hand it to the views."""

    def __init__(self, task_model=Task, field_model=Field):
        self.tasks = Collection(task_model)
        self.fields = Collection(field_model)
