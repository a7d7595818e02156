import json
import logging

from django.http import HttpResponseBadRequest, HttpResponseNotFound, JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from .queries import field_query, referencing_tasks, task_query
from .store import InvalidIdentifier, StoreError
from .validators import validate_field, validate_list_query, validate_task

logger = logging.getLogger(__name__)

TASK_LIST_FAILED = "Request for tasks failed!"
TASK_GET_FAILED = "Error in GET request for task!"
TASK_NOT_FOUND = "Task was not found."
TASK_SAVE_FAILED = "Failed to save task!"
TASK_DELETE_FAILED = "Error while deleting task!"
TASK_DELETE_NOT_FOUND = "Task with the given id was not found!"

FIELD_LIST_FAILED = "Error in request for fields!"
FIELD_GET_FAILED = "Error in GET request for field!"
FIELD_NOT_FOUND = "Field with the given id was not found."
FIELD_SAVE_FAILED = "Failed to save field!"
FIELD_DELETE_FAILED = "Failed to delete field!"
FIELD_IN_USE = "Cannot delete a field that is assigned to at least one task!"

TEXT = "text/plain; charset=utf-8"


def bad_request(message):
    return HttpResponseBadRequest(message, content_type=TEXT)


def not_found(message):
    return HttpResponseNotFound(message, content_type=TEXT)


def store_failure(message, exc):
    # malformed ids are the client's fault, anything else is worth a traceback
    if isinstance(exc, InvalidIdentifier):
        logger.info("%s %s", message, exc)
    else:
        logger.error(message, exc_info=exc)
    return bad_request(message)


@method_decorator(csrf_exempt, name="dispatch")
class StoreView(View):
    """Base view; ``store`` is supplied through as_view(store=...)."""

    store = None

    def read_payload(self):
        """Returns (payload, error_response)."""
        try:
            payload = json.loads(self.request.body.decode("utf-8") or "{}")
        except (UnicodeDecodeError, ValueError) as e:
            return None, bad_request(f"invalid json: {e}")
        if not isinstance(payload, dict):
            return None, bad_request('"value" must be of type object')
        return payload, None


class TaskListView(StoreView):
    def get(self, request):
        """
        GET /api/tasks?text=..&fieldID=..&isDone=..&limit=..
        """
        form = validate_list_query(request.GET)
        if not form.is_valid():
            return not_found(form.first_error())

        query = task_query(form.payload())
        try:
            tasks = self.store.tasks.find(query.filter, limit=query.limit)
        except StoreError as exc:
            return store_failure(TASK_LIST_FAILED, exc)
        return JsonResponse(tasks, safe=False)

    def post(self, request):
        """
        POST /api/tasks
        body: {"text": "...", "fieldIDs": [...], "isDone": false}
        """
        payload, error = self.read_payload()
        if error:
            return error
        form = validate_task(payload)
        if not form.is_valid():
            return bad_request(form.first_error())

        try:
            task = self.store.tasks.create(form.payload())
        except StoreError as exc:
            return store_failure(TASK_SAVE_FAILED, exc)
        return JsonResponse(task)


class TaskDetailView(StoreView):
    def find_task(self, task_id):
        task = self.store.tasks.find_by_id(task_id)
        if task is not None:
            task["fields"] = self.store.fields.find(
                {"id": {"$in": task["fieldIDs"]}}, projection=("id", "text")
            )
        return task

    def get(self, request, task_id):
        """
        GET /api/tasks/<id>
        Returns the task with its fields joined in as "fields": [{"id", "text"}].
        """
        try:
            task = self.find_task(task_id)
        except StoreError as exc:
            return store_failure(TASK_GET_FAILED, exc)
        if task is None:
            return not_found(TASK_NOT_FOUND)
        return JsonResponse(task)

    def put(self, request, task_id):
        payload, error = self.read_payload()
        if error:
            return error
        form = validate_task(payload, required=False)
        if not form.is_valid():
            return bad_request(form.first_error())

        try:
            task = self.store.tasks.find_by_id_and_update(task_id, form.payload())
        except StoreError as exc:
            return store_failure(TASK_SAVE_FAILED, exc)
        if task is None:
            logger.info("%s no task %s", TASK_SAVE_FAILED, task_id)
            return bad_request(TASK_SAVE_FAILED)
        return JsonResponse(task)

    def delete(self, request, task_id):
        try:
            task = self.store.tasks.find_by_id_and_delete(task_id)
        except StoreError as exc:
            return store_failure(TASK_DELETE_FAILED, exc)
        if task is None:
            return not_found(TASK_DELETE_NOT_FOUND)
        return JsonResponse(task)


class FieldListView(StoreView):
    def get(self, request):
        """
        GET /api/fields?limit=..
        """
        form = validate_list_query(request.GET)
        if not form.is_valid():
            return bad_request(form.first_error())

        query = field_query(form.payload())
        try:
            fields = self.store.fields.find(query.filter, limit=query.limit)
        except StoreError as exc:
            return store_failure(FIELD_LIST_FAILED, exc)
        return JsonResponse(fields, safe=False)

    def post(self, request):
        """
        POST /api/fields
        body: {"text": "...", "priority": 1}
        """
        payload, error = self.read_payload()
        if error:
            return error
        form = validate_field(payload)
        if not form.is_valid():
            return bad_request(form.first_error())

        try:
            field = self.store.fields.create(form.payload())
        except StoreError as exc:
            return store_failure(FIELD_SAVE_FAILED, exc)
        return JsonResponse(field)


class FieldDetailView(StoreView):
    def get(self, request, field_id):
        try:
            field = self.store.fields.find_by_id(field_id)
        except StoreError as exc:
            return store_failure(FIELD_GET_FAILED, exc)
        if field is None:
            return not_found(FIELD_NOT_FOUND)
        return JsonResponse(field)

    def put(self, request, field_id):
        payload, error = self.read_payload()
        if error:
            return error
        form = validate_field(payload, required=False)
        if not form.is_valid():
            return bad_request(form.first_error())

        try:
            field = self.store.fields.find_by_id_and_update(field_id, form.payload())
        except StoreError as exc:
            return store_failure(FIELD_SAVE_FAILED, exc)
        if field is None:
            logger.info("%s no field %s", FIELD_SAVE_FAILED, field_id)
            return bad_request(FIELD_SAVE_FAILED)
        return JsonResponse(field)

    def delete(self, request, field_id):
        """
        DELETE /api/fields/<id>
        Refused while any task still lists the field in its fieldIDs. The
        count and the delete are separate statements, so a task created in
        between can still end up pointing at a deleted field.
        """
        try:
            in_use = self.store.tasks.count(referencing_tasks(field_id))
        except StoreError as exc:
            return store_failure(FIELD_DELETE_FAILED, exc)
        if in_use:
            return bad_request(FIELD_IN_USE)

        try:
            field = self.store.fields.find_by_id_and_delete(field_id)
        except StoreError as exc:
            return store_failure(FIELD_DELETE_FAILED, exc)
        if field is None:
            return not_found(FIELD_NOT_FOUND)
        return JsonResponse(field)
