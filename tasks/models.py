import uuid

from django.db import models
from django.utils import timezone


def _number(value):
    # render integral priorities as json integers
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


class Field(models.Model):
    # document key -> model attribute
    DOCUMENT_KEYS = {"text": "text", "priority": "priority"}
    REFERENCE_KEYS = ()

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    text = models.TextField()
    priority = models.FloatField()

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return self.text

    def to_document(self):
        return {"id": str(self.id), "text": self.text, "priority": _number(self.priority)}


class Task(models.Model):
    DOCUMENT_KEYS = {
        "text": "text",
        "fieldIDs": "field_ids",
        "isDone": "is_done",
        "deadline": "deadline",
    }
    REFERENCE_KEYS = ("fieldIDs",)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    text = models.TextField()
    field_ids = models.JSONField(default=list, blank=True)
    is_done = models.BooleanField(default=False)
    deadline = models.DateTimeField(default=timezone.now)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return self.text

    def to_document(self):
        return {
            "id": str(self.id),
            "text": self.text,
            "fieldIDs": list(self.field_ids),
            "isDone": self.is_done,
            "deadline": self.deadline,
        }
