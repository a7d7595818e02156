from django.urls import path

from .store import DocumentStore
from .views import FieldDetailView, FieldListView, TaskDetailView, TaskListView

store = DocumentStore()

urlpatterns = [
    path("tasks", TaskListView.as_view(store=store), name="task-list"),
    path("tasks/<str:task_id>", TaskDetailView.as_view(store=store), name="task-detail"),
    path("fields", FieldListView.as_view(store=store), name="field-list"),
    path("fields/<str:field_id>", FieldDetailView.as_view(store=store), name="field-detail"),
]
