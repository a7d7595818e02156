import json
import uuid
from datetime import timedelta

from django.http import QueryDict
from django.test import RequestFactory, SimpleTestCase, TestCase
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .models import Field, Task
from .queries import field_query, referencing_tasks, task_query
from .store import DocumentStore, InvalidIdentifier, StoreError
from .validators import validate_field, validate_list_query, validate_task
from .views import FIELD_IN_USE, TASK_LIST_FAILED, TASK_SAVE_FAILED, FieldDetailView, TaskListView


class ValidatorTests(SimpleTestCase):

    def test_short_text_rejected(self):
        form = validate_task({"text": "ab", "fieldIDs": [], "isDone": False})
        self.assertFalse(form.is_valid())
        self.assertEqual(form.first_error(), '"text" length must be at least 3 characters long')

    def test_create_requires_every_key(self):
        form = validate_task({"text": "Buy milk"})
        self.assertFalse(form.is_valid())
        self.assertEqual(form.first_error(), '"fieldIDs" is required')

    def test_update_keeps_only_sent_keys(self):
        form = validate_task({"isDone": True}, required=False)
        self.assertTrue(form.is_valid())
        self.assertEqual(form.payload(), {"isDone": True})

    def test_type_errors(self):
        cases = [
            ({"text": 123}, '"text" must be a string'),
            ({"text": ""}, '"text" is not allowed to be empty'),
            ({"fieldIDs": "abc"}, '"fieldIDs" must be an array'),
            ({"isDone": "yes"}, '"isDone" must be a boolean'),
            ({"text": None}, '"text" must be a string'),
            ({"deadline": "2030-01-01"}, '"deadline" is not allowed'),
        ]
        for data, message in cases:
            form = validate_task(data, required=False)
            self.assertFalse(form.is_valid(), data)
            self.assertEqual(form.first_error(), message)

    def test_boolean_strings(self):
        form = validate_task({"isDone": "TRUE"}, required=False)
        self.assertTrue(form.is_valid())
        self.assertIs(form.payload()["isDone"], True)

    def test_field_priority(self):
        self.assertEqual(validate_field({"priority": "abc"}, required=False).first_error(),
                         '"priority" must be a number')
        self.assertEqual(validate_field({"priority": True}, required=False).first_error(),
                         '"priority" must be a number')
        form = validate_field({"text": "Work", "priority": "2"})
        self.assertTrue(form.is_valid())
        self.assertEqual(form.payload(), {"text": "Work", "priority": 2})
        self.assertEqual(validate_field({"priority": 10 ** 400}, required=False).first_error(),
                         '"priority" must be a safe number')
        self.assertEqual(validate_field({"priority": 2 ** 53}, required=False).first_error(),
                         '"priority" must be a safe number')
        self.assertTrue(validate_field({"priority": 2 ** 53 - 1}, required=False).is_valid())

    def test_list_query(self):
        self.assertEqual(validate_list_query(QueryDict("limit=abc")).first_error(), '"limit" must be a number')
        self.assertEqual(validate_list_query(QueryDict("limit=0")).first_error(),
                         '"limit" must be greater than or equal to 1')
        self.assertEqual(validate_list_query(QueryDict("fieldID=abc")).first_error(),
                         '"fieldID" length must be at least 5 characters long')
        form = validate_list_query(QueryDict(""))
        self.assertTrue(form.is_valid())
        self.assertEqual(form.payload(), {})

    def test_list_query_converts_strings(self):
        form = validate_list_query(QueryDict("limit=5&isDone=false&text=milk"))
        self.assertTrue(form.is_valid())
        self.assertEqual(form.payload(), {"text": "milk", "limit": 5, "isDone": False})


class QueryTests(SimpleTestCase):

    def test_task_filters_compose(self):
        query = task_query({"text": "Buy milk", "fieldID": "f1abc", "isDone": False, "limit": 2.5})
        self.assertEqual(query.filter, {"text": "Buy milk", "fieldIDs": "f1abc", "isDone": False})
        self.assertEqual(query.limit, 2)

    def test_no_params_means_everything(self):
        self.assertEqual(task_query({}), ({}, None))

    def test_field_query_applies_only_limit(self):
        query = field_query({"text": "Work", "priority": 1, "limit": 3})
        self.assertEqual(query, ({}, 3))

    def test_referencing_tasks(self):
        self.assertEqual(referencing_tasks("abc"), {"fieldIDs": "abc"})


class StoreTests(TestCase):

    def setUp(self):
        self.store = DocumentStore()
        self.work = self.store.fields.create({"text": "Work", "priority": 1})
        self.home = self.store.fields.create({"text": "Home", "priority": 2.5})

    def test_create_assigns_id(self):
        self.assertEqual(str(uuid.UUID(self.work["id"])), self.work["id"])
        self.assertEqual(self.work["priority"], 1)
        self.assertEqual(self.home["priority"], 2.5)

    def test_reference_count(self):
        self.store.tasks.create({"text": "one", "fieldIDs": [self.work["id"]], "isDone": False})
        self.store.tasks.create({"text": "two", "fieldIDs": [self.work["id"], self.home["id"]], "isDone": True})
        self.assertEqual(self.store.tasks.count({"fieldIDs": self.work["id"]}), 2)
        self.assertEqual(self.store.tasks.count({"fieldIDs": self.home["id"]}), 1)
        self.assertEqual(self.store.tasks.count({"fieldIDs": str(uuid.uuid4())}), 0)

    def test_find_in_with_projection(self):
        found = self.store.fields.find({"id": {"$in": [self.home["id"]]}}, projection=("id", "text"))
        self.assertEqual(found, [{"id": self.home["id"], "text": "Home"}])

    def test_find_limit_with_contains(self):
        for i in range(3):
            self.store.tasks.create({"text": f"task {i}", "fieldIDs": [self.work["id"]], "isDone": False})
        found = self.store.tasks.find({"fieldIDs": self.work["id"]}, limit=2)
        self.assertEqual([t["text"] for t in found], ["task 0", "task 1"])

    def test_malformed_ids(self):
        with self.assertRaises(InvalidIdentifier):
            self.store.tasks.find_by_id("nope")
        with self.assertRaises(InvalidIdentifier):
            self.store.tasks.create({"text": "bad", "fieldIDs": ["not-an-id"], "isDone": False})
        self.assertEqual(Task.objects.count(), 0)

    def test_update_and_delete(self):
        updated = self.store.fields.find_by_id_and_update(self.work["id"], {"priority": 7})
        self.assertEqual(updated, {"id": self.work["id"], "text": "Work", "priority": 7})
        self.assertIsNone(self.store.fields.find_by_id_and_update(str(uuid.uuid4()), {"priority": 1}))

        removed = self.store.fields.find_by_id_and_delete(self.work["id"])
        self.assertEqual(removed["id"], self.work["id"])
        self.assertIsNone(self.store.fields.find_by_id(self.work["id"]))
        self.assertIsNone(self.store.fields.find_by_id_and_delete(self.work["id"]))

    def test_same_timestamp_orders_by_id(self):
        Field.objects.update(created_at=timezone.now())
        expected = sorted([self.work["id"], self.home["id"]], key=lambda pk: uuid.UUID(pk).hex)
        self.assertEqual([f["id"] for f in self.store.fields.find()], expected)

    def test_unknown_key(self):
        with self.assertRaises(StoreError):
            self.store.fields.find({"colour": "red"})


class ApiTests(TestCase):

    def post(self, url, data):
        return self.client.post(url, data=json.dumps(data), content_type="application/json")

    def put(self, url, data):
        return self.client.put(url, data=json.dumps(data), content_type="application/json")

    def make_field(self, text="Work", priority=1):
        return self.post("/api/fields", {"text": text, "priority": priority}).json()

    def make_task(self, text="Buy milk", field_ids=(), is_done=False):
        return self.post("/api/tasks", {"text": text, "fieldIDs": list(field_ids), "isDone": is_done}).json()

    def test_scenario(self):
        res = self.post("/api/fields", {"text": "Work", "priority": 1})
        self.assertEqual(res.status_code, 200)
        field = res.json()
        self.assertEqual({k: field[k] for k in ("text", "priority")}, {"text": "Work", "priority": 1})

        res = self.post("/api/tasks", {"text": "Buy milk", "fieldIDs": [field["id"]], "isDone": False})
        self.assertEqual(res.status_code, 200)
        task = res.json()

        res = self.client.get(f"/api/tasks/{task['id']}")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["fields"], [{"id": field["id"], "text": "Work"}])
        self.assertEqual(res.json()["text"], "Buy milk")

        res = self.client.delete(f"/api/fields/{field['id']}")
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.content.decode(), FIELD_IN_USE)

        self.assertEqual(self.client.delete(f"/api/tasks/{task['id']}").status_code, 200)
        res = self.client.delete(f"/api/fields/{field['id']}")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), field)

    def test_bad_limit_runs_no_query(self):
        with self.assertNumQueries(0):
            res = self.client.get("/api/tasks", {"limit": "abc"})
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.content.decode(), '"limit" must be a number')

    def test_field_list_validation_is_bad_request(self):
        res = self.client.get("/api/fields", {"limit": "abc"})
        self.assertEqual(res.status_code, 400)

    def test_short_text_never_persisted(self):
        res = self.post("/api/tasks", {"text": "ab", "fieldIDs": [], "isDone": False})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(Task.objects.count(), 0)

        task = self.make_task()
        res = self.put(f"/api/tasks/{task['id']}", {"text": "ab"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(Task.objects.get(pk=task["id"]).text, "Buy milk")

    def test_deadline_defaults_to_creation_time(self):
        now = timezone.now()
        # the json encoder keeps milliseconds only
        before = now.replace(microsecond=now.microsecond // 1000 * 1000)
        task = self.make_task()
        deadline = parse_datetime(task["deadline"])
        self.assertTrue(deadline >= before)
        self.assertTrue(deadline <= timezone.now() + timedelta(seconds=1))
        self.assertTrue(uuid.UUID(task["id"]))

    def test_field_round_trip(self):
        field = self.make_field("Home", 2.5)
        res = self.client.get(f"/api/fields/{field['id']}")
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), field)

        field = self.make_field("Far", 2 ** 53 - 1)
        res = self.client.get(f"/api/fields/{field['id']}")
        self.assertEqual(res.json()["priority"], 2 ** 53 - 1)

    def test_huge_priority_rejected(self):
        res = self.post("/api/fields", {"text": "Work", "priority": 10 ** 400})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.content.decode(), '"priority" must be a safe number')
        self.assertEqual(Field.objects.count(), 0)

    def test_create_is_not_idempotent(self):
        first = self.make_task()
        second = self.make_task()
        self.assertNotEqual(first["id"], second["id"])
        self.assertEqual(Task.objects.count(), 2)

    def test_referenced_field_survives_delete(self):
        field = self.make_field()
        task = self.make_task(field_ids=[field["id"]])
        res = self.client.delete(f"/api/fields/{field['id']}")
        self.assertEqual(res.status_code, 400)
        self.assertTrue(Field.objects.filter(pk=field["id"]).exists())
        self.assertTrue(Task.objects.filter(pk=task["id"]).exists())

    def test_unreferenced_field_delete(self):
        field = self.make_field()
        self.make_task()
        self.assertEqual(self.client.delete(f"/api/fields/{field['id']}").status_code, 200)
        self.assertEqual(self.client.get(f"/api/fields/{field['id']}").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/fields/{field['id']}").status_code, 404)

    def test_list_task_filters(self):
        work = self.make_field("Work")
        home = self.make_field("Home")
        self.make_task("Write report", [work["id"]], False)
        self.make_task("Send invoice", [work["id"], home["id"]], True)
        self.make_task("Water plants", [home["id"]], False)

        def texts(params):
            res = self.client.get("/api/tasks", params)
            self.assertEqual(res.status_code, 200)
            return [t["text"] for t in res.json()]

        self.assertEqual(texts({}), ["Write report", "Send invoice", "Water plants"])
        self.assertEqual(texts({"fieldID": work["id"]}), ["Write report", "Send invoice"])
        self.assertEqual(texts({"fieldID": work["id"], "isDone": "false"}), ["Write report"])
        self.assertEqual(texts({"isDone": "true"}), ["Send invoice"])
        self.assertEqual(texts({"text": "Water plants"}), ["Water plants"])
        self.assertEqual(texts({"text": "Water"}), [])
        self.assertEqual(texts({"limit": "2"}), ["Write report", "Send invoice"])

    def test_huge_limit_with_field_filter(self):
        field = self.make_field()
        self.make_task(field_ids=[field["id"]])
        with self.assertNumQueries(0):
            res = self.client.get("/api/tasks", {"fieldID": field["id"], "limit": "1e19"})
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.content.decode(), '"limit" must be a safe number')

    def test_list_tasks_unparseable_field_id(self):
        res = self.client.get("/api/tasks", {"fieldID": "abcdef"})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.content.decode(), TASK_LIST_FAILED)

    def test_list_fields_applies_limit_but_ignores_text(self):
        self.make_field("Work")
        self.make_field("Home")
        res = self.client.get("/api/fields", {"limit": "1"})
        self.assertEqual([f["text"] for f in res.json()], ["Work"])
        # text is validated but not used as a filter
        res = self.client.get("/api/fields", {"text": "Home"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(len(res.json()), 2)

    def test_get_missing_and_malformed(self):
        missing = str(uuid.uuid4())
        self.assertEqual(self.client.get(f"/api/tasks/{missing}").status_code, 404)
        self.assertEqual(self.client.get("/api/tasks/nope").status_code, 400)
        self.assertEqual(self.client.get(f"/api/fields/{missing}").status_code, 404)
        self.assertEqual(self.client.get("/api/fields/nope").status_code, 400)
        self.assertEqual(self.client.delete(f"/api/tasks/{missing}").status_code, 404)

    def test_partial_updates(self):
        field = self.make_field("Work", 1)
        res = self.put(f"/api/fields/{field['id']}", {"priority": 5})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {"id": field["id"], "text": "Work", "priority": 5})

        task = self.make_task()
        res = self.put(f"/api/tasks/{task['id']}", {"isDone": True, "fieldIDs": [field["id"]]})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["isDone"], True)
        self.assertEqual(res.json()["fieldIDs"], [field["id"]])
        self.assertEqual(res.json()["text"], "Buy milk")
        self.assertEqual(res.json()["deadline"], task["deadline"])

    def test_update_missing_is_save_failure(self):
        res = self.put(f"/api/tasks/{uuid.uuid4()}", {"isDone": True})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.content.decode(), TASK_SAVE_FAILED)

    def test_malformed_field_ids_rejected_by_store(self):
        res = self.post("/api/tasks", {"text": "Buy milk", "fieldIDs": ["nope"], "isDone": False})
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.content.decode(), TASK_SAVE_FAILED)
        self.assertEqual(Task.objects.count(), 0)

    def test_body_must_be_json_object(self):
        res = self.client.post("/api/tasks", data="{not json", content_type="application/json")
        self.assertEqual(res.status_code, 400)
        res = self.post("/api/fields", ["Work", 1])
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.content.decode(), '"value" must be of type object')

    def test_unsupported_method(self):
        self.assertEqual(self.client.patch("/api/tasks").status_code, 405)


class BrokenCollection:

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise StoreError("database is gone")
        return fail


class BrokenStore:
    tasks = BrokenCollection()
    fields = BrokenCollection()


class StoreFailureTests(SimpleTestCase):

    def setUp(self):
        self.factory = RequestFactory()

    def test_list_failure_is_generic(self):
        view = TaskListView.as_view(store=BrokenStore())
        with self.assertLogs("tasks.views", level="ERROR"):
            res = view(self.factory.get("/api/tasks"))
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.content.decode(), TASK_LIST_FAILED)
        self.assertNotIn("database is gone", res.content.decode())

    def test_field_delete_checks_references_first(self):
        view = FieldDetailView.as_view(store=BrokenStore())
        with self.assertLogs("tasks.views", level="ERROR") as logs:
            res = view(self.factory.delete(f"/api/fields/{uuid.uuid4()}"), field_id=str(uuid.uuid4()))
        self.assertEqual(res.status_code, 400)
        self.assertIn("Failed to delete field!", logs.output[0])
