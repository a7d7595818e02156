"""
Payload and query-string validation.

Each schema is a Django form whose fields check one document key. Forms
are built with ``required=True`` for creates and ``required=False`` for
partial updates and list queries:

    form = TaskForm(payload, required=False)
    if not form.is_valid():
        return HttpResponseBadRequest(form.first_error())
    changes = form.payload()

Only keys the client actually sent end up in ``payload()``.
"""
import math

from django import forms
from django.core.exceptions import ValidationError

# largest integer a float (and so the priority column) holds exactly
MAX_SAFE_NUMBER = 2 ** 53 - 1


class DocumentField(forms.Field):
    # only a missing key (or json null) counts as empty; "" and [] are values
    empty_values = [None]
    default_error_messages = {"required": '"%(key)s" is required'}

    key = None

    def fail(self, code, **params):
        raise ValidationError(self.error_messages[code], code=code, params={"key": self.key, **params})

    def validate(self, value):
        if value is None and self.required:
            self.fail("required")


class StringField(DocumentField):
    default_error_messages = {
        "invalid": '"%(key)s" must be a string',
        "empty": '"%(key)s" is not allowed to be empty',
        "min_length": '"%(key)s" length must be at least %(limit)d characters long',
    }

    def __init__(self, *, min_length=None, **kwargs):
        self.min_length = min_length
        super().__init__(**kwargs)

    def to_python(self, value):
        if value is not None and not isinstance(value, str):
            self.fail("invalid")
        return value

    def validate(self, value):
        super().validate(value)
        if value is None:
            return
        if value == "":
            self.fail("empty")
        if self.min_length is not None and len(value) < self.min_length:
            self.fail("min_length", limit=self.min_length)


class NumberField(DocumentField):
    default_error_messages = {
        "invalid": '"%(key)s" must be a number',
        "unsafe": '"%(key)s" must be a safe number',
        "min_value": '"%(key)s" must be greater than or equal to %(limit)s',
    }

    def __init__(self, *, min_value=None, **kwargs):
        self.min_value = min_value
        super().__init__(**kwargs)

    def to_python(self, value):
        if value is None:
            return None
        # bool is an int subclass
        if isinstance(value, bool):
            self.fail("invalid")
        if isinstance(value, str):
            try:
                value = float(value.strip())
            except ValueError:
                self.fail("invalid")
            if value.is_integer():
                value = int(value)
        elif not isinstance(value, (int, float)):
            self.fail("invalid")
        if isinstance(value, float) and not math.isfinite(value):
            self.fail("invalid")
        if abs(value) > MAX_SAFE_NUMBER:
            self.fail("unsafe")
        return value

    def validate(self, value):
        super().validate(value)
        if value is not None and self.min_value is not None and value < self.min_value:
            self.fail("min_value", limit=self.min_value)


class BooleanField(DocumentField):
    default_error_messages = {"invalid": '"%(key)s" must be a boolean'}

    def to_python(self, value):
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        self.fail("invalid")


class ArrayField(DocumentField):
    default_error_messages = {"invalid": '"%(key)s" must be an array'}

    def to_python(self, value):
        if value is not None and not isinstance(value, list):
            self.fail("invalid")
        return value


class PayloadForm(forms.Form):
    """
    Base for all schemas. Rejects keys the schema does not declare and
    reports errors in field declaration order.
    """

    def __init__(self, data, required=True):
        super().__init__(data)
        for name, field in self.fields.items():
            field.key = name
            field.required = required

    def clean(self):
        cleaned_data = super().clean()
        for key, value in self.data.items():
            if key not in self.fields:
                raise ValidationError('"%(key)s" is not allowed', code="unknown", params={"key": key})
            # an explicit null for an optional key
            if value is None and key not in self.errors:
                field = self.fields[key]
                self.add_error(key, ValidationError(
                    field.error_messages["invalid"], code="invalid", params={"key": key}))
        return cleaned_data

    def first_error(self):
        for messages in self.errors.values():
            return messages[0]
        return None

    def payload(self):
        return {name: self.cleaned_data[name] for name in self.fields if name in self.data}


class TaskForm(PayloadForm):
    text = StringField(min_length=3)
    fieldIDs = ArrayField()
    isDone = BooleanField()


class FieldForm(PayloadForm):
    text = StringField(min_length=3)
    priority = NumberField()


class ListQueryForm(PayloadForm):
    text = StringField(min_length=3)
    limit = NumberField(min_value=1)
    fieldID = StringField(min_length=5)
    priority = NumberField()
    isDone = BooleanField()

    def __init__(self, data):
        super().__init__(data, required=False)


def validate_task(data, required=True):
    return TaskForm(data, required=required)


def validate_field(data, required=True):
    return FieldForm(data, required=required)


def validate_list_query(data):
    return ListQueryForm(data)
