"""
Strict validator for action data against a template definition.

The persisted definition is loose JSON:

    {"fields": [{"key", "label", "type", "required", "options"?}]}

It is parsed into a closed set of field kinds, each of which knows how to check
one value. Nothing here touches the database; the same (definition, data) pair
always yields the same result.
"""
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from email.utils import parsedate_to_datetime
from typing import Any, Mapping, Optional, Sequence, Union

from pydantic import BaseModel

from livechat.db.enums import ActionFieldType


class SchemaCorruptionError(ValueError):
    """A stored definition does not describe any known field kind."""


@dataclass(frozen=True)
class TextField:
    key: str
    required: bool

    def check(self, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return "must be a string"
        return None


@dataclass(frozen=True)
class NumberField:
    key: str
    required: bool

    def check(self, value: Any) -> Optional[str]:
        # bool is an int subclass in Python; a checkbox value is not a number
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return "must be a number"
        if isinstance(value, float) and math.isnan(value):
            return "must be a number"
        return None


@dataclass(frozen=True)
class BooleanField:
    key: str
    required: bool

    def check(self, value: Any) -> Optional[str]:
        if not isinstance(value, bool):
            return "must be true or false"
        return None


@dataclass(frozen=True)
class DateField:
    key: str
    required: bool

    def check(self, value: Any) -> Optional[str]:
        if isinstance(value, (date, datetime)):
            return None
        if isinstance(value, str) and _parse_date_string(value) is not None:
            return None
        return "must be a valid date"


@dataclass(frozen=True)
class SelectField:
    key: str
    required: bool
    options: Optional[tuple[str, ...]] = field(default=None)

    def check(self, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return "must be a string"
        if self.options is not None and value not in self.options:
            return "is not one of the allowed options"
        return None


FieldKind = Union[TextField, NumberField, BooleanField, DateField, SelectField]

_KINDS = {
    ActionFieldType.text: TextField,
    ActionFieldType.number: NumberField,
    ActionFieldType.boolean: BooleanField,
    ActionFieldType.date: DateField,
}


# Non-ISO shapes browsers commonly send: "2024/01/15", "January 15, 2024", "Jan 15, 2024"
_EXTRA_DATE_FORMATS = ("%Y/%m/%d", "%B %d, %Y", "%b %d, %Y")


def _parse_date_string(value: str) -> Optional[datetime]:
    """ISO 8601 first, then RFC 2822, then a few written-out formats."""
    candidate = value.strip()
    if not candidate:
        return None
    iso = candidate[:-1] + "+00:00" if candidate.endswith(("Z", "z")) else candidate
    try:
        return datetime.fromisoformat(iso)
    except ValueError:
        pass
    try:
        return parsedate_to_datetime(candidate)
    except (TypeError, ValueError, IndexError):
        pass
    for fmt in _EXTRA_DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt)
        except ValueError:
            continue
    return None


def parse_field(raw: Mapping[str, Any]) -> FieldKind:
    """Turn one stored field entry into its field kind."""
    if not isinstance(raw, Mapping) or not isinstance(raw.get("key"), str):
        raise SchemaCorruptionError(f"Malformed field entry: {raw!r}")
    try:
        kind = ActionFieldType(raw.get("type"))
    except ValueError:
        raise SchemaCorruptionError(f"Unknown field type {raw.get('type')!r} for field {raw.get('key')!r}")

    key = raw.get("key")
    required = bool(raw.get("required", False))
    if kind is ActionFieldType.select:
        options = raw.get("options")
        return SelectField(key=key, required=required, options=tuple(options) if options is not None else None)
    return _KINDS[kind](key=key, required=required)


def parse_definition(definition: Union[Mapping[str, Any], BaseModel]) -> list[FieldKind]:
    if isinstance(definition, BaseModel):
        definition = definition.model_dump(mode="json")
    fields = definition.get("fields") if isinstance(definition, Mapping) else None
    if not isinstance(fields, list):
        raise SchemaCorruptionError("Definition has no field list")
    return [parse_field(f) for f in fields]


@dataclass(frozen=True)
class FieldError:
    key: str
    code: str  # unknown_field | required | invalid_type | invalid_option | invalid_schema
    message: str


@dataclass(frozen=True)
class ValidationResult:
    errors: tuple[FieldError, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors

    def __bool__(self) -> bool:
        return self.valid

    def summary(self) -> str:
        return "; ".join(f"{e.key}: {e.message}" for e in self.errors)


def _is_missing(value: Any) -> bool:
    # empty string counts as "not provided", not as a present empty value
    return value is None or value == ""


def check_action_data(
    definition: Union[Mapping[str, Any], BaseModel],
    data: Mapping[str, Any],
) -> ValidationResult:
    """
    Check `data` against `definition` and report every failing field.

    Rules:
    - keys in `data` that the definition does not declare are rejected
    - required fields must be present and not None / ""
    - optional fields that are missing skip the type check
    - present values must match their field kind
    """
    try:
        fields = parse_definition(definition)
    except SchemaCorruptionError as e:
        return ValidationResult(errors=(FieldError(key="*", code="invalid_schema", message=str(e)),))

    errors: list[FieldError] = []
    allowed = {f.key for f in fields}
    for key in data:
        if key not in allowed:
            errors.append(FieldError(key=key, code="unknown_field", message="is not part of this form"))

    for f in fields:
        value = data.get(f.key)
        if _is_missing(value):
            if f.required:
                errors.append(FieldError(key=f.key, code="required", message="is required"))
            continue

        problem = f.check(value)
        if problem is not None:
            code = "invalid_option" if isinstance(f, SelectField) and isinstance(value, str) else "invalid_type"
            errors.append(FieldError(key=f.key, code=code, message=problem))

    return ValidationResult(errors=tuple(errors))


def validate_action_data(
    definition: Union[Mapping[str, Any], BaseModel],
    data: Mapping[str, Any],
) -> bool:
    return check_action_data(definition, data).valid


def duplicate_keys(fields: Sequence[Mapping[str, Any]]) -> list[str]:
    """Keys that appear more than once in a field list, in first-seen order."""
    seen: set[str] = set()
    dupes: list[str] = []
    for f in fields:
        key = f.get("key")
        if key in seen and key not in dupes:
            dupes.append(key)
        seen.add(key)
    return dupes
