from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable


FILE_FIELD_TYPES = ("file", "image")


def slugify(value: str) -> str:
    raw = (value or "").strip().lower()
    if not raw:
        return ""
    raw = re.sub(r"[^\w\s-]", "", raw)
    raw = re.sub(r"[\s_-]+", "-", raw)
    return raw.strip("-")


@dataclass(frozen=True)
class FieldSchema:
    name: str
    type: str = "text"
    label: str = ""
    required: bool = False
    options: tuple = ()
    multiple: bool = False
    accept: str = ""
    max_size: int | None = None
    max_files: int | None = None

    @property
    def display(self) -> str:
        return self.label or self.name

    @property
    def is_file(self) -> bool:
        return self.type in FILE_FIELD_TYPES

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "label": self.label or self.name,
            "type": self.type,
            "required": bool(self.required),
            "options": list(self.options),
            "multiple": bool(self.multiple),
            "accept": self.accept or "",
            "max_size": self.max_size,
            "max_files": self.max_files,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "FieldSchema":
        options = raw.get("options") or []
        if not isinstance(options, (list, tuple)):
            options = [options]
        return cls(
            name=str(raw.get("name") or "").strip(),
            type=str(raw.get("type") or "text").strip().lower(),
            label=str(raw.get("label") or "").strip(),
            required=bool(raw.get("required")),
            options=tuple(str(o) for o in options),
            multiple=bool(raw.get("multiple")),
            accept=str(raw.get("accept") or ""),
            max_size=_opt_int(raw.get("max_size", raw.get("maxSize"))),
            max_files=_opt_int(raw.get("max_files", raw.get("maxFiles"))),
        )


def _opt_int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except Exception:
        return None


def parse_fields(raw_fields: list | None) -> list[FieldSchema]:
    out: list[FieldSchema] = []
    for item in raw_fields or []:
        if isinstance(item, FieldSchema):
            out.append(item)
        elif isinstance(item, dict):
            schema = FieldSchema.from_dict(item)
            if schema.name:
                out.append(schema)
    return out


# Tagged value variants. Each knows how to render itself back into JSON storage.


@dataclass(frozen=True)
class TextValue:
    raw: Any
    kind: str = "text"

    def to_json(self):
        return self.raw


@dataclass(frozen=True)
class NumberValue:
    value: float
    kind: str = "number"

    def to_json(self):
        if float(self.value).is_integer():
            return int(self.value)
        return float(self.value)


@dataclass(frozen=True)
class SelectValue:
    value: str
    kind: str = "select"

    def to_json(self):
        return self.value


@dataclass(frozen=True)
class DateValue:
    raw: Any
    kind: str = "date"

    def to_json(self):
        return self.raw


@dataclass(frozen=True)
class CheckboxValue:
    raw: Any
    kind: str = "checkbox"

    def to_json(self):
        return self.raw


@dataclass(frozen=True)
class LocationValue:
    lat: float
    lng: float
    address: str = ""
    kind: str = "point"

    def to_json(self):
        payload = {"coordinates": {"lat": self.lat, "lng": self.lng}}
        if self.address:
            payload["address"] = self.address
        return payload


@dataclass(frozen=True)
class FileValue:
    files: tuple = ()
    multiple: bool = False
    kind: str = "file"

    def to_json(self):
        items = [dict(f) for f in self.files]
        if self.multiple or len(items) > 1:
            return items
        return items[0] if items else None


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


@dataclass
class ValidationResult:
    values: dict = field(default_factory=dict)
    errors: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def values_json(self) -> dict:
        return {key: val.to_json() for key, val in self.values.items()}

    def errors_json(self) -> list[dict]:
        return [err.to_dict() for err in self.errors]


class InvalidValue(ValueError):
    pass


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _parse_number(schema: FieldSchema, raw: Any) -> NumberValue:
    if isinstance(raw, bool):
        raise InvalidValue(f"Field '{schema.display}' must be a valid number")
    try:
        number = float(str(raw).strip()) if isinstance(raw, str) else float(raw)
    except (TypeError, ValueError):
        raise InvalidValue(f"Field '{schema.display}' must be a valid number")
    if math.isnan(number) or math.isinf(number):
        raise InvalidValue(f"Field '{schema.display}' must be a valid number")
    return NumberValue(value=number)


def _parse_select(schema: FieldSchema, raw: Any) -> SelectValue:
    text = str(raw).strip() if raw is not None else ""
    if schema.options and text not in schema.options:
        raise InvalidValue(
            f"Field '{schema.display}' must be one of the following values: {', '.join(schema.options)}"
        )
    return SelectValue(value=text)


def _coordinate(value: Any, schema: FieldSchema) -> float:
    if isinstance(value, bool):
        raise InvalidValue(f"Field '{schema.display}' must contain numeric coordinates")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidValue(f"Field '{schema.display}' must contain numeric coordinates")
    if math.isnan(number) or math.isinf(number):
        raise InvalidValue(f"Field '{schema.display}' must contain numeric coordinates")
    return number


def _parse_point(schema: FieldSchema, raw: Any) -> LocationValue:
    address = ""
    source = raw
    if isinstance(source, dict):
        address = str(source.get("address") or "").strip()
        if "coordinates" in source:
            source = source.get("coordinates")
    if isinstance(source, dict):
        if "lat" not in source or "lng" not in source:
            raise InvalidValue(f"Field '{schema.display}' must include lat and lng")
        lat = _coordinate(source.get("lat"), schema)
        lng = _coordinate(source.get("lng"), schema)
    elif isinstance(source, (list, tuple)) and len(source) == 2:
        # GeoJSON order
        lng = _coordinate(source[0], schema)
        lat = _coordinate(source[1], schema)
    else:
        raise InvalidValue(f"Field '{schema.display}' must be a {{lat, lng}} object or a [lng, lat] pair")
    return LocationValue(lat=lat, lng=lng, address=address)


def _file_descriptor(item: Any) -> dict | None:
    if isinstance(item, str) and item.strip():
        return {"url": item.strip(), "public_id": "", "original_name": "", "mime_type": ""}
    if not isinstance(item, dict):
        return None
    url = str(item.get("url") or "").strip()
    if not url:
        return None
    return {
        "url": url,
        "public_id": str(item.get("public_id") or item.get("publicId") or ""),
        "original_name": str(item.get("original_name") or item.get("originalName") or ""),
        "mime_type": str(item.get("mime_type") or item.get("mimeType") or ""),
    }


def _parse_file(schema: FieldSchema, raw: Any) -> FileValue:
    items = raw if isinstance(raw, (list, tuple)) else [raw]
    files = []
    for item in items:
        desc = _file_descriptor(item)
        if desc is None:
            raise InvalidValue(f"Field '{schema.display}' must contain uploaded file references")
        files.append(desc)
    if schema.max_files and len(files) > schema.max_files:
        raise InvalidValue(f"Field '{schema.display}' accepts at most {schema.max_files} files")
    return FileValue(files=tuple(files), multiple=schema.multiple)


FIELD_PARSERS: dict[str, Callable[[FieldSchema, Any], Any]] = {
    "number": _parse_number,
    "select": _parse_select,
    "point": _parse_point,
    "file": _parse_file,
    "image": _parse_file,
    "date": lambda _schema, raw: DateValue(raw=raw),
    "checkbox": lambda _schema, raw: CheckboxValue(raw=raw),
}


def parse_value(schema: FieldSchema, raw: Any):
    parser = FIELD_PARSERS.get(schema.type)
    if parser is None:
        return TextValue(raw=raw)
    return parser(schema, raw)


def _validate_field(schema: FieldSchema, raw: Any, skip_required_for, result: ValidationResult) -> None:
    if is_empty(raw):
        if schema.required and schema.name not in skip_required_for:
            result.errors.append(FieldError(schema.name, f"Field '{schema.display}' is required"))
        return
    try:
        result.values[schema.name] = parse_value(schema, raw)
    except InvalidValue as exc:
        result.errors.append(FieldError(schema.name, str(exc)))


def validate(category_fields, raw_values: dict | None, skip_required_for=()) -> ValidationResult:
    """Validate raw listing input against a category field list.

    Every declared field is checked so one pass reports all problems. Fields
    that fail never appear in ``values``; unknown input keys are dropped.
    """
    fields = parse_fields(category_fields)
    raw = raw_values if isinstance(raw_values, dict) else {}
    skip = set(skip_required_for or ())
    result = ValidationResult()
    for schema in fields:
        _validate_field(schema, raw.get(schema.name), skip, result)
    return result


def validate_update(category_fields, stored: dict | None, raw_values: dict | None, skip_required_for=()) -> tuple[dict, ValidationResult]:
    """Validate only the submitted keys and merge them over the stored values.

    Stored keys that are no longer part of the field list are kept as-is.
    Returns ``(merged_json, result)``; ``merged_json`` is only meaningful when
    ``result.ok``.
    """
    fields = parse_fields(category_fields)
    raw = raw_values if isinstance(raw_values, dict) else {}
    skip = set(skip_required_for or ())
    result = ValidationResult()
    merged = dict(stored or {})
    for schema in fields:
        if schema.name not in raw:
            continue
        _validate_field(schema, raw.get(schema.name), skip, result)
        if schema.name in result.values:
            merged[schema.name] = result.values[schema.name].to_json()
        elif schema.name in skip:
            # Pending upload will fill this field.
            continue
        elif is_empty(raw.get(schema.name)) and not any(e.field == schema.name for e in result.errors):
            merged.pop(schema.name, None)
    return merged, result


def required_file_fields(category_fields) -> list[str]:
    return [f.name for f in parse_fields(category_fields) if f.is_file]


def normalize_field_definitions(raw_fields) -> tuple[list[dict], list[dict]]:
    """Normalize admin-supplied field definitions; returns ``(fields, errors)``."""
    from rixdu.models.category import FIELD_TYPES

    fields: list[dict] = []
    errors: list[dict] = []
    seen: set[str] = set()
    if raw_fields is None:
        return fields, errors
    if not isinstance(raw_fields, list):
        return fields, [{"field": "fields", "message": "fields must be a list"}]
    for idx, item in enumerate(raw_fields):
        if not isinstance(item, dict):
            errors.append({"field": f"fields[{idx}]", "message": "field definition must be an object"})
            continue
        schema = FieldSchema.from_dict(item)
        if not schema.name:
            errors.append({"field": f"fields[{idx}].name", "message": "name is required"})
            continue
        if schema.type not in FIELD_TYPES:
            errors.append({"field": f"fields[{idx}].type", "message": f"unsupported type '{schema.type}'"})
            continue
        if schema.name in seen:
            errors.append({"field": f"fields[{idx}].name", "message": f"duplicate field '{schema.name}'"})
            continue
        if schema.type in ("select", "radio") and not schema.options:
            errors.append({"field": f"fields[{idx}].options", "message": "options are required for this type"})
            continue
        seen.add(schema.name)
        fields.append(schema.to_dict())
    return fields, errors
