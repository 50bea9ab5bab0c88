from datetime import datetime, timezone
from typing import Any
from bson.objectid import ObjectId
from mongoengine import Document, DictField, DateTimeField, EmbeddedDocument


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Stored datetimes may come back naive; treat those as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class BaseDocumentMixin:
    # Fields never rendered by to_output (hashes, token counters)
    private_fields: tuple[str, ...] = ()

    def _sanitize_value(self, value: Any) -> Any:
        if isinstance(value, Document):
            return str(value.id)
        elif isinstance(value, EmbeddedDocument):
            if hasattr(value, "to_output"):
                return value.to_output()
            value = {k: self._sanitize_value(getattr(value, k)) for k in value._fields}
        if isinstance(value, list):
            return [self._sanitize_value(v) for v in value]
        if isinstance(value, dict):
            return {k: self._sanitize_value(v) for k, v in value.items()}
        if isinstance(value, datetime):
            return as_utc(value).isoformat()
        if isinstance(value, ObjectId):
            return str(value)
        return value

    def to_output(self, fields=None, exclude=None):
        data: dict[str, Any] = {}
        exclude = set(exclude or []) | set(self.private_fields)
        fields = fields or self._fields.keys()

        for field in fields:
            if field in exclude or field == "id":
                continue
            value = getattr(self, field)
            data[field] = self._sanitize_value(value)

        if getattr(self, "id", None) is not None:
            data["id"] = str(self.id)
        return data

    def to_dict(self, fields=None, exclude=None):
        return self.to_output(fields=fields, exclude=exclude)


class BaseEmbeddedDocument(EmbeddedDocument, BaseDocumentMixin):
    meta = {
        "abstract": True,
    }


class BaseDocument(Document, BaseDocumentMixin):
    metadata = DictField(default=dict, null=False)
    created_at = DateTimeField(default=utcnow, null=False)
    updated_at = DateTimeField(default=utcnow, null=False)

    meta = {
        "abstract": True,
    }

    def save(self, *args, **kwargs):
        self.updated_at = utcnow()
        return super().save(*args, **kwargs)
