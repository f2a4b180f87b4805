"""Base class for persisted documents."""

from datetime import datetime
from typing import Any, Dict
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from ..utils.clock import ensure_utc


class Document(BaseModel):
    """
    A JSON document stored by a ConversationStore backend.

    Field names are snake_case in Python and camelCase on the wire and in
    storage. Datetimes are always normalized to UTC.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_validator("*", mode="after")
    @classmethod
    def _normalize_datetimes(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return ensure_utc(value)
        return value

    def to_document(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, data: Dict[str, Any]):
        """Build an instance from a stored document."""
        return cls.model_validate(data)
