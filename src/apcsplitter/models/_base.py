"""Base model for externally produced JSON records.

Every record model inherits from :class:`ApcBaseModel` which provides:

* ``alias_generator=to_camel`` so camelCase keys map automatically to
  snake_case fields.
* A ``model_validator(mode="before")`` that drops placeholder values
  (``None``, empty or whitespace-only strings) so the field default is used.
* A ``raw`` dict that captures the original record.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class ApcBaseModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)
    """Original record as received."""

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        """Drop placeholder values and stash the raw record."""
        if not isinstance(values, dict):
            return values
        cleaned = ApcBaseModel._clean_dict(values)
        # Keep an explicitly passed raw= as is.
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned
