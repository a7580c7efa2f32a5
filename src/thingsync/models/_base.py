"""Base model for source payloads.

Every snapshot-side model inherits from :class:`ThingSyncBaseModel` which
provides:

* A ``model_validator(mode="before")`` that strips sentinel values
  (``None``, ``""``, NaN) so the field default is used.
* An ``_unwrap`` hook subclasses override to flatten nested payload shapes
  before cleaning.
* A ``raw`` dict that captures the original payload.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

_SENTINELS = frozenset({"", "--"})


class ThingSyncBaseModel(BaseModel):
    """Immutable model parsed from a source payload."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    raw: dict[str, Any] = Field(default_factory=dict, repr=False)
    """Original payload dict."""

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        """Drop keys whose value is a sentinel for "not available"."""
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @classmethod
    def _unwrap(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Flatten nested payload shapes; the default is the identity."""
        return values

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        original = dict(values)
        cleaned = cls._clean_dict(cls._unwrap(original))
        # Keep an explicit raw= from keyword construction.
        if "raw" not in values:
            cleaned["raw"] = original
        return cleaned
