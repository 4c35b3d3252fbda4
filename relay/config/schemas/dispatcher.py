"""Dispatcher schema: delimiter and reserved names."""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DispatcherSettings(BaseModel):
    delimiter: str = "."
    reserved_names: List[str] = Field(
        default_factory=lambda: ["error", "subscribe", "unsubscribe"]
    )

    model_config = ConfigDict(extra="forbid")

    @field_validator("delimiter")
    @classmethod
    def _delimiter_separates(cls, v: str) -> str:  # noqa: D401
        if not v:
            raise ValueError("delimiter cannot be empty")
        if any(ch.isalnum() or ch.isspace() for ch in v):
            raise ValueError(
                "delimiter cannot contain alphanumerics or whitespace"
            )
        return v
