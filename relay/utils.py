"""Small shared helpers."""
from __future__ import annotations

import uuid


def generate_uid() -> str:
    """Opaque unique id used to tag event identities for tracing."""
    return uuid.uuid4().hex


__all__ = ["generate_uid"]
