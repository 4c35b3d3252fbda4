"""Default parameter processor.

``process_params(params, config)`` merges ``config.default_params`` under
the supplied params, then validates the result against ``config.schema``
with pydantic. The schema may be a ``BaseModel`` subclass, any type pydantic
understands (``dict[str, int]``, ``Annotated[...]``) or a ready
``TypeAdapter``; the validated (possibly coerced) value becomes the params
seen by the handler, so a model schema yields a model instance.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Mapping

from pydantic import TypeAdapter, ValidationError

from relay.errors import ValidationFailed


@lru_cache(maxsize=256)
def _cached_adapter(schema: Any) -> TypeAdapter:
    return TypeAdapter(schema)


def schema_adapter(schema: Any) -> TypeAdapter:
    if isinstance(schema, TypeAdapter):
        return schema
    try:
        return _cached_adapter(schema)
    except TypeError:  # unhashable schema object
        return TypeAdapter(schema)


def merge_defaults(defaults: Mapping[str, Any], params: Any) -> Any:
    if params is None:
        return dict(defaults)
    if isinstance(params, Mapping):
        return {**defaults, **params}
    # non-mapping params (model instances, scalars) are passed through
    return params


def process_params(params: Any, config: Any = None) -> Any:
    default_params = getattr(config, "default_params", None)
    schema = getattr(config, "schema", None)
    final = params
    if default_params:
        final = merge_defaults(default_params, final)
    if schema is not None:
        try:
            final = schema_adapter(schema).validate_python(final)
        except ValidationError as e:
            raise ValidationFailed(
                f"params rejected by schema: {e.error_count()} error(s)",
                e.errors(include_url=False),
            ) from e
    return final


__all__ = ["process_params", "merge_defaults", "schema_adapter"]
