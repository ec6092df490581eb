from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from ..exceptions import ConfigurationError


class MiddlewareOptions(BaseModel):
    """Base for middleware option bags: immutable, unknown keys rejected."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


OptionsT = TypeVar("OptionsT", bound=MiddlewareOptions)


def resolve_options(
    cls: type[OptionsT], options: OptionsT | None, overrides: Mapping[str, Any]
) -> OptionsT:
    """Merge keyword overrides onto `options` (or the defaults) and validate the result."""
    if options is not None and not overrides:
        return options
    values: dict[str, Any] = {}
    if options is not None:
        values = {name: getattr(options, name) for name in cls.model_fields}
    values.update(overrides)
    try:
        return cls.model_validate(values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid {cls.__name__}: {e}", cause=e) from e
