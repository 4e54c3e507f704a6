"""
Tagged result values returned by the service layer.

Service calls return ``Ok(value)`` or ``Err(error)`` instead of raising, so
the route layer is the only place that decides on HTTP status codes.
Upstream payloads are checked with ``validate_shape`` right after decoding.
"""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from pydantic import BaseModel, ValidationError

T = TypeVar("T")
E = TypeVar("E", bound=Exception)
M = TypeVar("M", bound=BaseModel)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err[E]]


@dataclass(frozen=True)
class ShapeError:
    """Reason an upstream payload was rejected."""

    reason: str
    errors: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return False


def validate_shape(model: type[M], payload: Any) -> Ok[M] | ShapeError:
    """Validate a decoded JSON payload against a pydantic model."""
    if not isinstance(payload, dict):
        return ShapeError("expected object", (f"got {type(payload).__name__}",))
    try:
        return Ok(model.model_validate(payload))
    except ValidationError as e:
        errors = tuple(
            f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        return ShapeError(f"{model.__name__} does not match", errors)
