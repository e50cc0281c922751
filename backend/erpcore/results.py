# Overview: Tagged Ok/error results for callers that prefer exhaustive handling over try/except.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar, Union

from .errors import CoreError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


# A failed result is the CoreError instance itself; its class is the tag.
Result = Union[Ok[T], CoreError]


def attempt(func: Callable[..., T], *args: Any, **kwargs: Any) -> Result:
    """
    Run a core operation and return Ok(value) or the typed error variant.

    Only CoreError subclasses are captured. Infrastructure failures
    (database down, programming errors) still propagate.
    """
    try:
        return Ok(func(*args, **kwargs))
    except CoreError as exc:
        return exc


def is_ok(result: Result) -> bool:
    return isinstance(result, Ok)
