"""Result types returned by the sniroute networking layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E", bound=Exception)


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying a value plus request metadata."""

    value: T
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return True

    @property
    def error(self) -> None:
        return None

    @property
    def message(self) -> str:
        return ""


@dataclass(frozen=True)
class Err(Generic[E]):
    """Failed outcome carrying an error plus request metadata."""

    error: E
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False

    @property
    def value(self) -> None:
        return None

    @property
    def message(self) -> str:
        """Human-readable error text, never empty."""
        text = str(self.error)
        return text or type(self.error).__name__


Result = Union[Ok[T], Err[E]]
