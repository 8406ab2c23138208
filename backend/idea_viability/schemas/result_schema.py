from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from ..errors import GenerationError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Tagged outcome of validating generative output: a value or an error."""

    value: Optional[T] = None
    error: Optional[GenerationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: GenerationError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """The value, or the stored error raised."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
