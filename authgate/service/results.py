from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Mapping, Optional, TypeVar, Union

from authgate.service.errors import ServiceError
from authgate.service.events import SecurityEventType

T = TypeVar("T")


@dataclass(frozen=True)
class Continue(Generic[T]):
    """Stage succeeded; carry ``value`` on to the next stage."""

    value: T


@dataclass(frozen=True)
class Deny:
    """Stage ended the request with a terminal error response.

    ``event`` and ``details`` describe the security event the driver emits
    when it surfaces the denial.
    """

    error: ServiceError
    event: Optional[SecurityEventType] = None
    details: Mapping[str, Any] = field(default_factory=dict)

    @property
    def status_code(self) -> int:
        return self.error.status_code

    @property
    def message(self) -> str:
        return self.error.message


StageResult = Union[Continue[T], Deny]
