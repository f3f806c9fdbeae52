"""
Result and progress types returned to UI collaborators
"""
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Generic, Optional, TypeVar

from polywallet.models.errors import TradingError

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Discriminated success/failure value; exactly one of value/error is meaningful"""

    success: bool
    value: Optional[T] = None
    error: Optional[TradingError] = None

    @classmethod
    def ok(cls, value: Optional[T] = None) -> "OperationResult[T]":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: TradingError) -> "OperationResult[T]":
        return cls(success=False, error=error)

    @property
    def message(self) -> Optional[str]:
        return self.error.message if self.error else None

    def to_dict(self) -> Dict[str, Any]:
        value = self.value
        if hasattr(value, "to_dict"):
            value = value.to_dict()
        return {
            "success": self.success,
            "value": value,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class ProgressEvent:
    """One step of a long-running operation. The last event of a stream carries the result."""

    step: str
    message: str
    detail: Dict[str, Any] = field(default_factory=dict)
    result: Optional[OperationResult] = None

    @property
    def is_final(self) -> bool:
        return self.result is not None

    def to_dict(self) -> Dict[str, Any]:
        return {"step": self.step, "message": self.message, "detail": self.detail}


async def collect_result(stream: AsyncIterator[ProgressEvent]) -> OperationResult:
    """Drain a progress stream and return the result carried by its final event"""
    result: Optional[OperationResult] = None
    async for event in stream:
        if event.is_final:
            result = event.result
    if result is None:
        raise RuntimeError("Progress stream ended without a result")
    return result
