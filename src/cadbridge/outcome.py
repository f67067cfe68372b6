"""
Batch outcome types shared by the host executor and the caller.

An Outcome is a tagged variant: Success carries the handler's value,
Failure carries the error message plus optional item context (for
example the element id the item targeted).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass(frozen=True)
class Success:
    """A sub-operation that completed."""

    index: int
    value: Any = None
    success: bool = field(default=True, init=False)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"index": self.index, "success": True}
        if isinstance(self.value, dict):
            data.update(self.value)
        elif self.value is not None:
            data["value"] = self.value
        return data


@dataclass(frozen=True)
class Failure:
    """A sub-operation that failed; the rest of its batch is unaffected."""

    index: int
    error: str
    context: Dict[str, Any] = field(default_factory=dict)
    success: bool = field(default=False, init=False)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"index": self.index, "success": False}
        data.update(self.context)
        data["error"] = self.error
        return data


Outcome = Union[Success, Failure]


def outcome_from_dict(data: Dict[str, Any], index: Optional[int] = None) -> Outcome:
    """Rebuild an Outcome from its reply form."""
    payload = dict(data)
    position = payload.pop("index", index if index is not None else 0)
    if payload.pop("success", False):
        if set(payload) == {"value"}:
            return Success(position, payload["value"])
        return Success(position, payload or None)
    error = payload.pop("error", "Unknown error")
    return Failure(position, str(error), payload)


@dataclass
class BatchResult:
    """Result of one batch transaction."""

    committed: bool
    outcomes: List[Outcome] = field(default_factory=list)
    message: str = ""

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> List[Success]:
        return [o for o in self.outcomes if isinstance(o, Success)]

    @property
    def failed(self) -> List[Failure]:
        return [o for o in self.outcomes if isinstance(o, Failure)]

    def to_dict(self) -> Dict[str, Any]:
        """Reply form: success envelope plus per-item results in input order."""
        return {
            "success": True,
            "committed": self.committed,
            "message": self.message or f"Completed {len(self.succeeded)} of {self.total} item(s)",
            "total": self.total,
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "results": [o.to_dict() for o in self.outcomes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchResult":
        results = data.get("results") or []
        return cls(
            committed=bool(data.get("committed", data.get("success", False))),
            outcomes=[outcome_from_dict(r, i) for i, r in enumerate(results)],
            message=data.get("message", ""),
        )
