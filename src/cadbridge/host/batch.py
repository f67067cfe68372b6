"""
Batch Transaction Executor

Runs an ordered list of sub-operations inside one host transaction:

1. open one transaction for the whole batch
2. attempt each item in input order, each inside its own sub-transaction;
   a failing item is rolled back and recorded, and the batch continues
3. commit once, even if every item failed

Only a failure to open or commit the transaction aborts the batch; that
surfaces as TransactionError and the caller receives an error reply.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..outcome import BatchResult, Failure, Outcome, Success
from .document import Document, ItemFault, TransactionError

logger = logging.getLogger(__name__)

Handler = Callable[[Document, Dict[str, Any]], Any]
PostStep = Callable[[Document, Dict[str, Any], Any], Any]


@dataclass
class OperationSpec:
    """One sub-operation: a handler kind plus its parameters."""

    kind: str
    params: Dict[str, Any] = field(default_factory=dict)


class HandlerRegistry:
    """Operation handlers keyed by kind, each with optional post-processing steps."""

    def __init__(self):
        self._handlers: Dict[str, Tuple[Handler, List[PostStep]]] = {}

    def register(self, kind: str, handler: Handler, *post_steps: PostStep) -> None:
        self._handlers[kind] = (handler, list(post_steps))

    def handler(self, kind: str, *post_steps: PostStep) -> Callable[[Handler], Handler]:
        """Decorator form of register()."""

        def decorator(fn: Handler) -> Handler:
            self.register(kind, fn, *post_steps)
            return fn

        return decorator

    def get(self, kind: str) -> Optional[Tuple[Handler, List[PostStep]]]:
        return self._handlers.get(kind)

    def kinds(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, kind: object) -> bool:
        return kind in self._handlers


def _item_context(params: Any) -> Dict[str, Any]:
    """Fields echoed back on a failed item so callers can identify it."""
    context: Dict[str, Any] = {}
    if not isinstance(params, Mapping):
        return context
    for key in ("elementId", "dimensionType", "action", "name"):
        if key in params:
            context[key] = params[key]
    return context


class BatchExecutor:
    """Executes batches of OperationSpec against one document."""

    def __init__(self, document: Document, registry: HandlerRegistry):
        self.document = document
        self.registry = registry

    def execute(self, specs: Sequence[OperationSpec], transaction_name: str = "Batch") -> BatchResult:
        """Run every spec in one transaction.

        Args:
            specs: Sub-operations in the order they must run
            transaction_name: Name recorded in the host's undo history

        Returns:
            BatchResult with one Outcome per spec, in input order

        Raises:
            TransactionError: If the transaction cannot be opened or committed
        """
        start_time = time.time()
        try:
            self.document.open_transaction(transaction_name)
        except Exception as e:
            raise TransactionError(f"Failed to open transaction '{transaction_name}': {e}") from e

        try:
            outcomes: List[Outcome] = [self._attempt(index, spec) for index, spec in enumerate(specs)]
        except BaseException:
            self.document.abort_transaction()
            raise

        try:
            self.document.commit_transaction()
        except Exception as e:
            self.document.abort_transaction()
            raise TransactionError(f"Failed to commit transaction '{transaction_name}': {e}") from e

        result = BatchResult(committed=True, outcomes=outcomes)
        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Batch '{transaction_name}' committed: {len(result.succeeded)}/{result.total} succeeded "
            f"({duration_ms:.1f}ms)"
        )
        return result

    def _attempt(self, index: int, spec: OperationSpec) -> Outcome:
        """Attempt one item in isolation. Never raises for item-level faults."""
        if not isinstance(spec.params, Mapping):
            return Failure(index, f"Item params must be a JSON object, got {type(spec.params).__name__}")
        entry = self.registry.get(spec.kind)
        if entry is None:
            return Failure(index, f"Unsupported operation kind: {spec.kind}", _item_context(spec.params))

        handler, post_steps = entry
        try:
            with self.document.sub_transaction():
                value = handler(self.document, spec.params)
                for step in post_steps:
                    value = step(self.document, spec.params, value)
        except ItemFault as e:
            context = _item_context(spec.params)
            context.update(e.context)
            logger.debug(f"Item {index} ({spec.kind}) failed: {e}")
            return Failure(index, str(e), context)
        except Exception as e:
            logger.debug(f"Item {index} ({spec.kind}) failed: {type(e).__name__}: {e}")
            return Failure(index, str(e) or type(e).__name__, _item_context(spec.params))
        return Success(index, value)
