"""Host side of the bridge: document model, batch executor, handlers and server."""

from .batch import BatchExecutor, HandlerRegistry, OperationSpec
from .document import Document, ItemFault, TransactionError, load_document
from .server import CommandError, HostServer

__all__ = [
    "BatchExecutor",
    "CommandError",
    "Document",
    "HandlerRegistry",
    "HostServer",
    "ItemFault",
    "OperationSpec",
    "TransactionError",
    "load_document",
]
