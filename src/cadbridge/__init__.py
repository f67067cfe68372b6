"""cadbridge - batched, transactional command bridge between an AI agent and a CAD host."""

__version__ = "0.1.0"

from .channel import (  # noqa: E402
    ChannelDisconnected,
    ChannelError,
    ChannelTimeout,
    CommandChannel,
    ConnectionState,
    HostRejected,
)
from .client import BridgeClient  # noqa: E402
from .config import BridgeConfig, HostConfig, Settings, load_config  # noqa: E402
from .outcome import BatchResult, Failure, Outcome, Success  # noqa: E402

__all__ = [
    "BatchResult",
    "BridgeClient",
    "BridgeConfig",
    "ChannelDisconnected",
    "ChannelError",
    "ChannelTimeout",
    "CommandChannel",
    "ConnectionState",
    "Failure",
    "HostConfig",
    "HostRejected",
    "Outcome",
    "Settings",
    "Success",
    "load_config",
    "__version__",
]
