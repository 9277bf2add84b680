"""Gateway supervisor and durable state sync for ephemeral sandboxes."""

from .config import GatewayConfig
from .errors import GatewayError, GatewayStartupError, TransientInfraError
from .supervisor import GatewaySupervisor
from .sync import SyncEngine
from .types import SyncOutcome, SyncResult

__all__ = [
    "GatewayConfig",
    "GatewayError",
    "GatewayStartupError",
    "GatewaySupervisor",
    "SyncEngine",
    "SyncOutcome",
    "SyncResult",
    "TransientInfraError",
]
