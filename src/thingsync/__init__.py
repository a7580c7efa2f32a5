"""thingsync - Async reconciliation and command tracking for smart-lighting Things."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("thingsync")
except PackageNotFoundError:
    __version__ = "0+local"
from thingsync.config import EngineConfig
from thingsync.engine import Engine
from thingsync.exceptions import (
    CommandError,
    CommandSendFailed,
    CommandTimeout,
    ConfigError,
    FetchFailure,
    ThingSyncError,
    UnknownThing,
)
from thingsync.ingestion import ReconcileResult, Reconciler
from thingsync.models import (
    Capabilities,
    CommandRequest,
    CommandResult,
    DesiredState,
    Device,
    ExpectationState,
    Group,
    LightColor,
    Power,
    Source,
    SourceSnapshot,
    Target,
)
from thingsync.state import Registry, Thing, ThingStatus, ThingView

__all__ = [
    "__version__",
    "Capabilities",
    "CommandError",
    "CommandRequest",
    "CommandResult",
    "CommandSendFailed",
    "CommandTimeout",
    "ConfigError",
    "DesiredState",
    "Device",
    "Engine",
    "EngineConfig",
    "ExpectationState",
    "FetchFailure",
    "Group",
    "LightColor",
    "Power",
    "ReconcileResult",
    "Reconciler",
    "Registry",
    "Source",
    "SourceSnapshot",
    "Target",
    "Thing",
    "ThingStatus",
    "ThingSyncError",
    "ThingView",
    "UnknownThing",
]
