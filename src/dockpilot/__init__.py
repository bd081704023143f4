"""DockPilot – detect, containerize and run local projects with Docker"""

__version__ = "0.1.0"

from .config import Settings
from .detector import default_port, detect
from .events import EventBus, EventKind, ProjectEvent
from .manager import (
    PortUnavailableError,
    ProjectBusyError,
    ProjectManager,
    ProjectManagerError,
    ProjectNotFoundError,
    UnknownProjectTypeError,
)
from .models import Project, ProjectVariant, ResourceOptions, RunHandle, RunStatus
from .network import PortAllocator, check_port
from .orchestrator import LifecycleResult, Orchestrator
from .run_log import RunLogger, latest_log_file
from .store import ProjectStore

__all__ = [
    # Model
    "Project",
    "ProjectVariant",
    "ResourceOptions",
    "RunHandle",
    "RunStatus",
    # Detection
    "detect",
    "default_port",
    # Ports
    "PortAllocator",
    "check_port",
    # Orchestration
    "Orchestrator",
    "LifecycleResult",
    "ProjectManager",
    "ProjectManagerError",
    "ProjectNotFoundError",
    "ProjectBusyError",
    "UnknownProjectTypeError",
    "PortUnavailableError",
    "ProjectStore",
    "Settings",
    # Logs and events
    "RunLogger",
    "latest_log_file",
    "EventBus",
    "EventKind",
    "ProjectEvent",
    "__version__",
]
