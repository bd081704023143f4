"""Control surface: project records plus background lifecycle tasks."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from threading import Lock
from typing import Callable, Optional

from .config import Settings
from .events import EventBus, EventKind, ProjectEvent
from .models import Project, ProjectVariant, ResourceOptions
from .orchestrator import LifecycleResult, Orchestrator, port_span
from .store import ProjectStore

logger = logging.getLogger("dockpilot.manager")


class ProjectManagerError(Exception):
    """Base class for control-surface errors."""


class ProjectNotFoundError(ProjectManagerError):
    """No project matches the given id or name."""


class ProjectBusyError(ProjectManagerError):
    """An operation is already in flight for the project."""


class UnknownProjectTypeError(ProjectManagerError):
    """The directory does not look like any supported project."""


class PortUnavailableError(ProjectManagerError):
    """The requested host port is claimed or cannot be bound."""


class ProjectManager:
    """
    Owns the project list and runs lifecycle operations in the background.

    Only one operation per project is in flight at a time; submitting a
    second one raises :class:`ProjectBusyError` instead of queueing it.
    Distinct projects run concurrently up to ``settings.max_workers``.

    Example:
        manager = ProjectManager()
        manager.load()
        project = manager.register("~/src/shop")
        result = manager.start(project.id).result()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        orchestrator: Optional[Orchestrator] = None,
        store: Optional[ProjectStore] = None,
        events: Optional[EventBus] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.orchestrator = orchestrator or Orchestrator(settings=self.settings, events=events)
        self.events = self.orchestrator.events
        self.store = store or ProjectStore(self.settings.projects_file)

        self._projects: dict[str, Project] = {}
        self._busy: set[str] = set()
        self._lock = Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, self.settings.max_workers),
            thread_name_prefix="dockpilot",
        )

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def load(self, reattach: bool = False) -> list[Project]:
        """Read the store and re-claim every saved port.

        With *reattach*, containers left running by an earlier process are
        picked up again so they can be stopped.
        """
        loaded = self.store.load()
        with self._lock:
            for project in loaded:
                if project.id in self._projects:
                    continue
                self._projects[project.id] = project
                span = port_span(project.variant)
                if project.port and not self.orchestrator.reserve_port(project.port, span):
                    logger.warning(
                        "Port %d of %s could not be reserved; another process may hold it",
                        project.port,
                        project.name,
                    )
            projects = list(self._projects.values())

        if reattach:
            for project in projects:
                self.orchestrator.reattach(project)
        return projects

    def save(self) -> None:
        with self._lock:
            projects = list(self._projects.values())
        self.store.save(projects)

    def projects(self) -> list[Project]:
        with self._lock:
            return list(self._projects.values())

    def get(self, project_id: str) -> Project:
        with self._lock:
            project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(f"No project with id {project_id}")
        return project

    def find(self, ref: str) -> Project:
        """Look a project up by exact id, exact name, or unique id prefix."""
        with self._lock:
            projects = list(self._projects.values())

        for project in projects:
            if project.id == ref:
                return project
        by_name = [p for p in projects if p.name == ref]
        if len(by_name) == 1:
            return by_name[0]
        by_prefix = [p for p in projects if p.id.startswith(ref)]
        if len(by_prefix) == 1:
            return by_prefix[0]
        if len(by_name) > 1 or len(by_prefix) > 1:
            raise ProjectNotFoundError(f"'{ref}' matches more than one project")
        raise ProjectNotFoundError(f"No project matches '{ref}'")

    def register(
        self,
        path: Path | str,
        name: Optional[str] = None,
        port: Optional[int] = None,
    ) -> Project:
        """Detect, claim a port for and record a new project."""
        root = Path(path).expanduser().resolve()
        if not root.is_dir():
            raise ProjectManagerError(f"Not a directory: {root}")

        variant = self.orchestrator.detect(root)
        if variant is ProjectVariant.UNKNOWN:
            raise UnknownProjectTypeError(f"Could not detect a supported project type in {root}")

        span = port_span(variant)
        if port:
            if not self.orchestrator.reserve_port(port, span):
                raise PortUnavailableError(f"Port {port} is not available")
            assigned = port
        else:
            preferred = self.orchestrator.default_port(root, variant)
            assigned = self.orchestrator.allocate_port(preferred, span)

        project = Project(name=name or root.name, path=root, variant=variant, port=assigned)
        with self._lock:
            self._projects[project.id] = project
        self.save()

        logger.info("Registered %s (%s) on port %d", project.name, variant.display_name, assigned)
        self.events.publish(ProjectEvent(
            project_id=project.id,
            kind=EventKind.REGISTERED,
            status=project.status,
            message=project.name,
            data={"port": assigned, "variant": variant.value},
        ))
        return project

    # ------------------------------------------------------------------
    # Background lifecycle
    # ------------------------------------------------------------------

    def is_busy(self, project_id: str) -> bool:
        with self._lock:
            return project_id in self._busy

    def _claim(self, project: Project) -> None:
        with self._lock:
            if project.id in self._busy:
                raise ProjectBusyError(f"An operation is already running for {project.name}")
            self._busy.add(project.id)

    def _unclaim(self, project: Project) -> None:
        with self._lock:
            self._busy.discard(project.id)

    def _submit(self, project: Project, op: Callable[[Project], LifecycleResult]) -> Future:
        self._claim(project)

        def task() -> LifecycleResult:
            try:
                return op(project)
            finally:
                self._unclaim(project)

        try:
            return self._executor.submit(task)
        except RuntimeError:
            self._unclaim(project)
            raise

    def start(self, project_id: str) -> Future:
        project = self.get(project_id)
        return self._submit(project, self.orchestrator.start)

    def stop(self, project_id: str) -> Future:
        project = self.get(project_id)
        return self._submit(project, self.orchestrator.stop)

    def rebuild(self, project_id: str) -> Future:
        project = self.get(project_id)
        return self._submit(project, self.orchestrator.rebuild)

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def _require_idle(self, project: Project, action: str) -> None:
        if self.is_busy(project.id) or project.is_active:
            raise ProjectBusyError(f"Cannot {action} {project.name} while it is running")

    def update_port(self, project_id: str, new_port: int) -> Project:
        project = self.get(project_id)
        self._require_idle(project, "change the port of")
        if new_port == project.port:
            return project
        if not self.orchestrator.update_port(project.port, new_port, port_span(project.variant)):
            raise PortUnavailableError(f"Port {new_port} is not available")

        old_port = project.port
        project.port = new_port
        self.save()
        self.events.publish(ProjectEvent(
            project_id=project.id,
            kind=EventKind.PORT,
            status=project.status,
            data={"old_port": old_port, "port": new_port},
        ))
        return project

    def update_env(self, project_id: str, env: dict[str, str]) -> Project:
        project = self.get(project_id)
        project.env = {str(k): str(v) for k, v in env.items()}
        self.save()
        return project

    def update_resources(self, project_id: str, resources: ResourceOptions) -> Project:
        project = self.get(project_id)
        project.resources = resources
        self.save()
        return project

    def delete(self, project_id: str, remove_image: bool = True) -> None:
        """Stop the project if needed, free its port and image, drop the record."""
        project = self.get(project_id)
        self._claim(project)
        try:
            if project.run_handle is not None or project.is_active:
                self.orchestrator.stop(project)
            if project.port:
                self.orchestrator.release_port(project.port, port_span(project.variant))
            if remove_image:
                self.orchestrator.delete_image(project)
            with self._lock:
                self._projects.pop(project.id, None)
        finally:
            self._unclaim(project)

        self.save()
        logger.info("Deleted project %s", project.name)
        self.events.publish(ProjectEvent(
            project_id=project.id,
            kind=EventKind.DELETED,
            message=project.name,
        ))

    def stop_all(self) -> dict[str, LifecycleResult]:
        """Stop every running project that has no operation in flight."""
        with self._lock:
            idle = [p for p in self._projects.values() if p.id not in self._busy]
        return self.orchestrator.stop_all(idle)

    def shutdown(self, stop_running: bool = True, wait: bool = True) -> None:
        if stop_running:
            self.stop_all()
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "ProjectManager":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
