"""Lifecycle orchestration for dockpilot projects.

The orchestrator builds or reuses an image, runs it as a container (or a
compose stack for FullStack projects), and stops, rebuilds or removes it
again. Status changes are written to the project record and published as
events.

Callers must serialize operations per project: issuing a start and a stop
for the same project at the same time is undefined. Operations on
different projects are independent.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Iterable, Optional

from . import detector
from .config import Settings
from .deploy.base import (
    CPU_PERIOD_US,
    BuildError,
    ComposeError,
    ContainerBackend,
    ContainerSpec,
    EngineError,
    EngineUnavailableError,
)
from .deploy.compose import ComposeGenerator, ComposeLayout, compose_project_name
from .deploy.docker import DockerBackend
from .deploy.dockerfile import generate_dockerfile, is_next_project, write_dockerfile
from .events import EventBus, EventKind, ProjectEvent
from .models import Project, ProjectVariant, RunHandle, RunStatus
from .network import PortAllocator
from .run_log import RunLogger, latest_log_file, project_log_dir

logger = logging.getLogger("dockpilot.orchestrator")

_IMAGE_UNSAFE = re.compile(r"[^a-z0-9_.-]")
_CONTAINER_UNSAFE = re.compile(r"[^a-zA-Z0-9_.-]")


def image_tag(project: Project) -> str:
    """Deterministic image tag: sanitized name plus the id prefix."""
    name = _IMAGE_UNSAFE.sub("-", project.name.lower()).strip("-.") or "project"
    return f"{name}:{project.short_id}"


def container_name(project: Project) -> str:
    return _CONTAINER_UNSAFE.sub("-", f"{project.name}-{project.short_id}")


def container_port(project: Project) -> int:
    """Port the image listens on inside the container."""
    # Follows the port each generated image exposes: nginx on 80 and the
    # Next-like server on 3000. Only Node images bind the project port.
    if project.variant is ProjectVariant.STATIC:
        return 80
    if project.variant is ProjectVariant.FRONTEND_FRAMEWORK:
        return 3000 if is_next_project(project.path) else 80
    return project.port


def port_span(variant: ProjectVariant) -> int:
    """Number of consecutive host ports a project publishes."""
    return 2 if variant is ProjectVariant.FULLSTACK else 1


@dataclass(frozen=True)
class LifecycleResult:
    """Outcome of a start, stop or rebuild."""
    project_id: str
    success: bool
    status: RunStatus
    run_handle: Optional[RunHandle] = None
    error: Optional[str] = None
    log_path: Optional[Path] = None


class Orchestrator:
    """Coordinates detection, generation, ports, run logs and the container engine."""

    def __init__(
        self,
        backend: Optional[ContainerBackend] = None,
        settings: Optional[Settings] = None,
        ports: Optional[PortAllocator] = None,
        events: Optional[EventBus] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.backend = backend or DockerBackend(
            docker_bin=self.settings.docker_bin,
            compose_cmd=self.settings.compose_cmd,
        )
        self.ports = ports or PortAllocator()
        self.events = events or EventBus()
        self._engine_ok = False
        self._engine_lock = Lock()

    # ------------------------------------------------------------------
    # Detection and ports
    # ------------------------------------------------------------------

    def detect(self, path: Path | str) -> ProjectVariant:
        return detector.detect(path)

    def default_port(self, path: Path | str, variant: ProjectVariant) -> int:
        return detector.default_port(path, variant)

    def allocate_port(self, preferred: Optional[int] = None, span: int = 1) -> int:
        return self.ports.find_available(preferred, span=span)

    def reserve_port(self, port: int, span: int = 1) -> bool:
        return self.ports.reserve(port, span=span)

    def release_port(self, port: int, span: int = 1) -> None:
        self.ports.release(port, span=span)

    def update_port(self, old_port: int, new_port: int, span: int = 1) -> bool:
        return self.ports.update_assignment(old_port, new_port, span=span)

    def log_dir_for(self, project_name: str) -> Path:
        return project_log_dir(self.settings.log_dir, project_name)

    def latest_log(self, project_name: str) -> Optional[Path]:
        return latest_log_file(self.settings.log_dir, project_name)

    # ------------------------------------------------------------------
    # Engine
    # ------------------------------------------------------------------

    def engine_available(self, refresh: bool = False) -> bool:
        """A positive probe is cached; a negative one is retried on the next call."""
        with self._engine_lock:
            if self._engine_ok and not refresh:
                return True
            self._engine_ok = self.backend.is_available()
            return self._engine_ok

    def _require_engine(self) -> None:
        if not self.engine_available():
            raise EngineUnavailableError("Docker is not available")

    def _set_status(
        self,
        project: Project,
        status: RunStatus,
        run_handle: Optional[RunHandle] = None,
        message: str = "",
    ) -> None:
        project.status = status
        project.run_handle = run_handle
        self.events.publish(ProjectEvent(
            project_id=project.id,
            kind=EventKind.STATUS,
            status=status,
            run_handle=str(run_handle) if run_handle else None,
            message=message,
        ))

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start(self, project: Project, *, force_build: bool = False) -> LifecycleResult:
        """Build or reuse the image and start the project. Never raises."""
        if not self.engine_available():
            logger.error("Docker is not available, cannot start %s", project.name)
            self._set_status(project, RunStatus.ERROR, message="Docker is not available")
            return LifecycleResult(
                project_id=project.id,
                success=False,
                status=RunStatus.ERROR,
                error="Docker is not available",
            )

        logger.info("Starting project: %s", project.name)
        self._set_status(project, RunStatus.STARTING, message=f"Starting {project.name}")

        run_log: Optional[RunLogger] = None
        try:
            run_log = RunLogger(project, self.settings.log_dir)
            self.events.publish(ProjectEvent(
                project_id=project.id,
                kind=EventKind.LOG,
                message=str(run_log.path),
                data={"log_path": str(run_log.path)},
            ))
            run_log.info(f"Starting project: {project.name}")

            if project.variant is ProjectVariant.FULLSTACK:
                handle = self._start_stack(project, run_log, build=force_build)
            else:
                handle = self._start_single(project, run_log, force_build=force_build)
        except Exception as e:
            if isinstance(e, EngineError):
                logger.error("Failed to start %s: %s", project.name, e)
            else:
                logger.exception("Failed to start %s", project.name)
            if run_log:
                run_log.error(f"Failed to start project: {e}")
                run_log.close()
            self._set_status(project, RunStatus.ERROR, message=str(e))
            return LifecycleResult(
                project_id=project.id,
                success=False,
                status=RunStatus.ERROR,
                error=str(e),
                log_path=run_log.path if run_log else None,
            )

        run_log.close()
        self._set_status(project, RunStatus.RUNNING, handle, message=f"Running on port {project.port}")
        return LifecycleResult(
            project_id=project.id,
            success=True,
            status=RunStatus.RUNNING,
            run_handle=handle,
            log_path=run_log.path,
        )

    def _start_single(self, project: Project, run_log: RunLogger, *, force_build: bool) -> RunHandle:
        tag = image_tag(project)

        if force_build:
            logger.info("Rebuilding image: %s", tag)
            run_log.info(f"Rebuilding image: {tag}")
            self.build_image(project, tag, run_log)
        elif not self.backend.image_exists(tag):
            logger.info("Building new image: %s", tag)
            run_log.info(f"Image not found, building new image: {tag}")
            self.build_image(project, tag, run_log)
        else:
            logger.info("Using existing image: %s", tag)
            run_log.info(f"Using existing image: {tag}")

        spec = self.container_spec(project, tag)
        result = self.backend.run_container(spec)
        if not result.success or not result.container_id:
            raise EngineError(f"Failed to start container: {result.error}")

        run_log.container(f"Created container: {result.container_id}")
        run_log.info("Started container successfully")
        run_log.info(f"Container is running on port: {project.port}")
        run_log.info(f"Access URL: http://localhost:{project.port}")
        return RunHandle.container(result.container_id)

    def build_image(self, project: Project, tag: str, run_log: RunLogger) -> str:
        """Generate and write the Dockerfile, then build it. Returns the image id."""
        content = generate_dockerfile(project.path, project.variant, project.port)
        if content is None:
            raise BuildError(f"No Dockerfile template for {project.variant.display_name} projects")

        dockerfile_path = write_dockerfile(project.path, content)
        run_log.info("Generated Dockerfile")
        run_log.info(f"Building Docker image: {tag}")

        result = self.backend.build_image(
            tag,
            project.path,
            dockerfile_path,
            on_log=run_log.build,
            timeout=self.settings.build_timeout,
        )
        if not result.success:
            raise BuildError(result.error or "Build failed")

        run_log.info(f"Successfully built image: {result.image_id}")
        return result.image_id or tag

    def container_spec(self, project: Project, tag: str) -> ContainerSpec:
        resources = project.resources
        return ContainerSpec(
            image=tag,
            name=container_name(project),
            port_bindings={project.port: container_port(project)},
            env=dict(project.env),
            volumes=dict(resources.volume_mounts),
            memory_bytes=resources.memory_bytes,
            cpu_quota=resources.cpu_quota(CPU_PERIOD_US),
            cpu_period=CPU_PERIOD_US,
            auto_remove=True,
            labels={
                "dockpilot.project": project.id,
                "dockpilot.name": project.name,
            },
        )

    def _start_stack(self, project: Project, run_log: RunLogger, *, build: bool) -> RunHandle:
        generator = ComposeGenerator.for_project(project.path, project.port)
        compose_path = generator.write_all()
        layout = generator.layout
        run_log.info(f"Generated {compose_path.name} (backend: {layout.backend}, frontend: {layout.frontend})")

        result = self.backend.compose_up(
            compose_path,
            project.path,
            on_log=run_log.container,
            build=build,
        )
        if not result.success:
            raise ComposeError(result.error or "Docker Compose failed", exit_code=result.exit_code)

        run_log.info(f"Backend URL: http://localhost:{layout.backend_port}")
        run_log.info(f"Frontend URL: http://localhost:{layout.frontend_port}")
        return RunHandle.for_stack(project.id)

    # ------------------------------------------------------------------
    # Stop / rebuild / delete
    # ------------------------------------------------------------------

    def stop(self, project: Project) -> LifecycleResult:
        """
        Stop a project. Best-effort: the project always ends up ``STOPPED``.

        ``success`` reports whether the engine confirmed the stop. A failed
        engine-side stop is logged but the status is still forced, so the
        container may in fact keep running.
        """
        handle = project.run_handle
        if handle is None:
            return LifecycleResult(project_id=project.id, success=True, status=project.status)

        logger.info("Stopping project: %s", project.name)
        error: Optional[str] = None
        try:
            self._require_engine()
            if handle.stack:
                compose_path = ComposeLayout.resolve(project.path, project.port).compose_path
                result = self.backend.compose_down(compose_path, project.path)
            else:
                result = self.backend.stop_container(handle.value, timeout=self.settings.stop_timeout)
            if not result.success:
                error = result.error or "stop failed"
        except EngineError as e:
            error = str(e)
        except Exception as e:
            logger.exception("Unexpected error stopping %s", project.name)
            error = str(e)

        if error:
            logger.error(
                "Failed to stop %s cleanly (%s); marking stopped anyway, it may still be running",
                project.name,
                error,
            )

        self._set_status(project, RunStatus.STOPPED, message=error or "Stopped")
        return LifecycleResult(
            project_id=project.id,
            success=error is None,
            status=RunStatus.STOPPED,
            error=error,
        )

    def rebuild(self, project: Project) -> LifecycleResult:
        """Delete the image and start again, always building."""
        if project.is_active or project.run_handle is not None:
            self.stop(project)
        self.delete_image(project)
        return self.start(project, force_build=True)

    def delete_image(self, project: Project) -> None:
        """Remove the project's image if present. Never raises."""
        if not self.engine_available():
            logger.warning("Docker is not available, cannot delete image for %s", project.name)
            return
        tag = image_tag(project)
        try:
            result = self.backend.remove_image(tag)
        except Exception:
            logger.exception("Failed to delete image %s", tag)
            return
        if not result.success:
            logger.warning("Failed to delete image %s: %s", tag, result.error)

    def stop_all(self, projects: Iterable[Project]) -> dict[str, LifecycleResult]:
        """Stop every running project; one failure does not block the rest."""
        results: dict[str, LifecycleResult] = {}
        for project in projects:
            if project.status is not RunStatus.RUNNING:
                continue
            try:
                results[project.id] = self.stop(project)
            except Exception as e:
                logger.exception("Failed to stop %s", project.name)
                results[project.id] = LifecycleResult(
                    project_id=project.id,
                    success=False,
                    status=project.status,
                    error=str(e),
                )
        return results

    def reattach(self, project: Project) -> bool:
        """
        Recover the run handle of a project started by an earlier process.

        Single-container projects are looked up by their deterministic
        container name; a FullStack project counts as running when its
        compose file exists and any of its containers are up.
        """
        if project.run_handle is not None or not self.engine_available():
            return False

        if project.variant is ProjectVariant.FULLSTACK:
            compose_path = ComposeLayout.resolve(project.path, project.port).compose_path
            if not compose_path.exists():
                return False
            handle = RunHandle.for_stack(project.id)
            state = self.backend.container_status(f"{compose_project_name(project.path)}-backend-1")
        else:
            handle = RunHandle.container(container_name(project))
            state = self.backend.container_status(handle.value)

        if state != "running":
            return False
        self._set_status(project, RunStatus.RUNNING, handle, message="Reattached")
        return True

    def container_status(self, project: Project) -> Optional[str]:
        """Engine-reported container state, or None for stacks and stopped projects."""
        handle = project.run_handle
        if handle is None or handle.stack or not self.engine_available():
            return None
        try:
            return self.backend.container_status(handle.value)
        except Exception:
            logger.debug("Failed to get container status for %s", project.name, exc_info=True)
            return None
