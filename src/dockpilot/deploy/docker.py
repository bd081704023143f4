"""Docker backend driving the docker CLI."""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from pathlib import Path
from typing import Optional, Sequence

from .base import (
    ContainerBackend,
    ContainerSpec,
    EngineResult,
    LogCallback,
)

logger = logging.getLogger("dockpilot.docker")

NO_SUCH_IMAGE_MARKERS = ("no such image", "not found")


class DockerBackend(ContainerBackend):
    """Docker container runtime backend."""

    def __init__(self, docker_bin: str = "docker", compose_cmd: Optional[Sequence[str]] = None):
        self.docker_bin = docker_bin
        self.compose_cmd = list(compose_cmd) if compose_cmd else [docker_bin, "compose"]

    def _run(self, args: list[str], timeout: Optional[int] = 60) -> subprocess.CompletedProcess:
        cmd = [self.docker_bin, *args]
        logger.debug("Running: %s", " ".join(cmd))
        return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)

    def is_available(self) -> bool:
        """Check if the Docker daemon answers."""
        try:
            result = subprocess.run(
                [self.docker_bin, "version", "--format", "{{.Server.Version}}"],
                capture_output=True,
                text=True,
                timeout=5,
            )
            if result.returncode == 0:
                logger.info("Docker daemon detected: %s", result.stdout.strip())
                return True
            logger.warning("Docker daemon is not running: %s", result.stderr.strip())
            return False
        except (subprocess.TimeoutExpired, FileNotFoundError):
            logger.warning("Docker is not installed or not responding")
            return False

    def image_exists(self, tag: str) -> bool:
        try:
            result = self._run(["image", "inspect", tag], timeout=30)
        except subprocess.TimeoutExpired:
            return False
        return result.returncode == 0

    def _image_id(self, tag: str) -> Optional[str]:
        try:
            result = self._run(["image", "inspect", "--format", "{{.Id}}", tag], timeout=30)
        except subprocess.TimeoutExpired:
            return None
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def _stream(
        self,
        cmd: list[str],
        *,
        cwd: Optional[Path] = None,
        on_log: Optional[LogCallback] = None,
        timeout: Optional[int] = None,
    ) -> tuple[int, list[str], bool]:
        """Run *cmd*, forward merged output line by line; returns (rc, lines, timed_out).

        The timeout bounds the whole run, including time spent waiting for
        output; a watchdog kills the process when it expires.
        """
        logger.debug("Streaming: %s (cwd=%s, timeout=%s)", " ".join(cmd), cwd, timeout)
        proc = subprocess.Popen(
            cmd,
            cwd=str(cwd) if cwd else None,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )

        timed_out = threading.Event()

        def _expire() -> None:
            timed_out.set()
            logger.error("Command timed out after %ss, killing pid=%d", timeout, proc.pid)
            proc.kill()

        watchdog = threading.Timer(timeout, _expire) if timeout else None
        if watchdog:
            watchdog.daemon = True
            watchdog.start()

        lines: list[str] = []
        try:
            if proc.stdout:
                for raw in proc.stdout:
                    line = raw.rstrip("\n")
                    if not line.strip():
                        continue
                    lines.append(line)
                    self._log(on_log, line)
            rc = proc.wait()
        finally:
            if watchdog:
                watchdog.cancel()

        return rc, lines, timed_out.is_set()

    def build_image(
        self,
        tag: str,
        context_path: Path,
        dockerfile_path: Path,
        *,
        on_log: Optional[LogCallback] = None,
        timeout: int = 300,
    ) -> EngineResult:
        """Build a Docker image."""
        cmd = [
            self.docker_bin, "build",
            "-t", tag,
            "-f", str(dockerfile_path),
            str(context_path),
        ]
        t0 = time.monotonic()
        try:
            rc, lines, timed_out = self._stream(cmd, on_log=on_log, timeout=timeout)
        except FileNotFoundError as e:
            return EngineResult(success=False, error=str(e))

        elapsed = time.monotonic() - t0
        if timed_out:
            return EngineResult(
                success=False,
                exit_code=rc,
                error=f"Build timed out after {timeout}s",
                logs=lines,
            )
        if rc != 0:
            logger.warning("Build of %s failed (exit=%d) in %.1fs", tag, rc, elapsed)
            return EngineResult(
                success=False,
                exit_code=rc,
                error=f"Build failed with exit code {rc}",
                logs=lines,
            )

        logger.info("Built %s in %.1fs", tag, elapsed)
        return EngineResult(
            success=True,
            exit_code=0,
            image_id=self._image_id(tag) or tag,
            logs=lines,
        )

    def remove_image(self, tag: str) -> EngineResult:
        try:
            result = self._run(["rmi", tag], timeout=60)
        except subprocess.TimeoutExpired:
            return EngineResult(success=False, error="Image removal timed out")

        if result.returncode == 0:
            logger.info("Deleted image: %s", tag)
            return EngineResult(success=True, exit_code=0)

        stderr = result.stderr.strip()
        if any(marker in stderr.lower() for marker in NO_SUCH_IMAGE_MARKERS):
            logger.debug("Image %s not present", tag)
            return EngineResult(success=True, exit_code=result.returncode)
        return EngineResult(success=False, exit_code=result.returncode, error=stderr)

    def _create_args(self, spec: ContainerSpec) -> list[str]:
        args = ["create", "--name", spec.name]

        for host_port, container_port in spec.port_bindings.items():
            args.extend(["-p", f"{host_port}:{container_port}"])

        for key, value in spec.env.items():
            args.extend(["-e", f"{key}={value}"])

        for host_path, container_path in spec.volumes.items():
            args.extend(["-v", f"{host_path}:{container_path}"])

        if spec.memory_bytes:
            args.extend(["--memory", str(spec.memory_bytes)])
        if spec.cpu_quota:
            args.extend([
                "--cpu-period", str(spec.cpu_period),
                "--cpu-quota", str(spec.cpu_quota),
            ])

        if spec.auto_remove:
            args.append("--rm")

        for key, value in spec.labels.items():
            args.extend(["--label", f"{key}={value}"])

        args.append(spec.image)
        return args

    def run_container(self, spec: ContainerSpec) -> EngineResult:
        """Create and start a container."""
        try:
            # a leftover container with the same name would block create
            self._run(["rm", "-f", spec.name], timeout=30)

            created = self._run(self._create_args(spec), timeout=60)
            if created.returncode != 0:
                return EngineResult(
                    success=False,
                    exit_code=created.returncode,
                    error=created.stderr.strip() or "docker create failed",
                )
            container_id = created.stdout.strip().splitlines()[-1]
            logger.info("Created container: %s", container_id)

            started = self._run(["start", container_id], timeout=60)
            if started.returncode != 0:
                self._run(["rm", "-f", container_id], timeout=30)
                return EngineResult(
                    success=False,
                    exit_code=started.returncode,
                    error=started.stderr.strip() or "docker start failed",
                )
        except subprocess.TimeoutExpired:
            return EngineResult(success=False, error="Container start timed out")

        logger.info("Started container: %s", container_id)
        return EngineResult(success=True, exit_code=0, container_id=container_id)

    def stop_container(self, container_id: str, timeout: int = 10) -> EngineResult:
        try:
            result = self._run(["stop", "-t", str(timeout), container_id], timeout=timeout + 30)
        except subprocess.TimeoutExpired:
            return EngineResult(success=False, error="Container stop timed out")

        if result.returncode == 0:
            logger.info("Stopped container: %s", container_id)
            return EngineResult(success=True, exit_code=0, container_id=container_id)
        return EngineResult(
            success=False,
            exit_code=result.returncode,
            container_id=container_id,
            error=result.stderr.strip(),
        )

    def container_status(self, container_id: str) -> Optional[str]:
        try:
            result = self._run(["inspect", "--format", "{{.State.Status}}", container_id], timeout=30)
        except subprocess.TimeoutExpired:
            return None
        if result.returncode != 0:
            logger.debug("Failed to get container status: %s", result.stderr.strip())
            return None
        return result.stdout.strip() or None

    def compose_up(
        self,
        compose_file: Path,
        cwd: Path,
        *,
        on_log: Optional[LogCallback] = None,
        build: bool = False,
    ) -> EngineResult:
        cmd = [*self.compose_cmd, "-f", str(compose_file), "up", "-d"]
        if build:
            cmd.append("--build")
        try:
            rc, lines, _ = self._stream(cmd, cwd=cwd, on_log=on_log)
        except FileNotFoundError as e:
            return EngineResult(success=False, error=str(e))

        if rc != 0:
            return EngineResult(
                success=False,
                exit_code=rc,
                error=f"Docker Compose failed with exit code: {rc}",
                logs=lines,
            )
        return EngineResult(success=True, exit_code=0, logs=lines)

    def compose_down(self, compose_file: Path, cwd: Path) -> EngineResult:
        cmd = [*self.compose_cmd, "-f", str(compose_file), "down"]
        try:
            result = subprocess.run(cmd, cwd=str(cwd), capture_output=True, text=True, timeout=120)
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            return EngineResult(success=False, error=str(e))

        return EngineResult(
            success=result.returncode == 0,
            exit_code=result.returncode,
            error=result.stderr.strip() if result.returncode != 0 else None,
        )
