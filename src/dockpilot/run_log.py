"""Per-run project log files.

Each start or rebuild of a project gets its own timestamped file under
``<log_dir>/<sanitized project name>/``. Lines are flushed as they are
written so the file can be tailed while a build is running.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

from .models import Project

BUILD = 15
CONTAINER = 25
logging.addLevelName(BUILD, "BUILD")
logging.addLevelName(CONTAINER, "CONTAINER")

LINE_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
FILE_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
RULE = "=" * 80

_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")


def sanitize_name(name: str) -> str:
    return _UNSAFE.sub("_", name)


def project_log_dir(log_root: Path, project_name: str) -> Path:
    return Path(log_root) / sanitize_name(project_name)


def latest_log_file(log_root: Path, project_name: str) -> Optional[Path]:
    """Most recently modified run log for a project, if any."""
    directory = project_log_dir(log_root, project_name)
    if not directory.is_dir():
        return None
    logs = [p for p in directory.glob("*.log") if p.is_file()]
    if not logs:
        return None
    return max(logs, key=lambda p: p.stat().st_mtime)


def _unique_log_path(directory: Path, started: datetime) -> Path:
    stem = f"run_{started.strftime(FILE_TIMESTAMP_FORMAT)}"
    candidate = directory / f"{stem}.log"
    n = 1
    while candidate.exists():
        n += 1
        candidate = directory / f"{stem}_{n}.log"
    return candidate


class RunLogger:
    """Append-only log for one run of one project.

    Not thread-safe; the orchestrator uses one instance per run and runs
    one operation per project at a time.
    """

    def __init__(self, project: Project, log_root: Path):
        self.project_name = project.name
        self.log_dir = project_log_dir(log_root, project.name)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        started = datetime.now()
        self.path = _unique_log_path(self.log_dir, started)
        self._closed = False

        self._write_raw([
            RULE,
            "DockPilot - Project Log",
            f"Project: {project.name}",
            f"Type: {project.variant.display_name}",
            f"Path: {project.path}",
            f"Port: {project.port}",
            f"Started: {started.strftime(TIMESTAMP_FORMAT)}",
            RULE,
            "",
        ])

        self._handler = logging.FileHandler(self.path, mode="a", encoding="utf-8")
        self._handler.setFormatter(logging.Formatter(LINE_FORMAT, datefmt=TIMESTAMP_FORMAT))
        # standalone logger: not registered with the logging manager, never propagates
        self._logger = logging.Logger(f"dockpilot.run.{sanitize_name(project.name)}", logging.DEBUG)
        self._logger.propagate = False
        self._logger.addHandler(self._handler)

    def _write_raw(self, lines: list[str]) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
            f.flush()

    def log(self, level: int, message: str) -> None:
        if self._closed:
            return
        # FileHandler flushes after every record
        self._logger.log(level, message)

    def info(self, message: str) -> None:
        self.log(logging.INFO, message)

    def warning(self, message: str) -> None:
        self.log(logging.WARNING, message)

    def error(self, message: str) -> None:
        self.log(logging.ERROR, message)

    def build(self, message: str) -> None:
        self.log(BUILD, message)

    def container(self, message: str) -> None:
        self.log(CONTAINER, message)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._logger.removeHandler(self._handler)
        self._handler.close()
        self._write_raw([
            "",
            RULE,
            f"Log ended: {datetime.now().strftime(TIMESTAMP_FORMAT)}",
            RULE,
        ])

    def __enter__(self) -> "RunLogger":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
