"""Project type detection.

Detection is an ordered list of rules; the first rule whose predicate
matches decides the variant. Every probe is read-only and a malformed
manifest only disables the checks that need its contents.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .manifest import PackageManifest
from .models import ProjectVariant

logger = logging.getLogger("dockpilot.detector")

BACKEND_DIRS = ("backend", "server")
FRONTEND_DIRS = ("frontend", "client")

SERVER_ROLE_SCRIPTS = ("server", "start:server", "backend", "start:backend")
CLIENT_ROLE_SCRIPTS = ("client", "start:client", "frontend", "start:frontend")

FRAMEWORK_PACKAGES = ("react", "react-dom")
FRAMEWORK_CONFIG_FILES = ("vite.config.js", "vite.config.ts", ".next", "next.config.js")

NODE_SCRIPTS = ("start", "dev", "serve")
SERVER_FRAMEWORKS = ("express", "fastify", "koa", "nestjs", "@nestjs/core")
NODE_ENTRY_FILES = ("server.js", "app.js", "index.js")

_PORT_ENV_RE = re.compile(r"PORT=(\S*)")
_PORT_FLAG_RE = re.compile(r"--port\s+(\S*)")


@dataclass(frozen=True)
class ProjectProbe:
    """Everything the rules look at, gathered once per detection."""
    root: Path
    manifest: PackageManifest

    @classmethod
    def scan(cls, path: Path | str) -> "ProjectProbe":
        root = Path(path)
        return cls(root=root, manifest=PackageManifest.load(root))

    def has_dir(self, name: str) -> bool:
        return (self.root / name).is_dir()

    def has_file(self, name: str) -> bool:
        return (self.root / name).is_file()

    def exists(self, name: str) -> bool:
        return (self.root / name).exists()

    def html_files(self) -> list[Path]:
        return [p for p in self.root.iterdir() if p.is_file() and p.name.lower().endswith(".html")]


def is_fullstack(probe: ProjectProbe) -> bool:
    if any(probe.has_dir(d) for d in BACKEND_DIRS) and any(probe.has_dir(d) for d in FRONTEND_DIRS):
        return True
    manifest = probe.manifest
    if not manifest.exists:
        return False
    if manifest.has("workspaces"):
        return True
    return manifest.has_script(*SERVER_ROLE_SCRIPTS) and manifest.has_script(*CLIENT_ROLE_SCRIPTS)


def is_frontend_framework(probe: ProjectProbe) -> bool:
    manifest = probe.manifest
    if not manifest.exists:
        return False
    # a src/App.* file is only a hint; it never qualifies without the dependency
    if manifest.has_dependency(*FRAMEWORK_PACKAGES):
        return True
    return any(probe.exists(f) for f in FRAMEWORK_CONFIG_FILES)


def is_node(probe: ProjectProbe) -> bool:
    manifest = probe.manifest
    if not manifest.exists:
        return False
    if manifest.has_script(*NODE_SCRIPTS):
        return True
    if manifest.has("type") or manifest.has("main"):
        return True
    if manifest.has_dependency(*SERVER_FRAMEWORKS, dev=False):
        return True
    return any(probe.has_file(f) for f in NODE_ENTRY_FILES)


def is_static(probe: ProjectProbe) -> bool:
    if not probe.has_file("index.html"):
        return False
    if not probe.manifest.exists:
        return True
    return len(probe.html_files()) > 1


@dataclass(frozen=True)
class DetectionRule:
    name: str
    matches: Callable[[ProjectProbe], bool]
    variant: ProjectVariant


DETECTION_RULES: tuple[DetectionRule, ...] = (
    DetectionRule("fullstack", is_fullstack, ProjectVariant.FULLSTACK),
    DetectionRule("frontend-framework", is_frontend_framework, ProjectVariant.FRONTEND_FRAMEWORK),
    DetectionRule("node", is_node, ProjectVariant.NODE),
    DetectionRule("static", is_static, ProjectVariant.STATIC),
)


def detect(path: Path | str) -> ProjectVariant:
    """Classify the directory at *path*. Returns ``UNKNOWN`` when no rule matches."""
    root = Path(path)
    if not root.is_dir():
        logger.warning("Invalid project path: %s", root)
        return ProjectVariant.UNKNOWN

    probe = ProjectProbe.scan(root)
    for rule in DETECTION_RULES:
        try:
            matched = rule.matches(probe)
        except OSError as e:
            logger.debug("Rule %s failed on %s: %s", rule.name, root, e)
            continue
        if matched:
            logger.info("Detected %s project at: %s", rule.variant.display_name, root)
            return rule.variant

    logger.warning("Unable to detect project type for: %s", root)
    return ProjectVariant.UNKNOWN


def _parse_port(raw: str) -> Optional[int]:
    try:
        return int(raw)
    except ValueError:
        return None


def port_from_scripts(scripts: dict[str, str]) -> Optional[int]:
    """First ``PORT=<n>`` or ``--port <n>`` found in script bodies, in declaration order."""
    for body in scripts.values():
        for pattern in (_PORT_ENV_RE, _PORT_FLAG_RE):
            match = pattern.search(body)
            if match:
                port = _parse_port(match.group(1))
                if port is not None:
                    return port
    return None


def default_port(path: Path | str, variant: ProjectVariant) -> int:
    """Infer the port a project listens on. Never raises."""
    if variant is ProjectVariant.STATIC:
        return 80

    manifest = PackageManifest.load(path)
    if manifest.exists:
        port = port_from_scripts(manifest.scripts)
        if port is not None:
            return port

        config_port = manifest.config.get("port")
        if config_port is not None:
            port = _parse_port(str(config_port))
            if port is not None:
                return port

    return variant.default_port
