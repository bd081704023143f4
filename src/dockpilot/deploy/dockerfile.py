"""Dockerfile generation per project variant.

Every generator is a pure function of the project directory (read-only
manifest probes) and its arguments. FullStack projects have no single
Dockerfile; see :mod:`dockpilot.deploy.compose`.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from ..manifest import PackageManifest, major_version
from ..models import ProjectVariant

logger = logging.getLogger("dockpilot.deploy.dockerfile")

DOCKERFILE_NAME = "Dockerfile"

DEFAULT_NODE_VERSION = "20"
NEXT_MIN_NODE_VERSION = "20"
NEXT_NODE_THRESHOLD = 14

NGINX_IMAGE = "nginx:alpine"
NEXT_CONFIG_FILES = ("next.config.js", "next.config.ts", "next.config.mjs")
NODE_ENTRY_FILES = ("index.js", "server.js", "app.js")
BUILD_OUTPUT_DIRS = ("build", "dist", "out")
# also the fallback when the manifest declares no build script
BUILD_COMMAND = "npm run build"

SPA_NGINX_CONF = (
    "server { listen 80; location / { root /usr/share/nginx/html; "
    "index index.html; try_files $uri $uri/ /index.html; } }"
)


def node_version(project_dir: Path | str) -> str:
    """Node image tag for a project.

    A pinned ``engines.node`` wins; otherwise Next.js 14+ needs at least
    the Next baseline; otherwise the current LTS default.
    """
    manifest = PackageManifest.load(project_dir)

    pinned = major_version(_as_str(manifest.engines.get("node")))
    if pinned is not None:
        return str(pinned)

    next_major = major_version(manifest.dependency_version("next"))
    if next_major is not None and next_major >= NEXT_NODE_THRESHOLD:
        return NEXT_MIN_NODE_VERSION

    return DEFAULT_NODE_VERSION


def _as_str(value: object) -> Optional[str]:
    return value if isinstance(value, str) else None


def is_next_project(project_dir: Path | str) -> bool:
    root = Path(project_dir)
    if any((root / name).is_file() for name in NEXT_CONFIG_FILES):
        return True
    return PackageManifest.load(root).has_dependency("next")


def node_start_command(project_dir: Path | str) -> list[str]:
    """Start command by priority: start, dev, serve scripts, main, entry file, fallback."""
    root = Path(project_dir)
    manifest = PackageManifest.load(root)

    scripts = manifest.scripts
    if "start" in scripts:
        return ["npm", "start"]
    if "dev" in scripts:
        return ["npm", "run", "dev"]
    if "serve" in scripts:
        return ["npm", "run", "serve"]

    if manifest.main:
        return ["node", manifest.main]

    for name in NODE_ENTRY_FILES:
        if (root / name).is_file():
            return ["node", name]

    return ["npm", "start"]


def _cmd(args: list[str]) -> str:
    return "CMD " + json.dumps(args)


def static_dockerfile() -> str:
    lines = [
        f"FROM {NGINX_IMAGE}",
        "",
        "# Serve the project tree as-is",
        "COPY . /usr/share/nginx/html",
        "",
        "EXPOSE 80",
        "",
        _cmd(["nginx", "-g", "daemon off;"]),
    ]
    return "\n".join(lines) + "\n"


def node_dockerfile(project_dir: Path | str, port: int) -> str:
    lines = [
        f"FROM node:{node_version(project_dir)}-alpine",
        "",
        "WORKDIR /app",
        "",
        "# Install dependencies",
        "COPY package*.json ./",
        "RUN npm install",
        "",
        "# Copy application",
        "COPY . .",
        "",
        f"ENV PORT={port}",
        f"EXPOSE {port}",
        "",
        _cmd(node_start_command(project_dir)),
    ]
    return "\n".join(lines) + "\n"


def next_dockerfile(project_dir: Path | str) -> str:
    """Server-rendered framework: build then run the production server on 3000."""
    lines = [
        f"FROM node:{node_version(project_dir)}-alpine",
        "",
        "WORKDIR /app",
        "",
        "COPY package*.json ./",
        "RUN npm install",
        "",
        "COPY . .",
        "",
        "RUN npm run build",
        "",
        "EXPOSE 3000",
        "",
        _cmd(["npm", "start"]),
    ]
    return "\n".join(lines) + "\n"


def spa_dockerfile(project_dir: Path | str) -> str:
    """Static-built framework: build stage, then nginx with a client-side routing fallback."""
    collect = " || ".join(
        f"([ -d {d} ] && cp -r {d}/. /out/)" for d in BUILD_OUTPUT_DIRS
    )
    lines = [
        "# Build stage",
        f"FROM node:{node_version(project_dir)}-alpine AS build",
        "",
        "WORKDIR /app",
        "",
        "COPY package*.json ./",
        "RUN npm install",
        "",
        "COPY . .",
        "",
        f"RUN {BUILD_COMMAND}",
        "",
        "# Collect whichever output directory the build produced",
        f"RUN mkdir -p /out && ({collect})",
        "",
        "# Production stage",
        f"FROM {NGINX_IMAGE}",
        "",
        "COPY --from=build /out /usr/share/nginx/html",
        "",
        f"RUN echo '{SPA_NGINX_CONF}' > /etc/nginx/conf.d/default.conf",
        "",
        "EXPOSE 80",
        "",
        _cmd(["nginx", "-g", "daemon off;"]),
    ]
    return "\n".join(lines) + "\n"


def frontend_dockerfile(project_dir: Path | str) -> str:
    if is_next_project(project_dir):
        return next_dockerfile(project_dir)
    return spa_dockerfile(project_dir)


def generate_dockerfile(project_dir: Path | str, variant: ProjectVariant, port: int) -> Optional[str]:
    """Dockerfile text for a single-service project, or ``None`` (FullStack, Unknown)."""
    if variant is ProjectVariant.STATIC:
        return static_dockerfile()
    if variant is ProjectVariant.NODE:
        return node_dockerfile(project_dir, port)
    if variant is ProjectVariant.FRONTEND_FRAMEWORK:
        return frontend_dockerfile(project_dir)
    return None


def backend_service_dockerfile(service_dir: Path | str) -> str:
    lines = [
        f"FROM node:{node_version(service_dir)}-alpine",
        "",
        "WORKDIR /app",
        "",
        "COPY package*.json ./",
        "RUN npm install",
        "",
        "COPY . .",
        "",
        "EXPOSE 3000",
        "",
        _cmd(node_start_command(service_dir)),
    ]
    return "\n".join(lines) + "\n"


def frontend_service_dockerfile(service_dir: Path | str) -> str:
    lines = [
        f"FROM node:{node_version(service_dir)}-alpine",
        "",
        "WORKDIR /app",
        "",
        "COPY package*.json ./",
        "RUN npm install",
        "",
        "COPY . .",
        "",
        "EXPOSE 3000",
        "",
        _cmd(["npm", "start"]),
    ]
    return "\n".join(lines) + "\n"


def write_dockerfile(directory: Path | str, content: str) -> Path:
    path = Path(directory) / DOCKERFILE_NAME
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    logger.info("Generated Dockerfile at: %s", path)
    return path
