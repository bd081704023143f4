"""CLI for dockpilot."""

import sys
from collections import deque
from contextlib import contextmanager
from typing import Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import Settings
from .deploy.compose import ComposeGenerator
from .deploy.dockerfile import generate_dockerfile, write_dockerfile
from .detector import default_port, detect
from .logging_config import setup_logging
from .manager import ProjectManager, ProjectManagerError
from .models import ProjectVariant, RunStatus
from .orchestrator import LifecycleResult

console = Console()

STATUS_STYLES = {
    RunStatus.RUNNING: "green",
    RunStatus.STARTING: "yellow",
    RunStatus.STOPPED: "dim",
    RunStatus.ERROR: "red",
}


def _manager() -> ProjectManager:
    settings = Settings.from_env()
    setup_logging(log_dir=settings.home_dir, level=settings.log_level)
    manager = ProjectManager(settings=settings)
    manager.load(reattach=True)
    return manager


@contextmanager
def _session():
    """A loaded manager; containers keep running after the command exits."""
    manager = _manager()
    try:
        yield manager
    finally:
        manager.shutdown(stop_running=False)


def _print_result(name: str, result: LifecycleResult, verb: str) -> None:
    if result.success:
        console.print(f"[green]✓ {name} {verb}[/green]")
    else:
        console.print(f"[red]✗ {name}: {result.error}[/red]")
    if result.log_path:
        console.print(f"  [dim]log: {result.log_path}[/dim]")


@click.group()
@click.version_option(version=__version__, prog_name="dockpilot")
def cli():
    """DockPilot – run local projects in Docker without writing Dockerfiles."""
    load_dotenv()


@cli.command("detect")
@click.argument("path", type=click.Path(exists=True, file_okay=False))
def detect_cmd(path: str):
    """Show the detected project type and default port."""
    variant = detect(path)
    if variant is ProjectVariant.UNKNOWN:
        console.print(f"[yellow]Could not detect a project type in {path}[/yellow]")
        sys.exit(1)
    console.print(f"[bold]{variant.display_name}[/bold] (port {default_port(path, variant)})")


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.option("--port", "-p", type=int, help="Host port (default: inferred)")
@click.option("--write", "-w", is_flag=True, help="Write the files into the project")
def generate(path: str, port: Optional[int], write: bool):
    """Print (or write) the Dockerfile or compose file for a project."""
    variant = detect(path)
    port = port or default_port(path, variant)

    if variant is ProjectVariant.FULLSTACK:
        generator = ComposeGenerator.for_project(path, port)
        if write:
            compose_path = generator.write_all()
            console.print(f"[green]✓ Wrote {compose_path}[/green]")
        else:
            console.print(generator.render(), markup=False, highlight=False)
        return

    content = generate_dockerfile(path, variant, port)
    if content is None:
        console.print(f"[red]Error: no Dockerfile template for {variant.display_name} projects[/red]")
        sys.exit(1)
    if write:
        console.print(f"[green]✓ Wrote {write_dockerfile(path, content)}[/green]")
    else:
        console.print(content, markup=False, highlight=False)


@cli.command()
@click.argument("path", type=click.Path(exists=True, file_okay=False))
@click.option("--name", "-n", help="Project name (default: directory name)")
@click.option("--port", "-p", type=int, help="Host port (default: inferred)")
def add(path: str, name: Optional[str], port: Optional[int]):
    """Register a project."""
    try:
        with _session() as manager:
            project = manager.register(path, name=name, port=port)
        console.print(
            f"[green]✓ Added {project.name}[/green] "
            f"({project.variant.display_name}, port {project.port}, id {project.short_id})"
        )
    except ProjectManagerError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command("list")
def list_cmd():
    """List registered projects."""
    with _session() as manager:
        projects = manager.projects()

    if not projects:
        console.print("[dim]No projects registered[/dim]")
        return

    table = Table(title="Projects")
    table.add_column("Name", style="cyan")
    table.add_column("ID")
    table.add_column("Type")
    table.add_column("Port")
    table.add_column("Status")
    table.add_column("Path", style="dim", no_wrap=True, overflow="ellipsis", max_width=30)

    for p in sorted(projects, key=lambda p: p.name.lower()):
        style = STATUS_STYLES.get(p.status, "white")
        table.add_row(
            p.name,
            p.short_id,
            p.variant.display_name,
            str(p.port),
            f"[{style}]{p.status.display_name}[/{style}]",
            str(p.path),
        )

    console.print(table)


def _run_lifecycle(refs: tuple[str, ...], action: str, verb: str) -> None:
    failed = False
    try:
        with _session() as manager:
            projects = [manager.find(ref) for ref in refs]
            futures = [(p, getattr(manager, action)(p.id)) for p in projects]
            for project, future in futures:
                result = future.result()
                _print_result(project.name, result, verb)
                if result.success and result.status is RunStatus.RUNNING:
                    console.print(f"  URL: http://localhost:{project.port}")
                failed = failed or not result.success
    except ProjectManagerError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    if failed:
        sys.exit(1)


@cli.command()
@click.argument("refs", nargs=-1, required=True)
def start(refs: tuple[str, ...]):
    """Start projects (by name or id prefix)."""
    _run_lifecycle(refs, "start", "started")


@cli.command()
@click.argument("refs", nargs=-1, required=True)
def stop(refs: tuple[str, ...]):
    """Stop projects."""
    _run_lifecycle(refs, "stop", "stopped")


@cli.command()
@click.argument("refs", nargs=-1, required=True)
def rebuild(refs: tuple[str, ...]):
    """Delete the image and start again with a fresh build."""
    _run_lifecycle(refs, "rebuild", "rebuilt")


@cli.command()
@click.argument("ref")
@click.option("--keep-image", is_flag=True, help="Don't delete the Docker image")
def remove(ref: str, keep_image: bool):
    """Stop and unregister a project."""
    try:
        with _session() as manager:
            project = manager.find(ref)
            manager.delete(project.id, remove_image=not keep_image)
        console.print(f"[green]✓ Removed {project.name}[/green]")
    except ProjectManagerError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command("stop-all")
def stop_all():
    """Stop every running project."""
    with _session() as manager:
        results = manager.stop_all()
        names = {pid: manager.get(pid).name for pid in results}

    if not results:
        console.print("[dim]Nothing is running[/dim]")
        return
    for project_id, result in results.items():
        _print_result(names[project_id], result, "stopped")


@cli.command()
@click.argument("ref")
@click.option("--tail", "-n", type=int, default=0, help="Only the last N lines")
def logs(ref: str, tail: int):
    """Show the latest run log of a project."""
    try:
        with _session() as manager:
            project = manager.find(ref)
            log_file = manager.orchestrator.latest_log(project.name)
    except ProjectManagerError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if log_file is None:
        console.print(f"[dim]No logs for {project.name}[/dim]")
        return

    console.print(f"[dim]{log_file}[/dim]")
    with open(log_file, encoding="utf-8", errors="replace") as f:
        lines = deque(f, maxlen=tail) if tail > 0 else list(f)
    for line in lines:
        console.print(line.rstrip("\n"), markup=False, highlight=False)


@cli.command()
def ports():
    """Show host ports assigned to projects."""
    with _session() as manager:
        projects = manager.projects()

    table = Table(title="Port assignments")
    table.add_column("Port", style="cyan")
    table.add_column("Project")
    table.add_column("Status")
    for p in sorted(projects, key=lambda p: p.port):
        if p.port:
            table.add_row(str(p.port), p.name, p.status.display_name)
    console.print(table)


def main(argv=None):
    """Main entry point."""
    cli(argv)


if __name__ == "__main__":
    main()
