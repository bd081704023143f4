"""Tests for the project manager (control surface)."""

from __future__ import annotations

import threading

import pytest

from dockpilot.events import EventBus, EventKind
from dockpilot.manager import (
    PortUnavailableError,
    ProjectBusyError,
    ProjectManager,
    ProjectNotFoundError,
    UnknownProjectTypeError,
)
from dockpilot.models import ProjectVariant, ResourceOptions, RunStatus
from dockpilot.network import PortAllocator
from dockpilot.orchestrator import Orchestrator
from dockpilot.store import ProjectStore

from conftest import FakeBackend


class GatedBackend(FakeBackend):
    """Blocks builds until the test opens the gate."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.gate = threading.Event()

    def build_image(self, *args, **kwargs):
        self.entered.set()
        self.gate.wait(timeout=10)
        return super().build_image(*args, **kwargs)


def _manager(settings, backend) -> ProjectManager:
    orchestrator = Orchestrator(
        backend=backend,
        settings=settings,
        ports=PortAllocator(start_port=52000, end_port=52100),
    )
    return ProjectManager(settings=settings, orchestrator=orchestrator)


@pytest.fixture
def node_dir(make_project_dir):
    return make_project_dir({"package.json": {"scripts": {"start": "PORT=52010 node server.js"}}}, name="api")


def test_register_detects_and_claims_inferred_port(settings, fake_backend, node_dir):
    manager = _manager(settings, fake_backend)
    project = manager.register(node_dir)

    assert project.name == "api"
    assert project.variant is ProjectVariant.NODE
    assert project.port == 52010
    assert manager.orchestrator.ports.is_claimed(52010)
    assert settings.projects_file.is_file()


def test_register_with_explicit_port(settings, fake_backend, node_dir):
    manager = _manager(settings, fake_backend)
    project = manager.register(node_dir, name="custom", port=52050)

    assert project.name == "custom"
    assert project.port == 52050


def test_register_same_port_twice_is_rejected(settings, fake_backend, node_dir, make_project_dir):
    manager = _manager(settings, fake_backend)
    manager.register(node_dir, port=52060)
    other = make_project_dir({"index.html": ""}, name="site")

    with pytest.raises(PortUnavailableError):
        manager.register(other, port=52060)


def test_register_second_project_gets_next_free_port(settings, fake_backend, make_project_dir):
    manager = _manager(settings, fake_backend)
    a = make_project_dir({"package.json": {"scripts": {"start": "PORT=52020 node ."}}}, name="a")
    b = make_project_dir({"package.json": {"scripts": {"start": "PORT=52020 node ."}}}, name="b")

    first = manager.register(a)
    second = manager.register(b)

    assert first.port == 52020
    assert second.port != 52020


def test_register_unknown_is_rejected(settings, fake_backend, make_project_dir):
    manager = _manager(settings, fake_backend)
    with pytest.raises(UnknownProjectTypeError):
        manager.register(make_project_dir({"README.md": "hi"}, name="docs"))


def test_find_by_name_and_prefix(settings, fake_backend, node_dir):
    manager = _manager(settings, fake_backend)
    project = manager.register(node_dir)

    assert manager.find("api") is project
    assert manager.find(project.id[:6]) is project
    with pytest.raises(ProjectNotFoundError):
        manager.find("missing")


def test_start_and_stop_in_background(settings, fake_backend, node_dir):
    manager = _manager(settings, fake_backend)
    project = manager.register(node_dir)

    started = manager.start(project.id).result(timeout=10)
    assert started.success
    assert project.status is RunStatus.RUNNING

    stopped = manager.stop(project.id).result(timeout=10)
    assert stopped.success
    assert project.status is RunStatus.STOPPED
    manager.shutdown()


def test_second_operation_while_busy_is_rejected(settings, node_dir):
    backend = GatedBackend()
    manager = _manager(settings, backend)
    project = manager.register(node_dir)

    future = manager.start(project.id)
    assert backend.entered.wait(timeout=10)
    with pytest.raises(ProjectBusyError):
        manager.stop(project.id)
    with pytest.raises(ProjectBusyError):
        manager.delete(project.id)

    backend.gate.set()
    assert future.result(timeout=10).success
    assert not manager.is_busy(project.id)
    manager.shutdown()


def test_update_port(settings, fake_backend, node_dir):
    manager = _manager(settings, fake_backend)
    project = manager.register(node_dir)

    manager.update_port(project.id, 52070)

    assert project.port == 52070
    assert manager.orchestrator.ports.claimed() == {52070}
    port_events = [e for e in manager.events.drain() if e.kind is EventKind.PORT]
    assert port_events[-1].data == {"old_port": 52010, "port": 52070}


def test_update_port_to_claimed_port_keeps_old(settings, fake_backend, node_dir, make_project_dir):
    manager = _manager(settings, fake_backend)
    project = manager.register(node_dir)
    manager.register(make_project_dir({"index.html": ""}, name="site"), port=52080)

    with pytest.raises(PortUnavailableError):
        manager.update_port(project.id, 52080)
    assert project.port == 52010
    assert manager.orchestrator.ports.is_claimed(52010)


def test_update_port_while_running_is_rejected(settings, fake_backend, node_dir):
    manager = _manager(settings, fake_backend)
    project = manager.register(node_dir)
    manager.start(project.id).result(timeout=10)

    with pytest.raises(ProjectBusyError):
        manager.update_port(project.id, 52090)
    manager.shutdown()


def test_update_env_and_resources_are_saved(settings, fake_backend, node_dir):
    manager = _manager(settings, fake_backend)
    project = manager.register(node_dir)

    manager.update_env(project.id, {"API_URL": "http://localhost:9000"})
    manager.update_resources(project.id, ResourceOptions(memory_limit_mb=1024, cpu_limit=2.0))

    saved = ProjectStore(settings.projects_file).load()[0]
    assert saved.env == {"API_URL": "http://localhost:9000"}
    assert saved.resources.memory_limit_mb == 1024
    assert saved.resources.cpu_limit == 2.0


def test_delete_stops_releases_and_removes_image(settings, fake_backend, node_dir):
    manager = _manager(settings, fake_backend)
    project = manager.register(node_dir)
    manager.start(project.id).result(timeout=10)

    manager.delete(project.id)

    assert "stop_container" in fake_backend.names()
    assert "remove_image" in fake_backend.names()
    assert not manager.orchestrator.ports.is_claimed(52010)
    assert manager.projects() == []
    assert ProjectStore(settings.projects_file).load() == []
    manager.shutdown()


def test_delete_can_keep_image(settings, fake_backend, node_dir):
    manager = _manager(settings, fake_backend)
    project = manager.register(node_dir)

    manager.delete(project.id, remove_image=False)

    assert "remove_image" not in fake_backend.names()


def test_load_replays_port_claims(settings, fake_backend, node_dir):
    first = _manager(settings, fake_backend)
    project = first.register(node_dir)
    first.start(project.id).result(timeout=10)
    first.save()
    first.shutdown(stop_running=False)

    second = _manager(settings, fake_backend)
    loaded = second.load()

    assert [p.id for p in loaded] == [project.id]
    assert loaded[0].status is RunStatus.STOPPED
    assert loaded[0].run_handle is None
    assert second.orchestrator.ports.is_claimed(52010)


def test_shutdown_stops_running_projects(settings, fake_backend, node_dir):
    manager = _manager(settings, fake_backend)
    project = manager.register(node_dir)
    manager.start(project.id).result(timeout=10)

    manager.shutdown()

    assert project.status is RunStatus.STOPPED


def test_event_queue_stays_bounded_with_only_a_subscriber(settings, fake_backend, node_dir):
    orchestrator = Orchestrator(
        backend=fake_backend,
        settings=settings,
        ports=PortAllocator(start_port=52000, end_port=52100),
        events=EventBus(max_queued=25),
    )
    manager = ProjectManager(settings=settings, orchestrator=orchestrator)
    seen = []
    manager.events.subscribe(seen.append)
    project = manager.register(node_dir)

    for _ in range(50):
        manager.start(project.id).result(timeout=10)
        manager.stop(project.id).result(timeout=10)

    assert len(seen) > 100
    assert manager.events.pending() == 25
    manager.shutdown()


def test_fullstack_claims_frontend_port_too(settings, fake_backend, make_project_dir, node_dir):
    manager = _manager(settings, fake_backend)
    shop = manager.register(make_project_dir({"backend/": None, "frontend/": None}, name="shop"), port=52030)

    assert manager.orchestrator.ports.claimed() == {52030, 52031}
    with pytest.raises(PortUnavailableError):
        manager.register(node_dir, port=52031)

    manager.delete(shop.id, remove_image=False)
    assert manager.orchestrator.ports.claimed() == set()


def test_fullstack_port_update_moves_both_claims(settings, fake_backend, make_project_dir):
    manager = _manager(settings, fake_backend)
    shop = manager.register(make_project_dir({"backend/": None, "frontend/": None}, name="shop"), port=52040)

    manager.update_port(shop.id, 52044)

    assert manager.orchestrator.ports.claimed() == {52044, 52045}
