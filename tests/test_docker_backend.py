"""Tests for the docker CLI backend (subprocess is mocked)."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

from dockpilot.deploy.base import ContainerSpec
from dockpilot.deploy.docker import DockerBackend


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


def _popen(lines, returncode=0):
    proc = MagicMock()
    proc.stdout = iter(lines)
    proc.wait.return_value = returncode
    proc.pid = 1234
    return proc


@patch("dockpilot.deploy.docker.subprocess.run")
def test_is_available(mock_run):
    mock_run.return_value = _completed(stdout="24.0.7\n")
    assert DockerBackend().is_available() is True

    mock_run.return_value = _completed(returncode=1, stderr="Cannot connect to the Docker daemon")
    assert DockerBackend().is_available() is False


@patch("dockpilot.deploy.docker.subprocess.run", side_effect=FileNotFoundError("docker"))
def test_is_available_without_binary(_mock_run):
    assert DockerBackend().is_available() is False


@patch("dockpilot.deploy.docker.subprocess.run")
def test_image_exists(mock_run):
    mock_run.return_value = _completed()
    assert DockerBackend().image_exists("app:1234abcd") is True
    assert mock_run.call_args[0][0] == ["docker", "image", "inspect", "app:1234abcd"]


@patch("dockpilot.deploy.docker.subprocess.run")
@patch("dockpilot.deploy.docker.subprocess.Popen")
def test_build_streams_lines_and_reports_image_id(mock_popen, mock_run, tmp_path):
    mock_popen.return_value = _popen(["Step 1/3 : FROM node\n", "\n", "Successfully built 1\n"])
    mock_run.return_value = _completed(stdout="sha256:deadbeef\n")
    seen: list[str] = []

    result = DockerBackend().build_image("app:1", tmp_path, tmp_path / "Dockerfile", on_log=seen.append, timeout=5)

    assert result.success
    assert result.image_id == "sha256:deadbeef"
    assert seen == ["Step 1/3 : FROM node", "Successfully built 1"]
    cmd = mock_popen.call_args[0][0]
    assert cmd[:4] == ["docker", "build", "-t", "app:1"]
    assert str(tmp_path / "Dockerfile") in cmd


@patch("dockpilot.deploy.docker.subprocess.Popen")
def test_build_failure_reports_exit_code(mock_popen, tmp_path):
    mock_popen.return_value = _popen(["npm ERR! missing script: build\n"], returncode=1)

    result = DockerBackend().build_image("app:1", tmp_path, tmp_path / "Dockerfile")

    assert not result.success
    assert result.exit_code == 1
    assert result.error == "Build failed with exit code 1"
    assert result.logs == ["npm ERR! missing script: build"]


@patch("dockpilot.deploy.docker.threading.Timer")
@patch("dockpilot.deploy.docker.subprocess.Popen")
def test_build_timeout_kills_process(mock_popen, mock_timer, tmp_path):
    proc = _popen([], returncode=-9)
    mock_popen.return_value = proc

    def fire(interval, fn):
        timer = MagicMock()
        timer.start.side_effect = fn
        return timer

    mock_timer.side_effect = fire

    result = DockerBackend().build_image("app:1", tmp_path, tmp_path / "Dockerfile", timeout=7)

    proc.kill.assert_called_once()
    assert not result.success
    assert result.error == "Build timed out after 7s"


@patch("dockpilot.deploy.docker.subprocess.run")
def test_remove_missing_image_is_success(mock_run):
    mock_run.return_value = _completed(returncode=1, stderr="Error: No such image: app:1")
    assert DockerBackend().remove_image("app:1").success

    mock_run.return_value = _completed(returncode=1, stderr="conflict: image is being used")
    result = DockerBackend().remove_image("app:1")
    assert not result.success
    assert "conflict" in result.error


@patch("dockpilot.deploy.docker.subprocess.run")
def test_run_container_builds_create_args(mock_run):
    mock_run.side_effect = [
        _completed(),  # rm -f stale
        _completed(stdout="abc123\n"),  # create
        _completed(stdout="abc123\n"),  # start
    ]
    spec = ContainerSpec(
        image="app:1",
        name="app-1",
        port_bindings={8080: 80},
        env={"API_KEY": "x"},
        volumes={"/data": "/app/data"},
        memory_bytes=512 * 1024 * 1024,
        cpu_quota=150_000,
        labels={"dockpilot.project": "1"},
    )

    result = DockerBackend().run_container(spec)

    assert result.success
    assert result.container_id == "abc123"
    create = mock_run.call_args_list[1][0][0]
    assert create[:4] == ["docker", "create", "--name", "app-1"]
    assert "8080:80" in create
    assert "API_KEY=x" in create
    assert "/data:/app/data" in create
    assert create[create.index("--memory") + 1] == str(512 * 1024 * 1024)
    assert create[create.index("--cpu-period") + 1] == "100000"
    assert create[create.index("--cpu-quota") + 1] == "150000"
    assert "--rm" in create
    assert create[-1] == "app:1"


@patch("dockpilot.deploy.docker.subprocess.run")
def test_failed_start_removes_container(mock_run):
    mock_run.side_effect = [
        _completed(),
        _completed(stdout="abc123\n"),
        _completed(returncode=1, stderr="port is already allocated"),
        _completed(),
    ]

    result = DockerBackend().run_container(ContainerSpec(image="app:1", name="app-1"))

    assert not result.success
    assert result.error == "port is already allocated"
    assert mock_run.call_args_list[-1][0][0] == ["docker", "rm", "-f", "abc123"]


@patch("dockpilot.deploy.docker.subprocess.run")
def test_stop_container_uses_grace_period(mock_run):
    mock_run.return_value = _completed()
    assert DockerBackend().stop_container("abc123", timeout=3).success
    assert mock_run.call_args[0][0] == ["docker", "stop", "-t", "3", "abc123"]


@patch("dockpilot.deploy.docker.subprocess.run")
def test_container_status(mock_run):
    mock_run.return_value = _completed(stdout="running\n")
    assert DockerBackend().container_status("abc") == "running"

    mock_run.return_value = _completed(returncode=1, stderr="No such object")
    assert DockerBackend().container_status("abc") is None


@patch("dockpilot.deploy.docker.subprocess.Popen")
def test_compose_up_reports_exit_code(mock_popen, tmp_path):
    mock_popen.return_value = _popen(["error pulling image\n"], returncode=3)
    compose_file = tmp_path / "docker-compose.yml"

    result = DockerBackend().compose_up(compose_file, tmp_path, build=True)

    assert not result.success
    assert result.exit_code == 3
    assert result.error == "Docker Compose failed with exit code: 3"
    cmd = mock_popen.call_args[0][0]
    assert cmd == ["docker", "compose", "-f", str(compose_file), "up", "-d", "--build"]


@patch("dockpilot.deploy.docker.subprocess.run")
def test_compose_down_uses_configured_command(mock_run, tmp_path):
    mock_run.return_value = _completed()
    backend = DockerBackend(compose_cmd=["docker-compose"])

    assert backend.compose_down(Path("c.yml"), tmp_path).success
    assert mock_run.call_args[0][0] == ["docker-compose", "-f", "c.yml", "down"]
