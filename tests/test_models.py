"""Tests for project records and value types."""

import pytest

from dockpilot.models import Project, ProjectVariant, ResourceOptions, RunHandle, RunStatus


def test_run_handle_string_forms():
    assert str(RunHandle.container("abc123")) == "abc123"
    assert str(RunHandle.for_stack("p-1")) == "compose-p-1"
    assert RunHandle.parse("compose-p-1") == RunHandle.for_stack("p-1")
    assert RunHandle.parse("abc123") == RunHandle.container("abc123")
    assert RunHandle.parse(None) is None


def test_resource_translation():
    resources = ResourceOptions(memory_limit_mb=512, cpu_limit=0.5)
    assert resources.memory_bytes == 536_870_912
    assert resources.cpu_quota(100_000) == 50_000


def test_project_identity_is_immutable(tmp_path):
    project = Project(name="a", path=tmp_path, variant=ProjectVariant.NODE)
    project.port = 3001
    project.status = RunStatus.RUNNING

    with pytest.raises(AttributeError):
        project.id = "other"
    with pytest.raises(AttributeError):
        project.variant = ProjectVariant.STATIC
    with pytest.raises(AttributeError):
        project.path = tmp_path / "elsewhere"


def test_project_defaults(tmp_path):
    project = Project(name="a", path=tmp_path, variant=ProjectVariant.STATIC)
    assert project.status is RunStatus.STOPPED
    assert project.run_handle is None
    assert len(project.short_id) == 8
    assert project.resources.memory_limit_mb == 512
    assert project.resources.cpu_limit == 1.0


def test_unknown_variant_in_record_falls_back(tmp_path):
    project = Project.from_dict({"id": "x", "path": str(tmp_path), "variant": "python"})
    assert project.variant is ProjectVariant.UNKNOWN


def test_variant_display_names():
    assert ProjectVariant.STATIC.display_name == "HTML/CSS/JS"
    assert ProjectVariant.FRONTEND_FRAMEWORK.display_name == "React"
    assert ProjectVariant.FULLSTACK.display_name == "Full-stack"
