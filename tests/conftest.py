"""Shared fixtures for provisioning tests."""

import json

import pytest

from starter_envs.core.state import STATE_FILE_NAME, StateStore


def write_state(directory, data):
    """Write a state document into a project directory and return its path."""
    path = directory / STATE_FILE_NAME
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def project_dir(tmp_path):
    """Project directory holding a freshly generated state file."""
    write_state(tmp_path, {
        "projectName": "acme",
        "awsRegion": "us-east-1",
        "platforms": ["web"],
    })
    return tmp_path


@pytest.fixture
def state_store(project_dir):
    """State store bound to the project directory."""
    return StateStore.for_project(str(project_dir))


@pytest.fixture
def raw_state(state_store):
    """Read the state file back as plain JSON."""
    def read():
        with open(state_store.path, "r", encoding="utf-8") as f:
            return json.load(f)
    return read
