"""Shared fixtures: temp data directory, in-memory control plane, API client."""

import os

# Settings are read at import time; configure before importing the app.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["API_TOKEN"] = "test-token"
os.environ["CONTROL_PLANE_BACKEND"] = "memory"
os.environ["LOG_LEVEL"] = "WARNING"

from pathlib import Path  # noqa: E402
from textwrap import dedent  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from orchestrator.api import deps  # noqa: E402
from orchestrator.clients.memory import InMemoryControlPlane  # noqa: E402
from orchestrator.core.loader import DesiredStateLoader  # noqa: E402
from orchestrator.core.metrics import MetricsSink  # noqa: E402
from orchestrator.core.reconciler import Reconciler  # noqa: E402
from orchestrator.database.session import db_manager  # noqa: E402
from orchestrator.main import app  # noqa: E402


USERS_YAML = dedent("""\
    - name: alice
      email: alice@example.com
      tags: [tag:server]
    - name: bob
      email: bob@example.com
""")

ROUTES_YAML = dedent("""\
    - node: office-gw
      routes:
        - 192.168.1.0/24
      advertise_exit_node: false
""")

ACLS_YAML = dedent("""\
    groups:
      group:admins: [alice@]
      group:eng: [alice@, bob@]
    tagOwners:
      tag:server: [group:admins]
    hosts:
      office-net: 192.168.1.0/24
    acls:
      - action: accept
        src: [group:admins]
        dst: ["*:*"]
      - action: accept
        src: [group:eng]
        dst: ["tag:server:22,443", "office-net:*"]
        comment: engineers reach servers and the office
    ssh:
      - action: accept
        src: [group:admins]
        dst: [tag:server]
        users: [root, autogroup:nonroot]
""")


def write_documents(
    path: Path,
    users: str = USERS_YAML,
    routes: str = ROUTES_YAML,
    acls: str = ACLS_YAML
) -> Path:
    """Write the three desired-state documents; pass None to skip one"""
    path.mkdir(parents=True, exist_ok=True)
    for name, content in (("users.yaml", users), ("routes.yaml", routes), ("acls.yaml", acls)):
        if content is not None:
            (path / name).write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def data_dir(tmp_path):
    return write_documents(tmp_path / "data")


@pytest.fixture
def loader(data_dir):
    return DesiredStateLoader(data_dir)


@pytest.fixture
def control_plane():
    """Live state: alice exists, office-gw advertises its LAN but nothing is enabled"""
    cp = InMemoryControlPlane()
    cp.add_user("alice", "alice@example.com")
    cp.add_node("office-gw", user="alice", advertised=["192.168.1.0/24"])
    return cp


@pytest.fixture
def metrics():
    return MetricsSink()


@pytest.fixture
def reconciler(metrics):
    return Reconciler(metrics=metrics)


@pytest.fixture
def auth_headers():
    return {"Authorization": "Bearer test-token"}


@pytest.fixture
def client(data_dir, control_plane, metrics, reconciler):
    app.dependency_overrides[deps.get_loader] = lambda: DesiredStateLoader(data_dir)
    app.dependency_overrides[deps.get_control_plane] = lambda: control_plane
    app.dependency_overrides[deps.get_metrics] = lambda: metrics
    app.dependency_overrides[deps.get_reconciler] = lambda: reconciler

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    db_manager.drop_all_tables()
