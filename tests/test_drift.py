"""Read-only drift detection"""

import pytest

from orchestrator.clients.memory import InMemoryControlPlane
from orchestrator.core.drift import DriftDetector
from orchestrator.core.exceptions import ControlPlaneError, LoadError
from orchestrator.core.loader import DesiredStateLoader
from orchestrator.core.metrics import DRIFT_CHECKS_TOTAL
from orchestrator.schemas.state import Route, User

from conftest import write_documents


def test_user_missing_from_headscale():
    cp = InMemoryControlPlane()
    cp.add_user("alice")

    report = DriftDetector().detect_drift([User(name="alice"), User(name="bob")], [], cp)

    assert report.has_drift
    assert report.drifts == ["User bob exists in config but not in Headscale"]
    assert report.summary == {
        "headscale_users_count": 1,
        "config_users_count": 2,
        "headscale_routes_count": 0,
        "config_routes_count": 0,
        "drift_count": 1,
    }


def test_drift_is_symmetric():
    cp = InMemoryControlPlane()
    cp.add_user("alice")
    cp.add_user("mallory")
    cp.add_node("office-gw", advertised=["10.1.0.0/16", "10.2.0.0/16"], enabled=["10.2.0.0/16"])

    report = DriftDetector().detect_drift(
        [User(name="alice"), User(name="bob")],
        [Route(node="office-gw", routes=["10.1.0.0/16"])],
        cp,
    )

    assert report.drifts == [
        "User mallory exists in Headscale but not in config",
        "User bob exists in config but not in Headscale",
        "Route 10.2.0.0/16 on node office-gw exists in Headscale but not in config",
        "Route 10.1.0.0/16 on node office-gw exists in config but not in Headscale",
    ]


def test_no_drift_after_apply(reconciler, loader, control_plane, metrics):
    reconciler.reconcile(loader, control_plane)

    report = DriftDetector(metrics).check(loader, control_plane)

    assert not report.has_drift
    assert report.drifts == []
    assert report.summary["drift_count"] == 0
    assert metrics.get(DRIFT_CHECKS_TOTAL, {"has_drift": "false"}) == 1


def test_attribute_changes_are_not_drift():
    cp = InMemoryControlPlane()
    cp.add_user("alice", email="old@example.com")

    report = DriftDetector().detect_drift([User(name="alice", email="new@example.com")], [], cp)

    assert not report.has_drift


def test_drift_check_never_mutates(loader, control_plane, metrics):
    report = DriftDetector(metrics).check(loader, control_plane)

    assert report.has_drift
    assert control_plane.mutations == []
    assert metrics.get(DRIFT_CHECKS_TOTAL, {"has_drift": "true"}) == 1


def test_check_ignores_acl_document(tmp_path, control_plane):
    data_dir = write_documents(tmp_path, acls="acls: [\n")

    report = DriftDetector().check(DesiredStateLoader(data_dir), control_plane)

    assert report.has_drift


def test_load_and_control_plane_errors_propagate(tmp_path, metrics):
    detector = DriftDetector(metrics)
    cp = InMemoryControlPlane()

    with pytest.raises(LoadError):
        detector.check(DesiredStateLoader(write_documents(tmp_path, users=None)), cp)

    cp.fail("list_users", message="connection refused")
    with pytest.raises(ControlPlaneError):
        detector.detect_drift([], [], cp)

    assert metrics.get(DRIFT_CHECKS_TOTAL, {"has_drift": "error"}) == 2
