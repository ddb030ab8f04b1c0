"""Apply pipeline: ordering, dry runs, partial failure, idempotence"""

import threading

import pytest

from orchestrator.clients.memory import InMemoryControlPlane
from orchestrator.core.exceptions import LoadError, ReconcileInProgressError
from orchestrator.core.metrics import APPLY_TOTAL, CONFIG_SYNC_DURATION
from orchestrator.core.reconciler import (
    ApplyOptions,
    Reconciler,
    ReconcileStep,
    RoutesStep,
    StepResult,
)
from orchestrator.core.loader import DesiredStateLoader
from orchestrator.schemas.state import ACLPolicy, ACLRule, DesiredState, Route, User

from conftest import write_documents


def test_apply_creates_missing_entities(reconciler, loader, control_plane):
    result = reconciler.reconcile(loader, control_plane)

    assert result.success
    assert result.dry_run is False
    assert result.changes == [
        "Created user: bob",
        "Enabled routes for node office-gw: [192.168.1.0/24]",
        "Updated ACL policy",
    ]
    assert result.errors == []
    assert result.message == "Applied 3 changes with 0 errors"
    assert result.stats == {
        "users_processed": 2,
        "routes_processed": 1,
        "acl_processed": 1,
        "changes_applied": 3,
        "unchanged_count": 1,
        "errors_count": 0,
    }
    assert {u.name for u in control_plane.list_users()} == {"alice", "bob"}
    assert all(r.enabled for r in control_plane.list_routes())


def test_only_missing_user_is_created():
    cp = InMemoryControlPlane()
    cp.add_user("alice")
    cp.set_policy(ACLPolicy())
    desired = DesiredState(
        users=(User(name="alice"), User(name="bob")),
        routes=(),
        policy=ACLPolicy(),
    )

    result = Reconciler().apply(desired, cp)

    assert result.changes == ["Created user: bob"]
    assert result.errors == []
    assert cp.mutations[-1] == ("create_user", "bob")


def test_second_apply_is_a_no_op(reconciler, loader, control_plane):
    reconciler.reconcile(loader, control_plane)
    mutations_after_first = list(control_plane.mutations)

    result = reconciler.reconcile(loader, control_plane)

    assert result.success
    assert result.changes == []
    assert result.stats["unchanged_count"] == 4
    assert control_plane.mutations == mutations_after_first


def test_steps_run_users_then_routes_then_acl(reconciler, loader, control_plane):
    reconciler.reconcile(loader, control_plane)

    operations = [op for op, _ in control_plane.mutations]
    assert operations == ["create_user", "enable_route", "set_policy"]


def test_dry_run_reports_the_same_changes_without_mutating(reconciler, loader, control_plane):
    preview = reconciler.reconcile(loader, control_plane, ApplyOptions(dry_run=True))

    assert preview.dry_run is True
    assert preview.changes == [
        "Would create user: bob",
        "Would enable routes for node office-gw: [192.168.1.0/24]",
        "Would update ACL policy",
    ]
    assert preview.message == "Dry run: 3 changes would be applied with 0 errors"
    assert control_plane.mutations == []

    applied = reconciler.reconcile(loader, control_plane)
    assert [c.replace("Would create", "Created")
             .replace("Would enable", "Enabled")
             .replace("Would update", "Updated") for c in preview.changes] == applied.changes


def test_dry_run_reports_errors_a_real_run_would_hit(tmp_path, reconciler, control_plane):
    data_dir = write_documents(tmp_path, routes="- node: branch-gw\n  routes: [10.20.0.0/16]\n")

    result = reconciler.reconcile(DesiredStateLoader(data_dir), control_plane, ApplyOptions(dry_run=True))

    assert not result.success
    assert result.errors == [
        "Failed to enable routes for node branch-gw: node branch-gw not found in Headscale"
    ]


def test_partial_failure_continues_with_other_entities(tmp_path, reconciler, control_plane):
    data_dir = write_documents(
        tmp_path,
        users="- name: bob\n- name: carol\n- name: dave\n",
    )
    control_plane.fail("create_user", "carol", "database is locked")

    result = reconciler.reconcile(DesiredStateLoader(data_dir), control_plane)

    assert not result.success
    assert result.changes == [
        "Created user: bob",
        "Created user: dave",
        "Enabled routes for node office-gw: [192.168.1.0/24]",
        "Updated ACL policy",
    ]
    assert result.errors == [
        "Failed to create user carol: create_user carol failed: database is locked"
    ]
    assert result.stats["errors_count"] == 1
    assert result.message == "Applied 4 changes with 1 errors"


def test_failed_acl_push_is_recorded(reconciler, loader, control_plane):
    control_plane.fail("set_policy", message="policy rejected")

    result = reconciler.reconcile(loader, control_plane)

    assert result.errors == ["Failed to update ACL policy: set_policy failed: policy rejected"]
    assert "Created user: bob" in result.changes


def test_unreadable_live_policy_is_pushed(reconciler, loader, control_plane):
    reconciler.reconcile(loader, control_plane)
    control_plane.fail("get_policy", message="no policy")

    result = reconciler.reconcile(loader, control_plane)

    assert result.changes == ["Updated ACL policy"]


def test_unadvertised_prefix_is_an_error(reconciler, control_plane):
    desired = DesiredState(
        users=(),
        routes=(Route(node="office-gw", routes=["192.168.1.0/24", "10.0.0.0/8"]),),
        policy=ACLPolicy(),
    )

    result = reconciler.apply(desired, control_plane)

    assert result.errors == [
        "Failed to enable routes for node office-gw: prefixes not advertised by node: [10.0.0.0/8]"
    ]
    assert not any(op == "enable_route" for op, _ in control_plane.mutations)


def test_partial_route_enable_reports_what_went_live():
    cp = InMemoryControlPlane()
    cp.add_node("gw", advertised=["10.0.0.0/24", "10.1.0.0/24"])
    second = next(r for r in cp.list_routes() if r.prefix == "10.1.0.0/24")
    cp.fail("enable_route", second.id, "route conflict")
    desired = DesiredState(
        users=(),
        routes=(Route(node="gw", routes=["10.0.0.0/24", "10.1.0.0/24"]),),
        policy=ACLPolicy(),
    )

    result = RoutesStep().run(desired, cp, dry_run=False)

    assert result.changes == ["Enabled routes for node gw: [10.0.0.0/24]"]
    assert result.errors == [
        f"Failed to enable routes for node gw: enable_route {second.id} failed: route conflict"
    ]
    assert {r.prefix: r.enabled for r in cp.list_routes()} == {
        "10.0.0.0/24": True,
        "10.1.0.0/24": False,
    }


def test_node_without_advertised_routes_is_not_reported_missing(control_plane):
    control_plane.add_node("idle-gw")
    desired = DesiredState(
        users=(),
        routes=(
            Route(node="idle-gw", routes=["10.0.0.0/8"]),
            Route(node="ghost-gw", routes=["10.9.0.0/16"]),
        ),
        policy=ACLPolicy(),
    )

    result = RoutesStep().run(desired, control_plane, dry_run=True)

    assert result.errors == [
        "Failed to enable routes for node idle-gw: prefixes not advertised by node: [10.0.0.0/8]",
        "Failed to enable routes for node ghost-gw: node ghost-gw not found in Headscale",
    ]
    assert [op for op, _ in control_plane.calls].count("list_nodes") == 1


def test_exit_node_enables_default_routes(control_plane):
    control_plane.add_node("exit-1", advertised=["0.0.0.0/0", "::/0"])
    desired = DesiredState(
        users=(),
        routes=(Route(node="exit-1", advertise_exit_node=True),),
        policy=ACLPolicy(),
    )

    result = RoutesStep().run(desired, control_plane, dry_run=False)

    assert result.changes == ["Enabled routes for node exit-1: [0.0.0.0/0 ::/0]"]


def test_validate_first_blocks_every_mutation(reconciler, control_plane):
    desired = DesiredState(
        users=(User(name="bob"),),
        routes=(),
        policy=ACLPolicy(acls=[ACLRule(action="accept", src=["*"], dst=["tag:eng:*"])]),
    )

    result = reconciler.apply(desired, control_plane, ApplyOptions(validate=True))

    assert not result.success
    assert result.message == "Validation failed: undefined tag reference: tag:eng"
    assert result.errors == ["undefined tag reference: tag:eng"]
    assert result.stats == {
        "users_processed": 1,
        "routes_processed": 0,
        "acl_processed": 1,
        "changes_applied": 0,
        "unchanged_count": 0,
        "errors_count": 1,
    }
    assert control_plane.calls == []


def test_without_validate_invalid_policy_is_still_pushed(reconciler, control_plane):
    desired = DesiredState(
        users=(),
        routes=(),
        policy=ACLPolicy(acls=[ACLRule(action="accept", src=["*"], dst=["tag:eng:*"])]),
    )

    result = reconciler.apply(desired, control_plane)

    assert result.changes == ["Updated ACL policy"]


def test_load_error_aborts_before_any_call(tmp_path, reconciler, metrics, control_plane):
    data_dir = write_documents(tmp_path, acls="acls: [\n")

    with pytest.raises(LoadError):
        reconciler.reconcile(DesiredStateLoader(data_dir), control_plane)

    assert control_plane.calls == []
    assert metrics.get(APPLY_TOTAL, {"status": "error"}) == 1


def test_metrics_are_recorded(reconciler, metrics, loader, control_plane):
    reconciler.reconcile(loader, control_plane)
    control_plane.fail("set_policy")
    control_plane.fail("get_policy")
    reconciler.reconcile(loader, control_plane)

    assert metrics.get(APPLY_TOTAL, {"status": "success"}) == 1
    assert metrics.get(APPLY_TOTAL, {"status": "error"}) == 1
    assert metrics.count(CONFIG_SYNC_DURATION) == 2


class BlockingStep(ReconcileStep):
    kind = "blocking"

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()

    def run(self, desired, control_plane, dry_run):
        self.entered.set()
        self.release.wait(timeout=5)
        return StepResult(kind=self.kind)


def test_concurrent_apply_is_rejected(control_plane):
    step = BlockingStep()
    reconciler = Reconciler(steps=[step])
    desired = DesiredState(users=(), routes=(), policy=ACLPolicy())

    worker = threading.Thread(target=reconciler.apply, args=(desired, control_plane))
    worker.start()
    try:
        assert step.entered.wait(timeout=5)
        assert reconciler.in_progress

        with pytest.raises(ReconcileInProgressError):
            reconciler.apply(desired, control_plane)
    finally:
        step.release.set()
        worker.join(timeout=5)

    assert not reconciler.in_progress
    assert reconciler.apply(desired, control_plane).success


def test_exclusive_block_holds_off_apply(control_plane):
    reconciler = Reconciler()
    desired = DesiredState(users=(), routes=(), policy=ACLPolicy())

    with reconciler.exclusive():
        assert reconciler.in_progress
        with pytest.raises(ReconcileInProgressError):
            reconciler.apply(desired, control_plane)

    assert not reconciler.in_progress
    assert reconciler.apply(desired, control_plane).success
