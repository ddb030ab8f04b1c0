# orchestrator/core/reconciler.py
"""
Reconciler - pushes desired state onto the control plane

The apply is a one-directional create-or-update push: nothing present
live but absent from desired state is removed. Work runs as a fixed
pipeline of steps:

    1. UsersStep   - create missing users
    2. RoutesStep  - enable advertised routes listed in routes.yaml
    3. ACLStep     - replace the policy when it differs

ACL rules may reference users and tags created earlier in the same pass,
so the order is part of the contract.

Each entity is applied independently. A failing control-plane call is
recorded as an error and the pipeline moves on. Dry runs go through the
exact same code path, only the mutating call is skipped.
"""

import threading
import time
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any, TYPE_CHECKING

from orchestrator.schemas.state import DesiredState, ACLPolicy
from orchestrator.schemas.results import ApplyResult
from .exceptions import ControlPlaneError, LoadError, ReconcileInProgressError
from .metrics import MetricsSink, APPLY_TOTAL, CONFIG_SYNC_DURATION
from .validator import PolicyValidator

if TYPE_CHECKING:
    from orchestrator.clients.base import ControlPlane
    from .loader import DesiredStateLoader

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApplyOptions:
    """
    dry_run:  compute changes without mutating the control plane
    force:    confirmation bypass for callers; no effect on the core
    validate: run the validator before touching anything
    """
    dry_run: bool = False
    force: bool = False
    validate: bool = False


@dataclass
class StepResult:
    """Partial result of one pipeline step"""
    kind: str
    considered: int = 0
    changes: List[str] = field(default_factory=list)
    unchanged: int = 0
    errors: List[str] = field(default_factory=list)


def _describe_prefixes(prefixes: List[str]) -> str:
    return "[" + " ".join(prefixes) + "]"


class ReconcileStep:
    """A single entity kind in the apply pipeline"""

    kind = "entity"

    def run(
        self,
        desired: DesiredState,
        control_plane: "ControlPlane",
        dry_run: bool
    ) -> StepResult:
        raise NotImplementedError


class UsersStep(ReconcileStep):
    """Create users missing from Headscale; existing users are left as they are"""

    kind = "users"

    def run(self, desired, control_plane, dry_run):
        result = StepResult(kind=self.kind, considered=len(desired.users))
        if not desired.users:
            return result

        try:
            live_names = {u.name for u in control_plane.list_users()}
        except ControlPlaneError as e:
            result.errors.append(f"Failed to list users from Headscale: {e}")
            return result

        for user in desired.users:
            if user.name in live_names:
                result.unchanged += 1
                continue

            if dry_run:
                result.changes.append(f"Would create user: {user.name}")
                continue

            try:
                control_plane.create_user(user)
            except ControlPlaneError as e:
                result.errors.append(f"Failed to create user {user.name}: {e}")
                continue

            live_names.add(user.name)
            result.changes.append(f"Created user: {user.name}")

        return result


class RoutesStep(ReconcileStep):
    """
    Enable the routes each node should serve

    A route can only be enabled once the node advertises it, so a
    prefix the node does not advertise is an error for that entry.
    """

    kind = "routes"

    def run(self, desired, control_plane, dry_run):
        result = StepResult(kind=self.kind, considered=len(desired.routes))
        if not desired.routes:
            return result

        try:
            live_routes = control_plane.list_routes()
        except ControlPlaneError as e:
            result.errors.append(f"Failed to list routes from Headscale: {e}")
            return result

        live_nodes = None
        for entry in desired.routes:
            try:
                prefixes = entry.prefixes()
            except ValueError as e:
                result.errors.append(f"Failed to enable routes for node {entry.node}: {e}")
                continue

            node_routes = {r.prefix: r for r in live_routes if r.node == entry.node}
            missing = [p for p in prefixes if p not in node_routes]
            if missing:
                if not node_routes:
                    # A node advertising nothing has no routes to find it by
                    try:
                        if live_nodes is None:
                            live_nodes = control_plane.list_nodes()
                    except ControlPlaneError as e:
                        result.errors.append(f"Failed to enable routes for node {entry.node}: {e}")
                        continue
                    if not any(n.matches(entry.node) for n in live_nodes):
                        result.errors.append(
                            f"Failed to enable routes for node {entry.node}: "
                            f"node {entry.node} not found in Headscale"
                        )
                        continue
                result.errors.append(
                    f"Failed to enable routes for node {entry.node}: "
                    f"prefixes not advertised by node: {_describe_prefixes(missing)}"
                )
                continue

            pending = [node_routes[p] for p in prefixes if not node_routes[p].enabled]
            if not pending:
                result.unchanged += 1
                continue

            if dry_run:
                described = _describe_prefixes([r.prefix for r in pending])
                result.changes.append(f"Would enable routes for node {entry.node}: {described}")
                continue

            # Routes enabled before a failure stay live and are reported as changes
            enabled = []
            for route in pending:
                try:
                    control_plane.enable_route(route.id)
                except ControlPlaneError as e:
                    result.errors.append(f"Failed to enable routes for node {entry.node}: {e}")
                    continue
                enabled.append(route.prefix)

            if enabled:
                result.changes.append(
                    f"Enabled routes for node {entry.node}: {_describe_prefixes(enabled)}"
                )

        return result


class ACLStep(ReconcileStep):
    """Replace the live policy when it differs from the desired one"""

    kind = "acl"

    def run(self, desired, control_plane, dry_run):
        result = StepResult(kind=self.kind, considered=1)

        if self._live_matches(desired.policy, control_plane):
            result.unchanged += 1
            return result

        if dry_run:
            result.changes.append("Would update ACL policy")
            return result

        try:
            control_plane.set_policy(desired.policy)
        except ControlPlaneError as e:
            result.errors.append(f"Failed to update ACL policy: {e}")
            return result

        result.changes.append("Updated ACL policy")
        return result

    def _live_matches(self, policy: ACLPolicy, control_plane: "ControlPlane") -> bool:
        try:
            live = control_plane.get_policy()
        except ControlPlaneError as e:
            # No policy set yet or unreadable; push unconditionally
            logger.warning(f"Could not read live ACL policy: {e}")
            return False

        if live is None:
            return False

        try:
            live_policy = ACLPolicy.model_validate(live)
        except ValueError:
            return False

        return live_policy.to_headscale() == policy.to_headscale()


DEFAULT_PIPELINE = (UsersStep(), RoutesStep(), ACLStep())


class Reconciler:
    """
    Applies desired state to the control plane

    Only one apply runs at a time per Reconciler; a concurrent request
    gets ReconcileInProgressError instead of interleaving with it.
    """

    def __init__(
        self,
        metrics: Optional[MetricsSink] = None,
        validator: Optional[PolicyValidator] = None,
        steps: Optional[List[ReconcileStep]] = None
    ):
        self.metrics = metrics or MetricsSink()
        self.validator = validator or PolicyValidator()
        self.steps = list(steps) if steps is not None else list(DEFAULT_PIPELINE)
        self._guard = threading.Lock()

    @property
    def in_progress(self) -> bool:
        return self._guard.locked()

    @contextmanager
    def exclusive(self):
        """
        Hold the single-flight guard for work that mutates the control plane

        Raises:
            ReconcileInProgressError: If an apply or another exclusive block is running
        """
        if not self._guard.acquire(blocking=False):
            logger.warning("Rejected: reconciliation already in progress")
            raise ReconcileInProgressError()
        try:
            yield self
        finally:
            self._guard.release()

    def reconcile(
        self,
        loader: "DesiredStateLoader",
        control_plane: "ControlPlane",
        options: Optional[ApplyOptions] = None
    ) -> ApplyResult:
        """
        Load desired state and apply it

        Raises:
            LoadError: If any document fails to load; nothing is applied
            ReconcileInProgressError: If another apply is running
        """
        try:
            desired = loader.load()
        except LoadError as e:
            logger.error(f"Apply aborted: {e}")
            self.metrics.inc(APPLY_TOTAL, {"status": "error"})
            raise
        return self.apply(desired, control_plane, options)

    def apply(
        self,
        desired: DesiredState,
        control_plane: "ControlPlane",
        options: Optional[ApplyOptions] = None
    ) -> ApplyResult:
        """
        Apply a loaded snapshot

        Raises:
            ReconcileInProgressError: If another apply is running
        """
        options = options or ApplyOptions()

        with self.exclusive():
            started = time.monotonic()
            try:
                result = self._apply_locked(desired, control_plane, options)
            finally:
                self.metrics.observe(CONFIG_SYNC_DURATION, time.monotonic() - started)

        self.metrics.inc(APPLY_TOTAL, {"status": "success" if result.success else "error"})
        logger.info(
            f"Apply finished (dry_run={options.dry_run}): "
            f"{len(result.changes)} changes, {len(result.errors)} errors"
        )
        return result

    def _apply_locked(
        self,
        desired: DesiredState,
        control_plane: "ControlPlane",
        options: ApplyOptions
    ) -> ApplyResult:
        if options.validate:
            validation = self.validator.validate(desired)
            if not validation.valid:
                logger.warning(f"Apply blocked by validation: {validation.message}")
                return ApplyResult(
                    success=False,
                    message=f"Validation failed: {validation.message}",
                    changes=[],
                    errors=list(validation.errors),
                    dry_run=options.dry_run,
                    stats=self._stats(
                        self._considered(desired), 0, errors=len(validation.errors)
                    ),
                )

        step_results = []
        for step in self.steps:
            step_result = step.run(desired, control_plane, options.dry_run)
            logger.debug(
                f"Step {step.kind}: considered={step_result.considered} "
                f"changes={len(step_result.changes)} errors={len(step_result.errors)}"
            )
            step_results.append(step_result)

        return self._combine(step_results, options.dry_run)

    @staticmethod
    def _considered(desired: DesiredState) -> Dict[str, int]:
        return {"users": len(desired.users), "routes": len(desired.routes), "acl": 1}

    def _combine(self, step_results: List[StepResult], dry_run: bool) -> ApplyResult:
        changes = [c for r in step_results for c in r.changes]
        errors = [e for r in step_results for e in r.errors]
        unchanged = sum(r.unchanged for r in step_results)

        if dry_run:
            message = f"Dry run: {len(changes)} changes would be applied with {len(errors)} errors"
        else:
            message = f"Applied {len(changes)} changes with {len(errors)} errors"

        return ApplyResult(
            success=len(errors) == 0,
            message=message,
            changes=changes,
            errors=errors,
            dry_run=dry_run,
            stats=self._stats(
                {r.kind: r.considered for r in step_results},
                unchanged, len(changes), len(errors)
            ),
        )

    @staticmethod
    def _stats(
        considered: Dict[str, int],
        unchanged: int,
        changes: int = 0,
        errors: int = 0
    ) -> Dict[str, Any]:
        return {
            "users_processed": considered.get("users", 0),
            "routes_processed": considered.get("routes", 0),
            "acl_processed": considered.get("acl", 0),
            "changes_applied": changes,
            "unchanged_count": unchanged,
            "errors_count": errors,
        }
