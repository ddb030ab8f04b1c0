# orchestrator/core/drift.py
"""
Drift Detector
Reports differences between desired and live state without changing either

Comparison is by presence only:
- users by name
- routes by (node, prefix), live side being the enabled routes

Attribute changes on an entity that exists on both sides (e.g. a user's
email) are not reported.
"""

import logging
from typing import List, Optional, Sequence, Tuple, TYPE_CHECKING

from orchestrator.schemas.state import User, Route
from orchestrator.schemas.results import DriftReport
from .exceptions import ControlPlaneError, LoadError
from .metrics import MetricsSink, DRIFT_CHECKS_TOTAL

if TYPE_CHECKING:
    from orchestrator.clients.base import ControlPlane
    from .loader import DesiredStateLoader

logger = logging.getLogger(__name__)


def _ordered_difference(left: Sequence, right: Sequence) -> List:
    """Items of left not in right, in left's order, without duplicates"""
    right_set = set(right)
    return [item for item in dict.fromkeys(left) if item not in right_set]


def _desired_route_pairs(routes: Sequence[Route]) -> List[Tuple[str, str]]:
    pairs = []
    for entry in routes:
        try:
            prefixes = entry.prefixes()
        except ValueError:
            # Invalid prefixes are reported by the validator
            prefixes = [p for p in entry.routes]
        pairs.extend((entry.node, prefix) for prefix in prefixes)
    return pairs


class DriftDetector:
    """Read-only comparison of desired users/routes against Headscale"""

    def __init__(self, metrics: Optional[MetricsSink] = None):
        self.metrics = metrics or MetricsSink()

    def check(
        self,
        loader: "DesiredStateLoader",
        control_plane: "ControlPlane"
    ) -> DriftReport:
        """
        Load desired users and routes, then compare with live state

        Raises:
            LoadError: If users.yaml or routes.yaml cannot be loaded
            ControlPlaneError: If live state cannot be read
        """
        try:
            users = loader.load_users()
            routes = loader.load_routes()
        except LoadError as e:
            logger.error(f"Drift check aborted: {e}")
            self.metrics.inc(DRIFT_CHECKS_TOTAL, {"has_drift": "error"})
            raise
        return self.detect_drift(users, routes, control_plane)

    def detect_drift(
        self,
        users: Sequence[User],
        routes: Sequence[Route],
        control_plane: "ControlPlane"
    ) -> DriftReport:
        try:
            live_users = [u.name for u in control_plane.list_users()]
            live_routes = control_plane.list_routes()
        except ControlPlaneError as e:
            logger.error(f"Drift check aborted: {e}")
            self.metrics.inc(DRIFT_CHECKS_TOTAL, {"has_drift": "error"})
            raise

        config_users = [u.name for u in users]
        live_pairs = [(r.node, r.prefix) for r in live_routes if r.enabled]
        config_pairs = _desired_route_pairs(routes)

        drifts: List[str] = []

        for name in _ordered_difference(live_users, config_users):
            drifts.append(f"User {name} exists in Headscale but not in config")
        for name in _ordered_difference(config_users, live_users):
            drifts.append(f"User {name} exists in config but not in Headscale")

        for node, prefix in _ordered_difference(live_pairs, config_pairs):
            drifts.append(f"Route {prefix} on node {node} exists in Headscale but not in config")
        for node, prefix in _ordered_difference(config_pairs, live_pairs):
            drifts.append(f"Route {prefix} on node {node} exists in config but not in Headscale")

        has_drift = len(drifts) > 0
        self.metrics.inc(DRIFT_CHECKS_TOTAL, {"has_drift": str(has_drift).lower()})

        if has_drift:
            logger.info(f"Drift detected: {len(drifts)} difference(s)")

        return DriftReport(
            has_drift=has_drift,
            drifts=drifts,
            summary={
                "headscale_users_count": len(live_users),
                "config_users_count": len(config_users),
                "headscale_routes_count": len(live_pairs),
                "config_routes_count": len(config_pairs),
                "drift_count": len(drifts),
            },
        )
