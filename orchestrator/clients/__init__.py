# orchestrator/clients/__init__.py
"""
Control-plane adapters
"""

from typing import Optional

from orchestrator.config import Settings, settings as default_settings
from .base import ControlPlane
from .headscale import HeadscaleClient
from .memory import InMemoryControlPlane


def create_control_plane(config: Optional[Settings] = None) -> ControlPlane:
    """
    Build the adapter selected by CONTROL_PLANE_BACKEND

    Raises:
        ValueError: For an unknown backend name
    """
    config = config or default_settings
    backend = config.CONTROL_PLANE_BACKEND.lower()

    if backend == "headscale":
        return HeadscaleClient(
            base_url=config.HEADSCALE_URL,
            api_key=config.HEADSCALE_API_KEY,
            timeout=config.HEADSCALE_TIMEOUT,
        )
    if backend == "memory":
        return InMemoryControlPlane(record=False)

    raise ValueError(f"Unknown control plane backend: {config.CONTROL_PLANE_BACKEND}")


__all__ = [
    "ControlPlane",
    "HeadscaleClient",
    "InMemoryControlPlane",
    "create_control_plane",
]
