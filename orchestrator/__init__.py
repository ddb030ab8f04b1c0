# orchestrator/__init__.py
"""
Headscale Orchestrator
Reconciles declared users, routes and ACL policy with a Headscale control plane
"""

__version__ = "1.0.0"
