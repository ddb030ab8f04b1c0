# orchestrator/api/__init__.py
"""
HTTP API
"""
