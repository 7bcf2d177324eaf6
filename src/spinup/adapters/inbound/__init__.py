"""Inbound adapters for the orchestration core.

Provides REST API adapter for lifecycle jobs and file management.
"""

from spinup.adapters.inbound.rest_api import create_app

__all__ = ["create_app"]
