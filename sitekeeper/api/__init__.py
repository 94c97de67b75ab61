"""Health API layer for SiteKeeper.

Exposes:
    create_app -- FastAPI application factory.
    build_app  -- Alias for create_app (used by the sitekeeper.app bootstrap).
"""

from sitekeeper.api.app import create_app

build_app = create_app

__all__ = ["build_app", "create_app"]
