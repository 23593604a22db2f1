"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import lru_cache

from bridge.registry import SessionRegistry
from config.settings import Settings, get_settings


def get_app_settings() -> Settings:
    return get_settings()


@lru_cache(maxsize=1)
def _registry_factory() -> SessionRegistry:
    return SessionRegistry(get_settings())


def get_registry() -> SessionRegistry:
    return _registry_factory()
