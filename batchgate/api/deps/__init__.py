"""Dependency injection providers."""
from .auth import require_auth
from .providers import (
    Services,
    build_services,
    get_controller,
    get_services,
    get_settings,
    get_tracker,
)

__all__ = [
    "Services",
    "build_services",
    "get_controller",
    "get_services",
    "get_settings",
    "get_tracker",
    "require_auth",
]
