"""Acme invoice dashboard."""

from __future__ import annotations

from typing import Any

from .config import Settings, load_settings
from .database import Database


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the dashboard web application."""

    from .web import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = ["Database", "Settings", "create_app", "load_settings"]
