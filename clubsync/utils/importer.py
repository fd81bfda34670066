"""
Helpers for reading importer settings from the Flask config.
"""

from __future__ import annotations

from typing import Iterable, Tuple

from flask import current_app


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def is_importer_enabled(app=None) -> bool:
    """Return True when the importer feature flag is enabled."""
    config = _get_config(app)
    return bool(config.get("IMPORTER_ENABLED", False))


def get_importer_adapters(app=None) -> Tuple[str, ...]:
    """Return the configured adapter names, lower-cased and de-duplicated in order."""
    config = _get_config(app)
    adapters: Iterable[str] | str = config.get("IMPORTER_ADAPTERS", ())
    if isinstance(adapters, str):
        adapters = adapters.split(",")
    seen: list[str] = []
    for adapter in adapters:
        name = adapter.strip().lower()
        if name and name not in seen:
            seen.append(name)
    return tuple(seen)
