"""
Importer adapter registry.

Adapters register metadata here so configuration can be validated before any
provider module (and its HTTP stack) is imported.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence, Tuple


@dataclass(frozen=True)
class AdapterDescriptor:
    """Metadata describing an importer adapter."""

    name: str
    title: str
    required_env_vars: Tuple[str, ...] = ()
    summary: str | None = None


def get_adapter_registry() -> Mapping[str, AdapterDescriptor]:
    """Return the registry of supported adapters keyed by name."""
    return OrderedDict(
        (
            (
                "wildapricot",
                AdapterDescriptor(
                    name="wildapricot",
                    title="Wild Apricot (Admin API v2.2)",
                    required_env_vars=("WA_API_KEY", "WA_ACCOUNT_ID"),
                    summary="Sync members, events and registrations from Wild Apricot.",
                ),
            ),
        )
    )


def resolve_adapters(
    configured: Sequence[str],
    registry: Mapping[str, AdapterDescriptor] | None = None,
) -> Iterable[AdapterDescriptor]:
    """
    Map configured adapter names to registry descriptors, raising on unknowns.
    """
    registry = registry or get_adapter_registry()
    unknown = sorted({adapter for adapter in configured if adapter not in registry})
    if unknown:
        raise ValueError(
            "Unknown importer adapters configured: "
            + ", ".join(unknown)
            + ". Supported adapters: "
            + ", ".join(registry)
            + "."
        )
    return tuple(registry[adapter] for adapter in configured)
