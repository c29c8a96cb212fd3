"""Append-only capability/contract registry guard."""

from .contracts import ContractId, RegistryDocument, RegistryEntry, load_registry_text, parse_registry
from .drift import DriftReport, RegistryDriftGuard, compare_registries

__all__ = [
    "ContractId",
    "DriftReport",
    "RegistryDocument",
    "RegistryDriftGuard",
    "RegistryEntry",
    "compare_registries",
    "load_registry_text",
    "parse_registry",
]
