"""
Capability/contract registry documents.

A registry is JSON:

    {
      "capabilities": [
        {
          "capability_id": "C1",
          "extract_contracts": [{"contract_id": "ROLE:C1:X:1", "schema_json": {...}}],
          "produce_contracts": [{"contract_id": "ROLE:C1:C:1", "schema_json": {...}}]
        }
      ]
    }

Contract ids follow ``ROLE:<capability_id>:<kind>:<version>`` where kind is
``X`` for extract contracts and ``C`` for produce contracts, and version is a
positive integer without leading zeros.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from ..digest import canonical_digest
from ..errors import ValidationError

CONTRACT_ID_PATTERN = re.compile(r"^ROLE:([^:]+):(X|C):([1-9][0-9]*)$")
CAPABILITY_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

KIND_FOR_LIST = {"extract_contracts": "X", "produce_contracts": "C"}


@dataclass(frozen=True)
class ContractId:
    capability_id: str
    kind: str
    version: int

    @classmethod
    def parse(cls, value: str) -> ContractId | None:
        m = CONTRACT_ID_PATTERN.match(value)
        if m is None:
            return None
        return cls(capability_id=m.group(1), kind=m.group(2), version=int(m.group(3)))


@dataclass(frozen=True)
class RegistryEntry:
    """One published contract with the canonical digest of its schema."""

    capability_id: str
    contract_id: str
    schema_digest: str
    list_name: str  # "extract_contracts" | "produce_contracts"

    @property
    def expected_kind(self) -> str:
        return KIND_FOR_LIST[self.list_name]

    def to_dict(self) -> dict[str, Any]:
        return {
            "capability_id": self.capability_id,
            "contract_id": self.contract_id,
            "schema_digest": self.schema_digest,
        }


@dataclass(frozen=True)
class RegistryDocument:
    capability_ids: tuple[str, ...]  # in document order, duplicates kept
    entries: tuple[RegistryEntry, ...]
    label: str = "registry"

    @classmethod
    def empty(cls, label: str = "registry") -> RegistryDocument:
        return cls(capability_ids=(), entries=(), label=label)

    def contracts(self) -> dict[str, RegistryEntry]:
        """contract_id -> first entry declaring it."""
        found: dict[str, RegistryEntry] = {}
        for entry in self.entries:
            found.setdefault(entry.contract_id, entry)
        return found


def parse_registry(data: Any, *, label: str = "registry") -> RegistryDocument:
    """Structural parse; anything not shaped like a registry is a ValidationError."""
    if not isinstance(data, dict):
        raise ValidationError(f"{label}: root must be an object")
    capabilities = data.get("capabilities")
    if not isinstance(capabilities, list):
        raise ValidationError(f"{label}: 'capabilities' must be a list")

    capability_ids: list[str] = []
    entries: list[RegistryEntry] = []
    for index, capability in enumerate(capabilities):
        where = f"{label}: capabilities[{index}]"
        if not isinstance(capability, dict):
            raise ValidationError(f"{where} must be an object")
        capability_id = capability.get("capability_id")
        if not isinstance(capability_id, str) or not capability_id.strip():
            raise ValidationError(f"{where}.capability_id must be a non-empty string")
        capability_ids.append(capability_id)

        for list_name in KIND_FOR_LIST:
            contracts = capability.get(list_name, [])
            if not isinstance(contracts, list):
                raise ValidationError(f"{where}.{list_name} must be a list")
            for c_index, contract in enumerate(contracts):
                c_where = f"{where}.{list_name}[{c_index}]"
                if not isinstance(contract, dict):
                    raise ValidationError(f"{c_where} must be an object")
                contract_id = contract.get("contract_id")
                if not isinstance(contract_id, str) or not contract_id.strip():
                    raise ValidationError(f"{c_where}.contract_id must be a non-empty string")
                if "schema_json" not in contract:
                    raise ValidationError(f"{c_where} ({contract_id}) has no schema_json")
                entries.append(
                    RegistryEntry(
                        capability_id=capability_id,
                        contract_id=contract_id,
                        schema_digest=canonical_digest(contract["schema_json"]),
                        list_name=list_name,
                    )
                )

    return RegistryDocument(capability_ids=tuple(capability_ids), entries=tuple(entries), label=label)


def load_registry_text(text: str, *, label: str = "registry") -> RegistryDocument:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(f"{label}: not valid JSON", details=[str(e)]) from e
    return parse_registry(data, label=label)
