"""
Append-only guard for the capability/contract registry.

Compares the current registry against a baseline read from a reference
revision (``main``, then ``origin/main``). Without a baseline the registry is
checked for internal consistency only.

Violation codes:
    RR-001  capability removed
    RR-002  contract removed
    RR-003  contract schema drifted (canonical digest changed)
    RR-004  duplicate capability_id
    RR-005  duplicate contract_id
    RR-006  invalid capability_id
    RR-007  invalid contract_id (grammar, owner or kind)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from ..errors import ValidationError
from ..report import CheckReport
from ..vcs import GitRepo
from .contracts import (
    CAPABILITY_ID_PATTERN,
    ContractId,
    RegistryDocument,
    load_registry_text,
)

logger = logging.getLogger(__name__)


@dataclass
class DriftReport(CheckReport):
    baseline_ref: str | None = None
    capabilities: int = 0
    contracts: int = 0

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["baseline_ref"] = self.baseline_ref
        result["capabilities"] = self.capabilities
        result["contracts"] = self.contracts
        return result


@dataclass
class RegistryDriftGuard:
    """
    Args:
        git: Repository holding the registry
        registry_path: Repository-relative path of the registry document
        baseline_refs: Revisions tried in order for the baseline
    """

    git: GitRepo
    registry_path: str
    baseline_refs: Sequence[str] = field(default_factory=lambda: ("main", "origin/main"))

    def load_current(self) -> RegistryDocument | None:
        path = self.git.root / self.registry_path
        if not path.is_file():
            return None
        label = f"current {self.registry_path}"
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError(f"{label}: not valid UTF-8", details=[str(e)]) from e
        return load_registry_text(text, label=label)

    def load_baseline(self, ref: str | None = None) -> tuple[RegistryDocument, str | None]:
        refs = [ref] if ref else list(self.baseline_refs)
        for candidate in refs:
            blob = self.git.show(candidate, Path(self.registry_path).as_posix())
            if blob is None:
                logger.debug("No registry baseline at %s:%s", candidate, self.registry_path)
                continue
            label = f"baseline {candidate}:{self.registry_path}"
            try:
                text = blob.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ValidationError(f"{label}: not valid UTF-8", details=[str(e)]) from e
            return load_registry_text(text, label=label), candidate
        logger.warning("No registry baseline found (tried %s); treating baseline as empty", ", ".join(refs))
        return RegistryDocument.empty("baseline"), None

    def check(self, *, baseline_ref: str | None = None) -> DriftReport:
        baseline, used_ref = self.load_baseline(baseline_ref)
        current = self.load_current()
        report = DriftReport(gate="registry", baseline_ref=used_ref)
        if current is None:
            if baseline.entries or baseline.capability_ids:
                report.error("RR-001", "registry document was deleted", self.registry_path)
            else:
                logger.info("No registry at %s and no baseline; nothing to check", self.registry_path)
            current = RegistryDocument.empty("current")
        return compare_registries(baseline, current, report)


def compare_registries(
    baseline: RegistryDocument,
    current: RegistryDocument,
    report: DriftReport | None = None,
) -> DriftReport:
    """
    Check both documents for integrity, then ``current`` for append-only
    evolution from ``baseline``.

    A malformed baseline or current document is reported on its own; the
    append-only comparison only runs over two well-formed documents.
    """
    report = report or DriftReport(gate="registry")
    report.capabilities = len(set(current.capability_ids))
    report.contracts = len(current.contracts())

    _check_integrity(baseline, report, where="baseline ")
    _check_integrity(current, report)

    # Contract ids must name their owning capability and list kind
    for entry in current.entries:
        parsed = ContractId.parse(entry.contract_id)
        if parsed is None:
            report.error("RR-007", f"contract_id {entry.contract_id!r} does not match ROLE:<capability>:<X|C>:<version>")
            continue
        if parsed.capability_id != entry.capability_id:
            report.error(
                "RR-007",
                f"contract_id {entry.contract_id} is declared under capability {entry.capability_id}",
            )
        if parsed.kind != entry.expected_kind:
            report.error(
                "RR-007",
                f"contract_id {entry.contract_id} has kind {parsed.kind} but is listed in {entry.list_name}",
            )

    if report.errors:
        return report

    # Append-only against the baseline
    current_caps = set(current.capability_ids)
    for capability_id in sorted(set(baseline.capability_ids) - current_caps):
        report.error("RR-001", f"capability {capability_id} was removed")

    current_contracts = current.contracts()
    for contract_id, published in sorted(baseline.contracts().items()):
        now = current_contracts.get(contract_id)
        if now is None:
            report.error("RR-002", f"contract {contract_id} was removed")
        elif now.schema_digest != published.schema_digest:
            report.error(
                "RR-003",
                f"contract {contract_id} schema changed ({published.schema_digest[:12]} -> {now.schema_digest[:12]})",
            )
    return report


def _check_integrity(document: RegistryDocument, report: DriftReport, *, where: str = "") -> None:
    seen_caps: set[str] = set()
    for capability_id in document.capability_ids:
        if capability_id in seen_caps:
            report.error("RR-004", f"{where}duplicate capability_id {capability_id}")
        seen_caps.add(capability_id)
        if not CAPABILITY_ID_PATTERN.match(capability_id) or ":" in capability_id:
            report.error("RR-006", f"{where}invalid capability_id {capability_id!r}")

    seen_contracts: set[str] = set()
    for entry in document.entries:
        if entry.contract_id in seen_contracts:
            report.error("RR-005", f"{where}duplicate contract_id {entry.contract_id}")
        seen_contracts.add(entry.contract_id)
