"""
Gate policy configuration.

Defaults cover a repository laid out as:

    .gov/gates/<WORK_ITEM>.json      per-work-item gate ledger
    .gov/GATES.json                  legacy consolidated ledger (read-only)
    .gov/packets/<WORK_ITEM>.md      work packets with manifest blocks
    .gov/SIGNATURE_AUDIT.md          consumed signature tokens
    .gov/audit.log                   operations audit log (JSON lines)

Overrides come from a YAML file (``.phasegate.yml`` at the repository root,
or an explicit path). The schema is small and closed: unknown keys are an
error so a typo never silently falls back to a default.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from .errors import ValidationError

CONFIG_FILENAME = ".phasegate.yml"

DEFAULT_INFERABLE_GATES = (
    "anchors_present",
    "window_matches_plan",
    "rails_untouched_outside_window",
    "filename_canonical_and_openable",
    "pre_sha1_captured",
    "post_sha1_captured",
    "line_delta_equals_expected",
    "manifest_written_and_path_returned",
    "current_file_matches_preimage",
)

DEFAULT_JUDGMENT_GATES = (
    "tests_executed",
    "compilation_clean",
)

DEFAULT_REFINEMENT_SECTIONS = (
    "TECHNICAL_REFINEMENT",
    "GAPS_IDENTIFIED",
    "RED_TEAM_ADVISORY",
    "PRIMITIVES",
)

DEFAULT_WAIVER_MARKERS = (
    "out-of-scope",
    "out of scope",
    "dirty tree",
    "git hygiene",
)


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _str_tuple(value: Any, key: str) -> tuple[str, ...]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"config key '{key}' must be a list of strings")
    return tuple(v.strip() for v in value if v.strip())


@dataclass(frozen=True)
class ManifestPolicy:
    inferable_gates: tuple[str, ...] = DEFAULT_INFERABLE_GATES
    judgment_gates: tuple[str, ...] = DEFAULT_JUDGMENT_GATES
    waiver_markers: tuple[str, ...] = DEFAULT_WAIVER_MARKERS
    exempt_prefixes: tuple[str, ...] = ()

    @property
    def required_gates(self) -> tuple[str, ...]:
        return self.inferable_gates + self.judgment_gates


@dataclass(frozen=True)
class RegistryPolicy:
    path: str = "registry/capabilities.json"
    baseline_refs: tuple[str, ...] = ("main", "origin/main")


@dataclass(frozen=True)
class SnapshotPolicy:
    pointer: str = ".gov/POLICY_CURRENT.md"
    pointer_pattern: str = r"\*\*([^*\s]+\.md)\*\*"
    whitelist: tuple[str, ...] = (
        ".gov/TASK_BOARD.md",
        ".gov/TRACEABILITY.md",
        ".gov/SIGNATURE_AUDIT.md",
    )
    output: str = ".gov/GOVERNANCE_SNAPSHOT.json"


@dataclass(frozen=True)
class GateConfig:
    """Resolved policy plus the repository root it applies to."""

    root: Path
    state_dir: str = ".gov"
    min_interval_seconds: float = 10.0
    work_item_pattern: str = r"^WP-[A-Za-z0-9][A-Za-z0-9._-]*$"
    signature_pattern: str = r"^([a-z]+)([0-9]{12})$"
    corpus_search: str = "advisory"  # "advisory" | "off"
    main_ref: str = "main"
    refinement_required_sections: tuple[str, ...] = DEFAULT_REFINEMENT_SECTIONS
    transition_checks: dict[str, tuple[str, ...]] = field(
        default_factory=lambda: {"APPEND": ("manifest",), "COMMIT": ("registry",)}
    )
    manifest: ManifestPolicy = field(default_factory=ManifestPolicy)
    registry: RegistryPolicy = field(default_factory=RegistryPolicy)
    snapshot: SnapshotPolicy = field(default_factory=SnapshotPolicy)

    # Derived locations ------------------------------------------------------

    @property
    def state_path(self) -> Path:
        return self.root / self.state_dir

    @property
    def ledger_dir(self) -> Path:
        return self.state_path / "gates"

    @property
    def legacy_ledger_path(self) -> Path:
        return self.state_path / "GATES.json"

    @property
    def packets_dir(self) -> Path:
        return self.state_path / "packets"

    @property
    def signature_audit_path(self) -> Path:
        return self.state_path / "SIGNATURE_AUDIT.md"

    @property
    def audit_log_path(self) -> Path:
        return self.state_path / "audit.log"

    def packet_path(self, work_item_id: str) -> Path:
        return self.packets_dir / f"{work_item_id}.md"

    def exempt_prefixes(self) -> tuple[str, ...]:
        """Paths that never need manifest coverage (governance state itself)."""
        return (self.state_dir.rstrip("/") + "/", *self.manifest.exempt_prefixes)


_TOP_LEVEL_KEYS = {
    "state_dir",
    "min_interval_seconds",
    "work_item_pattern",
    "signature_pattern",
    "corpus_search",
    "main_ref",
    "refinement_required_sections",
    "transition_checks",
    "manifest",
    "registry",
    "snapshot",
}
_MANIFEST_KEYS = {"inferable_gates", "judgment_gates", "waiver_markers", "exempt_prefixes"}
_REGISTRY_KEYS = {"path", "baseline_refs"}
_SNAPSHOT_KEYS = {"pointer", "pointer_pattern", "whitelist", "output"}
_CHECK_NAMES = {"manifest", "registry"}
_CHECKED_GATES = {"PREPARE", "APPEND", "PRESENT_REPORT", "ACKNOWLEDGE", "COMMIT"}


def _reject_unknown(data: dict[str, Any], allowed: set[str], where: str) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValidationError(f"unknown config key(s) in {where}: {', '.join(unknown)}")


def config_from_dict(root: Path, data: dict[str, Any]) -> GateConfig:
    """Apply a parsed override mapping on top of the defaults."""
    _reject_unknown(data, _TOP_LEVEL_KEYS, "top level")
    cfg = GateConfig(root=root)
    updates: dict[str, Any] = {}

    for key in ("state_dir", "work_item_pattern", "signature_pattern", "main_ref"):
        if key in data:
            value = data[key]
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"config key '{key}' must be a non-empty string")
            updates[key] = value.strip()

    if "min_interval_seconds" in data:
        value = data["min_interval_seconds"]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValidationError("config key 'min_interval_seconds' must be a non-negative number")
        updates["min_interval_seconds"] = float(value)

    if "corpus_search" in data:
        # YAML reads a bare `off` as False
        value = data["corpus_search"]
        mode = "off" if value is False else str(value).strip().lower()
        if mode not in {"advisory", "off"}:
            raise ValidationError("config key 'corpus_search' must be 'advisory' or 'off'")
        updates["corpus_search"] = mode

    if "refinement_required_sections" in data:
        updates["refinement_required_sections"] = _str_tuple(
            data["refinement_required_sections"], "refinement_required_sections"
        )

    if "transition_checks" in data:
        raw = data["transition_checks"]
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ValidationError("config key 'transition_checks' must be a mapping")
        checks: dict[str, tuple[str, ...]] = {}
        for gate, names in raw.items():
            names = _str_tuple(names or [], f"transition_checks.{gate}")
            bad = sorted(set(names) - _CHECK_NAMES)
            if bad:
                raise ValidationError(f"unknown transition check(s) for {gate}: {', '.join(bad)}")
            gate_name = str(gate).strip().upper().replace("-", "_")
            if gate_name not in _CHECKED_GATES:
                raise ValidationError(f"transition checks cannot run before {gate} (allowed: {', '.join(sorted(_CHECKED_GATES))})")
            checks[gate_name] = names
        updates["transition_checks"] = checks

    if "manifest" in data:
        raw = _coerce_dict(data["manifest"])
        _reject_unknown(raw, _MANIFEST_KEYS, "manifest")
        updates["manifest"] = replace(
            cfg.manifest,
            **{k: _str_tuple(v, f"manifest.{k}") for k, v in raw.items()},
        )

    if "registry" in data:
        raw = _coerce_dict(data["registry"])
        _reject_unknown(raw, _REGISTRY_KEYS, "registry")
        reg: dict[str, Any] = {}
        if "path" in raw:
            reg["path"] = str(raw["path"]).strip()
        if "baseline_refs" in raw:
            reg["baseline_refs"] = _str_tuple(raw["baseline_refs"], "registry.baseline_refs")
        updates["registry"] = replace(cfg.registry, **reg)

    if "snapshot" in data:
        raw = _coerce_dict(data["snapshot"])
        _reject_unknown(raw, _SNAPSHOT_KEYS, "snapshot")
        snap: dict[str, Any] = {}
        for key in ("pointer", "pointer_pattern", "output"):
            if key in raw:
                snap[key] = str(raw[key]).strip()
        if "whitelist" in raw:
            snap["whitelist"] = _str_tuple(raw["whitelist"], "snapshot.whitelist")
        updates["snapshot"] = replace(cfg.snapshot, **snap)

    return replace(cfg, **updates)


def load_config(root: Path, path: Path | None = None) -> GateConfig:
    """
    Load configuration for a repository.

    Args:
        root: Repository root
        path: Explicit config file; defaults to ``<root>/.phasegate.yml`` when present

    Returns:
        GateConfig with overrides applied
    """
    root = root.resolve()
    if path is None:
        candidate = root / CONFIG_FILENAME
        if not candidate.exists():
            return GateConfig(root=root)
        path = candidate
    elif not path.exists():
        raise ValidationError(f"config file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (UnicodeDecodeError, yaml.YAMLError) as e:
        raise ValidationError(f"config file is not valid YAML: {path}", details=[str(e)]) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError(f"config file must contain a mapping: {path}")
    return config_from_dict(root, data)
