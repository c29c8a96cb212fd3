"""
Independent gates wired in front of phase transitions.

``transition_checks`` in the configuration names which gates run before which
transition (by default the manifest before APPEND and the registry before
COMMIT). A failing report aborts the transition with its IntegrityError,
except under a FAIL verdict, where the failure is recorded on the event.
"""

from __future__ import annotations

import logging
from functools import partial

from ..config import GateConfig
from ..documents.packet import WorkPacket, load_packet
from ..errors import InputMissing, ValidationError
from ..manifest.comparison import resolve_comparison
from ..manifest.verifier import ManifestReport, ManifestVerifier
from ..registry.drift import DriftReport, RegistryDriftGuard
from ..vcs import GitRepo
from .machine import TransitionCheck

logger = logging.getLogger(__name__)


def load_work_packet(config: GateConfig, work_item_id: str) -> WorkPacket:
    path = config.packet_path(work_item_id)
    if not path.is_file():
        raise InputMissing(f"Work packet not found for {work_item_id}: {path}")
    packet = load_packet(path)
    if packet.work_item_id and packet.work_item_id != work_item_id:
        raise ValidationError(f"Work packet {path.name} declares WP_ID {packet.work_item_id}, expected {work_item_id}")
    return packet


def verify_work_packet(
    config: GateConfig,
    git: GitRepo,
    work_item_id: str,
    *,
    range_spec: str | None = None,
    rev: str | None = None,
    staged: bool = False,
    worktree: bool = False,
) -> ManifestReport:
    """Verify the manifest blocks of a work item's packet against the resolved comparison."""
    packet = load_work_packet(config, work_item_id)
    if not packet.manifests:
        raise ValidationError(f"Work packet for {work_item_id} has no manifest blocks under ## VALIDATION")

    comparison = resolve_comparison(
        git,
        range_spec=range_spec,
        rev=rev,
        staged=staged,
        worktree=worktree,
        merge_base_sha=packet.merge_base_sha,
        main_ref=config.main_ref,
    )
    verifier = ManifestVerifier(git, config.manifest, exempt_prefixes=config.exempt_prefixes())
    return verifier.verify(
        packet.manifests,
        comparison,
        in_scope_paths=packet.in_scope_paths,
        waiver=packet.waiver_matching(config.manifest.waiver_markers),
    )


def check_registry(config: GateConfig, git: GitRepo, *, baseline_ref: str | None = None) -> DriftReport:
    guard = RegistryDriftGuard(git, config.registry.path, baseline_refs=config.registry.baseline_refs)
    return guard.check(baseline_ref=baseline_ref)


def build_transition_checks(
    config: GateConfig,
    git: GitRepo,
    gate: str,
    work_item_id: str,
) -> list[TransitionCheck]:
    """Checks configured to run before ``gate`` for one work item."""
    checks: list[TransitionCheck] = []
    for name in config.transition_checks.get(gate, ()):
        if name == "manifest":
            checks.append(TransitionCheck(name, partial(verify_work_packet, config, git, work_item_id)))
        elif name == "registry":
            checks.append(TransitionCheck(name, partial(check_registry, config, git)))
    if checks:
        logger.debug("%s for %s runs checks: %s", gate, work_item_id, ", ".join(c.name for c in checks))
    return checks
