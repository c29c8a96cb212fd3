"""CLI entrypoint for phasegate."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler

from . import __version__

ACTOR_HELP = "Who performs this step (recorded in the event)"
INFERRED_HELP = "Mark the step as machine-inferred (skips the minimum-interval check; tagged in the ledger)"


def _auto_detect_repo(start: Path) -> Path:
    """Nearest directory containing .phasegate.yml or .git, walking up from `start`."""
    cur = start.resolve()
    for p in (cur, *cur.parents):
        if (p / ".phasegate.yml").is_file() or (p / ".git").exists():
            return p
    return cur


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_time=False, show_path=verbose)],
        force=True,
    )


@click.group()
@click.version_option(__version__, prog_name="gate")
@click.option(
    "--repo",
    type=click.Path(exists=False, file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Repository root (defaults to the nearest directory with .phasegate.yml or .git)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=False, dir_okay=False, path_type=Path),
    default=None,
    help="Policy file (default: <repo>/.phasegate.yml if present)",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, repo: Path | None, config_path: Path | None, verbose: bool) -> None:
    """gate - Phase-gated change governance.

    Records work items through refinement, sign-off, preparation, validation,
    report, acknowledgment and commit, and verifies the evidence behind each
    step.
    """
    from .config import load_config
    from .errors import GateError

    _setup_logging(verbose)
    ctx.ensure_object(dict)
    if repo is None:
        repo = _auto_detect_repo(Path.cwd())
    if not repo.exists() or not repo.is_dir():
        raise click.BadParameter(f"Directory '{repo}' does not exist.", param_hint="--repo")

    try:
        ctx.obj["config"] = load_config(repo, config_path)
    except GateError as e:
        details = "".join(f"\n  - {d}" for d in e.details)
        raise click.ClickException(f"{e.message}{details}") from e


# -----------------------------------------------------------------------------
# Gate transitions
# -----------------------------------------------------------------------------


@cli.command()
@click.argument("work_item_id")
@click.argument("artifact", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--actor", default="orchestrator", show_default=True, help=ACTOR_HELP)
@click.pass_context
def refine(ctx: click.Context, work_item_id: str, artifact: Path, actor: str) -> None:
    """Record a validated technical refinement for WORK_ITEM_ID.

    Examples:

        gate refine WP-42 .gov/refinements/WP-42.md
    """
    from .commands.gate_cmd import run_refine

    sys.exit(run_refine(ctx.obj["config"], work_item_id, artifact, actor=actor))


@cli.command()
@click.argument("work_item_id")
@click.argument("token")
@click.option("--actor", default=None, help="Defaults to the actor named in the token")
@click.pass_context
def sign(ctx: click.Context, work_item_id: str, token: str, actor: str | None) -> None:
    """Approve the refinement with a one-time signature TOKEN ({actor}{DDMMYYYYHHMM})."""
    from .commands.gate_cmd import run_sign

    sys.exit(run_sign(ctx.obj["config"], work_item_id, token, actor=actor))


@cli.command()
@click.argument("work_item_id")
@click.option(
    "--packet",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Work packet path (default: <state_dir>/packets/<WORK_ITEM_ID>.md)",
)
@click.option("--actor", default="orchestrator", show_default=True, help=ACTOR_HELP)
@click.option("--inferred", is_flag=True, help=INFERRED_HELP)
@click.pass_context
def prepare(ctx: click.Context, work_item_id: str, packet: Path | None, actor: str, inferred: bool) -> None:
    """Record that the work packet for WORK_ITEM_ID is prepared."""
    from .commands.gate_cmd import run_prepare

    sys.exit(run_prepare(ctx.obj["config"], work_item_id, packet=packet, actor=actor, inferred=inferred))


@cli.command()
@click.argument("work_item_id")
@click.argument("verdict", type=click.Choice(["PASS", "FAIL"], case_sensitive=False))
@click.option("--actor", default="validator", show_default=True, help=ACTOR_HELP)
@click.option("--inferred", is_flag=True, help=INFERRED_HELP)
@click.pass_context
def append(ctx: click.Context, work_item_id: str, verdict: str, actor: str, inferred: bool) -> None:
    """Append the validation VERDICT for WORK_ITEM_ID.

    Runs the configured transition checks (by default the edit manifest)
    before the event is written.
    """
    from .commands.gate_cmd import run_append

    sys.exit(run_append(ctx.obj["config"], work_item_id, verdict, actor=actor, inferred=inferred))


@cli.command("present-report")
@click.argument("work_item_id")
@click.option(
    "--verdict",
    type=click.Choice(["PASS", "FAIL"], case_sensitive=False),
    default=None,
    help="Must match the appended verdict (default: the appended verdict)",
)
@click.option("--actor", default="validator", show_default=True, help=ACTOR_HELP)
@click.option("--inferred", is_flag=True, help=INFERRED_HELP)
@click.pass_context
def present_report(ctx: click.Context, work_item_id: str, verdict: str | None, actor: str, inferred: bool) -> None:
    """Record that the validation report was presented."""
    from .commands.gate_cmd import run_present_report

    sys.exit(
        run_present_report(ctx.obj["config"], work_item_id, verdict=verdict, actor=actor, inferred=inferred)
    )


@cli.command()
@click.argument("work_item_id")
@click.option("--actor", default="operator", show_default=True, help=ACTOR_HELP)
@click.option("--inferred", is_flag=True, help=INFERRED_HELP)
@click.pass_context
def acknowledge(ctx: click.Context, work_item_id: str, actor: str, inferred: bool) -> None:
    """Record the operator's acknowledgment of the report."""
    from .commands.gate_cmd import run_acknowledge

    sys.exit(run_acknowledge(ctx.obj["config"], work_item_id, actor=actor, inferred=inferred))


@cli.command()
@click.argument("work_item_id")
@click.option("--actor", default="validator", show_default=True, help=ACTOR_HELP)
@click.option("--inferred", is_flag=True, help=INFERRED_HELP)
@click.pass_context
def commit(ctx: click.Context, work_item_id: str, actor: str, inferred: bool) -> None:
    """Record the commit of a PASS work item.

    Runs the configured transition checks (by default the registry drift
    guard) before the event is written.
    """
    from .commands.gate_cmd import run_commit

    sys.exit(run_commit(ctx.obj["config"], work_item_id, actor=actor, inferred=inferred))


@cli.command()
@click.argument("work_item_id")
@click.option("--json", "output_json", is_flag=True, help="Output status as JSON")
@click.pass_context
def status(ctx: click.Context, work_item_id: str, output_json: bool) -> None:
    """Show the current phase, next action and gate history."""
    from .commands.gate_cmd import run_status

    sys.exit(run_status(ctx.obj["config"], work_item_id, output_json=output_json))


@cli.command()
@click.argument("work_item_id")
@click.option("--confirm", is_flag=True, help="Required: confirm archiving the active session")
@click.option("--reason", default="manual_reset", show_default=True, help="Reason stored with the archive")
@click.pass_context
def reset(ctx: click.Context, work_item_id: str, confirm: bool, reason: str) -> None:
    """Archive the active session of WORK_ITEM_ID and return it to NEW."""
    from .commands.gate_cmd import run_reset

    sys.exit(run_reset(ctx.obj["config"], work_item_id, confirm=confirm, reason=reason))


@cli.command("log")
@click.option("--last", type=int, default=None, help="Only the last N entries")
@click.option("--wp", "work_item_id", default=None, help="Only entries for this work item")
@click.pass_context
def audit_log(ctx: click.Context, last: int | None, work_item_id: str | None) -> None:
    """Show the operations audit log."""
    from .commands.gate_cmd import run_log

    sys.exit(run_log(ctx.obj["config"], last=last, work_item_id=work_item_id))


# -----------------------------------------------------------------------------
# Independent gates
# -----------------------------------------------------------------------------


@cli.command("verify-manifest")
@click.argument("work_item_id")
@click.option("--range", "range_spec", default=None, metavar="BASE..HEAD", help="Explicit comparison range")
@click.option("--rev", default=None, help="Single revision (compared with its first parent)")
@click.option("--staged", is_flag=True, help="Compare staged changes with HEAD")
@click.option("--worktree", is_flag=True, help="Compare working-tree changes with HEAD")
@click.option("--json", "output_json", is_flag=True, help="Output the report as JSON")
@click.pass_context
def verify_manifest(
    ctx: click.Context,
    work_item_id: str,
    range_spec: str | None,
    rev: str | None,
    staged: bool,
    worktree: bool,
    output_json: bool,
) -> None:
    """Verify the edit manifest in WORK_ITEM_ID's packet against real diffs.

    Without a range option the comparison is chosen automatically: staged
    changes, then working-tree changes, then the packet merge base, then the
    merge base with main, then the last commit.
    """
    from .commands.manifest_cmd import run_verify_manifest

    if sum(bool(x) for x in (range_spec, rev, staged, worktree)) > 1:
        raise click.UsageError("--range, --rev, --staged and --worktree are mutually exclusive")

    sys.exit(
        run_verify_manifest(
            ctx.obj["config"],
            work_item_id,
            range_spec=range_spec,
            rev=rev,
            staged=staged,
            worktree=worktree,
            output_json=output_json,
        )
    )


@cli.command()
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
def digest(path: Path) -> None:
    """Print the manifest digest of PATH (sha1 over LF-normalized content)."""
    from .commands.manifest_cmd import run_digest

    sys.exit(run_digest(path))


@cli.group()
def snapshot() -> None:
    """Deterministic governance snapshot."""
    pass


@snapshot.command("build")
@click.option("--out", default=None, help="Output path relative to the repository (default: from policy)")
@click.option("--include-head-sha", is_flag=True, help="Record the HEAD commit")
@click.option("--include-timestamps", is_flag=True, help="Record ledger event timestamps")
@click.option("--dry-run", is_flag=True, help="Print the snapshot instead of writing it")
@click.pass_context
def snapshot_build(
    ctx: click.Context,
    out: str | None,
    include_head_sha: bool,
    include_timestamps: bool,
    dry_run: bool,
) -> None:
    """Build the snapshot (self-checked for determinism) and write it."""
    from .commands.snapshot_cmd import run_snapshot_build

    sys.exit(
        run_snapshot_build(
            ctx.obj["config"],
            out=out,
            include_head_sha=include_head_sha,
            include_timestamps=include_timestamps,
            dry_run=dry_run,
        )
    )


@snapshot.command("check")
@click.option("--out", default=None, help="Snapshot path relative to the repository (default: from policy)")
@click.pass_context
def snapshot_check(ctx: click.Context, out: str | None) -> None:
    """Validate the written snapshot and confirm it matches a fresh build."""
    from .commands.snapshot_cmd import run_snapshot_check

    sys.exit(run_snapshot_check(ctx.obj["config"], out=out))


@cli.group()
def registry() -> None:
    """Capability/contract registry commands."""
    pass


@registry.command("check")
@click.option("--baseline-ref", default=None, help="Baseline revision (default: main, then origin/main)")
@click.option("--json", "output_json", is_flag=True, help="Output the report as JSON")
@click.pass_context
def registry_check(ctx: click.Context, baseline_ref: str | None, output_json: bool) -> None:
    """Check that the registry only grows relative to the baseline."""
    from .commands.registry_cmd import run_registry_check

    sys.exit(run_registry_check(ctx.obj["config"], baseline_ref=baseline_ref, output_json=output_json))


def main() -> None:
    """Main entrypoint."""
    cli()


if __name__ == "__main__":
    main()
