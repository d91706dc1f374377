"""provenance.cli

Command line interface entry point for the provenance ledger.

Design constraints:
- argparse-based.
- Lazy imports: do not import the API stack at parse time.
- Exit codes: 0 ok, 1 failed check or ledger error, 2 usage error.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from provenance.core.stages import Role


@dataclass(frozen=True)
class CliContext:
    repo_root: Path


def _repo_root_from_cwd() -> Path:
    return Path.cwd()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="provenance",
        description="Append-only, hash-chained batch provenance ledger.",
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit.")

    sub = parser.add_subparsers(dest="command")

    p_api = sub.add_parser("api", help="Start FastAPI server")
    p_api.add_argument("--host", default=None)
    p_api.add_argument("--port", type=int, default=None)

    sub.add_parser("status", help="Print ledger status")

    p_verify = sub.add_parser("verify", help="Verify one batch's hash chain")
    p_verify.add_argument("batch_id")

    p_anchor = sub.add_parser("anchor", help="Anchor operations")
    anchor_sub = p_anchor.add_subparsers(dest="anchor_command")
    anchor_sub.add_parser("publish", help="Anchor changed batch heads now")

    p_actor = sub.add_parser("actor", help="Actor role management")
    actor_sub = p_actor.add_subparsers(dest="actor_command")
    roles = [str(r) for r in Role]
    p_grant = actor_sub.add_parser("grant", help="Grant a role")
    p_grant.add_argument("actor_id")
    p_grant.add_argument("role", choices=roles)
    p_grant.add_argument("--name", default=None, help="Display name")
    p_revoke = actor_sub.add_parser("revoke", help="Revoke a role")
    p_revoke.add_argument("actor_id")
    p_revoke.add_argument("role", choices=roles)
    p_show = actor_sub.add_parser("show", help="Show an actor's roles")
    p_show.add_argument("actor_id")

    return parser


def _print_version() -> None:
    from provenance import __version__

    print(f"provenance v{__version__}")


def _open_ledger(ctx: CliContext):
    from provenance.core.config import Config
    from provenance.core.database import Database
    from provenance.core.logs import configure_logging
    from provenance.ledger import Ledger

    config = Config.load(ctx.repo_root)
    configure_logging(config.logging)
    db_path = config.db_path if config.db_path.is_absolute() else ctx.repo_root / config.db_path
    return Ledger.from_config(Database(db_path), config)


def _cmd_api(ctx: CliContext, args: argparse.Namespace) -> int:
    from provenance.core.config import Config
    from provenance.core.logs import configure_logging

    config = Config.load(ctx.repo_root)
    configure_logging(config.logging)

    host = args.host or config.api.host
    port = args.port or config.api.port

    import uvicorn

    uvicorn.run("api.main:app", host=host, port=port, reload=False, log_config=None)
    return 0


def _cmd_status(ctx: CliContext, args: argparse.Namespace) -> int:
    ledger = _open_ledger(ctx)
    try:
        summary = ledger.projector.summaries()
        pending = ledger.publisher.receipts.count(status="pending")
        anchored = ledger.publisher.receipts.count()
        unanchored = len(ledger.registry.unanchored_heads(limit=1_000_000))

        print("provenance status")
        print(f"- db: {ledger.db.db_path}")
        print(f"- batches: {summary.total}")
        for stage, n in summary.counts.items():
            if n:
                print(f"  - {stage}: {n}")
        print(f"- anchors: {anchored} ({pending} pending)")
        print(f"- heads awaiting anchor: {unanchored}")
        return 0
    finally:
        ledger.db.close()


def _cmd_verify(ctx: CliContext, args: argparse.Namespace) -> int:
    from provenance.core.exceptions import ProvenanceError

    ledger = _open_ledger(ctx)
    try:
        report = ledger.projector.verify_integrity(args.batch_id)
    except ProvenanceError as e:
        print(f"{e.code}: {e.message}", file=sys.stderr)
        return 1
    finally:
        ledger.db.close()

    print(
        json.dumps(
            {
                "batch_id": report.batch_id,
                "valid": report.valid,
                "broken_at_sequence": report.broken_at_sequence,
                "head_matches": report.head_matches,
                "events_checked": report.events_checked,
                "reason": report.reason,
            },
            indent=2,
        )
    )
    return 0 if report.valid else 1


def _cmd_anchor(ctx: CliContext, args: argparse.Namespace) -> int:
    from provenance.core.exceptions import ProvenanceError

    if args.anchor_command != "publish":
        print("usage: provenance anchor publish", file=sys.stderr)
        return 2

    ledger = _open_ledger(ctx)
    try:
        receipt = ledger.publisher.publish_once()
    except ProvenanceError as e:
        print(f"{e.code}: {e.message}", file=sys.stderr)
        return 1
    finally:
        ledger.db.close()

    if receipt is None:
        print("nothing to anchor")
        return 0
    print(f"anchored {len(receipt.digests_covered)} batch head(s)")
    print(f"- anchor_id: {receipt.anchor_id}")
    print(f"- sink: {receipt.sink}")
    print(f"- reference: {receipt.external_reference}")
    return 0


def _cmd_actor(ctx: CliContext, args: argparse.Namespace) -> int:
    if args.actor_command not in ("grant", "revoke", "show"):
        print("usage: provenance actor {grant,revoke,show} ...", file=sys.stderr)
        return 2

    ledger = _open_ledger(ctx)
    try:
        ids = ledger.identities
        if args.actor_command == "grant":
            if args.name is not None:
                ids.register(args.actor_id, display_name=args.name)
            ids.grant(args.actor_id, args.role, granted_by="cli")
        elif args.actor_command == "revoke" and not ids.revoke(args.actor_id, args.role, revoked_by="cli"):
            print(f"{args.actor_id} does not hold {args.role}", file=sys.stderr)
            return 1

        record = ids.get(args.actor_id)
        if record is None:
            print(f"unknown actor: {args.actor_id}", file=sys.stderr)
            return 1
        roles = ", ".join(sorted(str(r) for r in record.roles)) or "(none)"
        print(f"{record.actor_id}: {roles}")
        return 0
    finally:
        ledger.db.close()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        _print_version()
        return 0

    if not args.command:
        parser.print_help()
        return 2

    ctx = CliContext(repo_root=_repo_root_from_cwd())

    dispatch: dict[str, Callable[[CliContext, argparse.Namespace], int]] = {
        "api": _cmd_api,
        "status": _cmd_status,
        "verify": _cmd_verify,
        "anchor": _cmd_anchor,
        "actor": _cmd_actor,
    }

    fn = dispatch.get(str(args.command))
    if fn is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 2

    return int(fn(ctx, args))


if __name__ == "__main__":
    raise SystemExit(main())
