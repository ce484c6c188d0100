import argparse
import logging
import sys
from pathlib import Path

from src.adapters.sqlite.migrator import SQLiteMigrator
from src.app_shell.config import configure_logging, validate_storage_rules
from src.app_shell.context import ServiceContext
from src.components.recalc import RecalculateInput, RecalculateOutput, run
from src.rules.loader import load_rules
from src.rules.models import Rules

logger = logging.getLogger("cli")

RULES_PATH = "rules.yaml"


def get_rules(path: str) -> Rules:
    if not Path(path).exists():
        logger.error("Rules file %s not found.", path)
        sys.exit(1)
    return load_rules(Path(path))


def get_context(rules: Rules, db_path: str | None) -> ServiceContext:
    return ServiceContext.create(db_path or rules.storage.db_path, rules)


def report(out: RecalculateOutput) -> int:
    for err in out.errors:
        print(f"Error [{err.code}]: {err.message}")
    for failure in out.failures:
        print(f"Failed link {failure.link_id}: {failure.error_type}: {failure.error}")

    print(
        f"mode={out.mode} links={out.links_recomputed} "
        f"associations={out.associations_updated}"
    )
    if out.checkpoint:
        print(f"Checkpoint: {out.checkpoint}")
    return 0 if out.success else 1


def handle_recalculate(ctx: ServiceContext, args: argparse.Namespace) -> int:
    if args.all:
        inp = RecalculateInput(mode="all", resume_after=args.resume_after)
    elif args.event:
        mode = "event_deleted" if args.deleted else "event"
        inp = RecalculateInput(mode=mode, event_id=args.event)
    else:
        inp = RecalculateInput(mode="link", link_id=args.link)
    return report(run(inp, orchestrator=ctx.orchestrator))


def handle_refresh(ctx: ServiceContext, args: argparse.Namespace) -> int:
    inp = RecalculateInput(mode="refresh", link_id=args.link)
    return report(run(inp, orchestrator=ctx.orchestrator))


def handle_cleanup(ctx: ServiceContext, args: argparse.Namespace) -> int:
    removed = ctx.orchestrator.cleanup_orphans(args.link)
    print(f"Removed {removed} orphaned association(s).")
    return 0


def handle_migrate(rules: Rules, db_path: str | None, base_dir: Path) -> int:
    migrations_dir = str(base_dir / rules.storage.migrations_dir)
    migrator = SQLiteMigrator(db_path or rules.storage.db_path, migrations_dir)
    applied = migrator.run_migrations()
    print(f"Applied {len(applied)} migration(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Shared-link attribution CLI")
    parser.add_argument("--rules", default=RULES_PATH, help="Path to rules.yaml")
    parser.add_argument("--db", help="SQLite database path (overrides rules)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # recalculate
    recalc_parser = subparsers.add_parser(
        "recalculate", help="Recompute attribution windows and metrics"
    )
    target = recalc_parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--link", help="Recompute one link")
    target.add_argument("--event", help="Recompute every link of an event")
    target.add_argument("--all", action="store_true", help="Recompute every link")
    recalc_parser.add_argument(
        "--deleted", action="store_true", help="With --event: the event was deleted"
    )
    recalc_parser.add_argument("--resume-after", help="With --all: resume after this link id")

    # refresh
    refresh_parser = subparsers.add_parser(
        "refresh", help="Re-aggregate metrics with existing windows"
    )
    refresh_parser.add_argument("--link", help="Refresh one link only")

    # cleanup-orphans
    cleanup_parser = subparsers.add_parser(
        "cleanup-orphans", help="Delete associations whose event no longer exists"
    )
    cleanup_parser.add_argument("--link", help="Limit to one link")

    # migrate
    subparsers.add_parser("migrate", help="Apply pending database migrations")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    rules = get_rules(args.rules)
    configure_logging(rules)

    base_dir = Path(args.rules).resolve().parent
    try:
        validate_storage_rules(rules, base_dir)
    except ValueError as e:
        logger.error("%s", e)
        return 1

    if args.command == "migrate":
        return handle_migrate(rules, args.db, base_dir)

    ctx = get_context(rules, args.db)

    if args.command == "recalculate":
        return handle_recalculate(ctx, args)
    elif args.command == "refresh":
        return handle_refresh(ctx, args)
    elif args.command == "cleanup-orphans":
        return handle_cleanup(ctx, args)
    return 1


if __name__ == "__main__":
    sys.exit(main())
