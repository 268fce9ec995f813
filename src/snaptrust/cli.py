"""SnapTrust CLI — read-only inspection of a persisted engine state.

Usage:
    python -m snaptrust.cli status
    python -m snaptrust.cli score --party-type seeker --id s1
    python -m snaptrust.cli badge --party-type seeker --id s1 --badge seeker_badge_checker
    python -m snaptrust.cli exit-status --seeker s1
    python -m snaptrust.cli check-invariants

Directories come from --config / --data, else SNAPTRUST_CONFIG_DIR /
SNAPTRUST_DATA_DIR (a .env file in the working directory is honoured).
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from snaptrust.models.common import PartyType
from snaptrust.persistence import EVENTS_FILENAME, EventLog, StateStore
from snaptrust.policy.resolver import CONFIG_DIR_ENV, DATA_DIR_ENV, PolicyResolver
from snaptrust.service import SnapTrustService

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _make_service(config_dir: Path, data_dir: Path) -> SnapTrustService:
    """Create a SnapTrustService over the persisted state in data_dir."""
    resolver = PolicyResolver.from_config_dir(config_dir)
    event_log = EventLog(storage_path=data_dir / EVENTS_FILENAME)
    state_store = StateStore.in_dir(data_dir)
    logger.debug("Loading state from %s", state_store.path)
    return SnapTrustService(resolver, event_log=event_log, state_store=state_store)


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_score(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    party_type = PartyType(args.party_type)
    score = service.reputation(party_type, args.id)
    print(json.dumps({
        "party_type": party_type.value,
        "party_id": args.id,
        "score": score.score,
        "percent": score.percent,
        "percentile": service.percentile(party_type, args.id),
        "yes_weight": score.yes_weight,
        "no_weight": score.no_weight,
        "neutral_count": score.neutral_count,
        "penalty_percent": score.penalty_percent,
    }, indent=2))
    return 0


def cmd_badge(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    progress = service.badge(PartyType(args.party_type), args.id, args.badge)
    print(json.dumps({
        "party_type": progress.party_type.value,
        "party_id": progress.party_id,
        "badge_id": progress.badge_id,
        "yes": progress.yes_count,
        "no": progress.no_count,
        "score": progress.score,
        "level": progress.level,
        "next_level_at": progress.next_level_at,
    }, indent=2))
    return 0


def cmd_exit_status(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    status = service.exit_status(args.seeker).to_dict()
    status["next_tier"] = service.exits.next_tier_for(args.seeker).tier
    summary = service.exits.active_notice_summary(args.seeker)
    status["active_notices"] = summary.active_count
    status["notice_days_left"] = summary.days_left
    print(json.dumps(status, indent=2))
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    try:
        service = _make_service(args.config, args.data)
    except ValueError as e:
        print(f"Invariant check failed: {e}", file=sys.stderr)
        return 1
    errors = service.check_invariants()
    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"  - {err}")
        return 1
    print("Invariant check passed.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snaptrust",
        description="SnapTrust — link, assignment and reputation engine CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"Path to config directory (default: ${CONFIG_DIR_ENV} or config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=None,
        help=f"Path to data directory (default: ${DATA_DIR_ENV} or data/)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show record counts by status")

    parties = [p.value for p in PartyType]

    p_score = sub.add_parser("score", help="Show a party's reputation score")
    p_score.add_argument("--party-type", required=True, choices=parties)
    p_score.add_argument("--id", required=True, help="Party ID")

    p_badge = sub.add_parser("badge", help="Show a party's progress on one badge")
    p_badge.add_argument("--party-type", required=True, choices=parties)
    p_badge.add_argument("--id", required=True, help="Party ID")
    p_badge.add_argument("--badge", required=True, help="Badge ID")

    p_exit = sub.add_parser("exit-status", help="Show a seeker's bad-exit consequences")
    p_exit.add_argument("--seeker", required=True, help="Seeker ID")

    sub.add_parser("check-invariants", help="Verify record invariants and the tier table")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    if args.config is None:
        env_config = os.environ.get(CONFIG_DIR_ENV)
        args.config = Path(env_config) if env_config else DEFAULT_CONFIG
    if args.data is None:
        env_data = os.environ.get(DATA_DIR_ENV)
        args.data = Path(env_data) if env_data else DEFAULT_DATA

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "score": cmd_score,
        "badge": cmd_badge,
        "exit-status": cmd_exit_status,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
