"""SkillSwap CLI — command-line interface for the exchange engine.

Usage:
    python -m skillswap.cli status
    python -m skillswap.cli index-user --id alice --teach french --learn guitar
    python -m skillswap.cli find-matches --user alice --limit 10
    python -m skillswap.cli search-users --user alice --teach guitar
    python -m skillswap.cli create-request --from alice --to bob --teach french --learn guitar
    python -m skillswap.cli accept-request --id req_... --actor bob
    python -m skillswap.cli record-attendance --session sess_... --user alice --attended --rating 5
    python -m skillswap.cli check-policy

State lives in the data directory (events.jsonl + state.json). Defaults for
--config and --data may be set with SKILLSWAP_CONFIG_DIR and
SKILLSWAP_DATA_DIR, in the environment or a .env file.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from skillswap.models.exchange import RequestStatus, SessionStatus
from skillswap.models.user import User
from skillswap.persistence.event_log import EventLog
from skillswap.persistence.state_store import StateStore
from skillswap.policy.resolver import POLICY_FILENAME, PolicyResolver
from skillswap.service import ServiceResult, SkillSwapService


PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG = PROJECT_ROOT / "config"
DEFAULT_DATA = PROJECT_ROOT / "data"


def _make_service(config_dir: Path, data_dir: Path) -> SkillSwapService:
    """Create a SkillSwapService with durable persistence."""
    data_dir.mkdir(parents=True, exist_ok=True)
    resolver = PolicyResolver.from_config_dir(config_dir)
    event_log = EventLog(storage_path=data_dir / "events.jsonl")
    state_store = StateStore(storage_path=data_dir / "state.json")
    return SkillSwapService(resolver, event_log=event_log, state_store=state_store)


def _skills(raw: Optional[list[str]]) -> list[str]:
    """Flatten repeated and comma-separated skill arguments."""
    skills: list[str] = []
    for item in raw or []:
        skills.extend(part for part in item.split(",") if part.strip())
    return skills


def _date(raw: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(raw) if raw else None


def _report(result: ServiceResult, summary: Optional[str] = None) -> int:
    if result.success:
        if summary:
            print(summary)
        else:
            print(json.dumps(result.data, indent=2, default=str))
        if "warning" in result.data:
            print(f"Warning: {result.data['warning']}", file=sys.stderr)
        return 0
    code = f"[{result.error_code}] " if result.error_code else ""
    print(f"Failed: {code}{'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_index_user(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    try:
        user = User(
            user_id=args.id,
            fullname=args.name or args.id,
            display_name=args.display_name,
            bio=args.bio or "",
            teach_skills=frozenset(_skills(args.teach)),
            learn_skills=frozenset(_skills(args.learn)),
        )
    except ValueError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    result = service.index_user(user)
    return _report(result, f"Indexed user: {args.id}" if result.success else None)


def cmd_remove_user(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.remove_user(args.id)
    return _report(result, f"Removed user: {args.id}" if result.success else None)


def cmd_find_matches(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.find_matches(args.user, limit=args.limit, offset=args.offset))


def cmd_search_users(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.search_users(
        args.user,
        teach_skills=_skills(args.teach),
        learn_skills=_skills(args.learn),
        limit=args.limit,
        offset=args.offset,
    ))


def cmd_create_request(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.create_request(
        requester_id=args.requester,
        recipient_id=args.recipient,
        teach_skills=_skills(args.teach),
        learn_skills=_skills(args.learn),
        message=args.message,
    )
    summary = None
    if result.success:
        summary = f"Created request: {result.data['request']['id']}"
    return _report(result, summary)


def cmd_accept_request(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.accept_request(
        args.id, args.actor,
        scheduled_date=_date(args.date),
        duration=args.duration,
        location=args.location,
    )
    summary = None
    if result.success:
        summary = (
            f"Accepted request: {args.id} "
            f"(session: {result.data['session']['id']})"
        )
    return _report(result, summary)


def cmd_decline_request(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.decline_request(args.id, args.actor)
    return _report(result, f"Declined request: {args.id}" if result.success else None)


def cmd_cancel_request(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.cancel_request(args.id, args.actor)
    return _report(result, f"Cancelled request: {args.id}" if result.success else None)


def cmd_schedule_session(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.schedule_session(
        args.request, _date(args.date), args.duration,
        location=args.location, notes=args.notes, actor_id=args.actor,
    )
    summary = None
    if result.success:
        summary = f"Scheduled session: {result.data['session']['id']}"
    return _report(result, summary)


def cmd_cancel_session(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.cancel_session(args.id, args.actor)
    return _report(result, f"Cancelled session: {args.id}" if result.success else None)


def cmd_record_attendance(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.record_attendance(
        args.session, args.user, args.attended,
        feedback=args.feedback, rating=args.rating, actor_id=args.actor,
    )
    summary = None
    if result.success:
        summary = f"Recorded attendance for {args.user} in session {args.session}"
    return _report(result, summary)


def cmd_complete_session(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.complete_session(args.id)
    return _report(result, f"Completed session: {args.id}" if result.success else None)


def cmd_sweep_sessions(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.complete_due_sessions())


def cmd_list_requests(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    status = RequestStatus(args.status) if args.status else None
    return _report(service.list_requests(args.user, role=args.role, status=status))


def cmd_list_sessions(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    status = SessionStatus(args.status) if args.status else None
    return _report(service.list_sessions(args.user, status=status))


def cmd_user_stats(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    return _report(service.user_stats(args.user))


def cmd_check_policy(args: argparse.Namespace) -> int:
    """Validate the exchange policy file."""
    path = args.config / POLICY_FILENAME
    if not path.exists():
        print(f"No policy file at {path}; built-in defaults apply.")
        return 0
    try:
        resolver = PolicyResolver.from_config_dir(args.config)
    except (ValueError, OSError) as e:
        print(f"FAIL: {e}", file=sys.stderr)
        return 1
    print(f"OK: {path}")
    print(json.dumps(resolver.as_dict(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="skillswap",
        description="SkillSwap — skill exchange matching and session engine CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(os.environ.get("SKILLSWAP_CONFIG_DIR", DEFAULT_CONFIG)),
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=Path(os.environ.get("SKILLSWAP_DATA_DIR", DEFAULT_DATA)),
        help="Path to data directory (default: data/)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show engine status")

    # index-user
    p_idx = sub.add_parser("index-user", help="Add or update a user's skills")
    p_idx.add_argument("--id", required=True, help="User ID")
    p_idx.add_argument("--name", help="Full name (default: the ID)")
    p_idx.add_argument("--display-name", dest="display_name", help="Display name")
    p_idx.add_argument("--bio", help="Short bio")
    p_idx.add_argument("--teach", action="append", help="Skill(s) offered; repeat or comma-separate")
    p_idx.add_argument("--learn", action="append", help="Skill(s) sought; repeat or comma-separate")

    # remove-user
    p_rm = sub.add_parser("remove-user", help="Remove a user from the skill index")
    p_rm.add_argument("--id", required=True, help="User ID")

    # find-matches
    p_find = sub.add_parser("find-matches", help="Rank partners for a user")
    p_find.add_argument("--user", required=True, help="Requesting user ID")
    p_find.add_argument("--limit", type=int, help="Max results (0 = all)")
    p_find.add_argument("--offset", type=int, default=0, help="Ranked results to skip")

    # search-users
    p_search = sub.add_parser("search-users", help="Browse other users by skill")
    p_search.add_argument("--user", required=True, help="Browsing user ID (excluded)")
    p_search.add_argument("--teach", action="append", help="Only users teaching any of these")
    p_search.add_argument("--learn", action="append", help="Only users seeking any of these")
    p_search.add_argument("--limit", type=int, default=0, help="Max results (0 = all)")
    p_search.add_argument("--offset", type=int, default=0, help="Results to skip")

    # create-request
    p_req = sub.add_parser("create-request", help="Send a pairing request")
    p_req.add_argument("--from", dest="requester", required=True, help="Requester ID")
    p_req.add_argument("--to", dest="recipient", required=True, help="Recipient ID")
    p_req.add_argument("--teach", action="append", help="Skill(s) the requester will teach")
    p_req.add_argument("--learn", action="append", help="Skill(s) the requester wants to learn")
    p_req.add_argument("--message", help="Optional message")

    # accept/decline/cancel-request
    p_acc = sub.add_parser("accept-request", help="Accept a pending request")
    p_acc.add_argument("--id", required=True, help="Request ID")
    p_acc.add_argument("--actor", required=True, help="Acting user (recipient)")
    p_acc.add_argument("--date", help="First session start, ISO-8601")
    p_acc.add_argument("--duration", type=int, help="First session length in minutes")
    p_acc.add_argument("--location", help="First session location")

    for name, actor_help in (
        ("decline-request", "Acting user (recipient)"),
        ("cancel-request", "Acting user (requester)"),
    ):
        p = sub.add_parser(name, help=f"{name.split('-')[0].capitalize()} a pending request")
        p.add_argument("--id", required=True, help="Request ID")
        p.add_argument("--actor", required=True, help=actor_help)

    # schedule-session
    p_sched = sub.add_parser("schedule-session", help="Schedule a session for an accepted request")
    p_sched.add_argument("--request", required=True, help="Request ID")
    p_sched.add_argument("--date", required=True, help="Start time, ISO-8601")
    p_sched.add_argument("--duration", type=int, required=True, help="Length in minutes")
    p_sched.add_argument("--location", help="Location (default: policy default)")
    p_sched.add_argument("--notes", help="Notes")
    p_sched.add_argument("--actor", help="Acting user (a request party)")

    # cancel-session
    p_csess = sub.add_parser("cancel-session", help="Cancel a scheduled session")
    p_csess.add_argument("--id", required=True, help="Session ID")
    p_csess.add_argument("--actor", required=True, help="Acting participant")

    # record-attendance
    p_att = sub.add_parser("record-attendance", help="Record attendance and feedback")
    p_att.add_argument("--session", required=True, help="Session ID")
    p_att.add_argument("--user", required=True, help="Participant whose record is updated")
    p_att.add_argument("--attended", action="store_true", help="Participant attended")
    p_att.add_argument("--feedback", help="Feedback text")
    p_att.add_argument("--rating", type=int, help="Rating within the policy range")
    p_att.add_argument("--actor", help="Recording participant (default: --user)")

    # complete-session
    p_comp = sub.add_parser("complete-session", help="Mark a session completed")
    p_comp.add_argument("--id", required=True, help="Session ID")

    # sweep-sessions
    sub.add_parser("sweep-sessions", help="Complete sessions whose end time has passed")

    # list-requests
    p_lreq = sub.add_parser("list-requests", help="List a user's pairing requests")
    p_lreq.add_argument("--user", required=True, help="User ID")
    p_lreq.add_argument("--role", default="all", choices=["sent", "received", "all"])
    p_lreq.add_argument("--status", choices=[s.value for s in RequestStatus])

    # list-sessions
    p_lsess = sub.add_parser("list-sessions", help="List a user's sessions")
    p_lsess.add_argument("--user", required=True, help="User ID")
    p_lsess.add_argument("--status", choices=[s.value for s in SessionStatus])

    # user-stats
    p_stats = sub.add_parser("user-stats", help="Pairing and session statistics")
    p_stats.add_argument("--user", required=True, help="User ID")

    # check-policy
    sub.add_parser("check-policy", help="Validate the exchange policy file")

    return parser


COMMANDS: dict[str, Any] = {
    "status": cmd_status,
    "index-user": cmd_index_user,
    "remove-user": cmd_remove_user,
    "find-matches": cmd_find_matches,
    "search-users": cmd_search_users,
    "create-request": cmd_create_request,
    "accept-request": cmd_accept_request,
    "decline-request": cmd_decline_request,
    "cancel-request": cmd_cancel_request,
    "schedule-session": cmd_schedule_session,
    "cancel-session": cmd_cancel_session,
    "record-attendance": cmd_record_attendance,
    "complete-session": cmd_complete_session,
    "sweep-sessions": cmd_sweep_sessions,
    "list-requests": cmd_list_requests,
    "list-sessions": cmd_list_sessions,
    "user-stats": cmd_user_stats,
    "check-policy": cmd_check_policy,
}


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    handler = COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
