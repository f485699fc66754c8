import argparse
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

# Ensure the src directory is on sys.path when running as a script
_SRC_DIR = Path(__file__).resolve().parents[1]
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from questlog.bootstrap import create_quest_log_service
from questlog.domain.errors import QuestLogError
from questlog.domain.models.quest import SessionRole
from questlog.presentation.quest_log_view import render_quest_log

load_dotenv()


def _print_help_surface() -> None:
    print("\nHelp:")
    print("- Quests persist only when QUESTLOG_DATABASE_URL points to a reachable database.")
    print("- Non-GM roles need QUESTLOG_ALLOW_PLAYERS_CREATE or QUESTLOG_TRUSTED_PLAYER_EDIT to create quests.")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Inspect and edit the shared quest log")
    parser.add_argument("--user", type=str, default="gm", help="Acting user id")
    parser.add_argument(
        "--role",
        type=str,
        choices=[role.value for role in SessionRole],
        default=SessionRole.GM.value,
        help="Session role of the acting user",
    )
    commands = parser.add_subparsers(dest="command")

    commands.add_parser("list", help="Print the classified quest log")

    create = commands.add_parser("create", help="Create a quest")
    create.add_argument("title", type=str)
    create.add_argument("--giver", type=str, default="")
    create.add_argument("--description", type=str, default="")
    create.add_argument("--status", type=str, default=None)
    create.add_argument("--parent", type=str, default=None)
    create.add_argument("--task", action="append", default=[], help="Task text; repeat for several tasks")

    status = commands.add_parser("status", help="Change the status of a quest")
    status.add_argument("quest_id", type=str)
    status.add_argument("status", type=str)

    delete = commands.add_parser("delete", help="Delete a quest")
    delete.add_argument("quest_id", type=str)
    return parser


def main(argv=None) -> int:
    logging.basicConfig(
        level=os.getenv("QUESTLOG_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = _build_parser().parse_args(argv)

    service = create_quest_log_service(args.user, roles={args.user: SessionRole(args.role)})
    try:
        service.start()
        if args.command == "create":
            quest = service.create_quest(
                {
                    "title": args.title,
                    "giver_name": args.giver,
                    "description": args.description,
                    "status": args.status,
                    "tasks": list(args.task),
                },
                parent_id=args.parent,
            )
            print(f"Created quest {quest.id} ({quest.status.value}).")
        elif args.command == "status":
            updated = service.request_status_change(args.quest_id, args.status)
            if updated is None:
                print("Status change sent to the game master for approval.")
            else:
                print(f"Quest {updated.id} is now {updated.status.value}.")
        elif args.command == "delete":
            result = service.delete_quest(args.quest_id)
            print(f"Deleted quest {result.deleted_id}; moved {len(result.saved_ids)} sub-quest(s) up.")
        else:
            render_quest_log(service)
    except QuestLogError as exc:
        print(f"Command rejected: {exc}")
        _print_help_surface()
        return 1
    finally:
        service.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
