# cli.py
# Description: Command-line shell over the AppContainer: list, add, edit, delete, sync, watch.
#
# Imports
import argparse
import asyncio
import sys
from typing import List, Optional, Sequence
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from hybrid_users import config
from hybrid_users.app_container import AppContainer
from hybrid_users.Logging_Config import configure_logging
from hybrid_users.models import User
#
#######################################################################################################################
#
# Functions:


def _format_user(user: User) -> str:
    flags = ""
    if user.pending_sync:
        flags = " [pending]"
    return f"{user.id:<40} {user.full_name:<28} {user.email:<32} {user.age:>3}{flags}"


def _print_users(users: List[User]):
    if not users:
        print("No users stored locally.")
        return
    for user in users:
        print(_format_user(user))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hybrid-users", description="Offline-first user directory.")
    parser.add_argument("--config", help="Path to config.toml (default: ~/.config/hybrid_users/config.toml)")
    parser.add_argument("--log-level", help="Console log level override")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="Show active users from the local store")

    add_parser = subparsers.add_parser("add", help="Create a user locally")
    edit_parser = subparsers.add_parser("edit", help="Edit a stored user locally")
    edit_parser.add_argument("id")
    for sub in (add_parser, edit_parser):
        required = sub is add_parser
        sub.add_argument("--first-name", required=required)
        sub.add_argument("--last-name", required=required)
        sub.add_argument("--email", required=required)
        sub.add_argument("--age", type=int)
        sub.add_argument("--user-name")
        sub.add_argument("--position-title")
        sub.add_argument("--image")

    delete_parser = subparsers.add_parser("delete", help="Delete a user (removed remotely on next sync)")
    delete_parser.add_argument("id")

    subparsers.add_parser("add-test-user", help="Create a random test user locally")
    subparsers.add_parser("upload", help="Push local changes only")
    subparsers.add_parser("download", help="Pull the server state only")
    subparsers.add_parser("sync", help="Push local changes, then pull the server state")

    watch_parser = subparsers.add_parser("watch", help="Sync periodically until interrupted")
    watch_parser.add_argument("--interval", type=float, help="Seconds between syncs")
    return parser


def _user_fields(args: argparse.Namespace) -> dict:
    names = ("first_name", "last_name", "email", "age", "user_name", "position_title", "image")
    return {name: getattr(args, name) for name in names if getattr(args, name, None) is not None}


async def _watch(container: AppContainer, interval: Optional[float]) -> int:
    trigger = container.periodic_trigger(interval_seconds=interval)
    subscription = container.status_feed.subscribe()
    await trigger.start()
    try:
        async for message in subscription:
            print(message)
    except asyncio.CancelledError:
        pass
    finally:
        subscription.close()
        await trigger.stop()
    return 0


async def run_command(container: AppContainer, args: argparse.Namespace) -> int:
    repository = container.repository
    command = args.command

    if command == "list":
        _print_users(repository.get_active_users())
        return 0
    if command == "watch":
        return await _watch(container, args.interval)

    if command == "add":
        result = await repository.insert_user(User(**_user_fields(args)))
    elif command in ("edit", "delete"):
        user = repository.get_user(args.id)
        if user is None:
            print(f"No active user with id '{args.id}'.", file=sys.stderr)
            return 1
        if command == "edit":
            result = await repository.update_user(user.model_copy(update=_user_fields(args)))
        else:
            result = await repository.delete_user(user)
    elif command == "add-test-user":
        result = await repository.add_test_user()
    elif command == "upload":
        result = await repository.upload_pending_changes()
    elif command == "download":
        result = await repository.sync_from_server()
    elif command == "sync":
        result = await repository.sync()
    else:
        raise ValueError(f"Unknown command: {command}")

    print(result.message, file=sys.stdout if result.success else sys.stderr)
    return 0 if result.success else 1


async def _main_async(args: argparse.Namespace) -> int:
    async with AppContainer.from_config() as container:
        return await run_command(container, args)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config.load_settings(force_reload=True, config_path=args.config)
    configure_logging(level=args.log_level)
    logger.debug(f"Running command '{args.command}'")
    try:
        return asyncio.run(_main_async(args))
    except KeyboardInterrupt:
        return 130

#
# End of cli.py
#######################################################################################################################
