"""Operator CLI for cached authentication sessions.

Commands:
- ``status``            list cached storage states with age and validity
- ``cleanup``           sweep files older than the cleanup age
- ``clear``             delete cached states (optionally for one role)
- ``check-credentials`` audit credential environment variables
- ``login``             log in for a role and cache the session

Exit codes: 0 success, 1 operational failure, 2 usage or configuration error.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Optional

import anyio

from .browser import PlaywrightClient
from .config import AuthConfig, load_config
from .credentials import CredentialResolver, format_missing
from .errors import AuthSessionError, ConfigError
from .flow import OidcFlowExecutor
from .provisioning import SessionProvisioner
from .retry import RetryingAuthenticator
from .storage import StorageStateManager

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "auth-session.yaml"


def _fmt_age(seconds: Optional[float]) -> str:
    if seconds is None:
        return "n/a"
    if seconds < 120:
        return f"{seconds:.0f}s"
    if seconds < 7200:
        return f"{seconds / 60:.0f}m"
    return f"{seconds / 3600:.1f}h"


def _cmd_status(config: AuthConfig, args: argparse.Namespace) -> int:
    storage = StorageStateManager(config.storage_state)
    states = storage.list_states()
    if not states:
        print(f"No storage states in: {storage.directory}")
        return 0

    print(f"Storage state directory: {storage.directory} | max_age={config.storage_state.max_age_minutes}min")
    for info in states:
        status = "valid" if info.valid else f"invalid ({info.problem})"
        print(
            f"  {info.role or '?':<16} env={info.environment or '?':<12} "
            f"age={_fmt_age(info.age_seconds):<8} {status}  file={info.path.name}"
        )
    return 0


def _cmd_cleanup(config: AuthConfig, args: argparse.Namespace) -> int:
    storage = StorageStateManager(config.storage_state)
    hours = args.max_age_hours if args.max_age_hours is not None else config.storage_state.cleanup_max_age_hours
    result = storage.cleanup_older_than(hours * 3600)
    print(f"Deleted {result.deleted_count} file(s) older than {hours}h")
    for path, error in result.errors:
        print(f"  failed: {path}: {error}", file=sys.stderr)
    return 1 if result.errors else 0


def _cmd_clear(config: AuthConfig, args: argparse.Namespace) -> int:
    storage = StorageStateManager(config.storage_state)
    deleted = storage.clear(role=args.role)
    print(f"Deleted {deleted} storage state file(s)")
    return 0


def _cmd_check_credentials(config: AuthConfig, args: argparse.Namespace) -> int:
    resolver = CredentialResolver(config)
    missing = resolver.missing(args.roles or None)
    if missing:
        print(format_missing(missing), file=sys.stderr)
        return 1
    roles = args.roles or list(config.roles)
    print(f"Credentials present for: {', '.join(roles)}")
    return 0


async def _login(config: AuthConfig, role: str, force: bool, headed: bool) -> str:
    executor = OidcFlowExecutor(config)
    authenticator = RetryingAuthenticator(executor, config.retry)
    storage = StorageStateManager(config.storage_state)

    async with PlaywrightClient(headless=False if headed else None) as client:
        provisioner = SessionProvisioner(config, storage, authenticator, client.session)
        path = await provisioner.ensure(role, force=force)
    return str(path)


def _cmd_login(config: AuthConfig, args: argparse.Namespace) -> int:
    if config.role(args.role) is None:
        print(f"Unknown role '{args.role}' (configured: {', '.join(config.roles)})", file=sys.stderr)
        return 2
    path = anyio.run(_login, config, args.role, args.force, args.headed)
    print(f"Storage state for role '{args.role}': {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="auth-session", description="Manage cached E2E authentication sessions")
    parser.add_argument(
        "--config",
        default=os.environ.get("AUTH_SESSION_CONFIG", DEFAULT_CONFIG_PATH),
        help="Path to the YAML auth configuration (defaults to $AUTH_SESSION_CONFIG or auth-session.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("AUTH_SESSION_LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Logging level (defaults to $AUTH_SESSION_LOG_LEVEL or INFO)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    status = commands.add_parser("status", help="List cached storage states")
    status.set_defaults(handler=_cmd_status)

    cleanup = commands.add_parser("cleanup", help="Delete storage states older than the cleanup age")
    cleanup.add_argument("--max-age-hours", type=float, default=None, help="Override the configured cleanup age")
    cleanup.set_defaults(handler=_cmd_cleanup)

    clear = commands.add_parser("clear", help="Delete cached storage states")
    clear.add_argument("--role", default=None, help="Only delete states for this role")
    clear.set_defaults(handler=_cmd_clear)

    check = commands.add_parser("check-credentials", help="Report missing credential environment variables")
    check.add_argument("roles", nargs="*", help="Roles to check (defaults to all configured roles)")
    check.set_defaults(handler=_cmd_check_credentials)

    login = commands.add_parser("login", help="Log in for a role and cache the session")
    login.add_argument("role", help="Role to log in as")
    login.add_argument("--force", action="store_true", help="Log in even if a valid cached state exists")
    login.add_argument("--headed", action="store_true", help="Show the browser window")
    login.set_defaults(handler=_cmd_login)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    try:
        return args.handler(config, args)
    except AuthSessionError as exc:
        logger.error(f"{args.command} failed: {exc}")
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
