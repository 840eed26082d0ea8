"""Application entry point for channel-portal."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from getpass import getpass
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_feed import TelethonFeed
from client import build_client, load_credentials
from core.auth import AuthService, ClientInfo
from core.config import IngestConfig, RateLimitConfig, SecurityConfig
from core.credentials import CredentialVerifier
from core.curation import CurationService
from core.errors import PortalError
from core.models import CategoryKind, Classification, LoginResult
from core.processor import IngestPipeline
from core.ratelimit import RateLimiter
from core.sessions import SessionManager
from get_session import authorize, login
from pipeline import import_history, sync_recent_posts

NAME = "PORTAL"
FONT = "tarty-1"

CLI_USER_AGENT = "portal-cli"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", True):
        return []
    values = []
    for name in redact_cfg.get("patterns", ["API_HASH", "2FA"]):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", True):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        # stderr keeps command output (tokens, reports) clean on stdout.
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/portal.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


@dataclass
class Services:
    storage: SQLiteStorage
    auth: AuthService
    sessions: SessionManager
    rate_limiter: RateLimiter
    curation: CurationService
    ingest: IngestPipeline


def build_services(storage: SQLiteStorage) -> Services:
    """Wire the core services around one storage adapter."""

    security = SecurityConfig(
        session_ttl=timedelta(hours=settings.SESSION_TTL_HOURS),
        max_failed_attempts=settings.MAX_FAILED_ATTEMPTS,
        lockout_duration=timedelta(minutes=settings.LOCKOUT_MINUTES),
    )
    rate_limit = RateLimitConfig(
        window=timedelta(minutes=settings.RATE_LIMIT_WINDOW_MINUTES),
        max_attempts=settings.RATE_LIMIT_MAX_ATTEMPTS,
    )
    ingest_config = IngestConfig(
        default_title=settings.DEFAULT_TITLE,
        title_max_chars=settings.TITLE_MAX_CHARS,
    )

    sessions = SessionManager(storage, storage, security)
    rate_limiter = RateLimiter(storage, rate_limit)
    auth = AuthService(
        admins=storage,
        activity=storage,
        verifier=CredentialVerifier(storage, security),
        sessions=sessions,
        rate_limiter=rate_limiter,
    )
    return Services(
        storage=storage,
        auth=auth,
        sessions=sessions,
        rate_limiter=rate_limiter,
        curation=CurationService(storage, storage, storage),
        ingest=IngestPipeline(storage, storage, ingest_config),
    )


def _open_services() -> Services:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return build_services(storage)


def _print_session(result: LoginResult) -> None:
    print(f"admin:      {result.admin.email} (id {result.admin.id})")
    print(f"token:      {result.session_token}")
    print(f"expires at: {result.expires_at.isoformat()}")


def _print_classification(services: Services, classification: Classification) -> None:
    names = {
        kind: {category.id: category.name for category in services.curation.list_categories(kind)}
        for kind in CategoryKind
    }
    sections = sorted(names[CategoryKind.SECTION][i] for i in classification.section_ids)
    material_types = sorted(names[CategoryKind.MATERIAL_TYPE][i] for i in classification.material_type_ids)
    print(f"sections:       {', '.join(sections) or '-'}")
    print(f"material types: {', '.join(material_types) or '-'}")


def _prompt_new_password() -> str:
    password = getpass("New password: ")
    if password != getpass("Repeat new password: "):
        raise PortalError("Passwords do not match")
    return password


def _cmd_init_db(args: argparse.Namespace) -> None:
    services = _open_services()
    removed = services.sessions.purge_expired()
    counters = services.rate_limiter.purge()
    print(
        f"Database ready at {settings.DB_PATH} "
        f"({removed} expired sessions, {counters} stale rate-limit counters removed)"
    )


def _cmd_create_admin(args: argparse.Namespace) -> None:
    services = _open_services()
    admin = services.auth.create_admin(args.email, _prompt_new_password(), args.allow_ip or ())
    print(f"Created admin {admin.email} (id {admin.id})")


def _client_info(args: argparse.Namespace) -> ClientInfo:
    return ClientInfo(ip_address=getattr(args, "ip", None), user_agent=CLI_USER_AGENT)


def _cmd_login(args: argparse.Namespace) -> None:
    services = _open_services()
    password = getpass("Password: ")
    _print_session(services.auth.login(args.email, password, _client_info(args)))


def _cmd_logout(args: argparse.Namespace) -> None:
    _open_services().auth.logout(args.token, _client_info(args))
    print("Logged out")


def _cmd_refresh(args: argparse.Namespace) -> None:
    _print_session(_open_services().auth.refresh_session(args.token, _client_info(args)))


def _cmd_whoami(args: argparse.Namespace) -> None:
    _print_session(_open_services().auth.current_session(args.token))


def _cmd_change_password(args: argparse.Namespace) -> None:
    services = _open_services()
    current = getpass("Current password: ")
    services.auth.change_password(args.token, current, _prompt_new_password(), _client_info(args))
    print("Password changed; all sessions were signed out")


def _kind(value: str) -> CategoryKind:
    return CategoryKind.SECTION if value == "section" else CategoryKind.MATERIAL_TYPE


def _cmd_add_category(args: argparse.Namespace) -> None:
    services = _open_services()
    services.auth.validate(args.token)
    category = services.curation.create_category(_kind(args.kind), args.name, args.tags or [])
    print(f"Created {args.kind} {category.name!r} (id {category.id}): {', '.join(category.hashtags) or '-'}")


def _cmd_list_categories(args: argparse.Namespace) -> None:
    services = _open_services()
    for kind in CategoryKind:
        print(f"[{kind.value}]")
        for category in services.curation.list_categories(kind):
            print(f"  {category.id}: {category.name} <- {', '.join('#' + tag for tag in category.hashtags) or '-'}")


def _cmd_classify(args: argparse.Namespace) -> None:
    services = _open_services()
    services.auth.validate(args.token)
    classification = services.curation.classify_post(args.post_id, args.section or [], args.material_type or [])
    _print_classification(services, classification)


def _cmd_suggest(args: argparse.Namespace) -> None:
    services = _open_services()
    _print_classification(services, services.curation.suggest(args.post_id))


def _cmd_import(args: argparse.Namespace) -> None:
    services = _open_services()
    with open(args.file, "rb") as handle:
        report = import_history(services.ingest, handle.read())
    print(f"Imported {report.processed} posts, skipped {report.skipped} of {report.total} messages")


def _cmd_sync(args: argparse.Namespace) -> None:
    channel = args.channel or settings.SYNC_CHANNEL
    if not channel:
        raise PortalError("A channel is required (argument or sync.channel in config.json)")
    from_date = args.from_date or datetime.now().astimezone() - timedelta(hours=settings.SYNC_LOOKBACK_HOURS)

    services = _open_services()
    credentials = load_credentials()

    async def _run_sync():
        client = build_client(credentials)
        await client.connect()
        try:
            await authorize(client)
            return await sync_recent_posts(TelethonFeed(client), services.ingest, channel, from_date, settings.SYNC_LIMIT)
        finally:
            await client.disconnect()

    report = asyncio.run(_run_sync())
    print(f"Processed {report.processed} new posts from {report.total_found} found")


def _cmd_telegram_login(args: argparse.Namespace) -> None:
    asyncio.run(login())


def _parse_datetime(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid ISO date: {value}") from exc
    return parsed if parsed.tzinfo else parsed.astimezone()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="portal")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sub = subparsers.add_parser("init-db", help="Create tables and purge expired sessions")
    sub.set_defaults(handler=_cmd_init_db)

    sub = subparsers.add_parser("create-admin", help="Create an admin account")
    sub.add_argument("email")
    sub.add_argument("--allow-ip", action="append", help="Restrict logins to this address (repeatable)")
    sub.set_defaults(handler=_cmd_create_admin)

    sub = subparsers.add_parser("login", help="Open an admin session")
    sub.add_argument("email")
    sub.add_argument("--ip", help="Client address recorded with the session")
    sub.set_defaults(handler=_cmd_login)

    for name, handler, help_text in (
        ("logout", _cmd_logout, "Revoke a session"),
        ("refresh", _cmd_refresh, "Swap a session token for a fresh one"),
        ("whoami", _cmd_whoami, "Show the session owner"),
        ("change-password", _cmd_change_password, "Change the password of the session owner"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("token")
        sub.set_defaults(handler=handler)

    sub = subparsers.add_parser("add-category", help="Create a section or material type")
    sub.add_argument("token")
    sub.add_argument("kind", choices=["section", "material-type"])
    sub.add_argument("name")
    sub.add_argument("--tags", nargs="*", help="Trigger hashtags")
    sub.set_defaults(handler=_cmd_add_category)

    sub = subparsers.add_parser("list-categories", help="List sections and material types")
    sub.set_defaults(handler=_cmd_list_categories)

    sub = subparsers.add_parser("classify", help="Replace the classification of a post")
    sub.add_argument("token")
    sub.add_argument("post_id", type=int)
    sub.add_argument("--section", type=int, action="append")
    sub.add_argument("--material-type", type=int, action="append")
    sub.set_defaults(handler=_cmd_classify)

    sub = subparsers.add_parser("suggest", help="Show the suggested classification of a post")
    sub.add_argument("post_id", type=int)
    sub.set_defaults(handler=_cmd_suggest)

    sub = subparsers.add_parser("import", help="Import a Telegram Desktop JSON export")
    sub.add_argument("file")
    sub.set_defaults(handler=_cmd_import)

    sub = subparsers.add_parser("sync", help="Pull recent posts from the channel")
    sub.add_argument("channel", nargs="?")
    sub.add_argument("--from-date", type=_parse_datetime)
    sub.set_defaults(handler=_cmd_sync)

    sub = subparsers.add_parser("telegram-login", help="Authorize the Telegram sync client")
    sub.set_defaults(handler=_cmd_telegram_login)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    args = _build_parser().parse_args(argv)
    _print_banner()
    _configure_logging()
    try:
        args.handler(args)
    except PortalError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
