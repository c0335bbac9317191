"""Command-line interface for the user directory service."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Sequence


def _running_in_virtualenv() -> bool:
    """Return ``True`` when the current interpreter is executing inside a venv."""

    base_prefix = getattr(sys, "base_prefix", sys.prefix)
    return sys.prefix != base_prefix


def _bootstrap_virtualenv() -> None:
    """Re-exec the script using the bundled virtualenv interpreter when available."""

    if _running_in_virtualenv():
        return

    venv_dir = Path(__file__).resolve().parent / ".venv"
    if not venv_dir.is_dir():
        return

    candidates = (
        venv_dir / "bin" / "python",
        venv_dir / "bin" / "python3",
        venv_dir / "Scripts" / "python.exe",
    )

    script = str(Path(__file__).resolve())
    for candidate in candidates:
        if candidate.exists():
            os.execv(str(candidate), [str(candidate), script, *sys.argv[1:]])


if __name__ == "__main__":
    _bootstrap_virtualenv()

import httpx

from user_api.config import ServiceConfig, load_service_config
from user_api.database import SORTABLE_FIELDS, Database

logger = logging.getLogger("userapi.main")

_DEFAULT_SERVICE_URL = "http://localhost:8000/api"


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="User directory service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the user database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the API (default: 8000)",
    )
    serve_parser.add_argument(
        "--ssl-certfile",
        default=None,
        help="Path to the TLS certificate chain in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile",
        default=None,
        help="Path to the TLS private key in PEM format",
    )

    users_parser = subparsers.add_parser("users", help="List users from a running service")
    users_parser.add_argument(
        "--service-url",
        default=None,
        help=f"Base URL of the API (default: USERAPI_SERVICE_URL or {_DEFAULT_SERVICE_URL})",
    )
    users_parser.add_argument(
        "--token",
        default=None,
        help="Bearer token to authenticate with (default: USERAPI_CLI_TOKEN)",
    )
    users_parser.add_argument("--sort-by", choices=SORTABLE_FIELDS, default="id")
    users_parser.add_argument("--descending", action="store_true", help="Sort in descending order")
    users_parser.add_argument("--page", type=int, default=1, help="Page number to fetch")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "users"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database(config: ServiceConfig) -> Database:
    database = Database(config.database_path)
    database.initialize()
    logger.info("Database initialised at %s", config.database_path)
    return database


def _serve(
    *,
    config: ServiceConfig,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
) -> None:
    from user_api.application import create_application
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting user API on %s://%s:%s/api", protocol, host, port)

    app = create_application(config=config)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
    )


def _fetch_users(
    service_url: str,
    token: str,
    *,
    sort_by: str,
    descending: bool,
    page: int,
) -> Dict[str, Any]:
    endpoint = service_url.rstrip("/") + "/user"
    params = {"sort_by": sort_by, "page": str(page)}
    if descending:
        params["descending"] = "true"

    response = httpx.get(
        endpoint,
        params=params,
        headers={"Authorization": f"Bearer {token}"},
        timeout=10.0,
    )
    response.raise_for_status()
    return response.json()


def _format_users(payload: Dict[str, Any]) -> List[str]:
    users = payload.get("data", [])
    total = payload.get("total", 0)
    lines = [
        f"Page {payload.get('current_page', 1)} of {payload.get('last_page', 1)} ({total} user(s) in total)",
    ]
    if not users:
        lines.append("No users on this page.")
        return lines

    lines.append(f"{'ID':>4}  {'Username':<20}  {'Name':<24}  {'Email':<32}  Created")
    lines.append("-" * 100)
    for user in users:
        email = user.get("email") or "<no email>"
        name = user.get("name") or ""
        lines.append(
            f"{user['id']:>4}  {user['username']:<20}  {name:<24}  {email:<32}  {user.get('created_at', '')}"
        )
    return lines


def _list_users(args: argparse.Namespace) -> int:
    service_url = args.service_url or os.getenv("USERAPI_SERVICE_URL") or _DEFAULT_SERVICE_URL
    token = args.token or os.getenv("USERAPI_CLI_TOKEN")
    if not token:
        print(
            "No API token configured. Pass --token or set the USERAPI_CLI_TOKEN environment variable.",
            file=sys.stderr,
        )
        return 1

    try:
        payload = _fetch_users(
            service_url,
            token,
            sort_by=args.sort_by,
            descending=args.descending,
            page=args.page,
        )
    except httpx.HTTPStatusError as exc:
        if exc.response.status_code == 401:
            print("Authentication failed. Verify the configured token.", file=sys.stderr)
        else:
            print(
                f"Service responded with {exc.response.status_code}: {exc.response.text.strip()}",
                file=sys.stderr,
            )
        return 1
    except httpx.HTTPError as exc:
        print(f"Failed to contact the user service: {exc}", file=sys.stderr)
        return 1

    for line in _format_users(payload):
        print(line)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    config = load_service_config()

    if args.command == "serve":
        _initialise_database(config)
        _serve(
            config=config,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
        )
    elif args.command == "init-db":
        _initialise_database(config)
        print("Database initialisation complete.")
    elif args.command == "users":
        return _list_users(args)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
