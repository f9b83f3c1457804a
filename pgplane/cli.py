from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import sys
from typing import Any, Dict, Optional

from pgplane.config import get_settings
from pgplane.schemas.auth import UserCreate
from pgplane.services.connectivity import probe_connection
from pgplane.services.dsn import mask_connection_string, parse_connection_string


def _print_json(data: Dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


async def _create_user(username: str, password: str, role: str) -> Dict[str, Any]:
    from pgplane.dependencies import dispose_engines, get_sessionmaker
    from pgplane.services.users import insert_user

    sessionmaker = get_sessionmaker(get_settings().database_url)
    try:
        async with sessionmaker() as session:
            user = await insert_user(
                session,
                UserCreate(username=username, password=password, role=role),
                created_by=None,
            )
            return {"id": user.id, "username": user.username, "role": user.role}
    finally:
        await dispose_engines()


def cmd_create_user(args: argparse.Namespace) -> int:
    password: Optional[str] = args.password
    if not password:
        password = getpass.getpass("Password: ")
    _print_json(asyncio.run(_create_user(args.username, password, args.role)))
    return 0


def cmd_test_connection(args: argparse.Namespace) -> int:
    result = asyncio.run(probe_connection(args.connection_string, timeout=args.timeout))
    _print_json(result.as_dict())
    return 0 if result.success else 2


def cmd_mask(args: argparse.Namespace) -> int:
    descriptor = parse_connection_string(
        args.connection_string, default_ssl_mode=get_settings().default_ssl_mode
    )
    _print_json(
        {
            "connection_string": mask_connection_string(args.connection_string),
            "valid": descriptor is not None,
            "host": descriptor.host if descriptor else None,
            "port": descriptor.port if descriptor else None,
            "database": descriptor.database if descriptor else None,
            "ssl_mode": descriptor.ssl_mode if descriptor else None,
        }
    )
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "pgplane.main:app",
        host=args.host or settings.server_host,
        port=args.port or settings.server_port,
        log_level=settings.log_level.lower(),
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pgplane-admin", description="PostgreSQL cluster node registry admin CLI"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create_user = sub.add_parser("create-user", help="Create a user directly in the database")
    create_user.add_argument("username")
    create_user.add_argument("--password", help="Prompted when omitted")
    create_user.add_argument(
        "--role", choices=["VIEWER", "OPERATOR", "ADMIN", "OWNER"], default="VIEWER"
    )
    create_user.set_defaults(func=cmd_create_user)

    test_connection = sub.add_parser(
        "test-connection", help="Open a live connection and report the server version"
    )
    test_connection.add_argument("connection_string")
    test_connection.add_argument("--timeout", type=float)
    test_connection.set_defaults(func=cmd_test_connection)

    mask = sub.add_parser("mask", help="Print a connection string with its password masked")
    mask.add_argument("connection_string")
    mask.set_defaults(func=cmd_mask)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        exit_code = args.func(args)
    except Exception as exc:  # noqa: BLE001
        print(f"error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
