#!/usr/bin/env python3
"""
authkeep -- command-line entry point.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080 --reload
  python main.py purge

Commands:
  serve   Run the HTTP API with uvicorn.
  purge   Delete pending sign-ups whose verification link has expired, then exit.
          The API also does this periodically (PURGE_INTERVAL_SECONDS).

Configuration comes from the environment / .env (see core/config.py).
"""

import argparse
import logging
import sys

from core.config import get_settings


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _purge(args: argparse.Namespace) -> int:
    from auth.store import SQLCredentialStore

    store = SQLCredentialStore(get_settings().database_url)
    try:
        purged = store.purge_expired_pre_registrations()
    finally:
        store.close()
    print(f"Purged {purged} expired pre-registration(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authkeep",
        description="Authentication and session lifecycle service.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    serve.set_defaults(func=_serve)

    purge = sub.add_parser("purge", help="Delete expired pending sign-ups")
    purge.set_defaults(func=_purge)
    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
