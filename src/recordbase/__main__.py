"""
recordbase realtime listener

Logs in to a recordbase server, subscribes to one or more topics and
prints every change event as a JSON line on stdout until interrupted.

Authentication:
- --admin EMAIL            superuser login
- --collection C --identity ID   record login
- --token TOKEN            pre-issued token (or RECORDBASE_TOKEN)
Passwords are read from RECORDBASE_PASSWORD or prompted for.
"""

import argparse
import asyncio
import getpass
import logging
import os
import sys
from typing import Optional

from . import __version__
from .client import Client
from .errors import RecordbaseError
from .models import RealtimeEvent, json_dumps
from .session import AdminPrincipal, RecordPrincipal
from .token import check_token_expiration

logger = logging.getLogger(__name__)


def _print_event(event: Optional[RealtimeEvent], error: Optional[Exception]) -> None:
    if error is not None:
        logger.error(f"Event error: {error}")
        return
    line = json_dumps({"action": event.action, "record": event.record.to_dict()})
    print(line, flush=True)


def _get_password() -> str:
    password = os.environ.get("RECORDBASE_PASSWORD")
    if password:
        logger.info("Using password from RECORDBASE_PASSWORD environment variable")
        return password
    return getpass.getpass("Password: ")


async def run_listener(args: argparse.Namespace) -> int:
    """Authenticate, subscribe and print events until the stream ends."""
    verify_ssl = False if args.no_verify_ssl else None

    async with Client(args.url, verify_ssl=verify_ssl, ca_bundle=args.ca_bundle) as client:
        try:
            if args.token:
                if args.admin_token:
                    client.use_token(args.token, AdminPrincipal())
                else:
                    client.use_token(args.token, RecordPrincipal(args.collection or "users"))
            elif args.admin:
                await client.auth_as_admin(args.admin, _get_password())
            elif args.identity:
                await client.auth_with_password(args.collection or "users", args.identity, _get_password())
            else:
                logger.warning("No credentials given, subscribing anonymously")

            subscription = await client.realtime.subscribe(
                args.topic,
                _print_event,
                timeout=args.timeout,
            )
        except RecordbaseError as e:
            logger.error(f"{type(e).__name__}: {e}")
            return 1

        logger.info(f"Listening on {', '.join(args.topic)} (Ctrl+C to stop)")
        async with subscription:
            await subscription.wait_closed()
    return 0


def main():
    """Main entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    parser = argparse.ArgumentParser(
        prog="recordbase",
        description="Print realtime record changes from a recordbase server",
    )
    parser.add_argument(
        "url",
        help="Server hostname or URL (e.g., https://db.example.com)",
    )
    parser.add_argument(
        "--topic", "-t",
        action="append",
        required=True,
        help="Topic to subscribe to (repeatable), e.g. posts or posts/RECORD_ID",
    )
    parser.add_argument(
        "--admin",
        metavar="EMAIL",
        help="Log in as a superuser",
    )
    parser.add_argument(
        "--collection",
        help="Auth collection for --identity or --token (default: users)",
    )
    parser.add_argument(
        "--identity",
        help="Record identity (email or username) to log in with",
    )
    parser.add_argument(
        "--token",
        help="Use a pre-issued token (or set RECORDBASE_TOKEN)",
    )
    parser.add_argument(
        "--admin-token",
        action="store_true",
        help="The --token belongs to a superuser",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the subscription to be confirmed",
    )
    parser.add_argument(
        "--no-verify-ssl",
        action="store_true",
        help="Disable SSL certificate verification (requires RECORDBASE_ALLOW_INSECURE=1)",
    )
    parser.add_argument(
        "--ca-bundle",
        metavar="FILE",
        help="Path to a custom CA certificate file for SSL verification.",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.admin and args.identity:
        logger.error("--admin and --identity are mutually exclusive")
        sys.exit(1)

    # Guard --no-verify-ssl: require RECORDBASE_ALLOW_INSECURE=1
    if args.no_verify_ssl:
        allow_insecure = os.environ.get(
            "RECORDBASE_ALLOW_INSECURE", ""
        ).lower() in ("1", "true", "yes")
        if not allow_insecure:
            logger.error(
                "--no-verify-ssl requires RECORDBASE_ALLOW_INSECURE=1 "
                "environment variable. Consider using --ca-bundle instead."
            )
            sys.exit(1)

    if not args.token:
        env_token = os.environ.get("RECORDBASE_TOKEN")
        if env_token:
            args.token = env_token
            logger.info("Using token from RECORDBASE_TOKEN environment variable")

    if args.token:
        is_valid, token_msg = check_token_expiration(args.token)
        if not is_valid:
            logger.error(token_msg)
            sys.exit(1)
        logger.info(token_msg)

    try:
        exit_code = asyncio.run(run_listener(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
