"""
Thai Craft Auth Core Entry Point.

Bootstraps the dependency graph via constructor injection, initialises
the local SQLite schema, and restores the persisted session (or signs
out with ``--logout``).  Every subsystem is wired here; no module-level
globals.

Usage::

    python main.py             # restore and report the stored session
    python main.py --logout    # sign out and wipe local credentials
"""

from __future__ import annotations

import argparse
import asyncio
import atexit
import sys
from pathlib import Path
from typing import Optional, Sequence

from thaicraft.config import get_config
from thaicraft.database import DatabaseManager
from thaicraft.logger import StructuredLogger, get_logger
from thaicraft.models.auth_state import Authenticated
from thaicraft.models.error_models import ClassifiedError
from thaicraft.schema import initialize_schema
from thaicraft.services import create_services
from thaicraft.services.error_classifier import format_details
from thaicraft.services.wallet_transport import UnavailableWalletTransport


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Thai Craft session tool")
    parser.add_argument(
        "--logout",
        action="store_true",
        help="sign out on the server and wipe the local session",
    )
    parser.add_argument(
        "--details",
        action="store_true",
        help="print technical details for reported errors",
    )
    return parser.parse_args(argv)


async def run(argv: Optional[Sequence[str]] = None) -> int:
    """Wire dependencies, then restore or log out.  Returns an exit code."""
    args = _parse_args(argv)
    logger: StructuredLogger = get_logger("main")
    logger.info("Starting Thai Craft auth core...")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Local database + schema (idempotent)
    # ------------------------------------------------------------------
    db = DatabaseManager(
        sqlite_path=Path(config.STORE_PATH),
        logger=StructuredLogger(name="database"),
    )
    # DatabaseManager.close() is safe to call multiple times.
    atexit.register(db.close)
    initialize_schema(db.sqlite, StructuredLogger(name="schema"))

    # ------------------------------------------------------------------
    # 3. Service container (single composition root)
    # ------------------------------------------------------------------
    def show_error(error: ClassifiedError) -> None:
        print(f"{error.title}: {error.message}", file=sys.stderr)
        if args.details and error.record is not None:
            print(format_details(error.record), file=sys.stderr)

    services = create_services(
        db=db,
        config=config,
        wallet=UnavailableWalletTransport(),
        error_callback=show_error,
    )
    controller = services["wallet_auth"]

    try:
        if args.logout:
            await controller.disconnect()
            print("Signed out.")
            return 0

        state = await controller.restore()
        if isinstance(state, Authenticated):
            print(f"Signed in as {state.user.username} ({state.user.wallet_address}).")
            return 0
        print("No active session. Connect a wallet in the app to sign in.")
        return 1
    finally:
        await services["auth_api"].aclose()
        db.close()
        logger.info("Thai Craft auth core shut down.")


def main() -> None:
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
