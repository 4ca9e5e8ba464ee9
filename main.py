"""
Lending Portal Client Entry Point.

Bootstraps the auth-core dependency graph via constructor injection,
initialises the local SQLite schema, restores any stored session and,
when none is usable, runs a console sign-in (email, password, optional
6-digit code).  Every subsystem is wired here; no module-level globals.

Usage::

    python main.py
"""

from __future__ import annotations

import asyncio
import atexit
import getpass
import sys

from portal.config import get_config
from portal.database import LocalDatabase
from portal.errors import PortalError, SessionExpiredError
from portal.logger import StructuredLogger, get_logger
from portal.models import Authenticated, Failed, LoginState, SecondFactorRequired
from portal.schema import initialize_schema
from portal.services import ServiceContainer, create_http_client, create_services


async def _sign_in(services: ServiceContainer) -> LoginState:
    """Prompt until the login state machine reaches ``Authenticated``."""
    machine = services["auth_service"].new_login()
    state: LoginState = machine.state

    while not isinstance(state, Authenticated):
        if isinstance(state, SecondFactorRequired):
            if state.error is not None:
                print(f"  {state.error.message}")
            code = input("Authentication code (or 8-character backup code): ").strip()
            if len(code) == 8:
                state = await machine.submit_backup_code(code)
            else:
                state = await machine.submit_second_factor(code)
            continue

        if state.error is not None:
            print(f"  {state.error.message}")
            if isinstance(state, Failed):
                state = machine.clear_error()
        email = input("Email: ")
        password = getpass.getpass("Password: ")
        state = await machine.submit_credentials(email, password)

    if state.warning:
        print(f"  Warning: {state.warning}")
    return state


async def _run(services: ServiceContainer, logger: StructuredLogger) -> None:
    auth_service = services["auth_service"]
    profile_service = services["profile_service"]

    # ------------------------------------------------------------------
    # 1. Lazy session restore, verified by the first authorized call
    # ------------------------------------------------------------------
    identity = None
    if auth_service.restore_session() is not None:
        try:
            identity = await profile_service.refresh_identity()
        except SessionExpiredError as exc:
            print(exc.message)
        except PortalError as exc:
            logger.warning("Could not refresh the stored session: %s", exc.message)

    # ------------------------------------------------------------------
    # 2. Interactive sign-in when no usable session exists
    # ------------------------------------------------------------------
    if identity is None:
        await _sign_in(services)
        identity = await profile_service.refresh_identity()

    # ------------------------------------------------------------------
    # 3. Summary
    # ------------------------------------------------------------------
    print(f"Signed in as {identity.full_name or identity.email} <{identity.email}>")
    flow = services["two_factor_flow"]
    await flow.refresh_status()
    if flow.status is not None:
        print(f"Two-factor authentication: {'on' if flow.status.enabled else 'off'}")
    if await profile_service.has_admin_capability():
        print("Administrator access available.")


def main() -> None:
    """Application entry point: wire dependencies and run the console client."""
    logger: StructuredLogger = get_logger("main")
    logger.info("Starting lending portal client...")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Local database (holds the encrypted token entry)
    # ------------------------------------------------------------------
    db = LocalDatabase(
        sqlite_path=config.LOCAL_DB_PATH,
        logger=StructuredLogger(name="database"),
    )
    # Second safety net for unclean exits; close() is idempotent.
    atexit.register(db.close)

    # ------------------------------------------------------------------
    # 3. SQLite schema initialisation (idempotent)
    # ------------------------------------------------------------------
    initialize_schema(db.sqlite, StructuredLogger(name="schema"))

    async def _session() -> None:
        async with create_http_client(config) as client:
            services = create_services(config=config, db=db, client=client)
            await _run(services, logger)

    try:
        asyncio.run(_session())
    finally:
        db.close()
        logger.info("Lending portal client shut down.")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
    except PortalError as exc:
        sys.stderr.write(f"{type(exc).__name__}: {exc.message}\n")
        sys.exit(1)
