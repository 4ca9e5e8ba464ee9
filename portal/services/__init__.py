"""
Auth Core Services Package.

The ``create_services()`` factory wires the token storage, session store,
request gate, backend boundary and the flows together, returning a typed
dict that the application layer (console or UI) can consume without
knowing the internal dependency graph.
"""

from __future__ import annotations

from typing import TypedDict

import httpx

from portal.auth import SessionStore
from portal.config import AppConfig
from portal.database import LocalDatabase
from portal.logger import get_logger
from portal.services.auth_service import AuthService
from portal.services.backend_api import BackendApi
from portal.services.login_flow import LoginStateMachine
from portal.services.profile_service import ProfileService
from portal.services.request_gate import RequestGate
from portal.services.two_factor_flow import TwoFactorFlow
from portal.token_storage import TokenStorage

__all__ = [
    "AuthService",
    "BackendApi",
    "LoginStateMachine",
    "ProfileService",
    "RequestGate",
    "ServiceContainer",
    "TwoFactorFlow",
    "create_http_client",
    "create_services",
]


class ServiceContainer(TypedDict):
    """Typed container for every auth-core service."""

    # --- Infrastructure ---
    token_storage: TokenStorage
    session_store: SessionStore
    request_gate: RequestGate
    backend_api: BackendApi

    # --- Services & flows ---
    auth_service: AuthService
    profile_service: ProfileService
    two_factor_flow: TwoFactorFlow


def create_http_client(config: AppConfig) -> httpx.AsyncClient:
    """Build the shared ``httpx.AsyncClient`` for the backend API root."""
    return httpx.AsyncClient(
        base_url=config.API_BASE_URL.rstrip("/"),
        timeout=httpx.Timeout(config.HTTP_TIMEOUT_S, connect=config.HTTP_CONNECT_TIMEOUT_S),
        headers={"Content-Type": "application/json"},
    )


def create_services(
    config: AppConfig,
    db: LocalDatabase,
    client: httpx.AsyncClient,
) -> ServiceContainer:
    """
    Wire all auth-core components together.

    This is the single composition root for the service layer.  The
    entry-point calls it once at start-up; the caller owns *db* and
    *client* and closes them on shutdown.

    Args:
        config: Application configuration.
        db: Initialised ``LocalDatabase`` with the schema applied.
        client: HTTP client for the backend (see ``create_http_client``).

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = get_logger("portal.services")

    # ------------------------------------------------------------------
    # 1. Durable token + session store
    # ------------------------------------------------------------------
    token_storage = TokenStorage(
        db=db,
        logger=get_logger("portal.token_storage"),
        salt_file_name=config.SALT_FILE_NAME,
    )
    session_store = SessionStore(
        storage=token_storage,
        logger=get_logger("portal.session"),
        max_age_seconds=config.session_max_age_seconds,
    )

    # ------------------------------------------------------------------
    # 2. Transport boundary
    # ------------------------------------------------------------------
    request_gate = RequestGate(client=client, store=session_store, logger=logger)
    backend_api = BackendApi(gate=request_gate, client=client, logger=logger)

    # ------------------------------------------------------------------
    # 3. Services and flows
    # ------------------------------------------------------------------
    auth_service = AuthService(api=backend_api, store=session_store, logger=logger)
    profile_service = ProfileService(api=backend_api, store=session_store, logger=logger)
    two_factor_flow = TwoFactorFlow(api=backend_api, store=session_store, logger=logger)

    return ServiceContainer(
        token_storage=token_storage,
        session_store=session_store,
        request_gate=request_gate,
        backend_api=backend_api,
        auth_service=auth_service,
        profile_service=profile_service,
        two_factor_flow=two_factor_flow,
    )
