"""
Authentication Services Package.

Identity backends, session persistence, the OAuth handshake, the
``AuthService`` orchestrator and the ``OperationRunner`` that moves its
blocking calls off the UI thread.

The ``create_services()`` factory wires every repository and service together,
returning a typed dict that the application layer (views / commands) can
consume without knowing the internal dependency graph.
"""

from __future__ import annotations

from typing import Optional, TypedDict

import requests

from brewnet.auth import SessionManager
from brewnet.config import AppConfig
from brewnet.database import DatabaseManager
from brewnet.logger import get_logger
from brewnet.models.enums import IdentityMode
from brewnet.repositories.local_user_repository import LocalUserRepository
from brewnet.repositories.remote_user_repository import RemoteUserRepository
from brewnet.services.auth_events import AuthEventChannel
from brewnet.services.auth_service import AuthService
from brewnet.services.identity_backend import IdentityBackend, SupabaseIdentityBackend
from brewnet.services.jit_provisioning import JITProvisioningService
from brewnet.services.local_identity_backend import LocalIdentityBackend
from brewnet.services.oauth_handshake import OAuthHandshakeController
from brewnet.services.operation_runner import Dispatch, OperationRunner, call_inline
from brewnet.services.session_store import SessionStore
from brewnet.services.token_exchange import TokenExchangeClient
from brewnet.services.user_agent import SystemBrowserLauncher, UserAgentLauncher


class ServiceContainer(TypedDict, total=False):
    """Typed container for the authentication services.

    ``fallback_backend`` is ``None`` unless ``IDENTITY_MODE`` is
    ``remote_with_local_fallback``.
    """

    # --- Core (always present) ---
    auth_service: AuthService
    auth_events: AuthEventChannel
    operation_runner: OperationRunner
    session_store: SessionStore
    jit_provisioning_service: JITProvisioningService

    # --- Identity backends ---
    primary_backend: IdentityBackend
    fallback_backend: Optional[IdentityBackend]

    # --- OAuth ---
    token_exchange_client: TokenExchangeClient
    oauth_handshake: OAuthHandshakeController
    user_agent: UserAgentLauncher


def create_services(
    db: DatabaseManager,
    config: AppConfig,
    session: SessionManager,
    launcher: Optional[UserAgentLauncher] = None,
    http_session: Optional[requests.Session] = None,
    dispatch: Optional[Dispatch] = None,
) -> ServiceContainer:
    """
    Wire all repositories and services together.

    This is the single composition root for the service layer.  The
    application entry-point calls this once at startup.

    Args:
        db: Initialised DatabaseManager (schema already applied).
        config: Application configuration; ``IDENTITY_MODE`` selects the
            primary and fallback identity backends.
        session: The shared session holder.
        launcher: External user agent; the system browser by default.
        http_session: ``requests.Session`` for the token-exchange client.
        dispatch: Schedules operation results on the UI thread; results are
            delivered on the worker thread when omitted.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = get_logger("services")

    # ------------------------------------------------------------------
    # 1. Repositories (data-access layer)
    # ------------------------------------------------------------------
    local_user_repo = LocalUserRepository(db=db, logger=logger)
    remote_user_repo = RemoteUserRepository(db=db, logger=logger)

    # ------------------------------------------------------------------
    # 2. Identity backends, selected by configuration
    # ------------------------------------------------------------------
    local_backend = LocalIdentityBackend(repo=local_user_repo, config=config, logger=logger)
    remote_backend = SupabaseIdentityBackend(
        db=db, repo=remote_user_repo, config=config, logger=logger,
    )

    primary: IdentityBackend
    fallback: Optional[IdentityBackend] = None
    if config.IDENTITY_MODE == IdentityMode.LOCAL:
        primary = local_backend
    elif config.IDENTITY_MODE == IdentityMode.REMOTE_WITH_LOCAL_FALLBACK:
        primary, fallback = remote_backend, local_backend
    else:
        primary = remote_backend

    logger.info(
        "Identity mode '%s': primary=%s, fallback=%s.",
        config.IDENTITY_MODE,
        primary.name,
        fallback.name if fallback is not None else "none",
    )

    # ------------------------------------------------------------------
    # 3. Leaf services
    # ------------------------------------------------------------------
    session_store = SessionStore(
        db=db,
        logger=logger,
        salt_path=config.SESSION_SALT_PATH,
        kdf_iterations=config.SESSION_KDF_ITERATIONS,
    )
    auth_events = AuthEventChannel(logger=logger)
    jit_provisioning_service = JITProvisioningService(logger=logger)
    token_exchange_client = TokenExchangeClient(
        config=config, logger=logger, session=http_session,
    )
    user_agent: UserAgentLauncher = launcher or SystemBrowserLauncher(logger=logger)

    # ------------------------------------------------------------------
    # 4. Orchestration services
    # ------------------------------------------------------------------
    oauth_handshake = OAuthHandshakeController(
        config=config,
        exchange_client=token_exchange_client,
        launcher=user_agent,
        logger=logger,
    )
    auth_service = AuthService(
        session=session,
        store=session_store,
        events=auth_events,
        primary=primary,
        jit_service=jit_provisioning_service,
        local_users=local_user_repo,
        handshake=oauth_handshake,
        exchange_client=token_exchange_client,
        config=config,
        logger=logger,
        fallback=fallback,
        db=db,
    )

    return ServiceContainer(
        auth_service=auth_service,
        operation_runner=OperationRunner(dispatch or call_inline, logger=logger),
        auth_events=auth_events,
        session_store=session_store,
        jit_provisioning_service=jit_provisioning_service,
        primary_backend=primary,
        fallback_backend=fallback,
        token_exchange_client=token_exchange_client,
        oauth_handshake=oauth_handshake,
        user_agent=user_agent,
    )
