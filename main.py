"""
BrewNet Authentication Engine Entry Point.

Bootstraps the entire dependency graph via constructor injection,
initialises the local SQLite schema and settles the startup auth state.
Every subsystem is wired here; no module-level globals.

The presentation layer embeds this by calling :func:`bootstrap` and
keeping the returned :class:`Application` for the life of the process.
Run directly, the module performs a startup self-check and exits.

Usage::

    python main.py
"""

from __future__ import annotations

import atexit
import sys
from pathlib import Path
from typing import NamedTuple, Optional

from brewnet.auth import SessionManager
from brewnet.config import AppConfig, get_config
from brewnet.database import DatabaseManager
from brewnet.logger import StructuredLogger, get_logger
from brewnet.models.auth_models import AuthState
from brewnet.schema import initialize_schema
from brewnet.services import ServiceContainer, create_services
from brewnet.services.operation_runner import Dispatch
from brewnet.services.user_agent import UserAgentLauncher


class Application(NamedTuple):
    """Everything a front end needs, wired and ready."""

    config: AppConfig
    db: DatabaseManager
    session: SessionManager
    services: ServiceContainer


def bootstrap(
    config: Optional[AppConfig] = None,
    launcher: Optional[UserAgentLauncher] = None,
    dispatch: Optional[Dispatch] = None,
) -> Application:
    """Wire dependencies and settle the startup auth state."""
    logger: StructuredLogger = get_logger("main")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = config or get_config()
    logger.info("Starting BrewNet auth (identity mode: %s)...", config.IDENTITY_MODE)

    # ------------------------------------------------------------------
    # 2. Database Manager (Supabase optional, SQLite always)
    # ------------------------------------------------------------------
    db = DatabaseManager(
        supabase_url=config.SUPABASE_URL,
        supabase_key=config.SUPABASE_ANON_KEY.get_secret_value(),
        sqlite_path=Path(config.LOCAL_DB_PATH),
        logger=StructuredLogger(name="database"),
        request_timeout=config.HTTP_READ_TIMEOUT_S,
    )

    # DatabaseManager.close() is idempotent, so this is safe alongside
    # an explicit close by the embedding front end.
    atexit.register(db.close)

    # ------------------------------------------------------------------
    # 3. SQLite Schema Initialization (idempotent)
    # ------------------------------------------------------------------
    initialize_schema(db.sqlite, StructuredLogger(name="schema"))

    # ------------------------------------------------------------------
    # 4. Session Manager + service container
    # ------------------------------------------------------------------
    session = SessionManager(StructuredLogger(name="auth"))
    services = create_services(
        db=db,
        config=config,
        session=session,
        launcher=launcher,
        dispatch=dispatch,
    )

    # ------------------------------------------------------------------
    # 5. Startup auth state (auto-login disabled)
    # ------------------------------------------------------------------
    services["auth_service"].initialize()

    return Application(config=config, db=db, session=session, services=services)


def main() -> None:
    """Bootstrap, report the startup state, and shut down cleanly."""
    logger: StructuredLogger = get_logger("main")
    app = bootstrap()
    try:
        state: AuthState = app.session.auth_state
        logger.info(
            "Startup complete: auth state %s, remote backend %s.",
            state.status,
            "online" if app.db.is_online else "offline",
        )
    finally:
        app.db.close()
        logger.info("BrewNet auth shut down.")


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        pass
    except Exception as exc:
        sys.stderr.write(f"FATAL: {type(exc).__name__}: {exc}\n")
        sys.exit(1)
