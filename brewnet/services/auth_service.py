"""
Authentication Service.

Single orchestrator for every authentication concern in BrewNet: password
login, guest login, platform Sign-In, email and phone registration, guest
upgrade, logout, session refresh, and provider profile import.

Sits between the UI layer and the identity backends / session store so
that views remain thin form handlers.

All public operations return a typed ``AuthResult`` (or ``ImportResult``)
and never raise across the boundary.  Every failure is also published on
the ``AuthEventChannel``.

Identity modes
--------------
The composition root passes a *primary* backend and, in
``remote_with_local_fallback`` mode, a *fallback* backend.  A primary
operation (login, register, register-with-phone) whose primary attempt
fails at the transport level is retried once on the fallback, and the
result is flagged ``is_offline_login``.
"""

from __future__ import annotations

import random
import sqlite3
import threading
import uuid
from typing import Any, Callable, Optional

import httpx
import requests

from brewnet.auth import InvalidAuthTransition, SessionManager
from brewnet.config import AppConfig
from brewnet.database import DatabaseManager
from brewnet.logger import StructuredLogger
from brewnet.models.auth_models import (
    PROVIDER_ERROR_CODE_MAP,
    PROVIDER_MESSAGE_PATTERNS,
    AuthErrorCode,
    AuthResult,
)
from brewnet.models.enums import ImportStatus
from brewnet.models.oauth_models import (
    HandshakeResult,
    ImportedProfile,
    ImportResult,
    PlatformCredential,
)
from brewnet.models.user import IdentityRecord, Session, phone_placeholder_email
from brewnet.repositories.local_user_repository import LocalUserRepository
from brewnet.services.auth_events import AuthEventChannel
from brewnet.services.identity_backend import IdentityBackend
from brewnet.services.jit_provisioning import JITProvisioningError, JITProvisioningService
from brewnet.services.oauth_handshake import OAuthHandshakeController
from brewnet.services.session_store import SessionStore
from brewnet.services.token_exchange import TokenExchangeClient
from brewnet.utils.audit import DetailValue, log_audit_event
from brewnet.utils.validators import (
    validate_email,
    validate_name,
    validate_password_length,
    validate_phone,
)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

GUEST_EMAIL: str = "guest@brewnet.com"
GUEST_NAMES: tuple[str, ...] = (
    "Coffee Lover",
    "BrewNet User",
    "Guest",
    "New Friend",
    "Coffee Enthusiast",
)
PLATFORM_RELAY_DOMAIN: str = "privaterelay.appleid.com"

_TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    requests.RequestException,
    httpx.TransportError,
)

# How far down ``__cause__`` / ``__context__`` to look for a transport error.
_MAX_CAUSE_DEPTH: int = 5


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

def is_network_failure(exc: BaseException) -> bool:
    """``True`` when *exc*, or an exception it wraps, is a transport failure.

    A ``RuntimeError`` counts: ``DatabaseManager.supabase`` raises one when
    the remote client was never initialised (offline mode).
    ``InvalidAuthTransition`` is a programming error and never counts.
    """
    current: Optional[BaseException] = exc
    for _ in range(_MAX_CAUSE_DEPTH):
        if current is None or isinstance(current, (JITProvisioningError, InvalidAuthTransition)):
            return False
        if isinstance(current, _TRANSPORT_ERRORS):
            return True
        if type(current) is RuntimeError:
            return True
        current = current.__cause__ or current.__context__
    return False


def classify_backend_error(
    exc: BaseException,
    unknown: AuthErrorCode = AuthErrorCode.UNKNOWN_ERROR,
    phone: bool = False,
) -> AuthErrorCode:
    """Map a backend exception to an ``AuthErrorCode``.

    Order: transport failures, then the provider's structured ``code``
    attribute, then substrings of the message.  Anything unrecognised
    maps to *unknown*.

    Parameters
    ----------
    exc:
        The exception raised by an identity backend.
    unknown:
        Code for unrecognised errors.  Login passes ``NETWORK_ERROR``;
        registration keeps ``UNKNOWN_ERROR``.
    phone:
        Phone registration: "already exists" becomes
        ``PHONE_ALREADY_EXISTS``.
    """
    if isinstance(exc, JITProvisioningError):
        return AuthErrorCode.UNKNOWN_ERROR
    if is_network_failure(exc):
        return AuthErrorCode.NETWORK_ERROR

    code: Optional[AuthErrorCode] = None
    provider_code = getattr(exc, "code", None)
    if provider_code is not None:
        code = PROVIDER_ERROR_CODE_MAP.get(str(provider_code).lower())

    if code is None:
        message: str = str(getattr(exc, "message", None) or exc).lower()
        for pattern, mapped in PROVIDER_MESSAGE_PATTERNS:
            if pattern in message:
                code = mapped
                break

    if code is None:
        return unknown
    if phone and code == AuthErrorCode.EMAIL_ALREADY_EXISTS:
        return AuthErrorCode.PHONE_ALREADY_EXISTS
    return code


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class AuthService:
    """Centralised authentication service.

    Receives all collaborators via ``__init__`` and exposes request →
    result methods for every auth flow.

    Parameters
    ----------
    session:
        Holder of the current ``Session`` and ``AuthState``.
    store:
        Encrypted persistence for the current session and platform slots.
    events:
        Channel on which every failure is published.
    primary:
        Identity backend selected by ``IDENTITY_MODE``.
    jit_service:
        Guarantees an identity record exists after a password sign-in.
    local_users:
        Local user table, used for guest records.
    handshake:
        OAuth handshake controller for provider profile import.
    exchange_client:
        Backend exchange / import HTTP client.
    config:
        Application configuration.
    logger:
        Structured JSON logger.
    fallback:
        Backend retried when *primary* is unreachable, or ``None``.
    db:
        When given, audit events are also persisted to ``audit_log``.
    """

    def __init__(
        self,
        session: SessionManager,
        store: SessionStore,
        events: AuthEventChannel,
        primary: IdentityBackend,
        jit_service: JITProvisioningService,
        local_users: LocalUserRepository,
        handshake: OAuthHandshakeController,
        exchange_client: TokenExchangeClient,
        config: AppConfig,
        logger: StructuredLogger,
        fallback: Optional[IdentityBackend] = None,
        db: Optional[DatabaseManager] = None,
    ) -> None:
        self._session: SessionManager = session
        self._store: SessionStore = store
        self._events: AuthEventChannel = events
        self._primary: IdentityBackend = primary
        self._fallback: Optional[IdentityBackend] = fallback
        self._jit_service: JITProvisioningService = jit_service
        self._local_users: LocalUserRepository = local_users
        self._handshake: OAuthHandshakeController = handshake
        self._exchange: TokenExchangeClient = exchange_client
        self._config: AppConfig = config
        self._logger: StructuredLogger = logger
        self._db: Optional[DatabaseManager] = db

        # Serialises every read-modify-persist of the current session.
        self._op_lock: threading.RLock = threading.RLock()
        # Backend that issued the current session; None for guest and
        # platform sessions, which have no backend record to refresh.
        self._active_backend: Optional[IdentityBackend] = None

    # ==================================================================
    # Lifecycle
    # ==================================================================

    def initialize(self) -> None:
        """Settle the startup state.

        Auto-login is disabled: a session left in the store by a previous
        run is not restored, and the state moves from ``LOADING`` to
        ``UNAUTHENTICATED``.  Called again while a session is current, it
        leaves that session in place.
        """
        try:
            self._session.mark_unauthenticated()
        except InvalidAuthTransition:
            self._logger.warning(
                "Auth already initialised with a current session; left unchanged.",
            )
            return
        self._logger.info(
            "Auth initialised; auto-login disabled.",
            extra={"event": "AUTH_INITIALIZED"},
        )

    def is_current_user_guest(self) -> bool:
        current: Optional[Session] = self._session.current_user
        return current is not None and current.is_guest

    # ==================================================================
    # Login
    # ==================================================================

    def login(self, identifier: str, password: str) -> AuthResult:
        """Authenticate with email and password.

        Phone-shaped identifiers are recognised but phone login is not
        offered; they are rejected as ``INVALID_EMAIL``.

        Parameters
        ----------
        identifier:
            The raw email entered by the user.
        password:
            The raw password entered by the user.

        Returns
        -------
        AuthResult
            ``success=True`` with the new session, or a structured error.
        """
        identifier = identifier.strip()
        if not validate_email(identifier):
            if validate_phone(identifier):
                self._logger.info(
                    "Phone-number login attempted; only email login is supported.",
                    extra={"event": "LOGIN_PHONE_REJECTED"},
                )
            return self._fail("login", AuthErrorCode.INVALID_EMAIL)

        if not validate_password_length(password):
            return self._fail("login", AuthErrorCode.INVALID_CREDENTIALS)

        email: str = identifier.lower()

        def _sign_in(backend: IdentityBackend) -> Session:
            identity = backend.authenticate(email, password)
            record: IdentityRecord = self._jit_service.ensure_identity_record(
                backend, identity.user_id, identity.email or email,
            )
            session: Session = record.to_session()
            if not session.profile_setup_completed and self._has_extended_profile(
                backend, record.id,
            ):
                session = session.model_copy(update={"profile_setup_completed": True})
            return session

        return self._run_primary(
            "login", _sign_in, unknown=AuthErrorCode.NETWORK_ERROR, audit_action="LOGIN",
        )

    def guest_login(self) -> AuthResult:
        """Start a guest session without any remote call."""
        guest_id: str = f"guest_{uuid.uuid4().hex[:8]}"
        name: str = random.choice(GUEST_NAMES)
        record: IdentityRecord = IdentityRecord.new(
            user_id=guest_id, email=GUEST_EMAIL, name=name,
        ).model_copy(update={"is_guest": True, "likes_remaining": self._config.DEFAULT_LIKES})

        try:
            self._local_users.insert(record)
        except sqlite3.Error as exc:
            self._logger.warning("Could not record guest %s locally: %s", guest_id, exc)

        session: Session = record.to_session()
        self._commit_session(session, backend=None)
        self._audit("GUEST_LOGIN", session)
        return AuthResult.ok(session)

    def platform_sign_in(self, credential: PlatformCredential) -> AuthResult:
        """Sign in with a platform credential (Sign in with Apple).

        A subject seen before is restored from its platform slot with no
        network call.  The platform only sends email and name on the very
        first sign-in, so the first session is what later sign-ins reuse.
        """
        subject: str = credential.subject.strip()
        if not subject:
            return self._fail(
                "platform_sign_in", AuthErrorCode.UNKNOWN_ERROR,
                "Platform credential has no subject",
            )

        try:
            cached: Optional[Session] = self._store.load_platform_session(subject)
        except OSError as exc:
            self._logger.warning("Platform slot for %s unreadable: %s", subject, exc)
            cached = None

        if cached is not None:
            self._commit_session(cached, backend=None)
            self._audit("PLATFORM_LOGIN", cached, cached_session=True)
            return AuthResult.ok(cached)

        email: str = credential.email or f"{subject}@{PLATFORM_RELAY_DOMAIN}"
        session = Session(
            id=subject,
            email=email,
            name=platform_display_name(credential, email),
        )

        try:
            self._store.save_platform_session(subject, session)
        except (OSError, sqlite3.Error) as exc:
            self._logger.error("Could not cache platform session %s: %s", subject, exc)

        self._commit_session(session, backend=None)
        self._audit("PLATFORM_LOGIN", session, cached_session=False)
        return AuthResult.ok(session)

    # ==================================================================
    # Registration
    # ==================================================================

    def register(self, email: str, password: str, name: str) -> AuthResult:
        """Create an account with email and password.

        A new email account is granted the trial entitlement; a failure to
        grant it is logged and does not fail the registration.
        """
        return self._register(email, password, name)

    def _register(
        self,
        email: str,
        password: str,
        name: str,
        operation: str = "register",
        supersedes: Optional[str] = None,
    ) -> AuthResult:
        email = email.strip()
        if not validate_email(email):
            return self._fail(operation, AuthErrorCode.INVALID_EMAIL)
        rejected: Optional[AuthResult] = self._check_password_and_name(
            operation, password, name,
        )
        if rejected is not None:
            return rejected

        email = email.lower()
        name = name.strip()

        def _sign_up(backend: IdentityBackend) -> Session:
            identity = backend.sign_up(email, password, {"name": name})
            record: IdentityRecord = backend.create_identity_record(
                IdentityRecord.new(user_id=identity.user_id, email=email, name=name)
            )
            try:
                backend.grant_trial_entitlement(record.id)
                record = backend.get_identity_record(record.id) or record
            except Exception as exc:
                self._logger.warning(
                    "Trial grant failed for %s; registration continues: %s",
                    record.id,
                    exc,
                )
            return record.to_session()

        return self._run_primary(
            operation, _sign_up, audit_action="REGISTER", supersedes=supersedes,
        )

    def register_with_phone(self, phone: str, password: str, name: str) -> AuthResult:
        """Create an account keyed by phone number.

        The identity record stores the placeholder email
        ``<digits>@phone.brewnet.local``.
        """
        phone = phone.strip()
        if not validate_phone(phone):
            return self._fail("register_with_phone", AuthErrorCode.INVALID_PHONE)
        rejected: Optional[AuthResult] = self._check_password_and_name(
            "register_with_phone", password, name,
        )
        if rejected is not None:
            return rejected

        name = name.strip()

        def _sign_up(backend: IdentityBackend) -> Session:
            identity = backend.sign_up(phone, password, {"name": name}, phone=True)
            record: IdentityRecord = backend.create_identity_record(
                IdentityRecord.new(
                    user_id=identity.user_id,
                    email=phone_placeholder_email(phone),
                    name=name,
                    phone_number=phone,
                )
            )
            return record.to_session()

        return self._run_primary(
            "register_with_phone", _sign_up, phone=True, audit_action="REGISTER_PHONE",
        )

    def upgrade_guest_to_regular(self, email: str, password: str, name: str) -> AuthResult:
        """Register an account in place of the current guest session."""
        current: Optional[Session] = self._session.current_user
        if current is None or not current.is_guest:
            return self._fail(
                "upgrade_guest_to_regular", AuthErrorCode.UNKNOWN_ERROR,
                "Only a guest session can be upgraded",
            )

        result: AuthResult = self._register(
            email, password, name,
            operation="upgrade_guest_to_regular", supersedes=current.id,
        )
        if result.success and result.session is not None:
            self._audit("GUEST_UPGRADE", result.session, guest_id=current.id)
        return result

    # ==================================================================
    # Logout
    # ==================================================================

    def logout(self) -> AuthResult:
        """End the session: best-effort sign-out, then purge local state."""
        with self._op_lock:
            current: Optional[Session] = self._session.current_user
            backend: IdentityBackend = self._active_backend or self._primary

        try:
            backend.sign_out()
        except Exception as exc:
            if is_network_failure(exc):
                self._logger.debug("Offline; skipping server-side sign-out: %s", exc)
            else:
                self._logger.warning("Server-side sign-out failed: %s", exc)

        with self._op_lock:
            self._session.clear()
            self._active_backend = None
            try:
                self._store.clear()
            except sqlite3.Error as exc:
                self._logger.error("Could not purge the session store: %s", exc)

        if current is not None:
            self._audit("LOGOUT", current)
        return AuthResult.ok()

    # ==================================================================
    # Refresh
    # ==================================================================

    def refresh_session(self) -> AuthResult:
        """Re-read the current identity record and replace the session.

        Lapsed entitlements are corrected on the backend first.  Failures
        are logged and the current session is kept; this operation never
        reports an error.
        """
        with self._op_lock:
            current: Optional[Session] = self._session.current_user
            backend: Optional[IdentityBackend] = self._active_backend

        if current is None or backend is None:
            return AuthResult.ok(current)

        try:
            if backend.check_and_correct_entitlement_expiry(current.id):
                self._logger.info("Pro entitlement for %s had lapsed.", current.id)
        except Exception as exc:
            self._logger.warning("Entitlement check failed for %s: %s", current.id, exc)

        try:
            record: Optional[IdentityRecord] = backend.get_identity_record(current.id)
        except Exception as exc:
            self._logger.warning("Session refresh failed for %s: %s", current.id, exc)
            return AuthResult.ok(current)

        if record is None:
            return AuthResult.ok(current)

        refreshed: Optional[Session] = self._replace_current(current.id, record.to_session())
        return AuthResult.ok(refreshed or self._session.current_user)

    def update_profile_setup_completed(self, completed: bool) -> AuthResult:
        with self._op_lock:
            current: Optional[Session] = self._session.current_user
            if current is None:
                return self._fail(
                    "update_profile_setup_completed", AuthErrorCode.UNKNOWN_ERROR,
                    "No current user",
                )
            updated: Session = current.model_copy(
                update={"profile_setup_completed": completed},
            )
            self._commit_session(updated, backend=self._active_backend)
        return AuthResult.ok(updated)

    # ==================================================================
    # Profile import
    # ==================================================================

    def start_profile_import(self, on_complete: Callable[[ImportedProfile], None]) -> None:
        """Run the OAuth handshake and hand the provider profile to
        *on_complete*.  Failures go to the event channel instead."""

        def _finished(result: HandshakeResult) -> None:
            if result.success and result.profile is not None:
                self._logger.info(
                    "Provider profile ready for review.",
                    extra={"event": "PROFILE_IMPORT_READY"},
                )
                on_complete(result.profile)
                return
            self._events.publish_failure(
                result.error_code or AuthErrorCode.UNKNOWN_ERROR,
                result.error_message,
                operation="start_profile_import",
            )

        self._handshake.begin(_finished)

    def import_profile(self, code: str) -> ImportResult:
        """Import the provider profile for the current user via the backend."""
        current: Optional[Session] = self._session.current_user
        if current is None:
            result = ImportResult(success=False, error_message="No current user")
        else:
            result = self._exchange.import_profile(code, current.id)

        if not result.success:
            self._events.publish_failure(
                AuthErrorCode.EXCHANGE_FAILED, result.error_message, operation="import_profile",
            )
        return result

    def confirm_imported_profile(
        self,
        import_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> AuthResult:
        """Accept a pending import and apply the chosen fields.

        Only non-empty fields are written.  The session is refreshed
        afterwards so it reflects the updated record.

        Fails without touching the session if the user logged out or
        switched accounts while the backend writes ran.
        """
        current: Optional[Session] = self._session.current_user
        if current is None:
            return self._fail(
                "confirm_imported_profile", AuthErrorCode.UNKNOWN_ERROR, "No current user",
            )
        backend: IdentityBackend = self._active_backend or self._primary

        fields: dict[str, Any] = {
            key: value
            for key, value in (("name", name), ("email", email), ("avatar_url", avatar_url))
            if value
        }
        try:
            backend.update_import_status(import_id, ImportStatus.CONFIRMED)
            if fields:
                backend.update_identity_record(current.id, fields)
            backend.log_import_action(import_id, "user_confirmed", {"confirmed_by": current.id})
        except Exception as exc:
            return self._fail_from("confirm_imported_profile", exc)

        with self._op_lock:
            if not self._is_current(current.id):
                return self._session_changed("confirm_imported_profile", current.id)
        self._audit("IMPORT_CONFIRMED", current, import_id=import_id, fields=",".join(sorted(fields)))
        return self.refresh_session()

    # ==================================================================
    # Internal: orchestration
    # ==================================================================

    def _run_primary(
        self,
        operation: str,
        attempt: Callable[[IdentityBackend], Session],
        unknown: AuthErrorCode = AuthErrorCode.UNKNOWN_ERROR,
        phone: bool = False,
        audit_action: str = "",
        supersedes: Optional[str] = None,
    ) -> AuthResult:
        """Run *attempt* on the primary backend, falling back when it is
        unreachable and a fallback backend is configured.

        With *supersedes*, the new session only replaces that session id;
        if it stopped being current while *attempt* ran, the result is
        discarded.
        """
        backend: IdentityBackend = self._primary
        offline: bool = False
        try:
            session: Session = attempt(backend)
        except Exception as exc:
            if self._fallback is None or not is_network_failure(exc):
                return self._fail_from(operation, exc, unknown, phone)

            self._logger.warning(
                "%s backend unreachable during %s (%s); retrying on %s backend.",
                backend.name,
                operation,
                exc,
                self._fallback.name,
                extra={"event": "IDENTITY_FALLBACK"},
            )
            backend, offline = self._fallback, True
            try:
                session = attempt(backend)
            except Exception as fallback_exc:
                return self._fail_from(operation, fallback_exc, unknown, phone)

        with self._op_lock:
            if supersedes is not None and not self._is_current(supersedes):
                return self._session_changed(operation, supersedes)
            self._commit_session(session, backend=backend)
        self._audit(audit_action or operation.upper(), session, backend=backend.name, offline=offline)
        return AuthResult.ok(session, is_offline_login=offline)

    def _commit_session(self, session: Session, backend: Optional[IdentityBackend]) -> None:
        """Persist *session* and make it current, as one unit.

        The store is a cache: a write failure is logged and the session
        still becomes current.
        """
        with self._op_lock:
            try:
                self._store.save(session)
            except (OSError, sqlite3.Error) as exc:
                self._logger.error("Could not persist session %s: %s", session.id, exc)
            self._session.set_current_user(session)
            self._active_backend = backend

    def _replace_current(self, expected_id: str, session: Session) -> Optional[Session]:
        """Replace the current session if it is still *expected_id*."""
        with self._op_lock:
            if not self._is_current(expected_id):
                self._logger.debug(
                    "Session %s changed during refresh; result discarded.", expected_id,
                )
                return None
            self._commit_session(session, backend=self._active_backend)
            return session

    def _is_current(self, session_id: str) -> bool:
        current: Optional[Session] = self._session.current_user
        return current is not None and current.id == session_id

    def _session_changed(self, operation: str, session_id: str) -> AuthResult:
        self._logger.info(
            "Session %s ended during %s; result discarded.", session_id, operation,
        )
        return self._fail(
            operation, AuthErrorCode.UNKNOWN_ERROR,
            "The session changed before the operation completed",
        )

    def _has_extended_profile(self, backend: IdentityBackend, user_id: str) -> bool:
        try:
            return backend.get_extended_profile(user_id) is not None
        except Exception as exc:
            self._logger.debug("Extended profile lookup failed for %s: %s", user_id, exc)
            return False

    def _check_password_and_name(
        self, operation: str, password: str, name: str,
    ) -> Optional[AuthResult]:
        if not validate_password_length(password):
            return self._fail(operation, AuthErrorCode.INVALID_CREDENTIALS)
        name_check = validate_name(name)
        if not name_check.is_valid:
            return self._fail(
                operation, AuthErrorCode.INVALID_CREDENTIALS, name_check.error_message,
            )
        return None

    # ==================================================================
    # Internal: failure reporting
    # ==================================================================

    def _fail(
        self,
        operation: str,
        code: AuthErrorCode,
        message: Optional[str] = None,
    ) -> AuthResult:
        result: AuthResult = AuthResult.fail(code, message)
        self._logger.warning(
            "%s failed: %s", operation, code,
            extra={"event": f"{operation.upper()}_FAILED", "error_code": str(code)},
        )
        self._events.publish_failure(code, result.error_message, operation=operation)
        return result

    def _fail_from(
        self,
        operation: str,
        exc: Exception,
        unknown: AuthErrorCode = AuthErrorCode.UNKNOWN_ERROR,
        phone: bool = False,
    ) -> AuthResult:
        code: AuthErrorCode = classify_backend_error(exc, unknown=unknown, phone=phone)
        self._logger.info("%s backend error (%s): %s", operation, type(exc).__name__, exc)
        return self._fail(operation, code)

    def _audit(self, action: str, session: Session, **details: DetailValue) -> None:
        log_audit_event(
            logger=self._logger,
            action=action,
            entity_type="Session",
            entity_id=session.id,
            user_id=session.id,
            details=details,
            conn=self._db.sqlite if self._db is not None else None,
            lock=self._db.write_lock if self._db is not None else None,
        )


def platform_display_name(credential: PlatformCredential, email: str) -> str:
    """Full name when both parts are known, else the given name, else the
    capitalised local part of *email*."""
    given: str = (credential.given_name or "").strip()
    family: str = (credential.family_name or "").strip()
    if given and family:
        return f"{given} {family}"
    if given:
        return given
    local_part: str = email.split("@")[0]
    return local_part.title() if local_part else "Apple User"
