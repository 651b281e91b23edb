"""
Token Exchange Client.

Turns an OAuth authorization code into a provider profile.  The client
secret never ships with the app: the backend's exchange function swaps
the code for a token and, normally, fetches the profile itself.

Exchange outcomes
-----------------
1. ``{"profile": {...}}``: the backend did all the work.
2. ``{"access_token": "..."}``: the backend only exchanged the code;
   the profile and email endpoints are queried here with the token as
   a bearer credential, sequentially, and both must succeed.

Every failure is reported as an ``ExchangeResult`` with
``AuthErrorCode.EXCHANGE_FAILED``; nothing is raised to the caller and
no partial profile is ever returned.
"""

from __future__ import annotations

from typing import Any, Optional

import requests

from brewnet.config import AppConfig
from brewnet.logger import StructuredLogger
from brewnet.models.oauth_models import ExchangeResult, ImportedProfile, ImportResult
from brewnet.services.base_service import BaseService


class _ExchangeFailure(Exception):
    """Internal short-circuit carrying the user-facing failure reason."""


def backend_error_message(payload: Any, status_code: int) -> str:
    """Build the failure reason for a non-200 exchange response.

    ``error`` wins, extended with ``: detail`` and a blank-line-separated
    ``hint`` when present.  A lone ``detail`` is used as-is.  Anything
    else falls back to the status code.
    """
    if isinstance(payload, dict):
        error = payload.get("error")
        detail = payload.get("detail")
        if isinstance(error, str):
            message: str = error
            if isinstance(detail, str):
                message += f": {detail}"
            hint = payload.get("hint")
            if isinstance(hint, str):
                message += f"\n\n{hint}"
            return message
        if isinstance(detail, str):
            return detail
    return f"Backend returned status {status_code}"


def normalize_picture_url(profile: ImportedProfile) -> ImportedProfile:
    """Copy of *profile* with ``pictureUrl`` set from the display image.

    The provider nests image renditions under
    ``profilePicture["displayImage~"]["elements"]``, smallest first; the
    last rendition's first identifier is the largest image.  Profiles
    without that structure are returned unchanged.
    """
    if profile.get("pictureUrl"):
        return profile
    try:
        elements = profile["profilePicture"]["displayImage~"]["elements"]
        url = elements[-1]["identifiers"][0]["identifier"]
    except (KeyError, IndexError, TypeError):
        return profile
    if not isinstance(url, str):
        return profile
    return {**profile, "pictureUrl": url}


class TokenExchangeClient(BaseService):
    """HTTP client for the backend exchange and import functions.

    Parameters
    ----------
    config:
        Supplies endpoint URLs, the OAuth redirect URI and timeouts.
    logger:
        Structured logger.
    session:
        ``requests.Session`` to send through; a fresh one by default.
    """

    def __init__(
        self,
        config: AppConfig,
        logger: StructuredLogger,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(logger)
        self._config: AppConfig = config
        self._http: requests.Session = session or requests.Session()

    # ------------------------------------------------------------------
    # Code exchange
    # ------------------------------------------------------------------

    def exchange_code(self, code: str) -> ExchangeResult:
        """Exchange *code* for the provider profile.

        Returns
        -------
        ExchangeResult
            ``success=True`` with the profile (``email`` merged and
            ``pictureUrl`` normalised), or ``exchange_failed`` with the
            reason.
        """
        try:
            payload: dict[str, Any] = self._post_exchange(code)

            profile = payload.get("profile")
            if isinstance(profile, dict):
                self._logger.info(
                    "Provider profile received from backend.",
                    extra={"event": "OAUTH_PROFILE_FROM_BACKEND"},
                )
                return ExchangeResult.ok(normalize_picture_url(profile))

            access_token = payload.get("access_token")
            if isinstance(access_token, str) and access_token:
                profile = self._fetch_profile(access_token)
                profile["email"] = self._fetch_email(access_token)
                self._logger.info(
                    "Provider profile assembled from token.",
                    extra={"event": "OAUTH_PROFILE_FROM_TOKEN"},
                )
                return ExchangeResult.ok(normalize_picture_url(profile))

            raise _ExchangeFailure("Unexpected response format from backend")

        except _ExchangeFailure as exc:
            reason: str = str(exc)
            self._logger.warning(
                "Token exchange failed: %s", reason,
                extra={"event": "OAUTH_EXCHANGE_FAILED"},
            )
            return ExchangeResult.fail(reason)

    def _post_exchange(self, code: str) -> dict[str, Any]:
        try:
            response = self._http.post(
                self._config.token_exchange_url,
                json={"code": code, "redirect_uri": self._config.OAUTH_REDIRECT_URI},
                timeout=self._config.http_timeout,
            )
        except requests.RequestException as exc:
            raise _ExchangeFailure(f"Backend exchange failed: {exc}") from exc

        if response.status_code != 200:
            try:
                error_payload: Any = response.json()
            except ValueError:
                error_payload = None
            raise _ExchangeFailure(
                backend_error_message(error_payload, response.status_code)
            )

        if not response.content:
            raise _ExchangeFailure("No data received from backend")
        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise _ExchangeFailure("Failed to parse backend response") from exc
        if not isinstance(payload, dict):
            raise _ExchangeFailure("Failed to parse backend response")
        return payload

    def _fetch_profile(self, access_token: str) -> dict[str, Any]:
        data = self._bearer_get(
            self._config.OAUTH_PROFILE_ENDPOINT, access_token, "profile",
        )
        if not isinstance(data, dict):
            raise _ExchangeFailure("Failed to parse provider profile")
        return dict(data)

    def _fetch_email(self, access_token: str) -> str:
        data = self._bearer_get(
            self._config.OAUTH_EMAIL_ENDPOINT, access_token, "email",
        )
        try:
            email = data["elements"][0]["handle~"]["emailAddress"]
        except (KeyError, IndexError, TypeError) as exc:
            raise _ExchangeFailure("Failed to parse provider email") from exc
        if not isinstance(email, str):
            raise _ExchangeFailure("Failed to parse provider email")
        return email

    def _bearer_get(self, url: str, access_token: str, what: str) -> Any:
        try:
            response = self._http.get(
                url,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self._config.http_timeout,
            )
        except requests.RequestException as exc:
            raise _ExchangeFailure(f"Failed to fetch provider {what}: {exc}") from exc

        if response.status_code != 200:
            raise _ExchangeFailure(
                f"Provider {what} request returned status {response.status_code}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise _ExchangeFailure(f"Failed to parse provider {what}") from exc

    # ------------------------------------------------------------------
    # Profile import
    # ------------------------------------------------------------------

    def import_profile(self, code: str, user_id: str) -> ImportResult:
        """Ask the backend to import the provider profile for *user_id*.

        The backend stores it as a pending import; the returned
        ``import_id`` is what ``AuthService.confirm_imported_profile``
        later confirms.
        """
        try:
            response = self._http.post(
                self._config.profile_import_url,
                json={
                    "code": code,
                    "user_id": user_id,
                    "redirect_uri": self._config.OAUTH_REDIRECT_URI,
                },
                timeout=self._config.http_timeout,
            )
        except requests.RequestException as exc:
            self._logger.warning("Profile import request failed: %s", exc)
            return ImportResult(success=False, error_message=f"Network error: {exc}")

        try:
            payload: Any = response.json()
        except ValueError:
            payload = None

        if response.status_code != 200:
            message: str = f"Backend error: {response.status_code}"
            if isinstance(payload, dict) and isinstance(payload.get("error"), str):
                message = payload["error"]
                if isinstance(payload.get("detail"), str):
                    message += f": {payload['detail']}"
            self._logger.warning(
                "Profile import rejected for %s: %s", user_id, message,
                extra={"event": "PROFILE_IMPORT_FAILED", "user_id": user_id},
            )
            return ImportResult(success=False, error_message=message)

        if (
            not isinstance(payload, dict)
            or payload.get("success") is not True
            or not isinstance(payload.get("profile"), dict)
        ):
            return ImportResult(success=False, error_message="Invalid response format")

        import_id = payload.get("import_id")
        self._logger.info(
            "Profile imported for %s (import %s).", user_id, import_id,
            extra={"event": "PROFILE_IMPORTED", "user_id": user_id},
        )
        return ImportResult(
            success=True,
            profile=normalize_picture_url(payload["profile"]),
            import_id=str(import_id) if import_id is not None else None,
        )
