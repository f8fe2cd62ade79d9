"""Identity boundary and the page session's identity context.

``IdentityClient`` talks to the identity API of the backend project and keeps
the backend client's bearer token in step with the signed-in user.
``SessionContext`` is the single identity value shared by every view: it is
seeded from ``get_user()`` on start and afterwards changes only through
session-change notifications.

Example:
    >>> identity = IdentityClient(client)
    >>> session = SessionContext(identity)
    >>> await session.start()
    >>> await identity.sign_in_with_password("a@example.com", "hunter22")
    >>> session.is_authenticated
    True
"""

from collections.abc import Callable
from enum import StrEnum
from typing import Any

from petshare.api import AsyncBackendClient, RemoteOperationError
from petshare.interfaces import IIdentityProvider
from petshare.logging import logger, set_log_context, user_id_var
from petshare.models import AuthSession, AuthUser

SessionCallback = Callable[[str, AuthUser | None], None]
UserListener = Callable[[AuthUser | None], None]


class AuthChangeEvent(StrEnum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"


class AuthRequiredError(Exception):
    """An action needs a signed-in identity and there is none."""

    def __init__(self, message: str = "No authenticated user found"):
        super().__init__(message)


# =============================================================================
# Identity Client
# =============================================================================


class IdentityClient:
    """Identity API client (password sign-in, sign-up, sign-out, current user).

    Session persistence, token refresh and email confirmation are handled by
    the identity service and are not modelled here.

    Args:
        client: Backend client whose bearer token follows the session
    """

    def __init__(self, client: AsyncBackendClient):
        self.client = client
        self.session: AuthSession | None = None
        self._callbacks: list[SessionCallback] = []

    # -------------------------------------------------------------------------
    # Change notifications
    # -------------------------------------------------------------------------

    def on_session_change(self, callback: SessionCallback) -> Callable[[], None]:
        """Register ``callback(event, user)`` for every later sign-in/sign-out."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _emit(self, event: AuthChangeEvent, user: AuthUser | None) -> None:
        logger.info(f"Session change: {event}")
        for callback in list(self._callbacks):
            callback(event.value, user)

    def _set_session(self, session: AuthSession | None) -> None:
        self.session = session
        self.client.set_access_token(session.access_token if session else None)

    # -------------------------------------------------------------------------
    # Identity API
    # -------------------------------------------------------------------------

    async def get_user(self) -> AuthUser | None:
        """Return the identity behind the current token, or None.

        Raises:
            RemoteOperationError: If the identity API fails for a reason other
                than a missing or rejected token
        """
        if self.session is None:
            return None

        response = await self.client.request("GET", "/auth/v1/user", operation="auth", target="auth")
        if response.error:
            if response.error.status in (401, 403):
                logger.info("Access token rejected; treating session as signed out")
                self._set_session(None)
                self._emit(AuthChangeEvent.SIGNED_OUT, None)
                return None
            raise RemoteOperationError("get user", response.error)
        return AuthUser.model_validate(response.data)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        """Sign in and emit ``SIGNED_IN``.

        Raises:
            RemoteOperationError: On invalid credentials or transport failure
        """
        response = await self.client.request(
            "POST",
            "/auth/v1/token",
            operation="auth",
            target="auth",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if response.error:
            raise RemoteOperationError("sign in", response.error)

        session = AuthSession.model_validate(response.data)
        self._set_session(session)
        self._emit(AuthChangeEvent.SIGNED_IN, session.user)
        return session

    async def sign_up(self, email: str, password: str) -> AuthUser:
        """Create an account.

        When the identity service returns a session right away (no email
        confirmation), the user is signed in and ``SIGNED_IN`` is emitted.

        Raises:
            RemoteOperationError: If the account cannot be created
        """
        response = await self.client.request(
            "POST",
            "/auth/v1/signup",
            operation="auth",
            target="auth",
            json={"email": email, "password": password},
        )
        if response.error:
            raise RemoteOperationError("sign up", response.error)

        data: dict[str, Any] = response.data or {}
        if data.get("access_token"):
            session = AuthSession.model_validate(data)
            self._set_session(session)
            self._emit(AuthChangeEvent.SIGNED_IN, session.user)
            return session.user
        return AuthUser.model_validate(data.get("user") or data)

    async def sign_out(self) -> None:
        """Sign out and emit ``SIGNED_OUT``.

        The local session is dropped even if the remote logout call fails.
        """
        if self.session is None:
            return

        response = await self.client.request("POST", "/auth/v1/logout", operation="auth", target="auth")
        if response.error:
            logger.warning(f"Remote logout failed [{response.error.code}]: {response.error.message}")

        self._set_session(None)
        self._emit(AuthChangeEvent.SIGNED_OUT, None)


# =============================================================================
# Session Context
# =============================================================================


class SessionContext:
    """Process-wide identity value for one page session.

    Args:
        identity: Identity provider to seed from and listen to
    """

    def __init__(self, identity: IIdentityProvider):
        self.identity = identity
        self.user: AuthUser | None = None
        self._listeners: list[UserListener] = []
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def is_authenticated(self) -> bool:
        """Advisory flag for gating UI affordances; remote rules decide."""
        return self.user is not None

    @property
    def user_id(self) -> str | None:
        return self.user.id if self.user else None

    async def start(self) -> None:
        """Read the current identity and follow later changes."""
        if self._unsubscribe is None:
            self._unsubscribe = self.identity.on_session_change(self._on_change)
        try:
            user = await self.identity.get_user()
        except RemoteOperationError as e:
            logger.warning(f"Could not read identity on start, continuing signed out: {e}")
            user = None
        self._update(user)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_change(self, event: str, user: AuthUser | None) -> None:
        logger.debug(f"Session context received {event}")
        self._update(user if event == AuthChangeEvent.SIGNED_IN else None)

    def _update(self, user: AuthUser | None) -> None:
        self.user = user
        if user is not None:
            set_log_context(user_id=user.id)
        else:
            user_id_var.set(None)
        for listener in list(self._listeners):
            listener(user)

    def subscribe(self, listener: UserListener) -> Callable[[], None]:
        """Follow identity changes; returns the unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def require_user(self) -> AuthUser:
        """Return the signed-in identity.

        Raises:
            AuthRequiredError: If nobody is signed in
        """
        if self.user is None:
            raise AuthRequiredError()
        return self.user

    async def current_user(self) -> AuthUser:
        """Re-read the identity from the provider, as submit handlers do.

        Raises:
            AuthRequiredError: If the provider reports no identity
        """
        user = await self.identity.get_user()
        if user is None:
            raise AuthRequiredError()
        return user


__all__ = [
    "AuthChangeEvent",
    "AuthRequiredError",
    "IdentityClient",
    "SessionContext",
    "SessionCallback",
]
