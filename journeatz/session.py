from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from typing import Optional

from .auth import SIGNED_IN, SIGNED_OUT, TOKEN_REFRESHED, AuthProvider, ProviderSession, Subscription
from .errors import AuthError, JournEatzError, UnknownRole
from .models import Role
from .utils import email_local_part

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    role: Role
    name: str

    def as_dict(self) -> dict:
        return {"id": self.id, "email": self.email, "role": self.role.value, "name": self.name}


def parse_role(value: Optional[str]) -> Role:
    """Missing role means customer; a role we don't know is an error."""
    if not value:
        return Role.customer
    try:
        return Role(value)
    except ValueError:
        raise UnknownRole(f"Unknown role {value!r}") from None


class AuthSession:
    """Authentication state for one client.

    Wraps an :class:`AuthProvider` and keeps ``is_authenticated``, ``user``
    and ``user_role`` in step with it. ``start()`` subscribes to provider
    events and runs the first ``check_auth()``; ``close()`` drops the
    subscription. Also usable as a context manager.
    """

    def __init__(self, provider: AuthProvider, access_token: Optional[str] = None):
        self.provider = provider
        self.access_token = access_token
        self.is_authenticated = False
        self.is_loading = True
        self.user: Optional[CurrentUser] = None
        self.user_role: Optional[Role] = None
        self.error: Optional[JournEatzError] = None
        self._subscription: Optional[Subscription] = None
        # provider events arrive on whichever thread emitted them
        self._state_lock = threading.RLock()

    # ---- lifecycle ----

    def start(self) -> "AuthSession":
        if self._subscription is None:
            self._subscription = self.provider.on_auth_state_change(self._on_auth_event)
        self.check_auth()
        return self

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def __enter__(self) -> "AuthSession":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.close()

    def _concerns(self, session: Optional[ProviderSession]) -> bool:
        if session is None:
            return False
        if self.access_token and session.access_token == self.access_token:
            return True
        return self.user is not None and session.user is not None and session.user.id == self.user.id

    def _on_auth_event(self, event: str, session: Optional[ProviderSession]) -> None:
        if event == SIGNED_OUT:
            if session is None or session.access_token == self.access_token:
                with self._state_lock:
                    self._clear()
        elif event in (SIGNED_IN, TOKEN_REFRESHED) and self._concerns(session):
            self.check_auth()

    # ---- state ----

    def _clear(self) -> None:
        self.is_authenticated = False
        self.user = None
        self.user_role = None

    def check_auth(self) -> bool:
        """Re-derive state from the provider's session for our token."""
        with self._state_lock:
            return self._check_auth()

    def _check_auth(self) -> bool:
        self.is_loading = True
        try:
            session = self.provider.get_session(self.access_token)
            if session is None or session.user is None:
                self._clear()
                self.error = None
                return False
            meta = session.user.metadata or {}
            try:
                role = parse_role(meta.get("role"))
            except UnknownRole as e:
                log.warning("session for %s carries %s", session.user.email, e.message)
                self._clear()
                self.error = e
                return False
            self.user = CurrentUser(
                id=session.user.id,
                email=session.user.email,
                role=role,
                name=meta.get("name") or email_local_part(session.user.email),
            )
            self.user_role = role
            self.is_authenticated = True
            self.error = None
            return True
        finally:
            self.is_loading = False

    # ---- actions ----

    def login(self, email: str, password: str) -> CurrentUser:
        try:
            session = self.provider.sign_in_with_password(email.strip().lower(), password)
        except AuthError as e:
            self.error = e
            raise
        self.access_token = session.access_token
        self.check_auth()
        if self.user is None:
            raise self.error or UnknownRole()
        return self.user

    def signup(self, email: str, password: str, role: str) -> Optional[CurrentUser]:
        """Register and, when the provider hands back a session, sign in.

        Returns None when the account still needs its email confirmed.
        """
        parsed = parse_role(role)
        try:
            session = self.provider.sign_up(
                email.strip().lower(),
                password,
                {"role": parsed.value, "name": email_local_part(email.strip())},
            )
        except AuthError as e:
            self.error = e
            raise
        if session is None:
            return None
        self.access_token = session.access_token
        self.check_auth()
        return self.user

    def refresh(self) -> None:
        if not self.access_token:
            return
        session = self.provider.refresh_session(self.access_token)
        self.access_token = session.access_token
        self.check_auth()

    def logout(self) -> None:
        token = self.access_token
        try:
            self.provider.sign_out(token)
        except JournEatzError:
            log.exception("sign-out failed")
            raise
        finally:
            self.access_token = None
            self._clear()
