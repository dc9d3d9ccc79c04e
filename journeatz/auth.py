from __future__ import annotations
import logging
import secrets
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

import bcrypt
from itsdangerous import BadSignature, URLSafeTimedSerializer
from fastapi import Request, Response

from .config import (
    REQUIRE_EMAIL_CONFIRMATION,
    SECRET_KEY,
    SESSION_MAX_AGE,
    SIGNUP_RATE_LIMIT,
    SIGNUP_RATE_WINDOW,
)
from .errors import AccountExists, EmailUnconfirmed, Forbidden, InvalidCredentials, RateLimited, UnknownRole
from .models import Role, User
from .storage import Storage
from .utils import email_local_part, now_utc

log = logging.getLogger(__name__)

COOKIE_NAME = "journeatz_session"

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed hash
        return False


def set_login_cookie(response: Response, token: str, max_age: int = SESSION_MAX_AGE) -> None:
    response.set_cookie(
        COOKIE_NAME,
        token,
        httponly=True,
        samesite="lax",
        secure=False,  # set True behind HTTPS
        max_age=max_age,
    )


def clear_login_cookie(response: Response) -> None:
    response.delete_cookie(COOKIE_NAME)


def get_token_from_request(request: Request) -> Optional[str]:
    """Bearer header first, then the session cookie."""
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return request.cookies.get(COOKIE_NAME) or None


@dataclass
class ProviderUser:
    id: str
    email: str
    metadata: dict = field(default_factory=dict)


@dataclass
class ProviderSession:
    access_token: str
    user: Optional[ProviderUser] = None


AuthCallback = Callable[[str, Optional[ProviderSession]], None]


class Subscription:
    def __init__(self, listeners: list, callback: AuthCallback, lock: threading.Lock):
        self._listeners = listeners
        self._callback = callback
        self._lock = lock
        self.active = True

    def unsubscribe(self) -> None:
        with self._lock:
            if self._callback in self._listeners:
                self._listeners.remove(self._callback)
        self.active = False


class AuthProvider(ABC):
    """What the app needs from an identity provider.

    Credentials, password hashing and token issuing all live behind this
    interface; the rest of the app only ever sees sessions and events.
    """

    def __init__(self) -> None:
        self._listeners: list[AuthCallback] = []
        self._listeners_lock = threading.Lock()

    @abstractmethod
    def sign_in_with_password(self, email: str, password: str) -> ProviderSession: ...

    @abstractmethod
    def sign_up(self, email: str, password: str, metadata: dict) -> Optional[ProviderSession]:
        """Register an account. Returns a session unless the email must be confirmed first."""

    @abstractmethod
    def sign_out(self, token: Optional[str]) -> None: ...

    @abstractmethod
    def get_session(self, token: Optional[str]) -> Optional[ProviderSession]: ...

    @abstractmethod
    def refresh_session(self, token: str) -> ProviderSession: ...

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        with self._listeners_lock:
            self._listeners.append(callback)
        return Subscription(self._listeners, callback, self._listeners_lock)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def _emit(self, event: str, session: Optional[ProviderSession]) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for callback in listeners:
            callback(event, session)


class DatabaseAuthProvider(AuthProvider):
    """Provider backed by the users table: bcrypt hashes, itsdangerous tokens."""

    def __init__(
        self,
        storage: Storage,
        secret_key: str = SECRET_KEY,
        max_age: int = SESSION_MAX_AGE,
        require_confirmation: bool = REQUIRE_EMAIL_CONFIRMATION,
        signup_limit: int = SIGNUP_RATE_LIMIT,
        signup_window: int = SIGNUP_RATE_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self.storage = storage
        self.serializer = URLSafeTimedSerializer(secret_key, salt="session")
        self.max_age = max_age
        self.require_confirmation = require_confirmation
        self.signup_limit = signup_limit
        self.signup_window = signup_window
        self.clock = clock
        # token -> when it was issued (epoch seconds); dropped once past max_age
        self._revoked: dict[str, float] = {}
        self._signup_attempts: dict[str, deque] = {}
        self._lock = threading.Lock()

    # ---- tokens ----

    def _issue(self, user: User) -> ProviderSession:
        token = self.serializer.dumps({"user_id": user.id, "nonce": secrets.token_hex(8)})
        return ProviderSession(access_token=token, user=self._provider_user(user))

    def _provider_user(self, user: User) -> ProviderUser:
        metadata = {}
        if user.role:
            metadata["role"] = user.role
        if user.name:
            metadata["name"] = user.name
        return ProviderUser(id=user.id, email=user.email, metadata=metadata)

    def _user_for_token(self, token: Optional[str]) -> Optional[User]:
        if not token:
            return None
        with self._lock:
            if token in self._revoked:
                return None
        try:
            data = self.serializer.loads(token, max_age=self.max_age)
        except BadSignature:
            # also covers SignatureExpired
            return None
        if not isinstance(data, dict) or "user_id" not in data:
            return None
        return self.storage.get_user(str(data["user_id"]))

    def _revoke(self, token: str) -> None:
        try:
            _, issued = self.serializer.loads(token, max_age=self.max_age, return_timestamp=True)
        except BadSignature:
            # expired or forged tokens are already unusable
            return
        with self._lock:
            self._revoked[token] = issued.timestamp()
            self._prune_revoked(time.time())

    def _prune_revoked(self, now: float) -> None:
        # caller holds self._lock
        cutoff = now - self.max_age
        for token in [t for t, issued in self._revoked.items() if issued < cutoff]:
            del self._revoked[token]

    # ---- provider contract ----

    def sign_in_with_password(self, email: str, password: str) -> ProviderSession:
        user = self.storage.get_user_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            log.info("failed sign-in for %s", email)
            raise InvalidCredentials()
        if self.require_confirmation and user.email_confirmed_at is None:
            raise EmailUnconfirmed()
        session = self._issue(user)
        log.info("user %s signed in", user.email)
        self._emit(SIGNED_IN, session)
        return session

    def _check_signup_rate(self, email: str) -> None:
        now = self.clock()
        with self._lock:
            for key in list(self._signup_attempts):
                attempts = self._signup_attempts[key]
                while attempts and now - attempts[0] >= self.signup_window:
                    attempts.popleft()
                if not attempts:
                    del self._signup_attempts[key]
            attempts = self._signup_attempts.setdefault(email, deque())
            if len(attempts) >= self.signup_limit:
                raise RateLimited()
            attempts.append(now)

    def sign_up(self, email: str, password: str, metadata: dict) -> Optional[ProviderSession]:
        email = email.strip().lower()
        self._check_signup_rate(email)
        try:
            role = Role(metadata.get("role") or Role.customer.value)
        except ValueError:
            raise UnknownRole(f"Unknown role {metadata.get('role')!r}") from None
        if role is Role.admin:
            raise Forbidden("Admin accounts are created by an administrator")
        if self.storage.get_user_by_email(email):
            raise AccountExists()

        user = self.storage.create_user({
            "email": email,
            "password_hash": hash_password(password),
            "role": role,
            "name": metadata.get("name") or email_local_part(email),
            "email_confirmed_at": None if self.require_confirmation else now_utc(),
        }, with_profile=True)
        log.info("user %s signed up as %s", user.email, role.value)

        if self.require_confirmation:
            return None
        session = self._issue(user)
        self._emit(SIGNED_IN, session)
        return session

    def confirm_email(self, user_id: str) -> None:
        self.storage.confirm_user_email(user_id)

    def sign_out(self, token: Optional[str]) -> None:
        """Revoke ``token``. Listeners get SIGNED_OUT carrying the revoked token."""
        if not token:
            return
        user = self._user_for_token(token)
        self._revoke(token)
        if user:
            log.info("user %s signed out", user.email)
        self._emit(SIGNED_OUT, ProviderSession(access_token=token, user=self._provider_user(user) if user else None))

    def get_session(self, token: Optional[str]) -> Optional[ProviderSession]:
        user = self._user_for_token(token)
        if not user:
            return None
        return ProviderSession(access_token=token, user=self._provider_user(user))

    def refresh_session(self, token: str) -> ProviderSession:
        user = self._user_for_token(token)
        if not user:
            raise InvalidCredentials("Session expired, please log in again")
        self._revoke(token)
        session = self._issue(user)
        self._emit(TOKEN_REFRESHED, session)
        return session
