from __future__ import annotations


class JournEatzError(Exception):
    """Base error. ``status_code`` is what the API answers with."""

    status_code = 500

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__ or self.__class__.__name__)

    @property
    def message(self) -> str:
        return str(self.args[0])

    @property
    def kind(self) -> str:
        return self.__class__.__name__


class NotFound(JournEatzError):
    """Not found"""

    status_code = 404


class ValidationFailed(JournEatzError):
    """Invalid input"""

    # surfaced as a generic failure, like any other storage error
    status_code = 500

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "Invalid input")


class InvalidTransition(JournEatzError):
    """Order cannot move to that status"""

    status_code = 409


# ---- auth ----

class AuthError(JournEatzError):
    """Authentication failed"""

    status_code = 401


class InvalidCredentials(AuthError):
    """Invalid email or password"""

    status_code = 401


class RateLimited(AuthError):
    """Too many attempts, try again later"""

    status_code = 429


class AccountExists(AuthError):
    """An account with this email already exists"""

    status_code = 409


class EmailUnconfirmed(AuthError):
    """Email address has not been confirmed"""

    status_code = 403


class UnknownRole(AuthError):
    """Unknown role"""

    status_code = 403


class NotAuthenticated(AuthError):
    """Please log in"""

    status_code = 401


class Forbidden(AuthError):
    """Not allowed"""

    status_code = 403
