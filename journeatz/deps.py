from __future__ import annotations
from typing import Iterator

from fastapi import Depends, Request

from .access import Actor, resolve_actor
from .auth import AuthProvider, get_token_from_request
from .session import AuthSession
from .storage import Storage


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_auth_provider(request: Request) -> AuthProvider:
    return request.app.state.auth_provider


def get_auth_session(request: Request) -> Iterator[AuthSession]:
    # one session object per request, released when the request ends
    auth = AuthSession(get_auth_provider(request), get_token_from_request(request))
    with auth:
        yield auth


def get_actor(
    auth: AuthSession = Depends(get_auth_session),
    storage: Storage = Depends(get_storage),
) -> Actor:
    return resolve_actor(auth, storage)
