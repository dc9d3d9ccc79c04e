from __future__ import annotations
from typing import Any

from fastapi import APIRouter, Body, Depends, Response

from .access import (
    Actor,
    action_for_status,
    can_manage_kitchen,
    can_update_order,
    can_view_order,
    require_role,
    visible_orders,
)
from .auth import clear_login_cookie, set_login_cookie
from .deps import get_actor, get_auth_session, get_storage
from .errors import Forbidden, NotFound
from .models import (
    ApiModel,
    CustomerPublic,
    DriverPublic,
    KitchenPublic,
    MenuItem,
    MenuItemPublic,
    OrderPublic,
    Role,
    UserPublic,
)
from .session import AuthSession
from .storage import Storage, snake_keys
from .utils import now_utc


router = APIRouter(prefix="/api")


class Credentials(ApiModel):
    email: str
    password: str


class SignupRequest(Credentials):
    role: str = Role.customer.value


class KitchenPatch(ApiModel):
    is_open: bool


# ---- health ----

@router.get("/health")
def health():
    return {"status": "ok", "timestamp": now_utc().isoformat() + "Z"}


# ---- auth ----

def _session_body(auth: AuthSession) -> dict:
    return {
        "is_authenticated": auth.is_authenticated,
        "role": auth.user_role.value if auth.user_role else None,
        "user": auth.user.as_dict() if auth.user else None,
    }


@router.post("/auth/signup", status_code=201)
def signup(payload: SignupRequest, response: Response, auth: AuthSession = Depends(get_auth_session)):
    user = auth.signup(payload.email, payload.password, payload.role)
    if user is not None and auth.access_token:
        set_login_cookie(response, auth.access_token)
    body = _session_body(auth)
    body["confirmation_required"] = user is None
    return body


@router.post("/auth/login")
def login(payload: Credentials, response: Response, auth: AuthSession = Depends(get_auth_session)):
    auth.login(payload.email, payload.password)
    set_login_cookie(response, auth.access_token)
    body = _session_body(auth)
    body["access_token"] = auth.access_token
    return body


@router.post("/auth/logout")
def logout(response: Response, auth: AuthSession = Depends(get_auth_session)):
    try:
        auth.logout()
    finally:
        clear_login_cookie(response)
    return {"ok": True}


@router.get("/auth/session")
def current_session(auth: AuthSession = Depends(get_auth_session)):
    return _session_body(auth)


# ---- users ----

@router.get("/users", response_model=list[UserPublic])
def list_users(actor: Actor = Depends(get_actor), storage: Storage = Depends(get_storage)):
    require_role(actor, Role.admin)
    return storage.list_users()


@router.get("/users/{user_id}", response_model=UserPublic)
def get_user(user_id: str, actor: Actor = Depends(get_actor), storage: Storage = Depends(get_storage)):
    if actor.role is not Role.admin and actor.user.id != user_id:
        raise Forbidden()
    user = storage.get_user(user_id)
    if not user:
        raise NotFound("User not found")
    return user


@router.patch("/users/{user_id}", response_model=UserPublic)
def update_user(
    user_id: str,
    patch: dict[str, Any] = Body(...),
    actor: Actor = Depends(get_actor),
    storage: Storage = Depends(get_storage),
):
    require_role(actor, Role.admin)
    if user_id == actor.user.id and "role" in snake_keys(patch):
        raise Forbidden("Cannot change your own role")
    return storage.update_user(user_id, patch)


@router.delete("/users/{user_id}")
def delete_user(user_id: str, actor: Actor = Depends(get_actor), storage: Storage = Depends(get_storage)):
    require_role(actor, Role.admin)
    if user_id == actor.user.id:
        raise Forbidden("Cannot delete yourself")
    storage.delete_user(user_id)
    return {"ok": True}


# ---- orders ----

@router.get("/orders", response_model=list[OrderPublic])
def list_orders(actor: Actor = Depends(get_actor), storage: Storage = Depends(get_storage)):
    return visible_orders(actor, storage)


@router.get("/orders/{order_id}", response_model=OrderPublic)
def get_order(order_id: str, actor: Actor = Depends(get_actor), storage: Storage = Depends(get_storage)):
    order = storage.get_order(order_id)
    if not order:
        raise NotFound("Order not found")
    if not can_view_order(actor, order):
        raise Forbidden()
    return order


@router.post("/orders", status_code=201, response_model=OrderPublic)
def create_order(
    payload: dict[str, Any] = Body(...),
    actor: Actor = Depends(get_actor),
    storage: Storage = Depends(get_storage),
):
    require_role(actor, Role.customer, Role.admin)
    data = snake_keys(payload)
    if actor.role is Role.customer:
        if actor.profile_id is None:
            raise Forbidden("No customer profile for this account")
        data.setdefault("customer_id", actor.profile_id)
        if data["customer_id"] != actor.profile_id:
            raise Forbidden("Customers can only order for themselves")
    return storage.create_order(data)


@router.patch("/orders/{order_id}", response_model=OrderPublic)
def update_order(
    order_id: str,
    patch: dict[str, Any] = Body(...),
    actor: Actor = Depends(get_actor),
    storage: Storage = Depends(get_storage),
):
    """Admins may patch any field. Kitchens and drivers may only move the
    status along the transitions their role allows; a driver may also
    name themselves as the driver."""
    require_role(actor, Role.admin, Role.kitchen, Role.driver)
    order = storage.get_order(order_id)
    if not order:
        raise NotFound("Order not found")
    if not can_update_order(actor, order):
        raise Forbidden()
    if actor.role is Role.admin:
        return storage.update_order(order_id, patch)

    data = snake_keys(patch)
    allowed = {"status", "driver_id"} if actor.role is Role.driver else {"status"}
    if "status" not in data or set(data) - allowed:
        raise Forbidden(f"A {actor.role.value} can only change an order's status")
    if data.get("driver_id", actor.profile_id) != actor.profile_id:
        raise Forbidden("Drivers can only assign themselves")
    action = action_for_status(actor, order, data["status"])
    driver_id = actor.profile_id if actor.role is Role.driver else None
    return storage.transition_order(order_id, action, driver_id=driver_id)


# ---- kitchens & menus ----

@router.get("/kitchens", response_model=list[KitchenPublic])
def list_kitchens(actor: Actor = Depends(get_actor), storage: Storage = Depends(get_storage)):
    return storage.list_kitchens()


@router.patch("/kitchens/{kitchen_id}", response_model=KitchenPublic)
def update_kitchen(
    kitchen_id: str,
    payload: KitchenPatch,
    actor: Actor = Depends(get_actor),
    storage: Storage = Depends(get_storage),
):
    if not can_manage_kitchen(actor, kitchen_id):
        raise Forbidden()
    return storage.set_kitchen_open(kitchen_id, payload.is_open)


@router.get("/kitchens/{kitchen_id}/menu", response_model=list[MenuItemPublic])
def kitchen_menu(kitchen_id: str, actor: Actor = Depends(get_actor), storage: Storage = Depends(get_storage)):
    return storage.get_kitchen_menu(kitchen_id)


@router.post("/kitchens/{kitchen_id}/menu", status_code=201, response_model=MenuItemPublic)
def add_menu_item(
    kitchen_id: str,
    payload: dict[str, Any] = Body(...),
    actor: Actor = Depends(get_actor),
    storage: Storage = Depends(get_storage),
):
    if not can_manage_kitchen(actor, kitchen_id):
        raise Forbidden()
    data = snake_keys(payload)
    data["kitchen_id"] = kitchen_id
    return storage.create_menu_item(data)


def _kitchen_item(storage: Storage, kitchen_id: str, item_id: str) -> MenuItem:
    item = storage.get_menu_item(item_id)
    if not item or item.kitchen_id != kitchen_id:
        raise NotFound("Menu item not found")
    return item


@router.patch("/kitchens/{kitchen_id}/menu/{item_id}", response_model=MenuItemPublic)
def update_menu_item(
    kitchen_id: str,
    item_id: str,
    payload: dict[str, Any] = Body(...),
    actor: Actor = Depends(get_actor),
    storage: Storage = Depends(get_storage),
):
    if not can_manage_kitchen(actor, kitchen_id):
        raise Forbidden()
    _kitchen_item(storage, kitchen_id, item_id)
    return storage.update_menu_item(item_id, payload)


@router.delete("/kitchens/{kitchen_id}/menu/{item_id}")
def delete_menu_item(
    kitchen_id: str,
    item_id: str,
    actor: Actor = Depends(get_actor),
    storage: Storage = Depends(get_storage),
):
    if not can_manage_kitchen(actor, kitchen_id):
        raise Forbidden()
    _kitchen_item(storage, kitchen_id, item_id)
    storage.delete_menu_item(item_id)
    return {"ok": True}


# ---- admin listings ----

@router.get("/drivers", response_model=list[DriverPublic])
def list_drivers(actor: Actor = Depends(get_actor), storage: Storage = Depends(get_storage)):
    require_role(actor, Role.admin)
    return storage.list_drivers()


@router.get("/customers", response_model=list[CustomerPublic])
def list_customers(actor: Actor = Depends(get_actor), storage: Storage = Depends(get_storage)):
    require_role(actor, Role.admin)
    return storage.list_customers()
