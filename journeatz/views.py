from __future__ import annotations
import logging
from pathlib import Path
from urllib.parse import quote_plus

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from .access import ROLE_ACTIONS, Actor, can_update_order, can_view_order, resolve_actor, visible_orders
from .auth import clear_login_cookie, set_login_cookie
from .config import APP_NAME
from .deps import get_auth_session, get_storage
from .errors import JournEatzError
from .models import MenuItemStatus, OrderStatus, Role
from .session import AuthSession
from .storage import Storage
from .utils import fmt_dt, money

log = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.globals.update(app_name=APP_NAME, fmt_dt=fmt_dt, money=money)

router = APIRouter()

DASHBOARD_TEMPLATES = {
    Role.admin: "dashboard_admin.html",
    Role.kitchen: "dashboard_kitchen.html",
    Role.driver: "dashboard_driver.html",
    Role.customer: "dashboard_customer.html",
}


def flash(request: Request) -> dict | None:
    # simple flash via query params ?ok=... or ?err=...
    if request.query_params.get("ok"):
        return {"kind": "ok", "message": request.query_params["ok"]}
    if request.query_params.get("err"):
        return {"kind": "error", "message": request.query_params["err"]}
    return None


def redirect(path: str, ok: str | None = None, err: str | None = None) -> RedirectResponse:
    if ok:
        path = f"{path}?ok={quote_plus(ok)}"
    elif err:
        path = f"{path}?err={quote_plus(err)}"
    return RedirectResponse(path, status_code=302)


def parse_price(text: str) -> int:
    """'12.99' -> 1299 cents."""
    value = round(float(text.strip().lstrip("$")) * 100)
    if value < 0:
        raise ValueError("price must not be negative")
    return value


@router.get("/", response_class=HTMLResponse)
def home(request: Request, auth: AuthSession = Depends(get_auth_session)):
    return templates.TemplateResponse(request, "home.html", {
        "current_user": auth.user,
        "flash": flash(request),
    })


@router.get("/auth", response_class=HTMLResponse)
def auth_page(request: Request, auth: AuthSession = Depends(get_auth_session)):
    if auth.is_authenticated:
        return redirect("/dashboard")
    return templates.TemplateResponse(request, "auth.html", {
        "current_user": None,
        "roles": [r.value for r in Role if r is not Role.admin],
        "flash": flash(request),
    })


@router.post("/login")
def login(
    email: str = Form(...),
    password: str = Form(...),
    auth: AuthSession = Depends(get_auth_session),
):
    try:
        auth.login(email, password)
    except JournEatzError as e:
        return redirect("/auth", err=e.message)
    response = redirect("/dashboard")
    set_login_cookie(response, auth.access_token)
    return response


@router.post("/signup")
def signup(
    email: str = Form(...),
    password: str = Form(...),
    role: str = Form(Role.customer.value),
    auth: AuthSession = Depends(get_auth_session),
):
    if len(password) < 8:
        return redirect("/auth", err="Password must be at least 8 characters")
    try:
        user = auth.signup(email, password, role)
    except JournEatzError as e:
        return redirect("/auth", err=e.message)
    if user is None:
        return redirect("/auth", ok="Check your inbox to confirm your email, then log in")
    response = redirect("/dashboard", ok="Welcome!")
    set_login_cookie(response, auth.access_token)
    return response


@router.get("/logout")
def logout(auth: AuthSession = Depends(get_auth_session)):
    response = redirect("/auth", ok="Logged out")
    try:
        auth.logout()
    except JournEatzError as e:
        response = redirect("/auth", err=e.message)
    clear_login_cookie(response)
    return response


# ---- dashboards ----

def _dashboard_context(actor: Actor, storage: Storage) -> dict:
    orders = visible_orders(actor, storage)
    ctx: dict = {"orders": orders, "actions": ROLE_ACTIONS[actor.role]}
    if actor.role is Role.admin:
        users = storage.list_users()
        ctx.update(
            users=users,
            roles=[r.value for r in Role],
            stats={
                "users": len(users),
                "kitchens": len(storage.list_kitchens()),
                "drivers": len(storage.list_drivers()),
                "orders": len(orders),
                "revenue": sum(o.total_amount for o in orders if o.status == OrderStatus.delivered),
            },
        )
    elif actor.role is Role.kitchen:
        kitchen = storage.get_kitchen(actor.profile_id) if actor.profile_id else None
        ctx.update(kitchen=kitchen, menu=storage.get_kitchen_menu(kitchen.id) if kitchen else [])
    elif actor.role is Role.driver:
        customers = {c.id: c for c in storage.list_customers()}
        ctx.update(
            driver=storage.get_driver(actor.profile_id) if actor.profile_id else None,
            phones={
                o.id: customers[o.customer_id].phone_number
                for o in orders
                if o.customer_id in customers and customers[o.customer_id].phone_number
            },
        )
    else:
        kitchens = [k for k in storage.list_kitchens() if k.is_open]
        ctx.update(
            customer=storage.get_customer(actor.profile_id) if actor.profile_id else None,
            kitchens=kitchens,
            menus={k.id: storage.get_kitchen_menu(k.id) for k in kitchens},
            current=[o for o in orders if o.status not in (OrderStatus.delivered, OrderStatus.cancelled)],
            history=[o for o in orders if o.status in (OrderStatus.delivered, OrderStatus.cancelled)],
        )
    return ctx


@router.get("/dashboard", response_class=HTMLResponse)
def dashboard(
    request: Request,
    auth: AuthSession = Depends(get_auth_session),
    storage: Storage = Depends(get_storage),
):
    if auth.error is not None and not auth.is_authenticated:
        # e.g. an account whose role we don't recognise
        return templates.TemplateResponse(request, "error.html", {
            "current_user": None,
            "message": auth.error.message,
            "flash": None,
        }, status_code=auth.error.status_code)
    if not auth.is_authenticated:
        return redirect("/auth", err="Please log in")

    actor = resolve_actor(auth, storage)
    ctx = _dashboard_context(actor, storage)
    ctx.update(current_user=actor.user, actor=actor, flash=flash(request))
    return templates.TemplateResponse(request, DASHBOARD_TEMPLATES[actor.role], ctx)


def _actor_or_redirect(auth: AuthSession, storage: Storage):
    if not auth.is_authenticated:
        return None, redirect("/auth", err="Please log in")
    return resolve_actor(auth, storage), None


@router.post("/dashboard/orders/{order_id}/{action}")
def order_action(
    order_id: str,
    action: str,
    auth: AuthSession = Depends(get_auth_session),
    storage: Storage = Depends(get_storage),
):
    actor, response = _actor_or_redirect(auth, storage)
    if response:
        return response

    if action == "reorder":
        return _reorder(actor, storage, order_id)

    order = storage.get_order(order_id)
    if not order or not can_view_order(actor, order):
        return redirect("/dashboard", err="Order not found")
    if action not in ROLE_ACTIONS[actor.role]:
        return redirect("/dashboard", err="Not allowed")
    if actor.role is not Role.customer and not can_update_order(actor, order):
        return redirect("/dashboard", err="Not allowed")

    driver_id = actor.profile_id if actor.role is Role.driver else None
    try:
        storage.transition_order(order_id, action, driver_id=driver_id)
    except JournEatzError as e:
        log.info("%s by %s refused: %s", action, actor.user.email, e.message)
        return redirect("/dashboard", err=e.message)
    return redirect("/dashboard", ok="Order updated")


def _reorder(actor: Actor, storage: Storage, order_id: str):
    if actor.role is not Role.customer:
        return redirect("/dashboard", err="Only customers can reorder")
    order = storage.get_order(order_id)
    if not order or order.customer_id != actor.profile_id:
        return redirect("/dashboard", err="Order not found")
    try:
        storage.create_order({
            "customer_id": order.customer_id,
            "kitchen_id": order.kitchen_id,
            "items": order.items,
            "total_amount": order.total_amount,
            "delivery_address": order.delivery_address,
        })
    except JournEatzError as e:
        return redirect("/dashboard", err=e.message)
    return redirect("/dashboard", ok="Order placed again")


@router.post("/dashboard/orders")
def place_order(
    menu_item_id: str = Form(...),
    quantity: int = Form(1),
    delivery_address: str = Form(...),
    auth: AuthSession = Depends(get_auth_session),
    storage: Storage = Depends(get_storage),
):
    actor, response = _actor_or_redirect(auth, storage)
    if response:
        return response
    if actor.role is not Role.customer or actor.profile_id is None:
        return redirect("/dashboard", err="Only customers can place orders")

    item = storage.get_menu_item(menu_item_id)
    if not item or item.status != MenuItemStatus.available:
        return redirect("/dashboard", err="That item is not available")
    quantity = max(1, int(quantity))
    try:
        storage.create_order({
            "customer_id": actor.profile_id,
            "kitchen_id": item.kitchen_id,
            "items": [{"name": item.name, "quantity": quantity, "unit_price": item.price, "menu_item_id": item.id}],
            "total_amount": item.price * quantity,
            "delivery_address": delivery_address.strip(),
        })
    except JournEatzError as e:
        return redirect("/dashboard", err=e.message)
    return redirect("/dashboard", ok="Order placed")


@router.post("/dashboard/kitchen/toggle")
def toggle_kitchen(auth: AuthSession = Depends(get_auth_session), storage: Storage = Depends(get_storage)):
    actor, response = _actor_or_redirect(auth, storage)
    if response:
        return response
    if actor.role is not Role.kitchen or actor.profile_id is None:
        return redirect("/dashboard", err="Not allowed")
    kitchen = storage.get_kitchen(actor.profile_id)
    kitchen = storage.set_kitchen_open(kitchen.id, not kitchen.is_open)
    return redirect("/dashboard", ok="Kitchen is now " + ("open" if kitchen.is_open else "closed"))


@router.post("/dashboard/kitchen/menu")
def add_menu_item(
    name: str = Form(...),
    price: str = Form(...),
    category: str = Form(""),
    description: str = Form(""),
    auth: AuthSession = Depends(get_auth_session),
    storage: Storage = Depends(get_storage),
):
    actor, response = _actor_or_redirect(auth, storage)
    if response:
        return response
    if actor.role is not Role.kitchen or actor.profile_id is None:
        return redirect("/dashboard", err="Not allowed")
    try:
        cents = parse_price(price)
    except ValueError:
        return redirect("/dashboard", err="Price must be a number (e.g., 12.99)")
    try:
        storage.create_menu_item({
            "kitchen_id": actor.profile_id,
            "name": name.strip(),
            "price": cents,
            "category": category.strip() or None,
            "description": description.strip() or None,
        })
    except JournEatzError as e:
        return redirect("/dashboard", err=e.message)
    return redirect("/dashboard", ok="Menu item added")


def _own_menu_item(actor: Actor, storage: Storage, item_id: str):
    if actor.role is not Role.kitchen or actor.profile_id is None:
        return None
    item = storage.get_menu_item(item_id)
    if not item or item.kitchen_id != actor.profile_id:
        return None
    return item


@router.post("/dashboard/kitchen/menu/{item_id}/update")
def update_menu_item(
    item_id: str,
    name: str = Form(...),
    price: str = Form(...),
    category: str = Form(""),
    description: str = Form(""),
    auth: AuthSession = Depends(get_auth_session),
    storage: Storage = Depends(get_storage),
):
    actor, response = _actor_or_redirect(auth, storage)
    if response:
        return response
    if not _own_menu_item(actor, storage, item_id):
        return redirect("/dashboard", err="Menu item not found")
    try:
        cents = parse_price(price)
    except ValueError:
        return redirect("/dashboard", err="Price must be a number (e.g., 12.99)")
    try:
        storage.update_menu_item(item_id, {
            "name": name.strip(),
            "price": cents,
            "category": category.strip() or None,
            "description": description.strip() or None,
        })
    except JournEatzError as e:
        return redirect("/dashboard", err=e.message)
    return redirect("/dashboard", ok="Menu item updated")


@router.post("/dashboard/kitchen/menu/{item_id}/toggle")
def toggle_menu_item(item_id: str, auth: AuthSession = Depends(get_auth_session), storage: Storage = Depends(get_storage)):
    actor, response = _actor_or_redirect(auth, storage)
    if response:
        return response
    item = _own_menu_item(actor, storage, item_id)
    if not item:
        return redirect("/dashboard", err="Menu item not found")
    status = MenuItemStatus.unavailable if item.status == MenuItemStatus.available else MenuItemStatus.available
    storage.update_menu_item(item_id, {"status": status})
    return redirect("/dashboard", ok=f"{item.name} is now {status.value}")


@router.post("/dashboard/kitchen/menu/{item_id}/delete")
def delete_menu_item(item_id: str, auth: AuthSession = Depends(get_auth_session), storage: Storage = Depends(get_storage)):
    actor, response = _actor_or_redirect(auth, storage)
    if response:
        return response
    if not _own_menu_item(actor, storage, item_id):
        return redirect("/dashboard", err="Menu item not found")
    storage.delete_menu_item(item_id)
    return redirect("/dashboard", ok="Menu item removed")


@router.post("/dashboard/profile")
def update_profile(
    phone_number: str = Form(""),
    address: str = Form(""),
    auth: AuthSession = Depends(get_auth_session),
    storage: Storage = Depends(get_storage),
):
    actor, response = _actor_or_redirect(auth, storage)
    if response:
        return response
    if actor.role is not Role.customer or actor.profile_id is None:
        return redirect("/dashboard", err="Not allowed")
    storage.update_customer(actor.profile_id, {
        "phone_number": phone_number.strip() or None,
        "address": address.strip() or None,
    })
    return redirect("/dashboard", ok="Contact details saved")


# ---- admin user management ----

@router.post("/dashboard/users/{user_id}/update")
def admin_update_user(
    user_id: str,
    role: str = Form(...),
    name: str = Form(""),
    auth: AuthSession = Depends(get_auth_session),
    storage: Storage = Depends(get_storage),
):
    actor, response = _actor_or_redirect(auth, storage)
    if response:
        return response
    if actor.role is not Role.admin:
        return redirect("/dashboard", err="Admin access required")
    if user_id == actor.user.id and role != actor.role.value:
        return redirect("/dashboard", err="Cannot change your own role")
    patch = {"role": role}
    if name.strip():
        patch["name"] = name.strip()
    try:
        storage.update_user(user_id, patch)
    except JournEatzError as e:
        return redirect("/dashboard", err=e.message)
    return redirect("/dashboard", ok="User updated")


@router.post("/dashboard/users/{user_id}/delete")
def admin_delete_user(user_id: str, auth: AuthSession = Depends(get_auth_session), storage: Storage = Depends(get_storage)):
    actor, response = _actor_or_redirect(auth, storage)
    if response:
        return response
    if actor.role is not Role.admin:
        return redirect("/dashboard", err="Admin access required")
    if user_id == actor.user.id:
        return redirect("/dashboard", err="Cannot delete yourself")
    try:
        storage.delete_user(user_id)
    except JournEatzError as e:
        return redirect("/dashboard", err=e.message)
    log.info("%s deleted user %s", actor.user.email, user_id)
    return redirect("/dashboard", ok="User deleted")
