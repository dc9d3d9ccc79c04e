from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from .errors import Forbidden, InvalidTransition, NotAuthenticated
from .models import Order, OrderStatus, Role
from .session import AuthSession, CurrentUser
from .storage import TRANSITIONS, Storage

log = logging.getLogger(__name__)

# which order actions each role may take on an order it can see
ROLE_ACTIONS = {
    Role.admin: {"accept", "decline", "mark_ready", "deliver", "cancel"},
    Role.kitchen: {"accept", "decline", "mark_ready"},
    Role.driver: {"deliver"},
    Role.customer: {"cancel"},
}


@dataclass(frozen=True)
class Actor:
    """The signed-in user plus the id of their role profile row, if any."""

    user: CurrentUser
    profile_id: Optional[str] = None

    @property
    def role(self) -> Role:
        return self.user.role


def resolve_actor(auth: AuthSession, storage: Storage) -> Actor:
    if not auth.is_authenticated or auth.user is None:
        if auth.error is not None:
            raise auth.error
        raise NotAuthenticated()
    user = auth.user
    profile = None
    if user.role is Role.kitchen:
        profile = storage.get_kitchen_by_user(user.id)
    elif user.role is Role.driver:
        profile = storage.get_driver_by_user(user.id)
    elif user.role is Role.customer:
        profile = storage.get_customer_by_user(user.id)
    return Actor(user=user, profile_id=profile.id if profile else None)


def require_role(actor: Actor, *roles: Role) -> Actor:
    if actor.role not in roles:
        log.info("%s (%s) denied: needs %s", actor.user.email, actor.role.value, "/".join(r.value for r in roles))
        raise Forbidden()
    return actor


def visible_orders(actor: Actor, storage: Storage) -> list[Order]:
    if actor.role is Role.admin:
        return storage.list_orders()
    if actor.profile_id is None:
        return []
    if actor.role is Role.customer:
        return storage.list_orders(customer_id=actor.profile_id)
    if actor.role is Role.kitchen:
        return storage.list_orders(kitchen_id=actor.profile_id)
    # drivers see their own deliveries plus ready orders nobody has picked up
    return [
        o for o in storage.list_orders()
        if o.driver_id == actor.profile_id or (o.driver_id is None and o.status == OrderStatus.ready)
    ]


def can_view_order(actor: Actor, order: Order) -> bool:
    if actor.role is Role.admin:
        return True
    if actor.profile_id is None:
        return False
    if actor.role is Role.customer:
        return order.customer_id == actor.profile_id
    if actor.role is Role.kitchen:
        return order.kitchen_id == actor.profile_id
    if order.driver_id is None:
        return order.status == OrderStatus.ready
    return order.driver_id == actor.profile_id


def can_update_order(actor: Actor, order: Order) -> bool:
    if actor.role is Role.customer:
        return False
    return can_view_order(actor, order)


def can_manage_kitchen(actor: Actor, kitchen_id: str) -> bool:
    if actor.role is Role.admin:
        return True
    return actor.role is Role.kitchen and actor.profile_id == kitchen_id


def action_for_status(actor: Actor, order: Order, status: str) -> str:
    """The action this role would take to move ``order`` to ``status``."""
    for action in sorted(ROLE_ACTIONS[actor.role]):
        allowed, target = TRANSITIONS[action]
        if target.value == status and order.status in allowed:
            return action
    raise InvalidTransition(f"A {actor.role.value} cannot move an order that is {order.status.value} to {status}")
