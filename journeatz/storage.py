from __future__ import annotations
import logging
from typing import Any, Optional, Type, TypeVar

from pydantic import ValidationError
from pydantic.alias_generators import to_snake
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel, Session, select

from .errors import AccountExists, InvalidTransition, NotFound, ValidationFailed
from .models import (
    ORDER_PATCHABLE,
    Customer, CustomerCreate, CustomerPatch,
    Driver, DriverCreate,
    Kitchen, KitchenCreate,
    MenuItem, MenuItemCreate, MenuItemPatch,
    Order, OrderCreate, OrderStatus,
    Role,
    User, UserCreate, UserPatch,
)
from .utils import email_local_part, now_utc

log = logging.getLogger(__name__)

T = TypeVar("T", bound=SQLModel)

# dashboard action -> (allowed current statuses, new status)
TRANSITIONS: dict[str, tuple[tuple[OrderStatus, ...], OrderStatus]] = {
    "accept": ((OrderStatus.pending,), OrderStatus.in_progress),
    "decline": ((OrderStatus.pending,), OrderStatus.cancelled),
    "mark_ready": ((OrderStatus.in_progress,), OrderStatus.ready),
    "deliver": ((OrderStatus.ready,), OrderStatus.delivered),
    "cancel": ((OrderStatus.pending, OrderStatus.in_progress), OrderStatus.cancelled),
}

# roles that own a profile row, with its create shape and table
PROFILES: dict[Role, tuple[Type[SQLModel], Type[SQLModel]]] = {
    Role.kitchen: (KitchenCreate, Kitchen),
    Role.customer: (CustomerCreate, Customer),
    Role.driver: (DriverCreate, Driver),
}


def snake_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Accept camelCase payload keys (``totalAmount``) as well as snake_case."""
    out = {}
    for key, value in data.items():
        if isinstance(value, list):
            value = [snake_keys(v) if isinstance(v, dict) else v for v in value]
        out[to_snake(key)] = value
    return out


def _validate(shape: Type[T], data: Any) -> T:
    if isinstance(data, shape):
        return data
    if isinstance(data, SQLModel):
        data = data.model_dump()
    if not isinstance(data, dict):
        raise ValidationFailed([f"expected an object, got {type(data).__name__}"])
    try:
        return shape.model_validate(snake_keys(data))
    except ValidationError as e:
        problems = []
        for err in e.errors():
            loc = ".".join(str(p) for p in err["loc"])
            problems.append(f"{loc}: {err['msg']}" if loc else err["msg"])
        raise ValidationFailed(problems) from e


class Storage:
    """Data access for every entity. Each call runs in its own session."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _session(self) -> Session:
        return Session(self.engine)

    def _get(self, model: Type[T], id: str) -> Optional[T]:
        with self._session() as session:
            return session.get(model, id)

    def _list(self, model: Type[T], *where) -> list[T]:
        with self._session() as session:
            stmt = select(model)
            for clause in where:
                stmt = stmt.where(clause)
            return list(session.exec(stmt).all())

    def _insert(self, row: T) -> T:
        with self._session() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
        return row

    def _require(self, session: Session, model: Type[SQLModel], id: Optional[str], label: str) -> None:
        if id is None or session.get(model, id) is None:
            raise ValidationFailed([f"{label} {id!r} does not exist"])

    # ---- users ----

    def get_user(self, id: str) -> Optional[User]:
        return self._get(User, id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._session() as session:
            return session.exec(select(User).where(User.email == email.strip().lower())).first()

    def list_users(self) -> list[User]:
        return self._list(User)

    def _new_profile(self, user: User) -> Optional[SQLModel]:
        role = Role(user.role)
        if role not in PROFILES:
            return None
        shape, table = PROFILES[role]
        name = user.name or email_local_part(user.email)
        if role is Role.kitchen:
            name = f"{name}'s Kitchen"
        return table.model_validate(_validate(shape, {"user_id": user.id, "name": name}))

    def _profile_of(self, session: Session, user_id: str, role: Role) -> Optional[SQLModel]:
        table = PROFILES[role][1]
        return session.exec(select(table).where(table.user_id == user_id)).first()

    def create_user(self, data: UserCreate | dict, with_profile: bool = False) -> User:
        """Insert a user. With ``with_profile`` the role's profile row goes in the same commit."""
        shape = _validate(UserCreate, data)
        user = User.model_validate(shape, update={"role": shape.role.value})
        profile = self._new_profile(user) if with_profile else None
        with self._session() as session:
            try:
                session.add(user)
                session.flush()
                if profile is not None:
                    session.add(profile)
                session.commit()
            except IntegrityError as e:
                # the unique email index is the only constraint an insert can trip
                session.rollback()
                raise AccountExists() from e
            session.refresh(user)
        return user

    def update_user(self, id: str, patch: UserPatch | dict) -> User:
        """Rename or re-role a user. A new role gets its profile row if it has none."""
        changes = {k: v for k, v in _validate(UserPatch, patch).model_dump(exclude_unset=True).items() if v is not None}
        with self._session() as session:
            user = session.get(User, id)
            if not user:
                raise NotFound("User not found")
            if "name" in changes:
                user.name = changes["name"]
            if "role" in changes:
                user.role = changes["role"].value
                if changes["role"] in PROFILES and self._profile_of(session, user.id, changes["role"]) is None:
                    session.add(self._new_profile(user))
            session.add(user)
            session.commit()
            session.refresh(user)
        log.info("user %s updated: %s", id, ", ".join(sorted(changes)) or "no fields")
        return user

    def delete_user(self, id: str) -> None:
        """Remove a user. Its profile rows stay, unlinked, so order history survives."""
        with self._session() as session:
            user = session.get(User, id)
            if not user:
                raise NotFound("User not found")
            for table in (Kitchen, Customer, Driver):
                for row in session.exec(select(table).where(table.user_id == id)).all():
                    row.user_id = None
                    session.add(row)
            session.flush()
            session.delete(user)
            session.commit()
        log.info("user %s deleted", id)

    def confirm_user_email(self, id: str) -> User:
        with self._session() as session:
            user = session.get(User, id)
            if not user:
                raise NotFound("User not found")
            user.email_confirmed_at = now_utc()
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    # ---- drivers ----

    def get_driver(self, id: str) -> Optional[Driver]:
        return self._get(Driver, id)

    def get_driver_by_user(self, user_id: str) -> Optional[Driver]:
        return next(iter(self._list(Driver, Driver.user_id == user_id)), None)

    def list_drivers(self) -> list[Driver]:
        return self._list(Driver)

    def create_driver(self, data: DriverCreate | dict) -> Driver:
        return self._insert(Driver.model_validate(_validate(DriverCreate, data)))

    # ---- kitchens ----

    def get_kitchen(self, id: str) -> Optional[Kitchen]:
        return self._get(Kitchen, id)

    def get_kitchen_by_user(self, user_id: str) -> Optional[Kitchen]:
        return next(iter(self._list(Kitchen, Kitchen.user_id == user_id)), None)

    def list_kitchens(self) -> list[Kitchen]:
        return self._list(Kitchen)

    def create_kitchen(self, data: KitchenCreate | dict) -> Kitchen:
        return self._insert(Kitchen.model_validate(_validate(KitchenCreate, data)))

    def set_kitchen_open(self, id: str, is_open: bool) -> Kitchen:
        with self._session() as session:
            kitchen = session.get(Kitchen, id)
            if not kitchen:
                raise NotFound("Kitchen not found")
            kitchen.is_open = bool(is_open)
            session.add(kitchen)
            session.commit()
            session.refresh(kitchen)
            return kitchen

    # ---- menu ----

    def get_menu_item(self, id: str) -> Optional[MenuItem]:
        return self._get(MenuItem, id)

    def list_menu_items(self) -> list[MenuItem]:
        return self._list(MenuItem)

    def get_kitchen_menu(self, kitchen_id: str) -> list[MenuItem]:
        return self._list(MenuItem, MenuItem.kitchen_id == kitchen_id)

    def create_menu_item(self, data: MenuItemCreate | dict) -> MenuItem:
        shape = _validate(MenuItemCreate, data)
        with self._session() as session:
            self._require(session, Kitchen, shape.kitchen_id, "kitchen")
        return self._insert(MenuItem.model_validate(shape))

    def update_menu_item(self, id: str, patch: MenuItemPatch | dict) -> MenuItem:
        changes = _validate(MenuItemPatch, patch).model_dump(exclude_unset=True)
        with self._session() as session:
            item = session.get(MenuItem, id)
            if not item:
                raise NotFound("Menu item not found")
            for key, value in changes.items():
                # these columns can't be cleared
                if value is None and key in ("name", "price", "status"):
                    continue
                setattr(item, key, value)
            session.add(item)
            session.commit()
            session.refresh(item)
            return item

    def delete_menu_item(self, id: str) -> None:
        # past orders keep their own copy of the item
        with self._session() as session:
            item = session.get(MenuItem, id)
            if not item:
                raise NotFound("Menu item not found")
            session.delete(item)
            session.commit()

    # ---- customers ----

    def get_customer(self, id: str) -> Optional[Customer]:
        return self._get(Customer, id)

    def get_customer_by_user(self, user_id: str) -> Optional[Customer]:
        return next(iter(self._list(Customer, Customer.user_id == user_id)), None)

    def list_customers(self) -> list[Customer]:
        return self._list(Customer)

    def create_customer(self, data: CustomerCreate | dict) -> Customer:
        return self._insert(Customer.model_validate(_validate(CustomerCreate, data)))

    def update_customer(self, id: str, patch: CustomerPatch | dict) -> Customer:
        changes = _validate(CustomerPatch, patch).model_dump(exclude_unset=True)
        with self._session() as session:
            customer = session.get(Customer, id)
            if not customer:
                raise NotFound("Customer not found")
            for key, value in changes.items():
                if value is None and key == "name":
                    continue
                setattr(customer, key, value)
            session.add(customer)
            session.commit()
            session.refresh(customer)
            return customer

    # ---- orders ----

    def get_order(self, id: str) -> Optional[Order]:
        return self._get(Order, id)

    def list_orders(
        self,
        customer_id: Optional[str] = None,
        kitchen_id: Optional[str] = None,
        driver_id: Optional[str] = None,
    ) -> list[Order]:
        where = []
        if customer_id is not None:
            where.append(Order.customer_id == customer_id)
        if kitchen_id is not None:
            where.append(Order.kitchen_id == kitchen_id)
        if driver_id is not None:
            where.append(Order.driver_id == driver_id)
        return self._list(Order, *where)

    def _check_refs(self, session: Session, shape: OrderCreate) -> None:
        self._require(session, Customer, shape.customer_id, "customer")
        self._require(session, Kitchen, shape.kitchen_id, "kitchen")
        if shape.driver_id is not None:
            self._require(session, Driver, shape.driver_id, "driver")

    def create_order(self, data: OrderCreate | dict) -> Order:
        shape = _validate(OrderCreate, data)
        with self._session() as session:
            self._check_refs(session, shape)
            order = Order(
                customer_id=shape.customer_id,
                kitchen_id=shape.kitchen_id,
                driver_id=shape.driver_id,
                status=shape.status,
                items=[i.model_dump(exclude_none=True) for i in shape.items],
                total_amount=shape.total_amount,
                delivery_address=shape.delivery_address,
            )
            session.add(order)
            session.commit()
            session.refresh(order)
        log.info("order %s created for customer %s at kitchen %s", order.id, order.customer_id, order.kitchen_id)
        return order

    def update_order(self, id: str, patch: dict[str, Any]) -> Order:
        """Apply a partial update. Fields outside ORDER_PATCHABLE are ignored."""
        patch = {k: v for k, v in snake_keys(patch or {}).items() if k in ORDER_PATCHABLE}
        with self._session() as session:
            order = session.get(Order, id)
            if not order:
                raise NotFound("Order not found")
            merged = {
                "customer_id": order.customer_id,
                "kitchen_id": order.kitchen_id,
                "driver_id": order.driver_id,
                "status": order.status,
                "items": order.items,
                "total_amount": order.total_amount,
                "delivery_address": order.delivery_address,
            }
            merged.update(patch)
            shape = _validate(OrderCreate, merged)
            if "driver_id" in patch and shape.driver_id is not None:
                self._require(session, Driver, shape.driver_id, "driver")
            for key in patch:
                value = getattr(shape, key)
                if key == "items":
                    value = [i.model_dump(exclude_none=True) for i in value]
                setattr(order, key, value)
            order.updated_at = now_utc()
            session.add(order)
            session.commit()
            session.refresh(order)
        log.info("order %s updated: %s", id, ", ".join(sorted(patch)) or "no fields")
        return order

    def transition_order(self, id: str, action: str, driver_id: Optional[str] = None) -> Order:
        if action not in TRANSITIONS:
            raise InvalidTransition(f"Unknown order action {action!r}")
        allowed, target = TRANSITIONS[action]
        order = self.get_order(id)
        if not order:
            raise NotFound("Order not found")
        if order.status not in allowed:
            raise InvalidTransition(f"Cannot {action.replace('_', ' ')} an order that is {order.status.value}")
        patch: dict[str, Any] = {"status": target}
        if driver_id is not None:
            patch["driver_id"] = driver_id
        return self.update_order(id, patch)
