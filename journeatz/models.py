from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_serializer, field_validator, model_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field, Relationship

from .utils import new_id, now_utc


class Role(str, Enum):
    admin = "admin"
    driver = "driver"
    kitchen = "kitchen"
    customer = "customer"


class OrderStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    ready = "ready"
    delivered = "delivered"
    cancelled = "cancelled"


class MenuItemStatus(str, Enum):
    available = "available"
    unavailable = "unavailable"


class DriverStatus(str, Enum):
    active = "active"
    inactive = "inactive"


# ---- users ----

class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    email: str = Field(index=True, unique=True)
    password_hash: str
    # kept as plain text: rows written by other tools may hold roles we don't know
    role: str = Field(default=Role.customer.value)
    name: Optional[str] = None
    email_confirmed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=now_utc)


class UserCreate(SQLModel):
    email: str
    password_hash: str
    role: Role = Role.customer
    name: Optional[str] = None
    email_confirmed_at: Optional[datetime] = None

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        v = v.strip().lower()
        if v.count("@") != 1 or not all(v.split("@")):
            raise ValueError("email must look like name@domain")
        return v


class UserPatch(SQLModel):
    name: Optional[str] = Field(default=None, min_length=1)
    role: Optional[Role] = None


# ---- role profiles ----

class KitchenBase(SQLModel):
    user_id: Optional[str] = Field(default=None, foreign_key="users.id", index=True)
    name: str = Field(min_length=1)
    address: Optional[str] = None
    contact_number: Optional[str] = None
    cuisine_type: Optional[str] = None
    is_open: bool = True


class Kitchen(KitchenBase, table=True):
    __tablename__ = "kitchens"

    id: str = Field(default_factory=new_id, primary_key=True)
    created_at: datetime = Field(default_factory=now_utc)

    menu_items: list["MenuItem"] = Relationship(back_populates="kitchen")


class KitchenCreate(KitchenBase):
    pass


class MenuItemBase(SQLModel):
    kitchen_id: str = Field(foreign_key="kitchens.id", index=True)
    name: str = Field(min_length=1)
    description: Optional[str] = None
    price: int = Field(ge=0)  # cents
    category: Optional[str] = None
    status: MenuItemStatus = MenuItemStatus.available


class MenuItem(MenuItemBase, table=True):
    __tablename__ = "menu_items"

    id: str = Field(default_factory=new_id, primary_key=True)
    created_at: datetime = Field(default_factory=now_utc)

    kitchen: Optional[Kitchen] = Relationship(back_populates="menu_items")


class MenuItemCreate(MenuItemBase):
    pass


class MenuItemPatch(SQLModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    price: Optional[int] = Field(default=None, ge=0)
    category: Optional[str] = None
    status: Optional[MenuItemStatus] = None


class CustomerBase(SQLModel):
    user_id: Optional[str] = Field(default=None, foreign_key="users.id", index=True)
    name: str = Field(min_length=1)
    phone_number: Optional[str] = None
    address: Optional[str] = None


class Customer(CustomerBase, table=True):
    __tablename__ = "customers"

    id: str = Field(default_factory=new_id, primary_key=True)
    created_at: datetime = Field(default_factory=now_utc)


class CustomerCreate(CustomerBase):
    pass


class CustomerPatch(SQLModel):
    name: Optional[str] = Field(default=None, min_length=1)
    phone_number: Optional[str] = None
    address: Optional[str] = None


class DriverBase(SQLModel):
    user_id: Optional[str] = Field(default=None, foreign_key="users.id", index=True)
    name: str = Field(min_length=1)
    phone_number: Optional[str] = None
    license_number: Optional[str] = None
    vehicle_type: Optional[str] = None
    status: DriverStatus = DriverStatus.active


class Driver(DriverBase, table=True):
    __tablename__ = "drivers"

    id: str = Field(default_factory=new_id, primary_key=True)
    created_at: datetime = Field(default_factory=now_utc)


class DriverCreate(DriverBase):
    pass


# ---- orders ----

class LineItem(SQLModel):
    name: str = Field(min_length=1)
    quantity: int = Field(ge=1)
    unit_price: Optional[int] = Field(default=None, ge=0)  # cents
    menu_item_id: Optional[str] = None


def line_items_total(items: list[LineItem]) -> Optional[int]:
    """Sum of unit_price * quantity, or None if any item has no price."""
    if any(i.unit_price is None for i in items):
        return None
    return sum(i.unit_price * i.quantity for i in items)


class Order(SQLModel, table=True):
    __tablename__ = "orders"

    id: str = Field(default_factory=new_id, primary_key=True)
    customer_id: str = Field(foreign_key="customers.id", index=True)
    kitchen_id: str = Field(foreign_key="kitchens.id", index=True)
    driver_id: Optional[str] = Field(default=None, foreign_key="drivers.id", index=True)
    status: OrderStatus = OrderStatus.pending
    items: list[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    total_amount: int  # cents
    delivery_address: str
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class OrderCreate(SQLModel):
    customer_id: str
    kitchen_id: str
    driver_id: Optional[str] = None
    status: OrderStatus = OrderStatus.pending
    items: list[LineItem]
    total_amount: int = Field(ge=0)
    delivery_address: str = Field(min_length=1)

    @model_validator(mode="after")
    def _check_items(self) -> "OrderCreate":
        if not self.items:
            raise ValueError("an order needs at least one item")
        expected = line_items_total(self.items)
        if expected is not None and expected != self.total_amount:
            raise ValueError(f"total_amount {self.total_amount} does not match items total {expected}")
        return self


# fields an order PATCH may touch
ORDER_PATCHABLE = ("status", "driver_id", "items", "total_amount", "delivery_address")


# ---- API shapes: camelCase on the wire, snake_case accepted on input ----

class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class UserPublic(ApiModel):
    id: str
    email: str
    role: str
    name: Optional[str] = None
    email_confirmed_at: Optional[datetime] = None
    created_at: datetime


class KitchenPublic(ApiModel):
    id: str
    user_id: Optional[str] = None
    name: str
    address: Optional[str] = None
    contact_number: Optional[str] = None
    cuisine_type: Optional[str] = None
    is_open: bool
    created_at: datetime


class MenuItemPublic(ApiModel):
    id: str
    kitchen_id: str
    name: str
    description: Optional[str] = None
    price: int
    category: Optional[str] = None
    status: MenuItemStatus
    created_at: datetime


class CustomerPublic(ApiModel):
    id: str
    user_id: Optional[str] = None
    name: str
    phone_number: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime


class DriverPublic(ApiModel):
    id: str
    user_id: Optional[str] = None
    name: str
    phone_number: Optional[str] = None
    license_number: Optional[str] = None
    vehicle_type: Optional[str] = None
    status: DriverStatus
    created_at: datetime


class OrderPublic(ApiModel):
    id: str
    customer_id: str
    kitchen_id: str
    driver_id: Optional[str] = None
    status: OrderStatus
    items: list[dict[str, Any]]
    total_amount: int
    delivery_address: str
    created_at: datetime
    updated_at: datetime

    @field_serializer("items")
    def _camel_items(self, items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [{to_camel(k): v for k, v in item.items()} for item in items]
