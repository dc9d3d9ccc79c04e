from __future__ import annotations
import logging

from .auth import DatabaseAuthProvider, hash_password
from .config import ADMIN_BOOTSTRAP_EMAIL, ADMIN_BOOTSTRAP_PASSWORD
from .errors import AccountExists
from .models import Role
from .storage import Storage
from .utils import now_utc

log = logging.getLogger(__name__)

DEMO_PASSWORD = "Demo2020!"
DEMO_ACCOUNTS = [
    ("admin@journeatz.com", Role.admin),
    ("driver@journeatz.com", Role.driver),
    ("kitchen@journeatz.com", Role.kitchen),
    ("customer@journeatz.com", Role.customer),
]
DEMO_MENU = [
    ("Pad Thai", "Rice noodles, tamarind, peanuts", 1299, "Mains"),
    ("Green Curry", "Coconut green curry with jasmine rice", 1499, "Mains"),
    ("Spring Rolls", "Four crispy vegetable rolls", 699, "Starters"),
]


def ensure_bootstrap_admin(storage: Storage, email: str = ADMIN_BOOTSTRAP_EMAIL, password: str = ADMIN_BOOTSTRAP_PASSWORD) -> None:
    if storage.get_user_by_email(email):
        return
    storage.create_user({
        "email": email,
        "password_hash": hash_password(password),
        "role": Role.admin,
        "name": "JournEatz Admin (bootstrap)",
        "email_confirmed_at": now_utc(),
    })
    log.info("bootstrap admin %s created", email)


def seed_demo_accounts(provider: DatabaseAuthProvider, password: str = DEMO_PASSWORD) -> None:
    """Provision one real, confirmed account per role plus a sample menu.

    Safe to run repeatedly; existing accounts are left alone.
    """
    storage = provider.storage
    for email, role in DEMO_ACCOUNTS:
        if storage.get_user_by_email(email):
            continue
        if role is Role.admin:
            ensure_bootstrap_admin(storage, email, password)
            continue
        try:
            provider.sign_up(email, password, {"role": role.value, "name": email.split("@")[0].title()})
        except AccountExists:
            continue
        user = storage.get_user_by_email(email)
        if user.email_confirmed_at is None:
            storage.confirm_user_email(user.id)
        log.info("demo %s account %s provisioned", role.value, email)

    kitchen_user = storage.get_user_by_email("kitchen@journeatz.com")
    kitchen = storage.get_kitchen_by_user(kitchen_user.id) if kitchen_user else None
    if kitchen and not storage.get_kitchen_menu(kitchen.id):
        for name, description, price, category in DEMO_MENU:
            storage.create_menu_item({
                "kitchen_id": kitchen.id,
                "name": name,
                "description": description,
                "price": price,
                "category": category,
            })
