from __future__ import annotations
from datetime import datetime, timezone
import uuid


def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def fmt_dt(dt: datetime | None) -> str:
    if dt is None:
        return "-"
    return dt.strftime("%Y-%m-%d %H:%M")


def money(cents: int | None) -> str:
    # amounts are stored in minor units
    if cents is None:
        return "-"
    return f"${cents / 100:.2f}"


def email_local_part(email: str) -> str:
    return email.split("@")[0]
