from __future__ import annotations
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine
from .config import DATABASE_URL


def make_engine(url: str = DATABASE_URL) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=False, connect_args=connect_args)


engine = make_engine()


def init_db(bind: Engine = engine) -> None:
    # table classes must be registered on the metadata first
    from . import models  # noqa: F401

    SQLModel.metadata.create_all(bind)
