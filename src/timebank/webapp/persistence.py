"""SQLModel-backed storage for the TimeBank state blob."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, Session, SQLModel, create_engine

from ..exceptions import PersistenceError
from ..storage import StateBlob
from .config import SQLITE_FILE_NAME, STORAGE_KEY


class StateRecord(SQLModel, table=True):
    k: str = Field(primary_key=True)
    v: str
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def make_engine(path: str = SQLITE_FILE_NAME) -> Engine:
    return create_engine(
        f"sqlite:///{path}",
        echo=False,
        connect_args={"check_same_thread": False},
    )


def create_db_and_tables(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)


class SQLModelStorage:
    """Keep the whole state blob as one JSON row keyed by ``key``."""

    def __init__(self, engine: Engine, key: str = STORAGE_KEY) -> None:
        self.engine = engine
        self.key = key
        self._ready = False

    def _ensure_tables(self) -> None:
        if not self._ready:
            create_db_and_tables(self.engine)
            self._ready = True

    def load(self) -> Optional[StateBlob]:
        try:
            self._ensure_tables()
            with Session(self.engine) as session:
                row = session.get(StateRecord, self.key)
                raw = row.v if row else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not read state '{self.key}': {exc}") from exc
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise PersistenceError(f"State '{self.key}' is not valid JSON: {exc}") from exc

    def save(self, blob: StateBlob) -> None:
        try:
            payload = json.dumps(blob)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"State could not be serialised: {exc}") from exc
        try:
            self._ensure_tables()
            with Session(self.engine) as session:
                row = session.get(StateRecord, self.key)
                if row:
                    row.v = payload
                    row.updated_at = datetime.now(timezone.utc)
                else:
                    row = StateRecord(k=self.key, v=payload)
                session.add(row)
                session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not write state '{self.key}': {exc}") from exc


__all__ = [
    "SQLModelStorage",
    "StateRecord",
    "create_db_and_tables",
    "make_engine",
]
