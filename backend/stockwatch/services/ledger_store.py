# Overview: Ledger Store facade; the get/put/scan/generate_id contract every service talks to.

from __future__ import annotations

import uuid
from contextlib import contextmanager
from typing import Any, Callable, Iterable

from flask import current_app, g
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Product, Inventory, InventoryHistory, Alert
from ..time_utils import SystemClock
"""
Ledger Store Contract (authoritative)

- Records are independently addressable by key:
    products           -> product_id
    inventory          -> (product_id, location_id)
    inventory_history  -> history_id
    alerts             -> alert_id
- put() is an upsert and flushes immediately so constraint violations surface
  at the call site, not at commit.
- No cross-key transactions are promised to callers. Services commit after each
  logical step; a crash between steps is repaired by reconciliation.
- Optional capability: conditional put. put(..., conditional=True) raises
  ConditionalPutFailed when a uniqueness constraint rejects the row instead of
  a generic StoreError.
- delete() removes one record by key and reports whether it existed. Callers
  check references first; the store does not cascade.
- Services only ever see ORM instances of the mapped models; raw dicts are
  normalized at this boundary.
"""


TABLES = {
    "products": Product,
    "inventory": Inventory,
    "inventory_history": InventoryHistory,
    "alerts": Alert,
}


class NotFoundError(Exception):
    """Referenced product, inventory row or alert does not exist (404)."""


class StoreError(Exception):
    """Underlying store operation failed."""

    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ConditionalPutFailed(StoreError):
    """A conditional put lost against an existing row holding the same unique key."""


def new_id() -> str:
    return uuid.uuid4().hex


class RecordCache:
    """
    Explicit per-request record cache.

    Lives on the LedgerStore instance, which lives on flask.g, so nothing is
    shared between requests. rollback() clears it.
    """

    def __init__(self):
        self._records: dict[tuple[str, Any], Any] = {}

    def get(self, table: str, key: Any):
        return self._records.get((table, key))

    def put(self, table: str, key: Any, record: Any) -> None:
        self._records[(table, key)] = record

    def discard(self, table: str, key: Any) -> None:
        self._records.pop((table, key), None)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


def _model_for(table: str):
    try:
        return TABLES[table]
    except KeyError:
        raise StoreError(f"Unknown table: {table}") from None


def _key_of(table: str, record) -> Any:
    if table == "inventory":
        return (record.product_id, record.location_id)
    if table == "products":
        return record.product_id
    if table == "inventory_history":
        return record.history_id
    return record.alert_id


class LedgerStore:
    supports_conditional_put = True

    def __init__(self, session, *, clock=None, id_factory: Callable[[], str] | None = None):
        self.session = session
        self.clock = clock or SystemClock()
        self._id_factory = id_factory or new_id
        self.cache = RecordCache()

    def now(self):
        return self.clock.now()

    def generate_id(self) -> str:
        return self._id_factory()

    @contextmanager
    def _translate_errors(self, action: str):
        try:
            yield
        except StoreError:
            raise
        except (OperationalError, StaleDataError) as exc:
            self.rollback()
            raise StoreError(f"{action} failed: {exc}", retryable=True) from exc
        except (SQLAlchemyError, OverflowError) as exc:
            # OverflowError comes straight from the DB driver when an int
            # does not fit the column.
            self.rollback()
            raise StoreError(f"{action} failed: {exc}") from exc

    def get(self, table: str, key: Any, *, for_update: bool = False):
        """Return the record for key, or None when absent."""
        model = _model_for(table)
        if not for_update:
            cached = self.cache.get(table, key)
            if cached is not None:
                return cached

        with self._translate_errors(f"get {table}"):
            if for_update:
                # SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
                record = self.session.get(model, key, with_for_update=True)
            else:
                record = self.session.get(model, key)

        if record is not None:
            self.cache.put(table, key, record)
        return record

    def require(self, table: str, key: Any, *, label: str | None = None):
        record = self.get(table, key)
        if record is None:
            raise NotFoundError(f"{label or table} not found")
        return record

    def put(self, table: str, record, *, conditional: bool = False):
        model = _model_for(table)
        if isinstance(record, dict):
            record = model(**record)
        if not isinstance(record, model):
            raise StoreError(f"Record of type {type(record).__name__} cannot be stored in {table}")

        try:
            with self._translate_errors(f"put {table}"):
                self.session.add(record)
                self.session.flush()
        except StoreError as exc:
            if conditional and isinstance(exc.__cause__, IntegrityError):
                raise ConditionalPutFailed(str(exc)) from exc.__cause__
            raise

        self.cache.put(table, _key_of(table, record), record)
        return record

    def delete(self, table: str, key: Any) -> bool:
        record = self.get(table, key)
        if record is None:
            return False
        with self._translate_errors(f"delete {table}"):
            self.session.delete(record)
            self.session.flush()
        self.cache.discard(table, key)
        return True

    def scan(
        self,
        table: str,
        filter: dict | None = None,
        *,
        order_by: Iterable | None = None,
        limit: int | None = None,
    ) -> list:
        """Full-table scan, optionally narrowed by column equality filters."""
        model = _model_for(table)
        with self._translate_errors(f"scan {table}"):
            query = self.session.query(model)
            if filter:
                query = query.filter_by(**filter)
            if order_by is not None:
                query = query.order_by(*order_by)
            if limit is not None:
                query = query.limit(limit)
            return query.all()

    def commit(self) -> None:
        with self._translate_errors("commit"):
            self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
        self.cache.clear()


def get_store() -> LedgerStore:
    """Return the LedgerStore bound to the current request/app context."""
    store = g.get("ledger_store")
    if store is None:
        store = LedgerStore(db.session, clock=current_app.config.get("CLOCK"))
        g.ledger_store = store
    return store
