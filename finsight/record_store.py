from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Any, Iterator, List, Mapping, Optional

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from finsight.aggregation_engine import LedgerRecord
from finsight.budget_alerts import CategoryLimit
from finsight.goal_progress import Goal
from finsight.month_keys import month_key, normalize_month_key
from finsight.recurring_payments import RecurringPayment

logger = logging.getLogger(__name__)

TRANSACTIONS = "transactions"
INCOMES = "incomes"
GOALS = "goals"
CATEGORY_LIMITS = "category_limits"
RECURRING_PAYMENTS = "recurring_payments"
LEDGER_KINDS = {TRANSACTIONS, INCOMES}

metadata = MetaData()


def _ledger_table(name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("user_id", String(128), nullable=False, index=True),
        Column("amount", Numeric(12, 2), nullable=False),
        Column("category", String(100), nullable=False),
        Column("date", Date, nullable=False),
        Column("month_key", String(7), nullable=False, index=True),
        Column("notes", String(500)),
        Column("created_at", DateTime, nullable=False, server_default=func.now()),
    )


transactions = _ledger_table(TRANSACTIONS)
incomes = _ledger_table(INCOMES)

goals = Table(
    GOALS,
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(128), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("description", String(500)),
    Column("target_amount", Numeric(12, 2), nullable=False),
    Column("contributions", Numeric(12, 2), nullable=False, server_default="0"),
    Column("status", String(20), nullable=False, server_default="ongoing"),
    Column("end_date", Date),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

category_limits = Table(
    CATEGORY_LIMITS,
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(128), nullable=False, index=True),
    Column("category", String(100), nullable=False),
    Column("limit_amount", Numeric(12, 2), nullable=False),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("user_id", "category", name="uq_category_limits_user_category"),
)

recurring_payments = Table(
    RECURRING_PAYMENTS,
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(128), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("start_date", Date, nullable=False),
    Column("frequency", String(20), nullable=False, server_default="monthly"),
    Column("notes", String(500)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

TABLES = {
    TRANSACTIONS: transactions,
    INCOMES: incomes,
    GOALS: goals,
    CATEGORY_LIMITS: category_limits,
    RECURRING_PAYMENTS: recurring_payments,
}
WRITABLE_COLUMNS = {
    TRANSACTIONS: {"amount", "category", "date", "notes"},
    INCOMES: {"amount", "category", "date", "notes"},
    GOALS: {"name", "description", "target_amount", "contributions", "status", "end_date"},
    CATEGORY_LIMITS: {"category", "limit_amount"},
    RECURRING_PAYMENTS: {"name", "amount", "start_date", "frequency", "notes"},
}


class StoreFailure(RuntimeError):
    """Raised when the backing database cannot complete a read or write."""


class RecordNotFound(LookupError):
    """Raised when an update or delete targets a record that does not exist."""


class RecordStore:
    """Record store for ledger entries, goals, category limits and recurring payments.

    Every query is scoped by kind and, for reads, by user id.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_schema(self) -> None:
        with self.begin() as conn:
            metadata.create_all(conn)

    @contextmanager
    def begin(self, conn: Optional[Connection] = None) -> Iterator[Connection]:
        if conn is not None:
            yield conn
            return
        try:
            with self.engine.begin() as new_conn:
                yield new_conn
        except SQLAlchemyError as exc:
            logger.error("Record store operation failed: %s", exc)
            raise StoreFailure("Record store unavailable.") from exc

    def fetch_all(
        self,
        kind: str,
        user_id: str,
        *,
        conn: Optional[Connection] = None,
        for_update: bool = False,
    ) -> List[Any]:
        """All of a user's records of ``kind`` in insertion order.

        ``for_update`` locks the returned rows until ``conn`` commits, on
        databases that support row locks.
        """
        table = _table_for(kind)
        stmt = select(table).where(table.c.user_id == user_id).order_by(table.c.id.asc())
        if for_update:
            stmt = stmt.with_for_update()
        return self._fetch(kind, stmt, conn)

    def fetch_by_user_and_month(
        self, kind: str, user_id: str, target_month: str, *, conn: Optional[Connection] = None
    ) -> List[LedgerRecord]:
        table = _ledger_table_for(kind)
        stmt = (
            select(table)
            .where(
                table.c.user_id == user_id,
                table.c.month_key == normalize_month_key(target_month),
            )
            .order_by(table.c.id.asc())
        )
        return self._fetch(kind, stmt, conn)

    def fetch_recent(
        self, kind: str, user_id: str, n: int, *, conn: Optional[Connection] = None
    ) -> List[Any]:
        if n <= 0:
            return []
        table = _table_for(kind)
        if kind in LEDGER_KINDS:
            ordering = (table.c.date.desc(), table.c.id.desc())
        else:
            ordering = (table.c.id.desc(),)
        stmt = select(table).where(table.c.user_id == user_id).order_by(*ordering).limit(n)
        return self._fetch(kind, stmt, conn)

    def fetch_by_user_and_date_range(
        self,
        kind: str,
        user_id: str,
        start_inclusive: date,
        end_exclusive: date,
        *,
        conn: Optional[Connection] = None,
    ) -> List[LedgerRecord]:
        if start_inclusive > end_exclusive:
            raise ValueError("start must be on or before end.")
        table = _ledger_table_for(kind)
        stmt = (
            select(table)
            .where(
                table.c.user_id == user_id,
                table.c.date >= start_inclusive,
                table.c.date < end_exclusive,
            )
            .order_by(table.c.date.asc(), table.c.id.asc())
        )
        return self._fetch(kind, stmt, conn)

    def get(
        self, kind: str, record_id: int, user_id: str, *, conn: Optional[Connection] = None
    ) -> Any:
        table = _table_for(kind)
        stmt = select(table).where(table.c.id == record_id, table.c.user_id == user_id)
        records = self._fetch(kind, stmt, conn)
        if not records:
            raise RecordNotFound(f"{kind} record {record_id} not found.")
        return records[0]

    def create(
        self,
        kind: str,
        data: Mapping[str, Any],
        user_id: str,
        *,
        conn: Optional[Connection] = None,
    ) -> int:
        table = _table_for(kind)
        values = _prepare_values(kind, data)
        values["user_id"] = user_id
        with self.begin(conn) as active:
            result = active.execute(insert(table).values(**values))
            record_id = result.inserted_primary_key[0]
        logger.info("Created %s record %s for user %s", kind, record_id, user_id)
        return record_id

    def update(
        self,
        kind: str,
        record_id: int,
        partial_data: Mapping[str, Any],
        *,
        user_id: Optional[str] = None,
        conn: Optional[Connection] = None,
    ) -> None:
        table = _table_for(kind)
        values = _prepare_values(kind, partial_data)
        if not values:
            raise ValueError("No fields to update.")
        conditions = [table.c.id == record_id]
        if user_id is not None:
            conditions.append(table.c.user_id == user_id)
        with self.begin(conn) as active:
            result = active.execute(update(table).where(*conditions).values(**values))
            if result.rowcount == 0:
                raise RecordNotFound(f"{kind} record {record_id} not found.")

    def increment(
        self,
        kind: str,
        record_id: int,
        column: str,
        amount: Decimal,
        *,
        user_id: Optional[str] = None,
        conn: Optional[Connection] = None,
    ) -> None:
        """Add ``amount`` to a numeric column in a single UPDATE."""
        table = _table_for(kind)
        if column not in WRITABLE_COLUMNS[kind]:
            raise ValueError(f"Unsupported fields for {kind}: {column}")
        conditions = [table.c.id == record_id]
        if user_id is not None:
            conditions.append(table.c.user_id == user_id)
        stmt = update(table).where(*conditions).values({column: table.c[column] + amount})
        with self.begin(conn) as active:
            result = active.execute(stmt)
            if result.rowcount == 0:
                raise RecordNotFound(f"{kind} record {record_id} not found.")

    def delete(
        self,
        kind: str,
        record_id: int,
        *,
        user_id: Optional[str] = None,
        conn: Optional[Connection] = None,
    ) -> None:
        table = _table_for(kind)
        conditions = [table.c.id == record_id]
        if user_id is not None:
            conditions.append(table.c.user_id == user_id)
        with self.begin(conn) as active:
            result = active.execute(table.delete().where(*conditions))
            if result.rowcount == 0:
                raise RecordNotFound(f"{kind} record {record_id} not found.")
        logger.info("Deleted %s record %s", kind, record_id)

    def _fetch(self, kind: str, stmt, conn: Optional[Connection]) -> List[Any]:
        with self.begin(conn) as active:
            rows = active.execute(stmt).mappings().all()
        return [_row_to_record(kind, row) for row in rows]


def _table_for(kind: str) -> Table:
    try:
        return TABLES[kind]
    except KeyError as exc:
        raise ValueError(f"Unsupported record kind: {kind}") from exc


def _ledger_table_for(kind: str) -> Table:
    if kind not in LEDGER_KINDS:
        raise ValueError(f"{kind} records are not dated.")
    return TABLES[kind]


def _prepare_values(kind: str, data: Mapping[str, Any]) -> dict:
    allowed = WRITABLE_COLUMNS[kind]
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unsupported fields for {kind}: {', '.join(sorted(unknown))}")
    values = dict(data)
    if kind in LEDGER_KINDS and values.get("date") is not None:
        values["month_key"] = month_key(values["date"])
    return values


def _row_to_record(kind: str, row: Mapping[str, Any]) -> Any:
    if kind in LEDGER_KINDS:
        return LedgerRecord(
            id=row["id"],
            user_id=row["user_id"],
            amount=_coerce_decimal(row["amount"]),
            category=row["category"],
            date=row["date"],
            notes=row["notes"],
        )
    if kind == GOALS:
        return Goal(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            description=row["description"],
            target_amount=_coerce_decimal(row["target_amount"]),
            contributions=_coerce_decimal(row["contributions"] or 0),
            status=row["status"],
            end_date=row["end_date"],
        )
    if kind == RECURRING_PAYMENTS:
        return RecurringPayment(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            amount=_coerce_decimal(row["amount"]),
            start_date=row["start_date"],
            frequency=row["frequency"],
            notes=row["notes"],
        )
    return CategoryLimit(
        id=row["id"],
        category=row["category"],
        limit=_coerce_decimal(row["limit_amount"]),
    )


def _coerce_decimal(value: Decimal | float | int | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))
