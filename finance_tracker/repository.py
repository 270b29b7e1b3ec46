"""SQLAlchemy Core queries for budgets, transactions and categories.

Every function takes an open ``Connection`` so callers decide the
transaction boundary (``with engine.begin() as conn``).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Connection

from finance_tracker.budget_engine import Budget, Scope, Transaction, scope_for
from finance_tracker.db import budgets, categories, transactions


def _budget_select():
    return select(budgets, categories.c.name.label("category_name")).select_from(
        budgets.outerjoin(categories, budgets.c.category_id == categories.c.id)
    )


def _row_to_budget(row) -> Budget:
    return Budget(
        id=row["id"],
        user_id=row["user_id"],
        year=row["year"],
        month=row["month"],
        scope=scope_for(row["category_id"]),
        monthly_limit=row["monthly_limit"],
        allow_rollover=bool(row["allow_rollover"]),
        prevent_exceed=bool(row["prevent_exceed"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        category_name=row["category_name"],
    )


def find_budgets_for_user(conn: Connection, user_id: int) -> list[Budget]:
    rows = conn.execute(
        _budget_select()
        .where(budgets.c.user_id == user_id)
        .order_by(budgets.c.year.desc(), budgets.c.month.desc(), budgets.c.id.asc())
    ).mappings().all()
    return [_row_to_budget(row) for row in rows]


def find_budgets_for_month(
    conn: Connection, user_id: int, year: int, month: int
) -> list[Budget]:
    rows = conn.execute(
        _budget_select()
        .where(
            budgets.c.user_id == user_id,
            budgets.c.year == year,
            budgets.c.month == month,
        )
        .order_by(budgets.c.id.asc())
    ).mappings().all()
    return [_row_to_budget(row) for row in rows]


def find_overall_budget(
    conn: Connection, user_id: int, year: int, month: int
) -> Optional[Budget]:
    row = conn.execute(
        _budget_select().where(
            budgets.c.user_id == user_id,
            budgets.c.year == year,
            budgets.c.month == month,
            budgets.c.category_id.is_(None),
        )
    ).mappings().first()
    return _row_to_budget(row) if row else None


def find_category_budgets(
    conn: Connection, user_id: int, year: int, month: int
) -> list[Budget]:
    rows = conn.execute(
        _budget_select()
        .where(
            budgets.c.user_id == user_id,
            budgets.c.year == year,
            budgets.c.month == month,
            budgets.c.category_id.is_not(None),
        )
        .order_by(budgets.c.id.asc())
    ).mappings().all()
    return [_row_to_budget(row) for row in rows]


def find_budget_by_scope(
    conn: Connection, user_id: int, year: int, month: int, scope: Scope
) -> Optional[Budget]:
    row = conn.execute(
        _budget_select().where(
            budgets.c.user_id == user_id,
            budgets.c.year == year,
            budgets.c.month == month,
            budgets.c.scope_key == scope.key,
        )
    ).mappings().first()
    return _row_to_budget(row) if row else None


def get_budget(conn: Connection, budget_id: int) -> Optional[Budget]:
    row = conn.execute(
        _budget_select().where(budgets.c.id == budget_id)
    ).mappings().first()
    return _row_to_budget(row) if row else None


def insert_budget(
    conn: Connection,
    *,
    user_id: int,
    year: int,
    month: int,
    scope: Scope,
    monthly_limit: Decimal,
    allow_rollover: bool,
    prevent_exceed: bool,
    now: datetime,
) -> Budget:
    result = conn.execute(
        insert(budgets).values(
            user_id=user_id,
            year=year,
            month=month,
            scope_key=scope.key,
            category_id=scope.category_id,
            monthly_limit=monthly_limit,
            allow_rollover=allow_rollover,
            prevent_exceed=prevent_exceed,
            created_at=now,
            updated_at=now,
        )
    )
    return get_budget(conn, result.inserted_primary_key[0])


def update_budget(
    conn: Connection,
    budget_id: int,
    *,
    monthly_limit: Decimal,
    allow_rollover: bool,
    prevent_exceed: bool,
    now: datetime,
) -> Budget:
    conn.execute(
        update(budgets)
        .where(budgets.c.id == budget_id)
        .values(
            monthly_limit=monthly_limit,
            allow_rollover=allow_rollover,
            prevent_exceed=prevent_exceed,
            updated_at=now,
        )
    )
    return get_budget(conn, budget_id)


def delete_budget(conn: Connection, budget_id: int) -> int:
    result = conn.execute(delete(budgets).where(budgets.c.id == budget_id))
    return result.rowcount


def _transaction_select():
    return select(transactions, categories.c.name.label("category_name")).select_from(
        transactions.outerjoin(categories, transactions.c.category_id == categories.c.id)
    )


def _row_to_transaction(row) -> Transaction:
    return Transaction(
        id=row["id"],
        user_id=row["user_id"],
        amount=row["amount"],
        type=row["type"],
        date=row["date"],
        category_id=row["category_id"],
        category_name=row["category_name"],
        note=row["note"],
    )


def fetch_transactions(
    conn: Connection,
    user_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    category_id: Optional[int] = None,
) -> list[Transaction]:
    conditions = [transactions.c.user_id == user_id]
    if start_date is not None:
        conditions.append(transactions.c.date >= start_date)
    if end_date is not None:
        conditions.append(transactions.c.date <= end_date)
    if category_id is not None:
        conditions.append(transactions.c.category_id == category_id)
    rows = conn.execute(
        _transaction_select()
        .where(*conditions)
        .order_by(transactions.c.date.desc(), transactions.c.id.desc())
    ).mappings().all()
    return [_row_to_transaction(row) for row in rows]


def get_transaction(conn: Connection, transaction_id: int) -> Optional[Transaction]:
    row = conn.execute(
        _transaction_select().where(transactions.c.id == transaction_id)
    ).mappings().first()
    return _row_to_transaction(row) if row else None


def insert_transaction(conn: Connection, user_id: int, txn: Transaction) -> Transaction:
    result = conn.execute(
        insert(transactions).values(
            user_id=user_id,
            amount=txn.amount,
            type=txn.type,
            date=txn.date,
            category_id=txn.category_id,
            note=txn.note,
        )
    )
    return get_transaction(conn, result.inserted_primary_key[0])


def update_transaction(conn: Connection, transaction_id: int, txn: Transaction) -> Transaction:
    conn.execute(
        update(transactions)
        .where(transactions.c.id == transaction_id)
        .values(
            amount=txn.amount,
            type=txn.type,
            date=txn.date,
            category_id=txn.category_id,
            note=txn.note,
        )
    )
    return get_transaction(conn, transaction_id)


def delete_transaction(conn: Connection, transaction_id: int) -> int:
    result = conn.execute(delete(transactions).where(transactions.c.id == transaction_id))
    return result.rowcount


def get_category(conn: Connection, category_id: int):
    return conn.execute(
        select(categories).where(categories.c.id == category_id)
    ).mappings().first()


def list_categories(conn: Connection, user_id: int):
    return conn.execute(
        select(categories)
        .where(categories.c.user_id == user_id)
        .order_by(categories.c.name.asc(), categories.c.id.asc())
    ).mappings().all()


def insert_category(conn: Connection, user_id: int, name: str):
    result = conn.execute(insert(categories).values(user_id=user_id, name=name))
    return get_category(conn, result.inserted_primary_key[0])


def delete_category(conn: Connection, category_id: int) -> int:
    result = conn.execute(delete(categories).where(categories.c.id == category_id))
    return result.rowcount


def category_in_use(conn: Connection, category_id: int) -> bool:
    txn_match = conn.execute(
        select(transactions.c.id)
        .where(transactions.c.category_id == category_id)
        .limit(1)
    ).first()
    if txn_match:
        return True
    budget_match = conn.execute(
        select(budgets.c.id).where(budgets.c.category_id == category_id).limit(1)
    ).first()
    return bool(budget_match)
