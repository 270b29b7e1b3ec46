from __future__ import annotations

import csv
import io
from typing import Iterable

from finance_tracker.budget_engine import Transaction

EXPORT_HEADERS = ["ID", "Amount", "Type", "Date", "Note", "Category"]


def transactions_to_csv(transactions: Iterable[Transaction]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_HEADERS)
    for txn in transactions:
        writer.writerow(
            [
                txn.id if txn.id is not None else "",
                f"{txn.amount:.2f}" if txn.amount is not None else "0.00",
                txn.type or "",
                txn.date.isoformat() if txn.date else "",
                txn.note or "",
                txn.category_name or "",
            ]
        )
    return buffer.getvalue()
