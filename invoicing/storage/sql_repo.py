from __future__ import annotations
import datetime as dt
import logging
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterator, List, Optional, Union

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from invoicing.errors import NotFoundError, StorageError
from invoicing.models.common import decimal_to_text
from invoicing.models.invoice import Invoice, LineItem, Payment
from .repo import InvoiceRepository
from .schema import create_engine, install_sqlite_pragmas, invoices, line_items, migrate, payments

log = logging.getLogger(__name__)


def _like_pattern(term: str) -> str:
    esc = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{esc}%"


class SqlInvoiceRepository(InvoiceRepository):
    """
    Repo SQL (SQLAlchemy Core).
    - chaque écriture = une seule transaction (en-tête, purge des lignes filles, réinsertion)
    - toute erreur SQLAlchemy ressort en StorageError, après rollback
    - hydratation : 1 requête d'en-tête + 2 requêtes filles par facture
    """

    def __init__(
        self,
        database: Union[str, Engine],
        *,
        echo: bool = False,
        auto_migrate: bool = True,
    ) -> None:
        if isinstance(database, Engine):
            self.engine = install_sqlite_pragmas(database)
        else:
            self.engine = create_engine(database, echo=echo)
        if auto_migrate:
            self.migrate()

    def migrate(self) -> int:
        try:
            return migrate(self.engine)
        except SQLAlchemyError as exc:
            log.error("schema migration failed: %s", exc)
            raise StorageError("Failed initializing schema") from exc

    # ---------------- transactions ---------------- #

    @contextmanager
    def _transaction(self, action: str) -> Iterator[Connection]:
        try:
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as exc:
            log.error("storage failure (%s): %s", action, exc)
            raise StorageError(f"Failed to {action}") from exc
        except InvalidOperation as exc:
            log.error("corrupt decimal value (%s): %s", action, exc)
            raise StorageError(f"Failed to {action}: corrupt monetary value") from exc

    # ---------------- mapping lignes <-> agrégat ---------------- #

    @staticmethod
    def _item_rows(invoice: Invoice) -> List[Dict[str, Any]]:
        return [
            {
                "invoice_id": invoice.id,
                "position": pos,
                "description": it.description,
                "price": None if it.price is None else decimal_to_text(it.price),
            }
            for pos, it in enumerate(invoice.items)
        ]

    @staticmethod
    def _payment_row(invoice_id: str, position: int, p: Payment) -> Dict[str, Any]:
        return {
            "id": p.id,
            "invoice_id": invoice_id,
            "position": position,
            "amount": decimal_to_text(p.amount),
            "method": p.method,
            "date": p.date.isoformat(),
            "reference": p.reference,
        }

    @staticmethod
    def _to_invoice(row: Any) -> Invoice:
        return Invoice(
            id=row.id,
            customer_name=row.customer_name,
            date=dt.date.fromisoformat(row.date),
        )

    @staticmethod
    def _load_items(conn: Connection, invoice_id: str) -> List[LineItem]:
        rows = conn.execute(
            sa.select(line_items.c.description, line_items.c.price)
            .where(line_items.c.invoice_id == invoice_id)
            .order_by(line_items.c.position)
        )
        # prix NULL (anciennes bases) compté comme 0
        return [
            LineItem(description=r.description, price=Decimal(r.price if r.price is not None else "0"))
            for r in rows
        ]

    @staticmethod
    def _load_payments(conn: Connection, invoice_id: str, chronological: bool = False) -> List[Payment]:
        # agrégat : ordre d'enregistrement ; historique : par date puis enregistrement
        order = (payments.c.date, payments.c.position) if chronological else (payments.c.position,)
        rows = conn.execute(
            sa.select(payments)
            .where(payments.c.invoice_id == invoice_id)
            .order_by(*order)
        )
        return [
            Payment(
                id=r.id,
                amount=Decimal(r.amount),
                method=r.method,
                date=dt.date.fromisoformat(r.date),
                reference=r.reference,
            )
            for r in rows
        ]

    def _hydrate(self, conn: Connection, row: Any) -> Invoice:
        inv = self._to_invoice(row)
        inv.items.extend(self._load_items(conn, inv.id))
        inv.payments.extend(self._load_payments(conn, inv.id))
        return inv

    def _load(self, conn: Connection, invoice_id: str) -> Optional[Invoice]:
        row = conn.execute(sa.select(invoices).where(invoices.c.id == invoice_id)).first()
        return self._hydrate(conn, row) if row is not None else None

    # ---------------- CRUD ---------------- #

    def save(self, invoice: Invoice) -> Invoice:
        header = {
            "customer_name": invoice.customer_name,
            "date": invoice.date.isoformat(),
        }
        with self._transaction("save invoice") as conn:
            updated = conn.execute(
                invoices.update().where(invoices.c.id == invoice.id).values(**header)
            ).rowcount
            if not updated:
                conn.execute(invoices.insert().values(id=invoice.id, **header))

            conn.execute(line_items.delete().where(line_items.c.invoice_id == invoice.id))
            item_rows = self._item_rows(invoice)
            if item_rows:
                conn.execute(line_items.insert(), item_rows)

            conn.execute(payments.delete().where(payments.c.invoice_id == invoice.id))
            pay_rows = [self._payment_row(invoice.id, pos, p) for pos, p in enumerate(invoice.payments)]
            if pay_rows:
                conn.execute(payments.insert(), pay_rows)

        log.debug(
            "saved invoice %s (%d items, %d payments)", invoice.id, len(item_rows), len(pay_rows)
        )
        return invoice

    def find_by_id(self, invoice_id: str) -> Optional[Invoice]:
        with self._transaction("find invoice") as conn:
            return self._load(conn, invoice_id)

    def find_all(self) -> List[Invoice]:
        with self._transaction("list invoices") as conn:
            rows = conn.execute(sa.select(invoices)).all()
            return [self._hydrate(conn, r) for r in rows]

    def search(self, query: Optional[str]) -> List[Invoice]:
        if query is None:
            return []
        term = query.strip()
        if not term:
            return self.find_all()

        like = _like_pattern(term.lower())
        stmt = (
            sa.select(invoices)
            .distinct()
            .select_from(
                invoices.outerjoin(line_items, line_items.c.invoice_id == invoices.c.id)
            )
            .where(
                sa.or_(
                    sa.func.lower(invoices.c.customer_name).like(like, escape="\\"),
                    sa.func.lower(line_items.c.description).like(like, escape="\\"),
                )
            )
        )
        with self._transaction("search invoices") as conn:
            rows = conn.execute(stmt).all()
            return [self._hydrate(conn, r) for r in rows]

    def delete_by_id(self, invoice_id: str) -> bool:
        # lignes et paiements partent par ON DELETE CASCADE
        with self._transaction("delete invoice") as conn:
            deleted = conn.execute(invoices.delete().where(invoices.c.id == invoice_id)).rowcount
        if deleted:
            log.debug("deleted invoice %s", invoice_id)
        return bool(deleted)

    # ---------------- paiements ---------------- #

    def add_payment(
        self,
        invoice_id: str,
        amount: Any,
        method: Optional[str],
        when: Optional[dt.date] = None,
        reference: Optional[str] = None,
    ) -> Invoice:
        with self._transaction("add payment") as conn:
            inv = self._load(conn, invoice_id)
            if inv is None:
                raise NotFoundError(invoice_id)
            payment = inv.add_payment(amount, method, when, reference)
            next_pos = conn.execute(
                sa.select(sa.func.coalesce(sa.func.max(payments.c.position) + 1, 0))
                .where(payments.c.invoice_id == invoice_id)
            ).scalar()
            conn.execute(payments.insert().values(**self._payment_row(invoice_id, next_pos, payment)))
        log.debug("payment %s recorded on invoice %s", payment.id, invoice_id)
        return inv

    def get_payment_history(self, invoice_id: str) -> List[Payment]:
        with self._transaction("load payment history") as conn:
            exists = conn.execute(
                sa.select(invoices.c.id).where(invoices.c.id == invoice_id)
            ).first()
            if exists is None:
                raise NotFoundError(invoice_id)
            return self._load_payments(conn, invoice_id, chronological=True)
