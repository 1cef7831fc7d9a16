# invoicing/services/invoice_service.py
from __future__ import annotations
import datetime as dt
import logging
from typing import Any, Iterable, List, Mapping, Optional

from invoicing.errors import NotFoundError, ValidationError
from invoicing.models.common import ZERO, is_blank, to_decimal
from invoicing.models.invoice import Invoice, LineItem, Payment
from invoicing.storage.repo import InvoiceRepository

log = logging.getLogger(__name__)


def _require_id(invoice_id: Optional[str]) -> str:
    if is_blank(invoice_id):
        raise ValidationError("Invoice ID cannot be null or empty")
    return str(invoice_id).strip()


def _coerce_item(obj: Any) -> LineItem:
    """LineItem ou dict {'description', 'price'} (payload JSON) -> LineItem contrôlé."""
    if isinstance(obj, LineItem):
        desc, price = obj.description, obj.price
    elif isinstance(obj, Mapping):
        desc, price = obj.get("description"), obj.get("price")
    else:
        raise ValidationError(f"Unsupported line item: {type(obj).__name__}")
    if is_blank(desc):
        raise ValidationError("Item description cannot be blank")
    if price is None:
        raise ValidationError("Item price cannot be null")
    return LineItem(description=str(desc).strip(), price=price)


# ---------- Service ----------
class InvoiceService:
    """
    Point d'entrée validé du registre (utilisé par les adaptateurs HTTP / CLI).
    Contrôle les entrées puis délègue au repo injecté.
    """

    def __init__(self, repository: InvoiceRepository):
        self.repo = repository

    # ----------- création / lecture -----------
    def create_invoice(self, customer_name: Optional[str], items: Optional[Iterable[Any]] = None) -> Invoice:
        if is_blank(customer_name):
            raise ValidationError("Customer name is required and cannot be blank")
        inv = Invoice.new(str(customer_name).strip())
        for item in items or []:
            if item is None:
                continue
            inv.add_item(_coerce_item(item))
        self.repo.save(inv)
        log.info("invoice %s created for %r (%d items)", inv.id, inv.customer_name, len(inv.items))
        return inv

    def get_by_id(self, invoice_id: str) -> Optional[Invoice]:
        return self.repo.find_by_id(invoice_id)

    def get_all(self) -> List[Invoice]:
        return self.repo.find_all()

    def search(self, query: Optional[str]) -> List[Invoice]:
        return self.repo.search(query)

    def _require_invoice(self, invoice_id: str) -> Invoice:
        inv = self.repo.find_by_id(invoice_id)
        if inv is None:
            raise NotFoundError(invoice_id)
        return inv

    # ----------- lignes -----------
    def add_line_item(self, invoice_id: Optional[str], description: Optional[str], price: Any) -> Invoice:
        iid = _require_id(invoice_id)
        if is_blank(description):
            raise ValidationError("Description cannot be null or empty")
        if price is None:
            raise ValidationError("Price cannot be null")
        item = LineItem(description=str(description).strip(), price=price)

        inv = self._require_invoice(iid)
        inv.add_item(item)
        return self.repo.save(inv)

    def update_line_items(self, invoice_id: Optional[str], items: Optional[Iterable[Any]]) -> Invoice:
        """
        Remplacement complet des lignes.
        Tout est contrôlé avant modification : une ligne invalide => aucune modification.
        """
        iid = _require_id(invoice_id)
        inv = self._require_invoice(iid)
        new_items = [_coerce_item(it) for it in (items or []) if it is not None]
        inv.replace_items(new_items)
        return self.repo.save(inv)

    # ----------- paiements -----------
    def add_payment(
        self,
        invoice_id: Optional[str],
        amount: Any,
        method: Optional[str],
        date: Optional[dt.date] = None,
        reference: Optional[str] = None,
    ) -> Invoice:
        iid = _require_id(invoice_id)
        if amount is None:
            raise ValidationError("Amount cannot be null")
        value = to_decimal(amount, "Amount")
        if value <= ZERO:
            raise ValidationError("Amount must be greater than zero")
        if is_blank(method):
            raise ValidationError("Payment method cannot be null or empty")
        # le contrôle du trop-perçu est fait par le modèle
        return self.repo.add_payment(iid, value, str(method).strip(), date, reference)

    def get_payment_history(self, invoice_id: str) -> List[Payment]:
        return self.repo.get_payment_history(invoice_id)

    # ----------- mise à jour / suppression -----------
    def update_invoice(self, invoice: Optional[Invoice]) -> Invoice:
        if invoice is None:
            raise ValidationError("Invoice cannot be null")
        if is_blank(getattr(invoice, "id", None)):
            raise ValidationError("Invoice ID cannot be null or empty")
        if is_blank(getattr(invoice, "customer_name", None)):
            raise ValidationError("Customer name cannot be null or empty")
        if getattr(invoice, "date", None) is None:
            raise ValidationError("Invoice date cannot be null")

        # mise à jour seulement, pas d'upsert
        if self.repo.find_by_id(invoice.id) is None:
            raise NotFoundError(invoice.id)
        return self.repo.save(invoice)

    def delete_invoice(self, invoice_id: Optional[str]) -> bool:
        iid = _require_id(invoice_id)
        removed = self.repo.delete_by_id(iid)
        if removed:
            log.info("invoice %s deleted", iid)
        return removed
