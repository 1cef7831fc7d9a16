from __future__ import annotations
import datetime as dt
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from invoicing.errors import NotFoundError
from invoicing.models.invoice import Invoice, Payment

log = logging.getLogger(__name__)


class InvoiceRepository(ABC):
    """
    Contrat de stockage de l'agrégat Invoice.
    save() est la source de vérité des lignes et paiements : les collections
    persistées sont remplacées par celles de l'objet en mémoire.
    """

    @abstractmethod
    def save(self, invoice: Invoice) -> Invoice:
        raise NotImplementedError

    @abstractmethod
    def find_by_id(self, invoice_id: str) -> Optional[Invoice]:
        raise NotImplementedError

    @abstractmethod
    def find_all(self) -> List[Invoice]:
        raise NotImplementedError

    @abstractmethod
    def search(self, query: Optional[str]) -> List[Invoice]:
        """None -> [], texte vide -> tout, sinon sous-chaîne (casse ignorée) client OU libellé."""
        raise NotImplementedError

    @abstractmethod
    def delete_by_id(self, invoice_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def add_payment(
        self,
        invoice_id: str,
        amount: Any,
        method: Optional[str],
        when: Optional[dt.date] = None,
        reference: Optional[str] = None,
    ) -> Invoice:
        raise NotImplementedError

    @abstractmethod
    def get_payment_history(self, invoice_id: str) -> List[Payment]:
        raise NotImplementedError


def matches(invoice: Invoice, needle: str) -> bool:
    """needle déjà en minuscules."""
    if needle in invoice.customer_name.lower():
        return True
    return any(needle in (it.description or "").lower() for it in invoice.items)


class InMemoryInvoiceRepository(InvoiceRepository):
    """
    Repo mémoire (tests, démo).
    Stocke des copies détachées : modifier un objet renvoyé ne touche pas le stock tant qu'on ne fait pas save().
    """

    def __init__(self) -> None:
        self._store: Dict[str, Invoice] = {}
        self._lock = threading.Lock()

    def save(self, invoice: Invoice) -> Invoice:
        with self._lock:
            self._store[invoice.id] = invoice.model_copy(deep=True)
        log.debug("saved invoice %s (%d items, %d payments)", invoice.id, len(invoice.items), len(invoice.payments))
        return invoice

    def find_by_id(self, invoice_id: str) -> Optional[Invoice]:
        with self._lock:
            inv = self._store.get(invoice_id)
            return inv.model_copy(deep=True) if inv is not None else None

    def find_all(self) -> List[Invoice]:
        with self._lock:
            return [inv.model_copy(deep=True) for inv in self._store.values()]

    def search(self, query: Optional[str]) -> List[Invoice]:
        if query is None:
            return []
        needle = query.strip().lower()
        if not needle:
            return self.find_all()
        return [inv for inv in self.find_all() if matches(inv, needle)]

    def delete_by_id(self, invoice_id: str) -> bool:
        with self._lock:
            removed = self._store.pop(invoice_id, None) is not None
        if removed:
            log.debug("deleted invoice %s", invoice_id)
        return removed

    def add_payment(
        self,
        invoice_id: str,
        amount: Any,
        method: Optional[str],
        when: Optional[dt.date] = None,
        reference: Optional[str] = None,
    ) -> Invoice:
        with self._lock:
            current = self._store.get(invoice_id)
            if current is None:
                raise NotFoundError(invoice_id)
            inv = current.model_copy(deep=True)
            # en cas de refus (trop-perçu...) le stock reste inchangé
            inv.add_payment(amount, method, when, reference)
            self._store[invoice_id] = inv
        return inv.model_copy(deep=True)

    def get_payment_history(self, invoice_id: str) -> List[Payment]:
        inv = self.find_by_id(invoice_id)
        if inv is None:
            raise NotFoundError(invoice_id)
        return inv.payment_history()
