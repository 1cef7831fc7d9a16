from __future__ import annotations
from typing import Optional


class InvoiceError(Exception):
    """Base commune des erreurs du registre de factures."""


class ValidationError(InvoiceError, ValueError):
    """Entrée appelant invalide (champ vide, montant <= 0, trop-perçu...)."""


class NotFoundError(InvoiceError, LookupError):
    def __init__(self, invoice_id: Optional[str], message: Optional[str] = None) -> None:
        self.invoice_id = invoice_id
        super().__init__(message or f"Invoice not found with ID: {invoice_id}")


class StorageError(InvoiceError, RuntimeError):
    """Échec du stockage ; la transaction a déjà été annulée quand on la lève."""
