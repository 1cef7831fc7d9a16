from __future__ import annotations
import datetime as dt
from decimal import Decimal
from typing import Any, Iterable, List, Optional

from pydantic import ConfigDict, Field, field_validator

from invoicing.errors import ValidationError
from .common import ZERO, DomainModel, gen_id, is_blank, to_decimal


class LineItem(DomainModel):
    """Ligne de facture : libellé + prix (négatif accepté = remise)."""

    model_config = ConfigDict(frozen=True)

    description: str
    price: Decimal

    @field_validator("description", mode="before")
    @classmethod
    def _check_description(cls, v: Any) -> Any:
        if is_blank(v):
            raise ValueError("Description cannot be null or empty")
        return v

    @field_validator("price", mode="before")
    @classmethod
    def _check_price(cls, v: Any) -> Decimal:
        if v is None:
            raise ValueError("Price cannot be null")
        return to_decimal(v, "Price")


class Payment(DomainModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=gen_id)
    amount: Decimal
    method: str
    date: dt.date = Field(default_factory=dt.date.today)
    reference: str = ""

    @field_validator("amount", mode="before")
    @classmethod
    def _check_amount(cls, v: Any) -> Decimal:
        d = to_decimal(v, "Amount")
        if d <= ZERO:
            raise ValueError("Amount must be positive")
        return d

    @field_validator("method", mode="before")
    @classmethod
    def _check_method(cls, v: Any) -> str:
        if is_blank(v):
            raise ValueError("Payment method cannot be null or empty")
        return str(v).strip()

    @field_validator("date", mode="before")
    @classmethod
    def _default_date(cls, v: Any) -> Any:
        return dt.date.today() if v is None else v

    @field_validator("reference", mode="before")
    @classmethod
    def _default_reference(cls, v: Any) -> str:
        return "" if v is None else str(v)


class Invoice(DomainModel):
    """
    Agrégat facture : en-tête + lignes + historique des paiements.
    - total / payé / reste dû toujours recalculés depuis les collections
    - un paiement ne peut jamais dépasser le reste dû
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=gen_id, frozen=True)
    customer_name: str
    date: dt.date = Field(default_factory=dt.date.today)
    items: List[LineItem] = Field(default_factory=list)
    payments: List[Payment] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _check_id(cls, v: Any) -> str:
        if is_blank(v):
            raise ValueError("Id cannot be null or empty")
        return str(v).strip()

    @field_validator("customer_name", mode="before")
    @classmethod
    def _check_customer_name(cls, v: Any) -> str:
        if is_blank(v):
            raise ValueError("Customer name cannot be null or empty")
        return str(v).strip()

    @field_validator("date", mode="before")
    @classmethod
    def _check_date(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("Date cannot be null")
        return v

    @classmethod
    def new(cls, customer_name: Optional[str]) -> "Invoice":
        return cls(customer_name=customer_name)

    # ---------- mutateurs ---------- #

    def set_customer_name(self, name: Optional[str]) -> None:
        self.customer_name = name

    def set_date(self, when: Optional[dt.date]) -> None:
        self.date = when

    def add_item(self, item: Optional[LineItem]) -> None:
        if item is None:
            raise ValidationError("Item cannot be null")
        if not isinstance(item, LineItem):
            raise ValidationError(f"Expected a LineItem, got {type(item).__name__}")
        self.items.append(item)

    def clear_items(self) -> None:
        self.items.clear()

    def replace_items(self, items: Iterable[LineItem]) -> None:
        new_items = list(items)
        for it in new_items:
            if not isinstance(it, LineItem):
                raise ValidationError("Item cannot be null")
        # liste entièrement contrôlée avant de toucher à l'agrégat
        self.items = new_items

    def add_payment(
        self,
        amount: Any,
        method: Optional[str],
        when: Optional[dt.date] = None,
        reference: Optional[str] = None,
    ) -> Payment:
        """
        Enregistre un paiement partiel ou total.
        Refuse montant nul/négatif, moyen vide, ou montant > reste dû (calculé avant ajout).
        """
        if amount is None:
            raise ValidationError("Amount cannot be null")
        value = to_decimal(amount, "Amount")
        if value <= ZERO:
            raise ValidationError("Amount must be positive")
        if is_blank(method):
            raise ValidationError("Payment method cannot be null or empty")
        if value > self.remaining_balance():
            raise ValidationError("Payment amount cannot exceed remaining balance")

        payment = Payment(amount=value, method=method, date=when, reference=reference)
        self.payments.append(payment)
        return payment

    # ---------- calculs ---------- #

    def total(self) -> Decimal:
        return sum((it.price for it in self.items if it.price is not None), ZERO)

    def amount_paid(self) -> Decimal:
        return sum((p.amount for p in self.payments), ZERO)

    def remaining_balance(self) -> Decimal:
        return self.total() - self.amount_paid()

    def is_paid(self) -> bool:
        return self.remaining_balance() <= ZERO

    def payment_history(self) -> List[Payment]:
        # tri stable : à date égale, l'ordre d'enregistrement est conservé
        return sorted(self.payments, key=lambda p: p.date)

    def last_payment_date(self) -> Optional[dt.date]:
        return self.payments[-1].date if self.payments else None

    def last_payment_method(self) -> Optional[str]:
        return self.payments[-1].method if self.payments else None
