from __future__ import annotations
from decimal import Decimal, InvalidOperation
from typing import Any
import uuid

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from invoicing.errors import ValidationError

ZERO = Decimal("0")


def gen_id() -> str:
    return str(uuid.uuid4())


def is_blank(value: Any) -> bool:
    return value is None or not str(value).strip()


def to_decimal(value: Any, label: str = "Amount") -> Decimal:
    """Conversion exacte -> Decimal (jamais via binaire flottant)."""
    if value is None:
        raise ValidationError(f"{label} cannot be null")
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a number")
    if isinstance(value, Decimal):
        d = value
    else:
        # float: on passe par str() pour garder la valeur affichée (0.1 -> "0.1")
        try:
            d = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(f"{label} is not a valid decimal: {value!r}") from exc
    if not d.is_finite():
        raise ValidationError(f"{label} must be a finite number")
    return d


def decimal_to_text(value: Decimal) -> str:
    # notation "plain" : 1E+2 -> "100"
    return format(value, "f")


def _first_message(exc: PydanticValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    msg = str(errors[0].get("msg", ""))
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    loc = errors[0].get("loc") or ()
    if errors[0].get("type") in ("missing", "frozen_field") and loc:
        return f"{loc[0]}: {msg}"
    return msg


class DomainModel(BaseModel):
    """
    Base des modèles du domaine.
    Les erreurs pydantic (construction ou affectation) ressortent en ValidationError du registre.
    """

    def __init__(self, **data: Any) -> None:
        try:
            super().__init__(**data)
        except PydanticValidationError as exc:
            raise ValidationError(_first_message(exc)) from exc

    def __setattr__(self, name: str, value: Any) -> None:
        try:
            super().__setattr__(name, value)
        except PydanticValidationError as exc:
            raise ValidationError(_first_message(exc)) from exc
