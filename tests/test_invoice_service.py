import datetime as dt
from decimal import Decimal

import pytest

from invoicing.errors import InvoiceError, NotFoundError, ValidationError
from invoicing.models.invoice import Invoice, LineItem


@pytest.fixture
def acme(service):
    return service.create_invoice("Acme Co", [LineItem(description="Consulting", price=Decimal("100.00"))])


def test_error_kinds_are_distinct():
    assert issubclass(ValidationError, InvoiceError)
    assert issubclass(NotFoundError, InvoiceError)
    assert not issubclass(NotFoundError, ValidationError)


def test_create_invoice(service):
    inv = service.create_invoice("  Acme Co ", [None, LineItem(description="Consulting", price="100.00"), None])
    assert inv.customer_name == "Acme Co"
    assert inv.date == dt.date.today()
    assert len(inv.items) == 1

    stored = service.get_by_id(inv.id)
    assert stored.customer_name == "Acme Co"
    assert stored.total() == Decimal("100.00")


def test_create_invoice_from_mappings(service):
    inv = service.create_invoice("Globex", [{"description": " Hosting ", "price": "12.50"}])
    assert service.get_by_id(inv.id).items == [LineItem(description="Hosting", price="12.50")]


def test_create_invoice_without_items(service):
    inv = service.create_invoice("Solo", None)
    assert service.get_by_id(inv.id).is_paid()


@pytest.mark.parametrize("name", [None, "", "   "])
def test_create_invoice_requires_name(service, name):
    with pytest.raises(ValidationError):
        service.create_invoice(name, [])
    assert service.get_all() == []


def test_add_line_item(service, acme):
    updated = service.add_line_item(acme.id, "  Travel  ", Decimal("-20"))
    assert [it.description for it in updated.items] == ["Consulting", "Travel"]
    assert service.get_by_id(acme.id).total() == Decimal("80.00")


@pytest.mark.parametrize(
    "invoice_id, description, price",
    [(None, "x", "1"), ("  ", "x", "1"), ("id", None, "1"), ("id", "  ", "1"), ("id", "x", None)],
)
def test_add_line_item_validation(service, invoice_id, description, price):
    with pytest.raises(ValidationError):
        service.add_line_item(invoice_id, description, price)


def test_add_line_item_unknown_invoice(service):
    with pytest.raises(NotFoundError) as excinfo:
        service.add_line_item("missing", "Thing", "1")
    assert excinfo.value.invoice_id == "missing"


def test_add_payment_scenario(service, acme):
    service.add_payment(acme.id, Decimal("40.00"), "CASH")
    updated = service.add_payment(acme.id, Decimal("60.00"), "CARD")
    assert updated.is_paid()
    assert updated.amount_paid() == Decimal("100.00")

    history = service.get_payment_history(acme.id)
    assert [p.method for p in history] == ["CASH", "CARD"]
    assert all(p.date == dt.date.today() for p in history)


def test_add_payment_overpayment(service, acme):
    service.add_payment(acme.id, "10", "CASH")
    with pytest.raises(ValidationError, match="remaining balance"):
        service.add_payment(acme.id, Decimal("150.00"), "CARD")
    assert service.get_by_id(acme.id).amount_paid() == Decimal("10")


@pytest.mark.parametrize(
    "invoice_id, amount, method",
    [("", "1", "CASH"), ("x", None, "CASH"), ("x", "0", "CASH"), ("x", "-1", "CASH"), ("x", "1", " ")],
)
def test_add_payment_validation(service, invoice_id, amount, method):
    with pytest.raises(ValidationError):
        service.add_payment(invoice_id, amount, method)


def test_add_payment_unknown_invoice(service):
    with pytest.raises(NotFoundError):
        service.add_payment("missing", "1", "CASH")


def test_add_payment_with_date_and_reference(service, acme):
    service.add_payment(acme.id, "25", " CHEQUE ", dt.date(2023, 4, 1), "CHQ-0042")
    [p] = service.get_payment_history(acme.id)
    assert (p.method, p.date, p.reference) == ("CHEQUE", dt.date(2023, 4, 1), "CHQ-0042")


def test_update_line_items_replaces_all(service, acme):
    updated = service.update_line_items(acme.id, [
        LineItem(description="Design", price="40"),
        {"description": "Build", "price": "60"},
    ])
    assert [it.description for it in updated.items] == ["Design", "Build"]
    stored = service.get_by_id(acme.id)
    assert [it.description for it in stored.items] == ["Design", "Build"]
    assert stored.total() == Decimal("100")


def test_update_line_items_is_all_or_nothing(service, acme):
    with pytest.raises(ValidationError):
        service.update_line_items(acme.id, [
            {"description": "Valid", "price": "1"},
            {"description": "   ", "price": "2"},
        ])
    with pytest.raises(ValidationError):
        service.update_line_items(acme.id, [{"description": "No price", "price": None}])
    assert [it.description for it in service.get_by_id(acme.id).items] == ["Consulting"]


def test_update_line_items_unknown_invoice(service):
    with pytest.raises(NotFoundError):
        service.update_line_items("missing", [])


def test_update_invoice(service, acme):
    inv = service.get_by_id(acme.id)
    inv.set_customer_name("Acme Corporation")
    inv.set_date(dt.date(2023, 7, 14))
    service.update_invoice(inv)

    stored = service.get_by_id(acme.id)
    assert stored.customer_name == "Acme Corporation"
    assert stored.date == dt.date(2023, 7, 14)


def test_update_invoice_is_not_an_upsert(service):
    with pytest.raises(NotFoundError):
        service.update_invoice(Invoice.new("Never Saved"))
    assert service.get_all() == []


def test_update_invoice_requires_invoice(service):
    with pytest.raises(ValidationError):
        service.update_invoice(None)


def test_delete_invoice(service, acme):
    assert service.delete_invoice(acme.id) is True
    assert service.get_by_id(acme.id) is None
    assert service.delete_invoice(acme.id) is False


@pytest.mark.parametrize("invoice_id", [None, "", "  "])
def test_delete_invoice_requires_id(service, invoice_id):
    with pytest.raises(ValidationError):
        service.delete_invoice(invoice_id)


def test_search_and_get_all(service, acme):
    service.create_invoice("Initech", [{"description": "Cloud Services", "price": "5"}])
    assert [inv.customer_name for inv in service.search("  CLOUd  ")] == ["Initech"]
    assert service.search(None) == []
    assert len(service.search(" ")) == 2
    assert len(service.get_all()) == 2


def test_non_string_inputs_are_coerced(service, acme):
    inv = service.create_invoice(1234, [])
    assert inv.customer_name == "1234"

    updated = service.add_line_item(acme.id, 42, "1")
    assert updated.items[-1].description == "42"

    service.add_payment(acme.id, "10", 5)
    assert [p.method for p in service.get_payment_history(acme.id)] == ["5"]
