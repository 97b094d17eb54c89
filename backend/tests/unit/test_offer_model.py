"""
Unit tests for the offer model.

WHAT: Test offer validation and payment-term parsing
WHY: Every tool call carrying terms goes through validate_offer
HOW: Valid and invalid payloads against validate_offer / parse_payment_terms
"""

import pytest

from sourcing.models.offer import Offer, parse_payment_terms, validate_offer
from sourcing.utils.exceptions import ValidationException


@pytest.mark.unit
def test_validate_offer_accepts_camel_case_payload():
    """Test a well-formed tool payload validates."""
    offer = validate_offer({"unitPrice": 24.5, "leadTimeDays": 30, "paymentTerms": "30/70"})

    assert offer.unit_price == 24.5
    assert offer.lead_time_days == 30
    assert offer.payment_terms == "30/70"


@pytest.mark.unit
@pytest.mark.parametrize("field,value", [
    ("unitPrice", 0),
    ("unitPrice", -3.0),
    ("leadTimeDays", 0),
    ("leadTimeDays", -10),
])
def test_validate_offer_rejects_non_positive_values(field, value):
    """Test zero or negative price / lead time is a validation error."""
    payload = {"unitPrice": 20.0, "leadTimeDays": 30, "paymentTerms": "50/50", field: value}

    with pytest.raises(ValidationException) as exc_info:
        validate_offer(payload)

    assert exc_info.value.code == "VALIDATION_ERROR"
    assert any(field in e["field"] for e in exc_info.value.details["field_errors"])


@pytest.mark.unit
def test_validate_offer_rejects_missing_fields():
    """Test payment terms are required."""
    with pytest.raises(ValidationException):
        validate_offer({"unitPrice": 20.0, "leadTimeDays": 30})


@pytest.mark.unit
def test_validate_offer_rejects_non_object():
    """Test a string payload is rejected before pydantic sees it."""
    with pytest.raises(ValidationException):
        validate_offer("20 dollars")


@pytest.mark.unit
def test_line_total_is_filled_from_quantity_and_price():
    """Test lineTotal defaults to quantity * unitPrice."""
    offer = validate_offer({
        "unitPrice": 12.0,
        "leadTimeDays": 21,
        "paymentTerms": "100",
        "products": [{"productId": "p1", "productName": "Tote", "quantity": 100, "unitPrice": 12.0}],
    })

    assert offer.products[0].line_total == 1200.0


@pytest.mark.unit
def test_inconsistent_line_total_is_rejected():
    """Test a lineTotal that disagrees with quantity * unitPrice fails."""
    with pytest.raises(ValidationException):
        validate_offer({
            "unitPrice": 12.0,
            "leadTimeDays": 21,
            "paymentTerms": "100",
            "products": [{
                "productId": "p1", "productName": "Tote",
                "quantity": 100, "unitPrice": 12.0, "lineTotal": 999.0,
            }],
        })


@pytest.mark.unit
def test_payment_terms_are_stored_opaquely():
    """Test unusual payment terms still validate."""
    offer = validate_offer({"unitPrice": 20.0, "leadTimeDays": 30, "paymentTerms": "Net 60"})

    assert offer.payment_terms == "Net 60"


@pytest.mark.unit
def test_validate_offer_accepts_offer_instance():
    """Test an Offer instance round-trips through validation."""
    original = Offer(unit_price=18.0, lead_time_days=14, payment_terms="33/33/33")

    assert validate_offer(original) == original


@pytest.mark.unit
@pytest.mark.parametrize("terms,expected", [
    ("30/70", [30, 70]),
    ("33/33/33", [33, 33, 33]),
    ("100", [100]),
    ("50% / 50%", [50, 50]),
    ("Net 30", None),
    ("", None),
    ("30/", None),
])
def test_parse_payment_terms(terms, expected):
    """Test slash-delimited percentages parse, anything else is None."""
    assert parse_payment_terms(terms) == expected
