"""
Shared fixtures for backend tests.

`receipt` is a fully consistent IDR restaurant receipt: every rule passes,
so a test can break exactly one thing and assert on the issue it causes.
Each test gets its own copy and may mutate it freely.
"""
from datetime import datetime, timezone

import pytest


@pytest.fixture
def receipt():
    return {
        "header": {
            "receipt_number": "INV/2024/0012",
            "timestamp": "2024-03-01T19:42:00+07:00",
            "store_name": "Warung Sederhana",
            "store_address": "Jl. Merdeka 10, Bandung",
        },
        "category": "Dining",
        "items": [
            {"description": "Nasi Goreng", "quantity": 2, "unit_price": 25000, "total_price": 50000},
            {"description": "Es Teh", "quantity": 2, "unit_price": 5000, "total_price": 10000},
        ],
        "payment": {
            "total_amount": 66600,
            "currency": "IDR",
            "payment_methods": [
                {"method": "Credit Card", "amount": 66600, "card_four_digit": "4242"},
            ],
        },
        "summary": {
            "subtotal": 60000,
            "taxes": 6600,
            "total": 66600,
        },
    }


@pytest.fixture
def now():
    """Fixed clock for timestamp rules."""
    return datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
