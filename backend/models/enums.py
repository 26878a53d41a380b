"""Closed enumerations shared by the schemas and the validation engine."""
from enum import Enum


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


class IssueType(str, Enum):
    # Date / time
    TIMESTAMP_FUTURE = "timestamp_future"
    TIMESTAMP_TOO_OLD = "timestamp_too_old"
    TIMESTAMP_INVALID = "timestamp_invalid"
    TIMESTAMP_FORMAT = "timestamp_format"

    # Tax
    UNUSUAL_TAX_RATE = "unusual_tax_rate"

    # Totals
    ITEMS_SUBTOTAL_MISMATCH = "items_subtotal_mismatch"
    SUMMARY_CALCULATION_ERROR = "summary_calculation_error"
    ITEM_PRICE_CALCULATION = "item_price_calculation"
    DISCREPANCY_EXPLANATION = "discrepancy_explanation"
    SERVICE_CHARGE_CALCULATION = "service_charge_calculation"
    NEGATIVE_AMOUNT = "negative_amount"
    TOTAL_TOO_SMALL = "total_too_small"

    # Header / payment
    INVALID_CURRENCY_CODE = "invalid_currency_code"
    SUSPICIOUS_RECEIPT_NUMBER = "suspicious_receipt_number"
    PAYMENT_METHODS_MISMATCH = "payment_methods_mismatch"
    CARD_NUMBER_FORMAT = "card_number_format"
    EMPTY_STORE_NAME = "empty_store_name"
    EMPTY_STORE_ADDRESS = "empty_store_address"

    # Items
    DUPLICATE_ITEMS = "duplicate_items"


class SpendCategory(str, Enum):
    GROCERIES = "Groceries"
    DINING = "Dining"
    TRANSPORTATION = "Transportation"
    ENTERTAINMENT = "Entertainment"
    UTILITIES = "Utilities"
    SHOPPING = "Shopping"
    HEALTHCARE = "Healthcare"
    TRAVEL = "Travel"
    OTHER = "Other"


class PaymentMethodKind(str, Enum):
    CASH = "Cash"
    CREDIT_CARD = "Credit Card"
    DEBIT_CARD = "Debit Card"
    DIGITAL_WALLET = "Digital Wallet"
    OTHER = "Other"
