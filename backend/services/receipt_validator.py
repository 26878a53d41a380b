"""
Receipt Validator — cross-checks an extracted (and calculator-annotated)
receipt for internal consistency and scores how much it can be trusted.

Each rule is a plain function `rule(receipt, issues, ctx)` that appends
zero or more ValidationIssues. RULES fixes their order, which is also the
order issues come back in. A rule missing the fields it needs returns
silently; nothing here raises for malformed input. "Present" follows the
extraction's conventions: a number must be non-zero, a string non-empty.

The confidence score starts at 1.0 and loses a severity weight per issue.
Numerical mismatches are scaled by how far apart the two amounts quoted in
their message are, so a 1% mismatch costs a tenth of a 10% one.
"""
import logging
import math
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from models.enums import IssueType, PaymentMethodKind, Severity
from models.schemas import ValidationIssue, ValidationResult
from services.money import amount, as_number, round2, round_half_up, to_fixed

logger = logging.getLogger("receiptcheck.validator")

# Totals below this are assumed to have lost a thousands scaling during
# extraction. Tuned for IDR, where receipts routinely run into thousands.
TOTAL_FLOOR = float(os.environ.get("RECEIPT_TOTAL_FLOOR", "1000"))
MAX_AGE_YEARS = int(os.environ.get("RECEIPT_MAX_AGE_YEARS", "10"))

COMMON_TAX_RATES = (0, 5, 7, 10, 11, 12, 15, 18, 20, 21, 22, 25)
CARD_METHODS = {PaymentMethodKind.CREDIT_CARD.value, PaymentMethodKind.DEBIT_CARD.value}

RFC3339_RE = re.compile(
    r'\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2})', re.ASCII
)
CURRENCY_RE = re.compile(r'[A-Z]{3}')
RECEIPT_NUMBER_RE = re.compile(r'[A-Za-z0-9\-/.]+')
CARD_DIGITS_RE = re.compile(r'[0-9]{4}')
AMOUNT_IN_MESSAGE_RE = re.compile(r'([0-9]+\.[0-9]+)')

# Tried in order when fromisoformat rejects a timestamp; day-first for slashed dates
FALLBACK_TIMESTAMP_FORMATS = (
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
    "%d-%m-%Y %H:%M:%S",
    "%d-%m-%Y %H:%M",
    "%d-%m-%Y",
    "%b %d, %Y %H:%M:%S",
    "%b %d, %Y %H:%M",
    "%b %d, %Y",
    "%d %b %Y %H:%M:%S",
    "%d %b %Y %H:%M",
    "%d %b %Y",
)

SEVERITY_WEIGHTS = {
    Severity.FATAL: 0.6,
    Severity.ERROR: 0.3,
    Severity.WARNING: 0.1,
    Severity.INFO: 0.03,
}

# Issues whose message quotes two amounts; their weight scales with the gap
NUMERICAL_DISCREPANCY_TYPES = frozenset({
    IssueType.ITEMS_SUBTOTAL_MISMATCH,
    IssueType.SUMMARY_CALCULATION_ERROR,
    IssueType.ITEM_PRICE_CALCULATION,
    IssueType.PAYMENT_METHODS_MISMATCH,
    IssueType.DISCREPANCY_EXPLANATION,
})


@dataclass(frozen=True)
class RuleContext:
    now: datetime
    total_floor: float = TOTAL_FLOOR
    max_age_years: int = MAX_AGE_YEARS


Rule = Callable[[dict, list, RuleContext], None]


# ── Field access ──────────────────────────────────────────────────────────────

def _section(receipt: dict, key: str) -> Optional[dict]:
    value = receipt.get(key)
    return value if isinstance(value, dict) else None


def _list(container: Optional[dict], key: str) -> Optional[list]:
    if container is None:
        return None
    value = container.get(key)
    return value if isinstance(value, list) else None


def _present(value: Any) -> Optional[float]:
    """A number that is set and non-zero, else None."""
    number = as_number(value)
    return number if number else None


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _describe(item: dict) -> str:
    description = item.get("description")
    return description if isinstance(description, str) else "no description"


def _plain_number(value: float) -> str:
    """1000.0 as "1000", 2.5 as "2.5"; never exponent notation."""
    if float(value).is_integer():
        return str(int(value))
    return format(value, "f").rstrip("0").rstrip(".")


def _add(issues: list, type_: IssueType, message: str, severity: Severity) -> None:
    issues.append(ValidationIssue(type=type_, message=message, severity=severity))


def _parse_timestamp(text: str) -> Optional[datetime]:
    """ISO 8601 first, then the layouts receipts commonly print. None if nothing fits."""
    parsed = None
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        stripped = text.strip()
        for fmt in FALLBACK_TIMESTAMP_FORMATS:
            try:
                parsed = datetime.strptime(stripped, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _years_before(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        # 29 February in a non-leap target year rolls over to 1 March
        return moment.replace(year=moment.year - years, month=3, day=1)


# ── Rules ─────────────────────────────────────────────────────────────────────

def check_timestamp(receipt: dict, issues: list, ctx: RuleContext) -> None:
    header = _section(receipt, "header")
    timestamp = _text(header.get("timestamp")) if header else None
    if not timestamp:
        return

    parsed = _parse_timestamp(timestamp)
    if parsed is None:
        _add(issues, IssueType.TIMESTAMP_INVALID,
             "Receipt timestamp is invalid", Severity.ERROR)
        return

    if parsed > ctx.now:
        _add(issues, IssueType.TIMESTAMP_FUTURE,
             "Receipt timestamp is in the future", Severity.WARNING)
    if parsed < _years_before(ctx.now, ctx.max_age_years):
        _add(issues, IssueType.TIMESTAMP_TOO_OLD,
             f"Receipt timestamp is unusually old (>{ctx.max_age_years} years)",
             Severity.WARNING)


def check_timestamp_format(receipt: dict, issues: list, ctx: RuleContext) -> None:
    header = _section(receipt, "header")
    timestamp = _text(header.get("timestamp")) if header else None
    if not timestamp:
        return

    # e.g. 2023-10-05T14:48:00Z or 2023-10-05T14:48:00+07:00
    if not RFC3339_RE.fullmatch(timestamp):
        _add(issues, IssueType.TIMESTAMP_FORMAT,
             "Timestamp format does not follow ISO 8601 / RFC3339 standard",
             Severity.WARNING)


def check_tax_rate(receipt: dict, issues: list, ctx: RuleContext) -> None:
    summary = _section(receipt, "summary")
    if summary is None:
        return
    taxes = _present(summary.get("taxes"))
    subtotal = _present(summary.get("subtotal"))
    if taxes is None or subtotal is None:
        return

    rate = taxes / subtotal * 100
    if not math.isfinite(rate):
        return
    rounded = round_half_up(rate)
    is_common = any(abs(rounded - common) <= 1 for common in COMMON_TAX_RATES)
    if not is_common and rate > 0:
        _add(issues, IssueType.UNUSUAL_TAX_RATE,
             f"Unusual tax rate detected: {rounded}%", Severity.INFO)


def check_items_match_subtotal(receipt: dict, issues: list, ctx: RuleContext) -> None:
    summary = _section(receipt, "summary")
    items = _list(receipt, "items")
    if summary is None or items is None or not _present(summary.get("total")):
        return

    items_total = sum(amount(item.get("total_price")) for item in items if isinstance(item, dict))
    subtotal = _present(summary.get("subtotal"))
    # Extraction rounding on individual lines is tolerated up to one unit
    if subtotal is not None and abs(items_total - subtotal) > 1:
        _add(issues, IssueType.ITEMS_SUBTOTAL_MISMATCH,
             f"Sum of item prices ({to_fixed(items_total)}) doesn't match "
             f"subtotal ({to_fixed(subtotal)})",
             Severity.WARNING)


def check_currency_code(receipt: dict, issues: list, ctx: RuleContext) -> None:
    payment = _section(receipt, "payment")
    currency = payment.get("currency") if payment else None
    if not currency:
        return

    if not CURRENCY_RE.fullmatch(str(currency)):
        _add(issues, IssueType.INVALID_CURRENCY_CODE,
             f"Invalid currency code format: {currency}", Severity.WARNING)


def check_receipt_number(receipt: dict, issues: list, ctx: RuleContext) -> None:
    header = _section(receipt, "header")
    number = header.get("receipt_number") if header else None
    if not number:
        return

    if not RECEIPT_NUMBER_RE.fullmatch(str(number)):
        _add(issues, IssueType.SUSPICIOUS_RECEIPT_NUMBER,
             "Receipt number contains unusual characters", Severity.INFO)


def check_item_prices(receipt: dict, issues: list, ctx: RuleContext) -> None:
    items = _list(receipt, "items")
    if not items:
        return

    for index, item in enumerate(items):
        if not isinstance(item, dict):
            continue
        quantity = _present(item.get("quantity"))
        unit_price = _present(item.get("unit_price"))
        total_price = _present(item.get("total_price"))
        if quantity is None or unit_price is None or total_price is None:
            continue

        calculated = quantity * unit_price
        if abs(calculated - total_price) > 0.01:
            _add(issues, IssueType.ITEM_PRICE_CALCULATION,
                 f"Item {index + 1} ({_describe(item)}): quantity × unit price "
                 f"({to_fixed(calculated)}) doesn't match total price ({to_fixed(total_price)})",
                 Severity.WARNING)


def check_payment_methods_total(receipt: dict, issues: list, ctx: RuleContext) -> None:
    payment = _section(receipt, "payment")
    methods = _list(payment, "payment_methods")
    total_amount = _present(payment.get("total_amount")) if payment else None
    if methods is None or total_amount is None:
        return

    paid = sum(amount(method.get("amount")) for method in methods if isinstance(method, dict))
    if abs(paid - total_amount) > 0.01:
        _add(issues, IssueType.PAYMENT_METHODS_MISMATCH,
             f"Sum of payment methods ({to_fixed(paid)}) doesn't match "
             f"total amount ({to_fixed(total_amount)})",
             Severity.WARNING)


def check_store_info(receipt: dict, issues: list, ctx: RuleContext) -> None:
    header = _section(receipt, "header")
    if header is None:
        return

    name = header.get("store_name")
    if not isinstance(name, str) or not name.strip():
        _add(issues, IssueType.EMPTY_STORE_NAME,
             "Store name is empty or missing", Severity.WARNING)

    address = header.get("store_address")
    if not isinstance(address, str) or not address.strip():
        _add(issues, IssueType.EMPTY_STORE_ADDRESS,
             "Store address is empty or missing", Severity.INFO)


def check_duplicate_items(receipt: dict, issues: list, ctx: RuleContext) -> None:
    items = _list(receipt, "items")
    if not items or len(items) <= 1:
        return

    groups: dict[tuple, list[int]] = {}
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            continue
        description = _text(item.get("description"))
        if not description:
            continue
        raw_price = item.get("unit_price")
        price = as_number(raw_price)
        key = (description.strip().lower(), price if price is not None else repr(raw_price))
        groups.setdefault(key, []).append(index)

    for indexes in groups.values():
        if len(indexes) > 1:
            positions = ", ".join(str(i + 1) for i in indexes)
            _add(issues, IssueType.DUPLICATE_ITEMS,
                 f"Potential duplicate items found (items {positions})", Severity.INFO)


def check_summary_arithmetic(receipt: dict, issues: list, ctx: RuleContext) -> None:
    summary = _section(receipt, "summary")
    if summary is None:
        return
    subtotal = _present(summary.get("subtotal"))
    taxes = _present(summary.get("taxes"))
    total = _present(summary.get("total"))
    if subtotal is None or taxes is None or total is None:
        return

    expected = subtotal + taxes
    service_charge = _present(summary.get("service_charge"))
    if service_charge is not None:
        expected += service_charge
    discounts = _present(summary.get("discounts"))
    if discounts is not None:
        expected -= discounts

    if abs(expected - total) > 0.01:
        _add(issues, IssueType.SUMMARY_CALCULATION_ERROR,
             f"Calculated total ({to_fixed(expected)}) doesn't match "
             f"stated total ({to_fixed(total)})",
             Severity.WARNING)


def check_negative_amounts(receipt: dict, issues: list, ctx: RuleContext) -> None:
    for index, item in enumerate(_list(receipt, "items") or []):
        if not isinstance(item, dict):
            continue
        values = (as_number(item.get(key)) for key in ("quantity", "unit_price", "total_price"))
        if any(value is not None and value < 0 for value in values):
            _add(issues, IssueType.NEGATIVE_AMOUNT,
                 f"Item {index + 1} ({_describe(item)}) has negative values", Severity.WARNING)

    summary = _section(receipt, "summary")
    if summary is None:
        return
    subtotal = as_number(summary.get("subtotal"))
    if subtotal is not None and subtotal < 0:
        _add(issues, IssueType.NEGATIVE_AMOUNT, "Subtotal is negative", Severity.WARNING)
    total = as_number(summary.get("total"))
    if total is not None and total < 0:
        _add(issues, IssueType.NEGATIVE_AMOUNT, "Total amount is negative", Severity.WARNING)


def check_card_numbers(receipt: dict, issues: list, ctx: RuleContext) -> None:
    methods = _list(_section(receipt, "payment"), "payment_methods")
    if methods is None:
        return

    for index, method in enumerate(methods):
        kind = method.get("method") if isinstance(method, dict) else None
        if not isinstance(kind, str) or kind not in CARD_METHODS:
            continue
        digits = method.get("card_four_digit")
        if not digits:
            _add(issues, IssueType.CARD_NUMBER_FORMAT,
                 f"Payment method {index + 1} ({kind}) is missing card number",
                 Severity.INFO)
        elif not CARD_DIGITS_RE.fullmatch(str(digits)):
            _add(issues, IssueType.CARD_NUMBER_FORMAT,
                 f"Payment method {index + 1} has invalid card number format (should be 4 digits)",
                 Severity.WARNING)


def check_discrepancy(receipt: dict, issues: list, ctx: RuleContext) -> None:
    summary = _section(receipt, "summary")
    discrepancy = _present(summary.get("discrepancy")) if summary else None
    if discrepancy is None:
        return

    if abs(discrepancy) > 1:
        _add(issues, IssueType.DISCREPANCY_EXPLANATION,
             f"Significant discrepancy ({to_fixed(discrepancy)}) detected in receipt totals",
             Severity.WARNING)


def check_service_charge(receipt: dict, issues: list, ctx: RuleContext) -> None:
    summary = _section(receipt, "summary")
    subtotal = _present(summary.get("subtotal")) if summary else None
    if subtotal is None:
        return

    service_charge = _present(summary.get("service_charge"))
    taxes = _present(summary.get("taxes"))

    if service_charge is not None:
        percent = service_charge / subtotal * 100
        if percent > 25:
            _add(issues, IssueType.SERVICE_CHARGE_CALCULATION,
                 f"Service charge ({to_fixed(percent, 1)}%) seems unusually high",
                 Severity.INFO)
        # Parsers sometimes copy the tax line into the service charge
        if taxes is not None and abs(service_charge - taxes) < 0.01:
            _add(issues, IssueType.SERVICE_CHARGE_CALCULATION,
                 f"Service charge ({to_fixed(service_charge)}) is identical to tax amount, "
                 "possibly a duplicate or parsing error",
                 Severity.INFO)

    total = _present(summary.get("total"))
    if taxes is None or total is None:
        return

    included = summary.get("service_charge_included") is True
    include_service_charge = service_charge is not None and included
    expected = subtotal + taxes
    if include_service_charge:
        expected += service_charge
    discounts = _present(summary.get("discounts"))
    if discounts is not None:
        expected -= discounts

    if abs(expected - total) <= 0.01:
        return

    discrepancy = amount(summary.get("discrepancy"))
    if service_charge is not None and abs(abs(discrepancy) - service_charge) < 0.01:
        _add(issues, IssueType.SERVICE_CHARGE_CALCULATION,
             f"Service charge ({to_fixed(service_charge)}) appears to be "
             f"{'included in' if included else 'excluded from'} the total amount",
             Severity.INFO)
    else:
        _add(issues, IssueType.SUMMARY_CALCULATION_ERROR,
             f"Total calculation {'with' if include_service_charge else 'without'} "
             f"service charge: expected {to_fixed(expected)}, got {to_fixed(total)}",
             Severity.WARNING)


def check_total_floor(receipt: dict, issues: list, ctx: RuleContext) -> None:
    summary = _section(receipt, "summary")
    total = _present(summary.get("total")) if summary else None
    if total is None:
        return

    if total < ctx.total_floor:
        _add(issues, IssueType.TOTAL_TOO_SMALL,
             f"Total too less than {_plain_number(ctx.total_floor)}, "
             "might be because of thousand scaling",
             Severity.FATAL)


RULES: list[Rule] = [
    check_timestamp,
    check_timestamp_format,
    check_tax_rate,
    check_items_match_subtotal,
    check_currency_code,
    check_receipt_number,
    check_item_prices,
    check_payment_methods_total,
    check_store_info,
    check_duplicate_items,
    check_summary_arithmetic,
    check_negative_amounts,
    check_card_numbers,
    check_discrepancy,
    check_service_charge,
    check_total_floor,
]


# ── Scoring ───────────────────────────────────────────────────────────────────

def discrepancy_percentage(message: str) -> Optional[float]:
    """
    Percentage gap between the first two decimal amounts quoted in `message`,
    relative to the larger one. None when fewer than two amounts are found
    or the larger one is 0.
    """
    numbers = AMOUNT_IN_MESSAGE_RE.findall(message)
    if len(numbers) < 2:
        return None
    first, second = float(numbers[0]), float(numbers[1])
    base = max(first, second)
    if base == 0:
        return None
    return abs(first - second) / base * 100


def confidence_score(issues: list[ValidationIssue]) -> float:
    reduction = 0.0
    for issue in issues:
        weight = SEVERITY_WEIGHTS[issue.severity]
        if issue.type in NUMERICAL_DISCREPANCY_TYPES:
            percentage = discrepancy_percentage(issue.message)
            if percentage is not None:
                # 1% → a tenth of the weight, 10% or more → all of it
                weight *= min(1.0, percentage / 10)
        reduction += weight
    return round2(max(0.0, 1.0 - reduction))


def validate(
    receipt: dict,
    *,
    now: Optional[datetime] = None,
    total_floor: Optional[float] = None,
) -> ValidationResult:
    """
    Run every rule against `receipt` and score the outcome.

    `now` (default: current UTC time) anchors the timestamp checks and
    `total_floor` overrides RECEIPT_TOTAL_FLOOR. Fatal issues cost the most
    confidence but only error-severity issues make the receipt invalid.
    """
    if not isinstance(receipt, dict):
        receipt = {}
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    ctx = RuleContext(
        now=now,
        total_floor=TOTAL_FLOOR if total_floor is None else total_floor,
    )

    issues: list[ValidationIssue] = []
    for rule in RULES:
        rule(receipt, issues, ctx)

    score = confidence_score(issues)
    valid = not any(issue.severity == Severity.ERROR for issue in issues)
    logger.debug("Validated receipt: %d issue(s), valid=%s, confidence=%.2f",
                 len(issues), valid, score)
    return ValidationResult(valid=valid, issues=issues, confidence_score=score)
