"""
Receipt Calculator — recomputes the grand total from line items, tax,
discounts, service charge and other charges, and records how far the
stated total is from it.

Service charge is ambiguous on many receipts (printed but already folded
into the total, or printed and added on top), so both readings are tried
and the one that leaves the smaller discrepancy wins.
"""
import logging
import math

from services.money import amount, as_number, round2

logger = logging.getLogger("receiptcheck.calculator")


def calculate_discrepancy(receipt: dict) -> dict:
    """
    Return a copy of `receipt` whose summary carries `discrepancy` and
    `service_charge_included`.

    The input is returned untouched when it has no items, no summary, a
    non-numeric summary total, or amounts whose sums overflow a float. Only the top-level dict and the summary are
    copied; everything else is shared with the input and never mutated.
    """
    items = receipt.get("items")
    summary = receipt.get("summary")
    if not isinstance(items, list) or not isinstance(summary, dict):
        return receipt
    total = as_number(summary.get("total"))
    if total is None:
        return receipt

    items_total = sum(
        amount(item.get("total_price")) for item in items if isinstance(item, dict)
    )
    tax = amount(summary.get("taxes"))
    discount = amount(summary.get("discounts"))
    service_charge = amount(summary.get("service_charge"))

    other_charges = summary.get("other_charges")
    if isinstance(other_charges, list):
        other = sum(
            amount(charge.get("amount")) for charge in other_charges if isinstance(charge, dict)
        )
    else:
        other = 0.0

    expected_with = items_total + tax + service_charge + other - discount
    expected_without = items_total + tax + other - discount

    discrepancy_with = round2(total - expected_with)
    discrepancy_without = round2(total - expected_without)
    if not (math.isfinite(discrepancy_with) and math.isfinite(discrepancy_without)):
        logger.debug("Amounts overflow, leaving receipt unannotated")
        return receipt

    # Ties go to "not included"
    included = abs(discrepancy_with) < abs(discrepancy_without)
    discrepancy = discrepancy_with if included else discrepancy_without

    logger.debug(
        "Discrepancy %.2f (with service charge %.2f, without %.2f) — included=%s",
        discrepancy, discrepancy_with, discrepancy_without, included,
    )

    return {
        **receipt,
        "summary": {
            **summary,
            "discrepancy": discrepancy,
            "service_charge_included": included,
        },
    }
