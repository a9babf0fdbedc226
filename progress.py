from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0")
HUNDRED = Decimal("100")
PERCENT_PLACES = Decimal("0.0001")


def budget_progress(spent: Decimal, limit: Decimal) -> float:
    """Share of ``limit`` already spent, in percent, clamped to [0, 100].

    A non-positive limit yields 0 instead of dividing. Overspending stays
    visible in ``spent``; the percentage never exceeds 100.
    """
    if limit <= ZERO:
        return 0.0
    percent = (spent / limit * HUNDRED).quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)
    return float(min(max(percent, ZERO), HUNDRED))
