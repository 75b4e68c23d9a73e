"""
Pure summary-report aggregation functions.

These functions turn calculation record views into report figures.
ZERO I/O. ZERO side effects.

- No database access
- No clock access
- Deterministic: same records always produce the same figures

Rates and averages are Decimal rounded to 2 places with ROUND_HALF_UP.
"""

from __future__ import annotations

import re
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

from calc_audit_kernel.db.types import RATE_DECIMAL_PLACES, round_money
from calc_audit_kernel.domain.dtos import CalculationRecordView
from calc_audit_kernel.exceptions import InvalidReportPeriodError
from calc_audit_reporting.models import RecordSummary, TypeBreakdown

_MONTHLY = re.compile(r"^(\d{4})-(\d{2})$")
_ANNUAL = re.compile(r"^(\d{4})$")

HUNDRED = Decimal("100")
ZERO = Decimal("0")


def period_bounds(report_period: str) -> tuple[datetime, datetime]:
    """
    Half-open UTC window ``[start, end)`` for a report period.

    ``YYYY-MM`` covers one calendar month, ``YYYY`` one calendar year.

    Raises:
        InvalidReportPeriodError: for any other shape or an out-of-range month.
    """
    if not isinstance(report_period, str):
        raise InvalidReportPeriodError(str(report_period))

    monthly = _MONTHLY.match(report_period)
    if monthly:
        year, month = int(monthly.group(1)), int(monthly.group(2))
        if not 1 <= month <= 12 or year < 1:
            raise InvalidReportPeriodError(report_period)
        start = datetime(year, month, 1, tzinfo=timezone.utc)
        if month == 12:
            end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
        else:
            end = datetime(year, month + 1, 1, tzinfo=timezone.utc)
        return start, end

    annual = _ANNUAL.match(report_period)
    if annual:
        year = int(annual.group(1))
        if year < 1:
            raise InvalidReportPeriodError(report_period)
        return (
            datetime(year, 1, 1, tzinfo=timezone.utc),
            datetime(year + 1, 1, 1, tzinfo=timezone.utc),
        )

    raise InvalidReportPeriodError(report_period)


def compliance_rate(compliant: int, total: int) -> Decimal:
    """Compliant share as a percentage; an empty population counts as fully compliant."""
    if total == 0:
        return round_money(HUNDRED, RATE_DECIMAL_PLACES)
    return round_money(Decimal(compliant) * HUNDRED / Decimal(total), RATE_DECIMAL_PLACES)


def amendment_rate(amendments: int, calculations: int) -> Decimal:
    """Amendments per calculation as a percentage; 0 when nothing was calculated."""
    if calculations == 0:
        return round_money(ZERO, RATE_DECIMAL_PLACES)
    return round_money(
        Decimal(amendments) * HUNDRED / Decimal(calculations), RATE_DECIMAL_PLACES,
    )


def summarize_records(records: Iterable[CalculationRecordView]) -> RecordSummary:
    """
    Aggregate a set of records.

    ``total_tax_amount`` is the plain sum of every record's total amount;
    ``totals_by_currency`` splits the same sum by currency.  Type and
    currency entries are sorted by name.
    """
    count = 0
    compliant = 0
    total = ZERO
    by_type_count: dict[str, int] = defaultdict(int)
    by_type_amount: dict[str, Decimal] = defaultdict(Decimal)
    by_currency: dict[str, Decimal] = defaultdict(Decimal)

    for record in records:
        amount = record.total_amount
        count += 1
        total += amount
        if record.is_compliant:
            compliant += 1
        calc_type = record.calculation_type.value
        by_type_count[calc_type] += 1
        by_type_amount[calc_type] += amount
        by_currency[record.currency] += amount

    breakdown = tuple(
        TypeBreakdown(
            calculation_type=calc_type,
            count=by_type_count[calc_type],
            amount=by_type_amount[calc_type],
        )
        for calc_type in sorted(by_type_count)
    )
    average = round_money(total / count) if count else round_money(ZERO)

    return RecordSummary(
        total_calculations=count,
        total_tax_amount=total,
        compliant_count=compliant,
        breakdown_by_type=breakdown,
        totals_by_currency=tuple(sorted(by_currency.items())),
        average_amount=average,
    )


def breakdown_to_dict(summary: RecordSummary) -> dict[str, dict[str, Any]]:
    return {b.calculation_type: b.to_dict() for b in summary.breakdown_by_type}


def build_summary_data(
    report_period: str,
    summary: RecordSummary,
    amendment_count: int,
) -> dict[str, Any]:
    """JSON-ready ``summary_data`` for a report row.  Decimals become strings."""
    return {
        "period": report_period,
        "calculationTypes": list(summary.calculation_types),
        "averageAmount": format(summary.average_amount, "f"),
        "complianceRate": format(
            compliance_rate(summary.compliant_count, summary.total_calculations), "f",
        ),
        "amendmentRate": format(
            amendment_rate(amendment_count, summary.total_calculations), "f",
        ),
        "compliantCount": summary.compliant_count,
        "amendmentCount": amendment_count,
        "totalsByCurrency": {
            currency: format(amount, "f")
            for currency, amount in summary.totals_by_currency
        },
    }
