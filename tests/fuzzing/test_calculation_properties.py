"""
Property-based tests for recording, versioning and aggregation.

Properties checked:
- Any valid breakdown survives a store round trip in step-number order with
  its quantized results, and passes hash verification on read
- Versions issued under an arbitrary (even backwards) clock strictly increase
- Report figures are a pure function of the record population
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from calc_audit_kernel.db.types import round_step_result
from calc_audit_kernel.domain.clock import DeterministicClock
from calc_audit_kernel.domain.versioning import VersionIssuer, parse_version, version_sort_key
from calc_audit_reporting.aggregation import compliance_rate, summarize_records
from tests.conftest import TEST_COMPANY_ID, TEST_USER_ID, make_record_view, make_result

amounts = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("1000000000"),
    places=4,
    allow_nan=False,
    allow_infinity=False,
)


@st.composite
def breakdowns(draw):
    numbers = draw(st.lists(st.integers(min_value=1, max_value=500), min_size=1, max_size=12, unique=True))
    return [
        {
            "stepNumber": number,
            "description": f"step {number}",
            "calculation": f"calc {number}",
            "result": str(draw(amounts)),
        }
        for number in numbers
    ]


class TestBreakdownRoundTrip:

    @given(steps=breakdowns(), total=amounts)
    @settings(
        max_examples=60,
        deadline=None,
        suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
    )
    def test_steps_read_back_in_order(self, store, steps, total):
        recorded = store.record_calculation(
            TEST_COMPANY_ID, TEST_USER_ID, "CIT", {"fuzz": True},
            make_result(total=str(total), steps=steps),
        )

        record, fetched = store.get_breakdown(recorded.record_id)

        expected = sorted(steps, key=lambda s: s["stepNumber"])
        assert [s.step_number for s in fetched] == [s["stepNumber"] for s in expected]
        for stored, submitted in zip(fetched, expected):
            assert stored.description == submitted["description"]
            assert stored.result == round_step_result(Decimal(submitted["result"]))
        assert record.total_amount == total


class TestVersionOrdering:

    @given(offsets=st.lists(st.integers(min_value=-86_400_000, max_value=86_400_000), min_size=2, max_size=40))
    @settings(max_examples=100)
    def test_versions_strictly_increase(self, offsets):
        start = datetime(2025, 1, 15, 12, tzinfo=timezone.utc)
        clock = DeterministicClock(start)
        issuer = VersionIssuer(clock)

        versions = []
        for offset in offsets:
            clock.set_time(start + timedelta(milliseconds=offset))
            versions.append(issuer.issue().version)

        keys = [version_sort_key(v) for v in versions]
        assert keys == sorted(keys)
        assert len(set(keys)) == len(keys)
        clocks = [parse_version(v).clock_ms for v in versions]
        assert all(later > earlier for earlier, later in zip(clocks, clocks[1:]))


class TestAggregationProperties:

    @given(
        population=st.lists(st.tuples(amounts, st.booleans()), max_size=30),
    )
    @settings(max_examples=100)
    def test_summary_matches_population(self, population):
        records = [make_record_view(amount, compliant=compliant) for amount, compliant in population]
        summary = summarize_records(records)

        assert summary.total_calculations == len(population)
        assert summary.total_tax_amount == sum((a for a, _ in population), Decimal("0"))
        assert summary.compliant_count == sum(1 for _, c in population if c)
        rate = compliance_rate(summary.compliant_count, summary.total_calculations)
        assert Decimal("0") <= rate <= Decimal("100")
        assert summarize_records(reversed(records)) == summary
