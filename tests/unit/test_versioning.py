"""
Unit tests for calculation version issuance and ordering.

Verifies:
- Version string format and parsing
- Strictly increasing issue order under a frozen or backwards clock
- Clock-first ordering; suffix only breaks ties
- Thread safety of a shared issuer
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from calc_audit_kernel.domain.clock import DeterministicClock
from calc_audit_kernel.domain.versioning import (
    VersionIssuer,
    datetime_to_ms,
    format_version,
    ms_to_datetime,
    parse_version,
    version_sort_key,
)

T0 = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class TestFormatAndParse:

    def test_format_is_fixed_width(self):
        assert format_version(1, "0000abcd") == "v0000000000001-0000abcd"

    def test_parse_round_trips_components(self):
        ms = datetime_to_ms(T0)
        parsed = parse_version(format_version(ms, "deadbeef"))
        assert parsed.clock_ms == ms
        assert parsed.suffix == "deadbeef"
        assert parsed.timestamp == T0

    @pytest.mark.parametrize("bad", [
        "",
        "1736942400000-deadbeef",
        "v1736942400000",
        "v1736942400000-DEADBEEF",
        "v173694240000-deadbeef",
        "v1736942400000-deadbee",
    ])
    def test_parse_rejects_malformed(self, bad):
        with pytest.raises(ValueError):
            parse_version(bad)

    def test_ms_conversion_is_exact(self):
        value = T0 + timedelta(milliseconds=7)
        assert ms_to_datetime(datetime_to_ms(value)) == value


class TestVersionIssuer:

    def test_frozen_clock_still_yields_increasing_versions(self):
        issuer = VersionIssuer(DeterministicClock(T0))
        issued = [issuer.issue() for _ in range(50)]
        keys = [version_sort_key(v.version) for v in issued]
        assert keys == sorted(keys)
        assert len({v.version for v in issued}) == 50
        assert issued[0].clock_ms == datetime_to_ms(T0)
        assert issued[-1].clock_ms == datetime_to_ms(T0) + 49

    def test_backwards_clock_bumps_past_last_issued(self):
        clock = DeterministicClock(T0)
        issuer = VersionIssuer(clock)
        first = issuer.issue()
        clock.set_time(T0 - timedelta(seconds=5))
        second = issuer.issue()
        assert second.clock_ms == first.clock_ms + 1
        assert issuer.last_issued_ms == second.clock_ms

    def test_timestamp_matches_clock_component(self):
        issuer = VersionIssuer(DeterministicClock(T0))
        issued = issuer.issue()
        assert issued.timestamp == ms_to_datetime(issued.clock_ms)
        assert parse_version(issued.version).clock_ms == issued.clock_ms

    def test_suffix_factory_is_used(self):
        issuer = VersionIssuer(DeterministicClock(T0), suffix_factory=lambda: "0badcafe")
        assert issuer.issue().version.endswith("-0badcafe")

    def test_shared_issuer_is_thread_safe(self):
        issuer = VersionIssuer(DeterministicClock(T0))
        results: list[int] = []
        lock = threading.Lock()

        def worker():
            local = [issuer.issue().clock_ms for _ in range(100)]
            with lock:
                results.extend(local)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 800
        assert len(set(results)) == 800


class TestOrdering:

    def test_clock_component_orders_before_suffix(self):
        earlier = format_version(1000, "ffffffff")
        later = format_version(1001, "00000000")
        assert version_sort_key(earlier) < version_sort_key(later)

    def test_suffix_breaks_ties(self):
        a = format_version(1000, "00000001")
        b = format_version(1000, "00000002")
        assert version_sort_key(a) < version_sort_key(b)

    def test_lexical_order_matches_sort_key(self):
        versions = [
            format_version(ms, suffix)
            for ms, suffix in [(5, "aa000000"), (1000, "00000000"), (999, "ffffffff"), (5, "00000001")]
        ]
        assert sorted(versions) == sorted(versions, key=version_sort_key)


class TestDeterministicClock:

    def test_holds_until_moved(self):
        clock = DeterministicClock(T0)
        assert clock.now() == clock.now() == T0
        clock.advance(90)
        assert clock.now_utc() == T0 + timedelta(seconds=90)

    def test_rejects_naive_time(self):
        with pytest.raises(ValueError):
            DeterministicClock(T0).set_time(datetime(2025, 1, 1))
