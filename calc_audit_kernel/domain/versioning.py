"""
Calculation version identifiers (``calc_audit_kernel.domain.versioning``).

Responsibility
--------------
Issue and order ``calculation_version`` strings of the form
``v<13-digit epoch milliseconds>-<8 lowercase hex chars>``.

Architecture position
---------------------
**Kernel domain layer**.  Depends only on ``domain/clock``.  The issuer
holds a lock and the last issued millisecond; it performs no I/O.

Invariants enforced
-------------------
* Versions issued by one ``VersionIssuer`` are strictly increasing in issue
  order, even when the clock stands still or steps backwards: the issuer
  bumps to ``last + 1`` millisecond.
* Ordering uses the clock component first.  The random suffix only breaks
  ties between versions issued by different issuers in the same instant.
* The record timestamp is the version's clock component, so ordering by
  timestamp and ordering by version agree.
"""

from __future__ import annotations

import re
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from calc_audit_kernel.domain.clock import Clock, SystemClock

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)
_VERSION_RE = re.compile(r"^v(\d{13})-([0-9a-f]{8})$")


@dataclass(frozen=True)
class IssuedVersion:
    """A freshly issued version string and the instant it encodes."""

    version: str
    clock_ms: int
    timestamp: datetime


@dataclass(frozen=True)
class ParsedVersion:
    clock_ms: int
    suffix: str

    @property
    def timestamp(self) -> datetime:
        return ms_to_datetime(self.clock_ms)


def datetime_to_ms(value: datetime) -> int:
    """Whole milliseconds since the Unix epoch, computed without floats."""
    return (value - EPOCH) // _ONE_MS


def ms_to_datetime(clock_ms: int) -> datetime:
    return EPOCH + timedelta(milliseconds=clock_ms)


def format_version(clock_ms: int, suffix: str) -> str:
    return f"v{clock_ms:013d}-{suffix}"


def parse_version(version: str) -> ParsedVersion:
    """
    Split a version string into its clock and suffix components.

    Raises:
        ValueError: If the string is not a well-formed version.
    """
    match = _VERSION_RE.match(version or "")
    if match is None:
        raise ValueError(f"Malformed calculation version: {version!r}")
    return ParsedVersion(clock_ms=int(match.group(1)), suffix=match.group(2))


def version_sort_key(version: str) -> tuple[int, str]:
    """Sort key ordering versions by clock component, then suffix."""
    parsed = parse_version(version)
    return (parsed.clock_ms, parsed.suffix)


def _random_suffix() -> str:
    return secrets.token_hex(4)


class VersionIssuer:
    """
    Thread-safe issuer of strictly increasing calculation versions.

    One issuer should be shared by every service that creates records in a
    process, so that record versions and amendment results form a single
    increasing sequence.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        suffix_factory: Callable[[], str] | None = None,
    ):
        self._clock = clock or SystemClock()
        self._suffix_factory = suffix_factory or _random_suffix
        self._lock = threading.Lock()
        self._last_ms = -1

    @property
    def last_issued_ms(self) -> int:
        return self._last_ms

    def issue(self) -> IssuedVersion:
        with self._lock:
            clock_ms = datetime_to_ms(self._clock.now_utc())
            if clock_ms <= self._last_ms:
                clock_ms = self._last_ms + 1
            self._last_ms = clock_ms
        suffix = self._suffix_factory()
        return IssuedVersion(
            version=format_version(clock_ms, suffix),
            clock_ms=clock_ms,
            timestamp=ms_to_datetime(clock_ms),
        )
