"""
Time-ordered version identifiers for DocService.

Every submitted document version gets a version-1 (time-based) UUID, the
same TimeUUID layout wide-column stores use for clustering columns.

Invariants:
    - Identifiers are unique process-wide; a lock guarantees no two mints
      share a 100ns timestamp
    - Each generator draws a random 48-bit node (multicast bit set, as
      RFC 4122 requires for non-hardware nodes) and a random clock
      sequence, so writers on one host or in one container image do not
      share a node id
    - A later mint always sorts after an earlier one under version_sort_key
    - Rendered form is the canonical lowercase hex string (URL/JSON safe)

How to change safely:
    - Never switch to random UUIDs; ordering of the all-versions read
      depends on the embedded timestamp
    - Keep version_sort_key in sync with every backend's clustering order
"""

from __future__ import annotations

import logging
import random
import threading
import time
import uuid

from .errors import DocServiceError, InvalidVersionId

logger = logging.getLogger(__name__)

# Set on random node ids so they never collide with a hardware address
_MULTICAST_BIT = 0x010000000000

# 100ns intervals between 1582-10-15 (UUID epoch) and 1970-01-01
_UUID_EPOCH_OFFSET = 0x01B21DD213814000


class ClockUnavailableError(DocServiceError):
    """The clock or node source cannot produce time-based identifiers."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="CLOCK_UNAVAILABLE")


def _uuid_timestamp() -> int:
    return time.time_ns() // 100 + _UUID_EPOCH_OFFSET


class VersionIdGenerator:
    """Mints TimeUUIDs for new document versions.

    Thread safety:
        Safe to share between coroutines and threads. The last issued
        timestamp is guarded by a lock and bumped by one tick when the
        clock has not advanced (or went backwards).

    Example:
        >>> gen = VersionIdGenerator()
        >>> a, b = gen.mint(), gen.mint()
        >>> version_sort_key(a) < version_sort_key(b)
        True
    """

    def __init__(self, node: int | None = None, clock_seq: int | None = None) -> None:
        """Initialize the generator.

        Args:
            node: 48-bit node id (random per generator, multicast bit set)
            clock_seq: 14-bit clock sequence (random by default)
        """
        self.node = (random.getrandbits(48) | _MULTICAST_BIT) if node is None else node
        self.clock_seq = random.getrandbits(14) if clock_seq is None else clock_seq
        self._last_timestamp = 0
        self._lock = threading.Lock()

    def mint(self) -> uuid.UUID:
        """Return a new unique, time-ordered version identifier."""
        with self._lock:
            timestamp = _uuid_timestamp()
            if timestamp <= self._last_timestamp:
                timestamp = self._last_timestamp + 1
            self._last_timestamp = timestamp

        time_low = timestamp & 0xFFFFFFFF
        time_mid = (timestamp >> 32) & 0xFFFF
        time_hi_version = (timestamp >> 48) & 0x0FFF
        clock_seq_low = self.clock_seq & 0xFF
        clock_seq_hi_variant = (self.clock_seq >> 8) & 0x3F
        return uuid.UUID(
            fields=(
                time_low,
                time_mid,
                time_hi_version,
                clock_seq_hi_variant,
                clock_seq_low,
                self.node,
            ),
            version=1,
        )


def version_sort_key(version_id: uuid.UUID) -> tuple[int, bytes]:
    """Ordering key for TimeUUID clustering columns (timestamp, then bytes)."""
    return (version_id.time, version_id.bytes)


def parse_version_id(value: str | uuid.UUID) -> uuid.UUID:
    """Parse a client-supplied version id.

    Args:
        value: Canonical UUID string (or an already parsed UUID)

    Returns:
        The parsed UUID

    Raises:
        InvalidVersionId: If the value is not a version-1 UUID
    """
    if isinstance(value, uuid.UUID):
        parsed = value
    else:
        try:
            parsed = uuid.UUID(str(value))
        except ValueError:
            raise InvalidVersionId(str(value))
    if parsed.version != 1:
        raise InvalidVersionId(str(value))
    return parsed


def check_clock() -> None:
    """Startup check of the identifier sources.

    Raises:
        ClockUnavailableError: If the wall clock cannot be read or predates
            the Unix epoch
    """
    try:
        now = time.time_ns()
    except OSError as e:
        raise ClockUnavailableError(f"Identifier source unavailable: {e}") from e

    if now <= 0:
        raise ClockUnavailableError(f"Wall clock is not usable: {now}")

    logger.debug("Identifier sources verified", extra={"clock_ns": now})
