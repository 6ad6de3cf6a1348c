"""Throttling writes while a replica is lagging behind."""

from __future__ import annotations

import logging
import threading
import time
from contextlib import closing
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

# Seconds between replica lag checks.
LOOP_INTERVAL = 5.0
# Seconds between lag checks while blocking.
BLOCK_WAIT_INTERVAL = 1.0
# Number of checks block_wait makes before giving up.
BLOCK_WAIT_ATTEMPTS = 60

# Estimates replica lag in milliseconds from performance_schema rather than
# from a heartbeat or seconds_behind_source.
MYSQL8_LAG_QUERY = """WITH applier_latency AS (
	SELECT MAX(TIMESTAMPDIFF(MICROSECOND, APPLYING_TRANSACTION_IMMEDIATE_COMMIT_TIMESTAMP, NOW())/1000 ) AS applier_latency_ms
	FROM performance_schema.replication_applier_status_by_worker
   ), queue_latency AS (
	SELECT MIN(
	CASE
	 WHEN
	  LAST_QUEUED_TRANSACTION = 'ANONYMOUS' OR
	  LAST_APPLIED_TRANSACTION = 'ANONYMOUS' OR
	  GTID_SUBTRACT(LAST_QUEUED_TRANSACTION, LAST_APPLIED_TRANSACTION) = ''
	 THEN 0
	  ELSE
	  TIMESTAMPDIFF(MICROSECOND, LAST_APPLIED_TRANSACTION_IMMEDIATE_COMMIT_TIMESTAMP, NOW(3))/1000
	END
   ) AS queue_latency_ms,
   IF(MIN(TIMESTAMPDIFF(MINUTE, LAST_QUEUED_TRANSACTION_ORIGINAL_COMMIT_TIMESTAMP, NOW()))>1,'IDLE','ACTIVE') as queue_status
   FROM performance_schema.replication_applier_status_by_worker w
   JOIN performance_schema.replication_connection_status s ON s.channel_name = w.channel_name
   )
   SELECT IFNULL(IF(queue_status='IDLE',0,CEIL(GREATEST(applier_latency_ms, queue_latency_ms))),0) as lagMs FROM applier_latency, queue_latency
"""


@runtime_checkable
class Throttler(Protocol):
    """Something that can tell whether writes should slow down."""

    def open(self) -> None: ...

    def close(self) -> None: ...

    def is_throttled(self) -> bool: ...

    def block_wait(self) -> None: ...

    def update_lag(self) -> None: ...


@dataclass
class Noop:
    """A throttler that never measures or blocks. Lags are in seconds.

    It only records how it was used, which makes it handy in tests.
    """

    current_lag: float = 0.0
    lag_tolerance: float = 0.0
    is_open: bool = False
    block_waits: int = 0
    lag_updates: int = 0

    def open(self) -> None:
        """Mark the throttler as open."""
        self.is_open = True

    def close(self) -> None:
        """Mark the throttler as closed."""
        self.is_open = False

    def is_throttled(self) -> bool:
        return self.current_lag > self.lag_tolerance

    def block_wait(self) -> None:
        """Return at once, counting the call."""
        self.block_waits += 1

    def update_lag(self) -> None:
        """Leave the lag as it is, counting the call."""
        self.lag_updates += 1


class ReplicationThrottler:
    """Throttles on the lag of a replica; ``lag_tolerance`` is in seconds."""

    def __init__(self, replica: Any, lag_tolerance: float, logger: Optional[Any] = None) -> None:
        self.replica = replica
        self.lag_tolerance = lag_tolerance
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self.current_lag_ms = 0
        self.loop_interval = LOOP_INTERVAL
        self.block_wait_interval = BLOCK_WAIT_INTERVAL

    @property
    def _tolerance_ms(self) -> int:
        return int(round(self.lag_tolerance * 1_000_000_000)) // 1_000_000

    def is_throttled(self) -> bool:
        return self.current_lag_ms >= self._tolerance_ms

    def block_wait(self) -> None:
        """Wait until the lag is within tolerance, giving up after about 60 checks."""
        for _ in range(BLOCK_WAIT_ATTEMPTS):
            if self.current_lag_ms < self._tolerance_ms:
                return
            time.sleep(self.block_wait_interval)
        self.logger.warning(
            "lag monitor timed out. lag: %s tolerance: %s",
            self.current_lag_ms,
            self.lag_tolerance,
        )


class MySQL80Replica(ReplicationThrottler):
    """Replication throttler for MySQL 8.0+ replicas using performance_schema."""

    def __init__(self, replica: Any, lag_tolerance: float, logger: Optional[Any] = None) -> None:
        super().__init__(replica, lag_tolerance, logger)
        self._closed = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def open(self) -> None:
        """Measure the lag once, then keep measuring it in the background."""
        self.update_lag()
        self._closed.clear()
        self._thread = threading.Thread(target=self._monitor, daemon=True)
        self._thread.start()

    def _monitor(self) -> None:
        while not self._closed.wait(self.loop_interval):
            try:
                self.update_lag()
            except RuntimeError as exc:
                self.logger.error("error getting lag: %s", exc)

    def close(self) -> None:
        """Stop the background lag monitor."""
        self._closed.set()

    def update_lag(self) -> None:
        """Query the replica for its current lag."""
        try:
            with closing(self.replica.cursor()) as cursor:
                cursor.execute(MYSQL8_LAG_QUERY)
                row = cursor.fetchone()
            if row is None:
                raise ValueError("no lag row returned")
            new_lag = int(row[0])
        except Exception as exc:  # noqa: BLE001 - driver errors vary
            raise RuntimeError(
                "could not check replication lag, check that this is a MySQL 8.0 "
                "replica, and that performance_schema is enabled"
            ) from exc
        self.current_lag_ms = new_lag
        if self.is_throttled():
            self.logger.warning(
                "replication delayed, throttling in progress. lag: %s tolerance: %s",
                self.current_lag_ms,
                self.lag_tolerance,
            )


def new_replication_throttler(
    replica: Any, lag_tolerance: float, logger: Optional[Any] = None
) -> MySQL80Replica:
    """Return a throttler for the given replica connection."""
    return MySQL80Replica(replica, lag_tolerance, logger)