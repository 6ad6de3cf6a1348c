import time

import pytest

from onlineddl.throttler import (
    MYSQL8_LAG_QUERY,
    MySQL80Replica,
    Noop,
    ReplicationThrottler,
    Throttler,
    new_replication_throttler,
)


class RecordingLogger:
    def __init__(self):
        self.warnings = []
        self.errors = []
        self.infos = []

    def warning(self, msg, *args):
        self.warnings.append(msg % args)

    def error(self, msg, *args):
        self.errors.append(msg % args)

    def info(self, msg, *args):
        self.infos.append(msg % args)


class FakeCursor:
    def __init__(self, replica):
        self.replica = replica

    def execute(self, sql, params=()):
        if self.replica.fail:
            raise OSError("server has gone away")
        self.replica.queries.append(sql)

    def fetchone(self):
        return (self.replica.lag,)

    def close(self):
        pass


class FakeReplica:
    def __init__(self, lag=0, fail=False):
        self.lag = lag
        self.fail = fail
        self.queries = []

    def cursor(self):
        return FakeCursor(self)


def test_noop_throttler():
    throttler = Noop()
    assert throttler.open() is None
    throttler.current_lag = 1.0
    throttler.lag_tolerance = 2.0
    assert throttler.is_throttled() is False
    assert throttler.update_lag() is None
    throttler.block_wait()
    throttler.lag_tolerance = 0.1
    assert throttler.is_throttled() is True
    assert isinstance(throttler, Throttler)


def test_replication_throttler_threshold():
    throttler = ReplicationThrottler(None, 2.0, RecordingLogger())
    throttler.current_lag_ms = 1999
    assert throttler.is_throttled() is False
    throttler.current_lag_ms = 2000
    assert throttler.is_throttled() is True


def test_block_wait_returns_when_within_tolerance():
    logger = RecordingLogger()
    throttler = ReplicationThrottler(None, 60.0, logger)
    throttler.current_lag_ms = 10
    throttler.block_wait()
    assert logger.warnings == []


def test_block_wait_times_out_and_warns():
    logger = RecordingLogger()
    throttler = ReplicationThrottler(None, 0.1, logger)
    throttler.block_wait_interval = 0.0001
    throttler.current_lag_ms = 500
    throttler.block_wait()
    assert len(logger.warnings) == 1
    assert "lag monitor timed out" in logger.warnings[0]


def test_update_lag_reads_replica():
    replica = FakeReplica(lag=1234)
    logger = RecordingLogger()
    throttler = new_replication_throttler(replica, 60.0, logger)
    assert isinstance(throttler, MySQL80Replica)
    throttler.update_lag()
    assert throttler.current_lag_ms == 1234
    assert replica.queries == [MYSQL8_LAG_QUERY]
    assert throttler.is_throttled() is False
    assert logger.warnings == []


def test_update_lag_warns_when_throttled():
    replica = FakeReplica(lag=70000)
    logger = RecordingLogger()
    throttler = new_replication_throttler(replica, 60.0, logger)
    throttler.update_lag()
    assert throttler.is_throttled() is True
    assert any("replication delayed" in w for w in logger.warnings)


def test_update_lag_error():
    throttler = new_replication_throttler(FakeReplica(fail=True), 60.0, RecordingLogger())
    with pytest.raises(RuntimeError, match="could not check replication lag"):
        throttler.update_lag()


def test_open_fails_when_replica_unreachable():
    throttler = new_replication_throttler(FakeReplica(fail=True), 60.0, RecordingLogger())
    with pytest.raises(RuntimeError):
        throttler.open()


def test_open_monitors_lag_in_background():
    replica = FakeReplica(lag=0)
    throttler = new_replication_throttler(replica, 60.0, RecordingLogger())
    throttler.loop_interval = 0.001
    throttler.open()
    try:
        assert throttler.is_throttled() is False
        replica.lag = 70000
        deadline = time.monotonic() + 5
        while not throttler.is_throttled() and time.monotonic() < deadline:
            time.sleep(0.005)
        assert throttler.is_throttled() is True
        assert throttler.current_lag_ms == 70000
    finally:
        throttler.close()