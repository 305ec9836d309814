"""Tests for the readiness poller."""

import pytest

from customer_commit.exceptions import EngineError
from customer_commit.image import ImageRef
from customer_commit.readiness import Readiness, listening_ports, wait_for_listener

from .fakes import FakeEngine

NAME = "customer-commit"
INTERVAL = 0.01
SLACK = 0.05

NETSTAT = """\
Active Internet connections (only servers)
Proto Recv-Q Send-Q Local Address           Foreign Address         State
tcp        0      0 0.0.0.0:22000           0.0.0.0:*               LISTEN
tcp        0      0 127.0.0.1:9090          0.0.0.0:*               LISTEN
tcp6       0      0 :::5550                 :::*                    LISTEN
tcp        0      0 10.0.0.2:2200           10.0.0.3:40000          ESTABLISHED
udp        0      0 0.0.0.0:161             0.0.0.0:*
Active UNIX domain sockets (only servers)
unix  2      [ ACC ]     STREAM     LISTENING     12345    /var/run/2200.sock
"""


def test_listening_ports() -> None:
    """Test parsing ports in the LISTEN state."""
    assert listening_ports(NETSTAT) == {22000, 9090, 5550}


@pytest.fixture(name="started")
async def started_fixture(engine: FakeEngine) -> FakeEngine:
    """Fixture for an engine with a running container."""
    await engine.start(ImageRef("alice", "datapower-base", "latest"), NAME)
    return engine


async def test_ready_immediately(started: FakeEngine) -> None:
    """Test a port that is already listening."""
    result = await wait_for_listener(started, NAME, 2200, max_wait=1.0, interval=INTERVAL)
    assert result.status == Readiness.READY
    assert result.ready
    assert result.polls == 1


async def test_ready_after_startup(engine: FakeEngine) -> None:
    """Test the listener is observed within one interval of it starting."""
    engine.startup_delay[2200] = 0.1
    await engine.start(ImageRef("alice", "datapower-base", "latest"), NAME)
    result = await wait_for_listener(engine, NAME, 2200, max_wait=1.0, interval=INTERVAL)
    assert result.ready
    assert result.polls > 1
    # The container started just before the wait began
    assert 0.1 - INTERVAL <= result.elapsed <= 0.1 + INTERVAL + SLACK


async def test_timeout(engine: FakeEngine) -> None:
    """Test a port that never listens times out at the maximum wait."""
    engine.startup_delay[2200] = 60
    await engine.start(ImageRef("alice", "datapower-base", "latest"), NAME)
    result = await wait_for_listener(engine, NAME, 2200, max_wait=0.1, interval=INTERVAL)
    assert result.status == Readiness.TIMEOUT
    assert not result.ready
    assert 0.1 <= result.elapsed <= 0.1 + INTERVAL + SLACK
    assert "Timeout" in str(result)


async def test_container_missing(engine: FakeEngine) -> None:
    """Test the probe fails when the container does not exist."""
    with pytest.raises(EngineError, match="No such container"):
        await wait_for_listener(engine, NAME, 2200, max_wait=0.1, interval=INTERVAL)
