"""Tests for phase tracing."""

import asyncio

from customer_commit.context import collect_timings, current_trace, trace_context


async def test_nested_trace() -> None:
    """Test nested blocks are traced and timed."""
    with collect_timings() as timings:
        with trace_context("Phase 'start'"):
            assert current_trace() == ("Phase 'start'",)
            with trace_context("Artifact 'key-pair'"):
                assert current_trace() == ("Phase 'start'", "Artifact 'key-pair'")
                await asyncio.sleep(0.01)
        with trace_context("Phase 'stop'"):
            pass
    assert current_trace() == ()
    assert list(timings.durations) == [
        "Phase 'start' > Artifact 'key-pair'",
        "Phase 'start'",
        "Phase 'stop'",
    ]
    assert timings.durations["Phase 'start'"] >= 0.01
    assert timings.summary().startswith("Phase 'start' ")
    assert "key-pair" not in timings.summary()
    assert timings.total >= timings.durations["Phase 'start'"]


def test_trace_without_timings() -> None:
    """Test tracing outside of a collection only logs."""
    with trace_context("Phase 'clean'"):
        assert current_trace() == ("Phase 'clean'",)
    with collect_timings() as timings:
        pass
    assert timings.durations == {}
