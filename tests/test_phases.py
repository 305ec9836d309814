"""Tests for the phase graph."""

import pytest

from customer_commit.exceptions import InputException
from customer_commit.phases import PhaseGraph


def make_graph(log: list[str]) -> PhaseGraph:
    """Build a graph with the shape of the provisioning flow."""

    def record(name: str):  # type: ignore[no-untyped-def]
        async def action() -> None:
            log.append(name)

        return action

    graph = PhaseGraph()
    graph.add("clean", record("clean"))
    graph.add("artifacts", record("artifacts"))
    graph.add("start", record("start"), ["artifacts"])
    graph.add("ready", record("ready"), ["start"])
    graph.add("rotate", record("rotate"), ["ready"])
    graph.add("stop", record("stop"))
    graph.add("remove", record("remove"), ["stop"])
    graph.add("commit", record("commit"), ["rotate", "stop"])
    return graph


def test_plan() -> None:
    """Test prerequisites are planned before the phases that need them."""
    graph = make_graph([])
    assert graph.plan("clean") == ["clean"]
    assert graph.plan("remove") == ["stop", "remove"]
    assert graph.plan("commit") == [
        "artifacts",
        "start",
        "ready",
        "rotate",
        "stop",
        "commit",
    ]


def test_plan_declaration_order() -> None:
    """Test ready phases are planned in the order they were added."""
    graph = PhaseGraph()
    graph.add("b")
    graph.add("a")
    graph.add("c", requires=["a", "b"])
    assert graph.plan("c") == ["b", "a", "c"]


def test_plan_shared_prerequisite() -> None:
    """Test a prerequisite shared by several phases is only planned once."""
    graph = PhaseGraph()
    graph.add("base")
    graph.add("left", requires=["base"])
    graph.add("right", requires=["base"])
    graph.add("top", requires=["left", "right"])
    assert graph.plan("top") == ["base", "left", "right", "top"]


def test_unknown_phase() -> None:
    """Test planning a phase that does not exist."""
    graph = make_graph([])
    with pytest.raises(InputException, match="Unknown phase 'deploy'"):
        graph.plan("deploy")
    with pytest.raises(InputException, match="Unknown phase 'deploy'"):
        graph.action("deploy")


def test_unknown_prerequisite() -> None:
    """Test a phase that requires a phase that does not exist."""
    graph = PhaseGraph()
    graph.add("start", requires=["pull"])
    with pytest.raises(InputException, match="Unknown phase 'pull'"):
        graph.plan("start")


def test_duplicate_phase() -> None:
    """Test adding the same phase twice."""
    graph = PhaseGraph()
    graph.add("start")
    with pytest.raises(InputException, match="already defined"):
        graph.add("start")


def test_cycle() -> None:
    """Test phases that require each other."""
    graph = PhaseGraph()
    graph.add("a", requires=["b"])
    graph.add("b", requires=["a"])
    graph.add("c", requires=["a"])
    with pytest.raises(InputException, match="circular prerequisites: a, b, c"):
        graph.plan("c")


async def test_run() -> None:
    """Test running a target runs each phase once in order."""
    log: list[str] = []
    graph = make_graph(log)
    order = await graph.run("commit")
    assert log == order
    assert log == ["artifacts", "start", "ready", "rotate", "stop", "commit"]


async def test_run_failure_aborts() -> None:
    """Test the first failing phase stops the run."""
    log: list[str] = []
    graph = make_graph(log)

    async def fail() -> None:
        raise InputException("not ready")

    graph.add("verify", fail, ["rotate"])
    graph.add("publish", requires=["verify", "commit"])
    with pytest.raises(InputException, match="not ready"):
        await graph.run("publish")
    assert log == ["artifacts", "start", "ready", "rotate", "stop", "commit"]
