"""
Graph walker tests
"""
import pytest

from reminder_flows.core.graph import GraphWalker
from reminder_flows.core.parser import FlowParser
from reminder_flows.exceptions import ConfigurationError
from reminder_flows.models.flow import EdgeType, Flow, Step, StepType, ConditionConfig


@pytest.fixture
def walker():
    return GraphWalker()


@pytest.fixture
def flow(follow_up_document):
    return FlowParser().parse(follow_up_document)


def test_trigger_step(walker, flow):
    assert walker.trigger_step(flow).key == "start"


def test_default_edges(walker, flow):
    assert walker.next_step(flow, "start") == "wait_3d"
    assert walker.next_step(flow, "wait_3d") == "notify"
    assert walker.next_step(flow, "email") == "done"


def test_edge_kind_is_ignored_for_non_condition_steps(walker, flow):
    assert walker.next_step(flow, "notify", EdgeType.CONDITION_NO) == "tasks_open"


def test_condition_branches(walker, flow):
    assert walker.next_step(flow, "tasks_open", EdgeType.CONDITION_YES) == "email"
    assert walker.next_step(flow, "tasks_open", EdgeType.CONDITION_NO) == "sms"
    assert walker.next_step(flow, "tasks_open", walker.outcome_edge(False)) == "sms"


def test_end_has_no_next_step(walker, flow):
    assert walker.next_step(flow, "done") is None


def test_missing_default_edge_is_implicit_end(walker):
    flow = Flow(name="Open ended")
    flow.add_step(Step(key="start", type=StepType.TRIGGER))

    assert walker.next_step(flow, "start") is None


def test_missing_condition_edge_raises(walker):
    flow = Flow(name="One branch")
    flow.add_step(Step(key="check", type=StepType.CONDITION, config=ConditionConfig()))
    flow.add_step(Step(key="done", type=StepType.END))
    flow.connect("check", "done", EdgeType.CONDITION_YES)

    assert walker.next_step(flow, "check", EdgeType.CONDITION_YES) == "done"
    with pytest.raises(ConfigurationError) as exc_info:
        walker.next_step(flow, "check", EdgeType.CONDITION_NO)
    assert "condition_no" in str(exc_info.value)


def test_condition_requires_outcome(walker, flow):
    with pytest.raises(ConfigurationError):
        walker.next_step(flow, "tasks_open")


def test_unknown_step_raises(walker, flow):
    with pytest.raises(ConfigurationError):
        walker.next_step(flow, "missing")


def test_ambiguous_edges_raise(walker, flow):
    flow.connect("notify", "sms")

    with pytest.raises(ConfigurationError):
        walker.next_step(flow, "notify")


def test_reachable(walker, flow):
    assert walker.reachable(flow) == set(flow.steps)


def test_walker_does_not_mutate_flow(walker, flow):
    before = [(c.key, c.source, c.target, c.type) for c in flow.connections]
    walker.next_step(flow, "tasks_open", EdgeType.CONDITION_YES)
    walker.reachable(flow)
    assert [(c.key, c.source, c.target, c.type) for c in flow.connections] == before
