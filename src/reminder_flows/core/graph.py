"""
Graph traversal over a flow's step arena
"""
from typing import Optional, Set

from ..exceptions import ConfigurationError
from ..models.flow import Flow, Step, StepType, EdgeType


class GraphWalker:
    """Resolves the next step of a flow; never mutates the flow"""

    def trigger_step(self, flow: Flow) -> Step:
        triggers = flow.trigger_steps()
        if len(triggers) != 1:
            raise ConfigurationError(
                f"Flow '{flow.id}' must have exactly one trigger step, found {len(triggers)}"
            )
        return triggers[0]

    def get_step(self, flow: Flow, step_key: str) -> Step:
        step = flow.get_step(step_key)
        if step is None:
            raise ConfigurationError(f"Step '{step_key}' does not exist in flow '{flow.id}'")
        return step

    def next_step(
        self,
        flow: Flow,
        current_key: str,
        edge_type: EdgeType = EdgeType.DEFAULT
    ) -> Optional[str]:
        """
        Follow the edge of kind ``edge_type`` out of ``current_key``

        Returns None when a non-condition step has no outgoing edge, which the
        caller treats as an implicit end. A condition step without the edge for
        its outcome raises ConfigurationError.
        """
        step = self.get_step(flow, current_key)

        if step.type == StepType.END:
            return None

        if step.type == StepType.CONDITION:
            if edge_type == EdgeType.DEFAULT:
                raise ConfigurationError("condition outcome required", step_key=step.key)
        else:
            edge_type = EdgeType.DEFAULT

        matches = [c for c in flow.outgoing(step.key) if c.type == edge_type]

        if not matches:
            if step.type == StepType.CONDITION:
                raise ConfigurationError(
                    f"missing {edge_type.value} connection", step_key=step.key
                )
            return None

        if len(matches) > 1:
            raise ConfigurationError(
                f"ambiguous {edge_type.value} connections", step_key=step.key
            )

        target = matches[0].target
        if target not in flow.steps:
            raise ConfigurationError(
                f"connection '{matches[0].key}' points to unknown step '{target}'",
                step_key=step.key
            )
        return target

    def reachable(self, flow: Flow) -> Set[str]:
        """Step keys reachable from the trigger step"""
        return flow.reachable_from(self.trigger_step(flow).key)

    @staticmethod
    def outcome_edge(result: bool) -> EdgeType:
        return EdgeType.CONDITION_YES if result else EdgeType.CONDITION_NO
