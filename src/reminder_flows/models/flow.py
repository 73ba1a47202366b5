"""
Reminder flow definition models
"""
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Set, Union
from uuid import uuid4

from ..clock import utcnow


class TriggerEvent(Enum):
    """Domain events that can start a flow"""
    APPLICATION_CREATED = "application_created"
    TASK_PENDING = "task_pending"
    TASK_IN_PROGRESS = "task_in_progress"
    TASK_OVERDUE = "task_overdue"
    NO_ACTIVITY = "no_activity"
    LOAN_APPROVED = "loan_approved"
    LOAN_DOCUMENTS_PENDING = "loan_documents_pending"
    MANUAL = "manual"


class StepType(Enum):
    """Closed set of step kinds"""
    TRIGGER = "trigger"
    WAIT = "wait"
    SEND_NOTIFICATION = "send_notification"
    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    CONDITION = "condition"
    END = "end"

    @property
    def is_send(self) -> bool:
        return self in SEND_STEP_TYPES


SEND_STEP_TYPES = frozenset({
    StepType.SEND_NOTIFICATION,
    StepType.SEND_EMAIL,
    StepType.SEND_SMS,
})


class EdgeType(Enum):
    """Connection kinds"""
    DEFAULT = "default"
    CONDITION_YES = "condition_yes"
    CONDITION_NO = "condition_no"


class ConditionType(Enum):
    """Supported condition kinds"""
    TASK_COMPLETED = "task_completed"
    TASK_PENDING = "task_pending"
    INACTIVITY_DAYS = "inactivity_days"
    LOAN_STATUS = "loan_status"


@dataclass
class WaitConfig:
    """Delay before the next step"""
    delay_days: int = 0
    delay_hours: int = 0

    @property
    def delay(self) -> timedelta:
        return timedelta(days=self.delay_days, hours=self.delay_hours)


@dataclass
class MessageConfig:
    """Message template for send steps; subject is used by email only"""
    message: str = ""
    subject: Optional[str] = None


@dataclass
class ConditionConfig:
    """Branch predicate for condition steps"""
    # Kept as a string so stored flows with unknown kinds still load and fail closed.
    condition_type: str = ConditionType.TASK_PENDING.value
    condition_value: Optional[str] = None


StepConfig = Union[WaitConfig, MessageConfig, ConditionConfig, None]


@dataclass
class Step:
    """A node of a flow"""
    key: str
    type: StepType
    label: str = ""
    description: Optional[str] = None
    config: StepConfig = None

    def __post_init__(self):
        expected = _CONFIG_TYPES.get(self.type)
        if expected is None:
            if self.config is not None:
                raise ValueError(f"Step '{self.key}' of type {self.type.value} takes no config")
        elif self.config is None:
            self.config = expected()
        elif not isinstance(self.config, expected):
            raise ValueError(
                f"Step '{self.key}' of type {self.type.value} requires {expected.__name__}"
            )


_CONFIG_TYPES = {
    StepType.WAIT: WaitConfig,
    StepType.SEND_NOTIFICATION: MessageConfig,
    StepType.SEND_EMAIL: MessageConfig,
    StepType.SEND_SMS: MessageConfig,
    StepType.CONDITION: ConditionConfig,
}


@dataclass
class Connection:
    """A directed edge between two steps"""
    source: str
    target: str
    type: EdgeType = EdgeType.DEFAULT
    key: str = field(default_factory=lambda: str(uuid4()))
    label: Optional[str] = None


@dataclass
class Flow:
    """A reminder flow: an arena of steps keyed by step key plus an edge list"""
    id: str = field(default_factory=lambda: str(uuid4()))
    name: str = ""
    description: Optional[str] = None
    trigger_event: TriggerEvent = TriggerEvent.MANUAL
    trigger_delay_days: int = 0
    is_active: bool = False
    apply_to_all: bool = True
    target_entity_ids: Set[str] = field(default_factory=set)
    version: int = 1
    steps: Dict[str, Step] = field(default_factory=dict)
    connections: List[Connection] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def add_step(self, step: Step) -> Step:
        self.steps[step.key] = step
        return step

    def connect(self, source: str, target: str, edge_type: EdgeType = EdgeType.DEFAULT,
                key: str = None) -> Connection:
        connection = Connection(source=source, target=target, type=edge_type)
        if key:
            connection.key = key
        self.connections.append(connection)
        return connection

    def get_step(self, step_key: str) -> Optional[Step]:
        return self.steps.get(step_key)

    def outgoing(self, step_key: str) -> List[Connection]:
        return [c for c in self.connections if c.source == step_key]

    def incoming(self, step_key: str) -> List[Connection]:
        return [c for c in self.connections if c.target == step_key]

    def trigger_steps(self) -> List[Step]:
        return [s for s in self.steps.values() if s.type == StepType.TRIGGER]

    def targets(self, entity_id: str) -> bool:
        """Whether this flow applies to the given entity"""
        return self.apply_to_all or entity_id in self.target_entity_ids

    def reachable_from(self, step_key: str) -> Set[str]:
        """Step keys reachable from ``step_key`` (inclusive)"""
        adjacency = defaultdict(list)
        for connection in self.connections:
            adjacency[connection.source].append(connection.target)

        seen = {step_key}
        queue = deque([step_key])
        while queue:
            current = queue.popleft()
            for neighbor in adjacency[current]:
                if neighbor not in seen and neighbor in self.steps:
                    seen.add(neighbor)
                    queue.append(neighbor)
        return seen

    def validate(self) -> List[str]:
        """Check the save-time invariants; returns a list of errors"""
        errors = []

        if not self.name:
            errors.append("Flow name is required")
        if self.trigger_delay_days < 0:
            errors.append("trigger_delay_days must be >= 0")
        if not self.apply_to_all and not self.target_entity_ids:
            errors.append("Flow must apply to all loans or list target entities")

        # Edge references and uniqueness
        edge_keys = [c.key for c in self.connections]
        if len(edge_keys) != len(set(edge_keys)):
            errors.append("Duplicate connection keys found")

        for connection in self.connections:
            if connection.source not in self.steps:
                errors.append(f"Connection '{connection.key}' source '{connection.source}' not found")
            if connection.target not in self.steps:
                errors.append(f"Connection '{connection.key}' target '{connection.target}' not found")
            if connection.source == connection.target:
                errors.append(f"Connection '{connection.key}' loops on '{connection.source}'")

        # Per-type outgoing edge rules
        for step in self.steps.values():
            errors.extend(self._validate_edges(step))
            errors.extend(self._validate_config(step))

        # Trigger step
        triggers = self.trigger_steps()
        if len(triggers) != 1:
            errors.append(f"Flow must have exactly one trigger step, found {len(triggers)}")
            return errors

        trigger = triggers[0]
        if self.incoming(trigger.key):
            errors.append(f"Trigger step '{trigger.key}' must not have incoming connections")

        if self._has_cycle():
            errors.append("Flow graph contains cycles")
            return errors

        reachable = self.reachable_from(trigger.key)
        if not any(self.steps[k].type == StepType.END for k in reachable):
            errors.append("No end step is reachable from the trigger step")

        for key in sorted(reachable):
            step = self.steps[key]
            if step.type != StepType.END and not self.outgoing(key):
                errors.append(f"Step '{key}' has no outgoing connection")

        return errors

    def _validate_edges(self, step: Step) -> List[str]:
        errors = []
        outgoing = self.outgoing(step.key)
        kinds = [c.type for c in outgoing]

        if step.type == StepType.END:
            if outgoing:
                errors.append(f"End step '{step.key}' must not have outgoing connections")
        elif step.type == StepType.CONDITION:
            if EdgeType.DEFAULT in kinds:
                errors.append(f"Condition step '{step.key}' must use yes/no connections")
            for kind in (EdgeType.CONDITION_YES, EdgeType.CONDITION_NO):
                if kinds.count(kind) > 1:
                    errors.append(f"Condition step '{step.key}' has more than one {kind.value} connection")
        else:
            if any(kind != EdgeType.DEFAULT for kind in kinds):
                errors.append(f"Step '{step.key}' may only have default connections")
            if len(outgoing) > 1:
                errors.append(f"Step '{step.key}' has more than one outgoing connection")

        return errors

    def _validate_config(self, step: Step) -> List[str]:
        errors = []
        config = step.config

        if isinstance(config, WaitConfig):
            if config.delay_days < 0 or config.delay_hours < 0:
                errors.append(f"Wait step '{step.key}' delay must not be negative")
        elif isinstance(config, MessageConfig):
            if not config.message or not config.message.strip():
                errors.append(f"Send step '{step.key}' requires a message")
        elif isinstance(config, ConditionConfig):
            valid_types = {c.value for c in ConditionType}
            if config.condition_type not in valid_types:
                errors.append(
                    f"Condition step '{step.key}' has unknown condition_type '{config.condition_type}'"
                )
            elif config.condition_type == ConditionType.INACTIVITY_DAYS.value:
                try:
                    if int(str(config.condition_value)) < 0:
                        raise ValueError
                except (TypeError, ValueError):
                    errors.append(
                        f"Condition step '{step.key}' needs a non-negative integer day count"
                    )
            elif config.condition_type == ConditionType.LOAN_STATUS.value:
                if not config.condition_value:
                    errors.append(f"Condition step '{step.key}' needs a loan status value")

        return errors

    def _has_cycle(self) -> bool:
        """Kahn's algorithm over the steps that edges reference"""
        adj = defaultdict(list)
        in_degree = {key: 0 for key in self.steps}

        for connection in self.connections:
            if connection.source in in_degree and connection.target in in_degree:
                adj[connection.source].append(connection.target)
                in_degree[connection.target] += 1

        queue = deque([key for key, degree in in_degree.items() if degree == 0])
        visited = 0

        while queue:
            key = queue.popleft()
            visited += 1
            for neighbor in adj[key]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        return visited != len(in_degree)
