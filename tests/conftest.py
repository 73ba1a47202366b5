"""
Shared pytest fixtures
"""
import copy
from datetime import datetime

import pytest
import pytest_asyncio

from reminder_flows.core import ExecutionManager, FlowStore, WakeScheduler
from reminder_flows.integrations import (
    Channel, ChannelDispatcher, EventBus, InMemoryEntityDirectory, MockChannelProvider
)
from reminder_flows.storage.repository import InMemoryFlowRepository, InMemoryExecutionRepository


NOW = datetime(2024, 3, 1, 9, 0, 0)


FOLLOW_UP_FLOW = {
    "id": "flow-follow-up",
    "name": "New application follow-up",
    "description": "Nudge the client three days after an application is created",
    "trigger_event": "application_created",
    "trigger_delay_days": 0,
    "is_active": True,
    "apply_to_all": True,
    "steps": [
        {"step_key": "start", "step_type": "trigger", "label": "Start", "position_x": 10, "position_y": 20},
        {"step_key": "wait_3d", "step_type": "wait", "config": {"delay_days": 3, "delay_hours": 0}},
        {"step_key": "notify", "step_type": "send_notification",
         "config": {"message": "Reminder for {{client_name}} from {{broker_name}}"}},
        {"step_key": "tasks_open", "step_type": "condition",
         "config": {"condition_type": "task_pending"}},
        {"step_key": "email", "step_type": "send_email",
         "config": {"subject": "Application {{application_number}}", "message": "Please upload your documents"}},
        {"step_key": "sms", "step_type": "send_sms", "config": {"message": "All done, thanks {{client_name}}"}},
        {"step_key": "done", "step_type": "end"},
    ],
    "connections": [
        {"edge_key": "e1", "source_step_key": "start", "target_step_key": "wait_3d"},
        {"edge_key": "e2", "source_step_key": "wait_3d", "target_step_key": "notify"},
        {"edge_key": "e3", "source_step_key": "notify", "target_step_key": "tasks_open"},
        {"edge_key": "e4", "source_step_key": "tasks_open", "target_step_key": "email", "edge_type": "condition_yes"},
        {"edge_key": "e5", "source_step_key": "tasks_open", "target_step_key": "sms", "edge_type": "condition_no"},
        {"edge_key": "e6", "source_step_key": "email", "target_step_key": "done"},
        {"edge_key": "e7", "source_step_key": "sms", "target_step_key": "done"},
    ],
}


LOAN_CONTEXT = {
    "client_name": "Ada Lovelace",
    "broker_name": "Sam Broker",
    "application_number": "APP-0042",
    "client_id": "user-42",
    "client_email": "ada@example.com",
    "client_phone": "+15550100",
}


@pytest.fixture
def follow_up_document():
    """Trigger -> wait 3d -> notification -> task_pending? email : sms -> end"""
    return copy.deepcopy(FOLLOW_UP_FLOW)


@pytest.fixture
def entities():
    directory = InMemoryEntityDirectory()
    directory.register(
        "loan-42",
        context=LOAN_CONTEXT,
        task_statuses={"upload_payslips": "pending"},
        last_activity_at=NOW,
        loan_status="submitted"
    )
    return directory


@pytest.fixture
def provider():
    return MockChannelProvider()


@pytest.fixture
def flow_repo():
    return InMemoryFlowRepository()


@pytest.fixture
def execution_repo():
    return InMemoryExecutionRepository()


@pytest.fixture
def flow_store(flow_repo):
    return FlowStore(flow_repo)


@pytest.fixture
def scheduler(execution_repo):
    return WakeScheduler(execution_repo, interval=0.05, concurrency=5)


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def manager(flow_repo, execution_repo, scheduler, provider, entities, event_bus):
    dispatcher = ChannelDispatcher(timeout=1.0, providers={c: provider for c in Channel})
    return ExecutionManager(
        flow_repository=flow_repo,
        execution_repository=execution_repo,
        scheduler=scheduler,
        dispatcher=dispatcher,
        entities=entities,
        event_bus=event_bus,
        worker_id="test-worker",
        admin_lock_wait=0.5
    )


@pytest_asyncio.fixture
async def follow_up_flow(flow_store, follow_up_document):
    return await flow_store.create(follow_up_document)
