"""
Reminder flow runtime usage example
"""
import asyncio
import logging
from datetime import timedelta
from pathlib import Path

from reminder_flows.clock import utcnow
from reminder_flows.config import Settings
from reminder_flows.integrations import Channel, InMemoryEntityDirectory, MockChannelProvider
from reminder_flows.models import DomainEvent, TriggerEvent
from reminder_flows.runtime import build_runtime


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


async def main():
    entities = InMemoryEntityDirectory()
    entities.register(
        "loan-42",
        context={
            "client_name": "Ada Lovelace",
            "broker_name": "Sam Broker",
            "application_number": "APP-0042",
            "client_email": "ada@example.com",
            "client_phone": "+15550100",
        },
        task_statuses={"upload_payslips": "pending"},
    )
    provider = MockChannelProvider()

    runtime = await build_runtime(
        Settings(scheduler_enabled=False),
        entities=entities,
        providers={channel: provider for channel in Channel},
        in_memory=True,
    )

    flow = await runtime.flow_store.create(Path(__file__).parent / "reminder_flow.yaml")
    print(f"Stored flow '{flow.name}' version {flow.version}")

    now = utcnow()
    [execution] = await runtime.manager.handle_trigger_event(
        DomainEvent(TriggerEvent.APPLICATION_CREATED, "loan-42", occurred_at=now)
    )
    print(f"Execution {execution.id} waits until {execution.next_execution_at}")

    # Pretend three days have passed
    result = await runtime.scheduler.tick(now + timedelta(days=3, minutes=1))
    print(f"Tick advanced {len(result.advanced)} executions")

    execution = await runtime.manager.get_execution(execution.id)
    print(f"Status: {execution.status.value}")
    for message in provider.sent:
        print(f"  [{message.channel.value}] {message.recipient}: {message.body}")

    await runtime.close()


if __name__ == "__main__":
    asyncio.run(main())
