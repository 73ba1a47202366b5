"""
Reminder Flows CLI
"""
import asyncio
import json
import logging
import sys

import click

from .clock import utcnow
from .config import Settings
from .core.parser import FlowParser
from .exceptions import FlowParseError, FlowValidationError
from .models.execution import DomainEvent, ExecutionFilter, ExecutionStatus
from .models.flow import TriggerEvent
from .runtime import build_runtime


logger = logging.getLogger(__name__)


def _configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@click.group()
@click.option('--log-level', default=None, help='Override LOG_LEVEL')
@click.pass_context
def cli(ctx, log_level):
    """Reminder Flows CLI"""
    settings = Settings.from_env()
    if log_level:
        settings.log_level = log_level.upper()
    _configure_logging(settings.log_level)
    ctx.obj = settings


@cli.command()
@click.option('--host', default=None, help='Host to bind to')
@click.option('--port', default=None, type=int, help='Port to bind to')
@click.option('--reload', is_flag=True, help='Enable auto-reload')
@click.pass_obj
def serve(settings, host, port, reload):
    """Start the API server"""
    import uvicorn

    host = host or settings.api_host
    port = port or settings.api_port
    click.echo(f"Starting API server on {host}:{port}")
    uvicorn.run(
        "reminder_flows.api:app",
        host=host,
        port=port,
        reload=reload or settings.api_reload
    )


@cli.command()
@click.option('--once', is_flag=True, help='Run a single tick and exit')
@click.pass_obj
def worker(settings, once):
    """Run the scheduler loop without the API"""
    async def _run():
        runtime = await build_runtime(settings)
        try:
            await runtime.manager.reconcile()
            if once:
                result = await runtime.scheduler.tick()
                click.echo(
                    f"Advanced {len(result.advanced)} executions, "
                    f"{len(result.failed)} failed, {len(result.skipped)} skipped"
                )
                return

            await runtime.scheduler.start()
            click.echo(f"Worker {settings.worker_id} running every {settings.tick_interval}s")
            await asyncio.Event().wait()
        finally:
            await runtime.close()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        click.echo("Worker stopped")


@cli.command()
@click.argument('flow_file', type=click.Path(exists=True, dir_okay=False))
def validate(flow_file):
    """Validate a flow document (JSON or YAML)"""
    try:
        flow = FlowParser().parse_file(flow_file)
    except FlowValidationError as e:
        click.echo(f"Invalid flow: {flow_file}", err=True)
        for error in e.errors:
            click.echo(f"  - {error}", err=True)
        sys.exit(1)
    except FlowParseError as e:
        click.echo(f"Could not read {flow_file}: {e}", err=True)
        sys.exit(1)

    click.echo(
        f"Flow '{flow.name}' is valid: {len(flow.steps)} steps, "
        f"{len(flow.connections)} connections, trigger {flow.trigger_event.value}"
    )


@cli.command()
@click.argument('flow_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--activate', is_flag=True, help='Mark the flow active')
@click.pass_obj
def load(settings, flow_file, activate):
    """Store a flow document, creating a new version if it exists"""
    async def _run():
        runtime = await build_runtime(settings)
        try:
            flow = FlowParser().parse_file(flow_file)
            if activate:
                flow.is_active = True
            return await runtime.flow_store.save(flow)
        finally:
            await runtime.close()

    try:
        flow = asyncio.run(_run())
    except (FlowValidationError, FlowParseError) as e:
        click.echo(str(e), err=True)
        sys.exit(1)

    click.echo(f"Saved flow '{flow.name}' ({flow.id}) version {flow.version}")


@cli.command()
@click.argument('event_type', type=click.Choice([e.value for e in TriggerEvent]))
@click.argument('entity_id')
@click.option('--payload', default=None, help='JSON payload')
@click.pass_obj
def trigger(settings, event_type, entity_id, payload):
    """Deliver a trigger event for an entity"""
    try:
        data = json.loads(payload) if payload else {}
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"payload is not valid JSON: {e}")

    async def _run():
        runtime = await build_runtime(settings)
        try:
            event = DomainEvent(
                event_type=TriggerEvent(event_type),
                entity_id=entity_id,
                occurred_at=utcnow(),
                payload=data
            )
            return await runtime.manager.handle_trigger_event(event)
        finally:
            await runtime.close()

    executions = asyncio.run(_run())
    if not executions:
        click.echo("No executions created")
    for execution in executions:
        click.echo(
            f"{execution.id}  flow={execution.flow_id}  status={execution.status.value}  "
            f"step={execution.current_step_key or '-'}"
        )


@cli.command()
@click.option('--flow-id', default=None, help='Filter by flow')
@click.option('--entity-id', default=None, help='Filter by entity')
@click.option('--status', type=click.Choice([s.value for s in ExecutionStatus]), default=None)
@click.option('--limit', default=20, show_default=True, help='Maximum rows')
@click.pass_obj
def executions(settings, flow_id, entity_id, status, limit):
    """List executions"""
    async def _run():
        runtime = await build_runtime(settings)
        try:
            return await runtime.manager.list_executions(
                ExecutionFilter(
                    flow_id=flow_id,
                    entity_id=entity_id,
                    status=ExecutionStatus(status) if status else None,
                    limit=limit
                )
            )
        finally:
            await runtime.close()

    rows = asyncio.run(_run())
    if not rows:
        click.echo("No executions found")
        return

    click.echo(f"{'ID':36}  {'STATUS':9}  {'ENTITY':20}  {'STEP':20}  NEXT")
    for e in rows:
        next_at = e.next_execution_at.isoformat(timespec='seconds') if e.next_execution_at else '-'
        click.echo(
            f"{e.id:36}  {e.status.value:9}  {e.entity_id[:20]:20}  "
            f"{(e.current_step_key or '-')[:20]:20}  {next_at}"
        )


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
