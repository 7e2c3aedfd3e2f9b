"""
CLI for starting and stopping the webhook delivery sweep workflow.
"""

import asyncio
import logging
import sys
from typing import Optional

import click
from temporalio.client import Client
from temporalio.contrib.pydantic import pydantic_data_converter

from cancellation.settings import Settings
from webhooks.workflow import SweepConfig, WebhookSweepWorkflow

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW_ID = "webhook-delivery-sweep"


async def _connect(temporal_address: str) -> Client:
    return await Client.connect(
        temporal_address,
        data_converter=pydantic_data_converter,
        namespace="default",
    )


async def _start_sweep(
    config: SweepConfig,
    workflow_id: str,
    temporal_address: str,
    task_queue: str,
) -> None:
    click.echo(f"Connecting to Temporal at {temporal_address}...")
    client = await _connect(temporal_address)
    handle = await client.start_workflow(
        WebhookSweepWorkflow.run,
        config,
        id=workflow_id,
        task_queue=task_queue,
    )
    click.echo("Sweep workflow started")
    click.echo(f"Workflow ID: {handle.id}")
    click.echo(f"Run ID: {handle.result_run_id}")
    click.echo(f"Interval: {config.interval_seconds}s")


async def _stop_sweep(workflow_id: str, temporal_address: str) -> None:
    client = await _connect(temporal_address)
    handle = client.get_workflow_handle(workflow_id)
    await handle.signal(WebhookSweepWorkflow.stop)
    click.echo(f"Stop requested for {workflow_id}")


@click.group()
def main() -> None:
    """Manage the periodic webhook delivery sweep."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@main.command()
@click.option(
    "--interval", type=int, default=None, help="Seconds between sweeps"
)
@click.option(
    "--cleanup-every",
    type=int,
    default=None,
    help="Run retention cleanup every N sweeps",
)
@click.option(
    "--retention-days",
    type=int,
    default=None,
    help="Delete finished deliveries older than this many days",
)
@click.option("--workflow-id", default=DEFAULT_WORKFLOW_ID, show_default=True)
@click.option("--temporal-address", default=None, help="Temporal host:port")
@click.option("--task-queue", default=None)
def start(
    interval: Optional[int],
    cleanup_every: Optional[int],
    retention_days: Optional[int],
    workflow_id: str,
    temporal_address: Optional[str],
    task_queue: Optional[str],
) -> None:
    """Start the sweep workflow."""
    settings = Settings.from_env()
    config = SweepConfig(
        interval_seconds=interval or settings.sweep_interval_seconds,
        cleanup_every=cleanup_every or settings.sweep_cleanup_every,
        retention_days=(
            retention_days or settings.webhook_event_retention_days
        ),
        iterations_per_run=settings.sweep_iterations_per_run,
    )
    try:
        asyncio.run(
            _start_sweep(
                config,
                workflow_id,
                temporal_address or settings.temporal_endpoint,
                task_queue or settings.temporal_task_queue,
            )
        )
    except Exception as e:
        logger.error(
            "Failed to start sweep workflow",
            extra={"workflow_id": workflow_id, "error": str(e)},
        )
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@main.command()
@click.option("--workflow-id", default=DEFAULT_WORKFLOW_ID, show_default=True)
@click.option("--temporal-address", default=None, help="Temporal host:port")
def stop(workflow_id: str, temporal_address: Optional[str]) -> None:
    """Ask the sweep workflow to finish after its current sweep."""
    settings = Settings.from_env()
    try:
        asyncio.run(
            _stop_sweep(
                workflow_id, temporal_address or settings.temporal_endpoint
            )
        )
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
