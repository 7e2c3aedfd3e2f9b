"""
Periodic webhook delivery sweep as a Temporal workflow.

Retry backoff is stored on each delivery record as ``next_attempt_at``;
this workflow is the timer that makes those records go out even when no
new lifecycle event arrives.
"""

import asyncio
from datetime import timedelta

from pydantic import BaseModel, Field
from temporalio import workflow

from util.temporal import temporal_workflow_proxy
from webhooks.activity_names import DELIVERY_SWEEP_ACTIVITY_BASE
from webhooks.repositories import DeliverySweep


@temporal_workflow_proxy(
    DELIVERY_SWEEP_ACTIVITY_BASE, default_timeout_seconds=300
)
class WorkflowDeliverySweepProxy(DeliverySweep):
    """DeliverySweep implemented by calling the sweep activities."""

    pass


class SweepConfig(BaseModel):
    interval_seconds: int = Field(default=30, gt=0)
    cleanup_every: int = Field(default=120, ge=1)
    retention_days: int = Field(default=30, ge=1)
    iterations_per_run: int = Field(default=500, ge=1)
    completed_sweeps: int = Field(default=0, ge=0)


class SweepSummary(BaseModel):
    sweeps: int = 0
    processed: int = 0
    requeued: int = 0
    cleaned_up: int = 0
    stopped: bool = False


@workflow.defn
class WebhookSweepWorkflow:
    """
    Runs ``process_pending_events`` and ``retry_failed_events`` every
    ``interval_seconds`` and ``cleanup_old_events`` every
    ``cleanup_every`` sweeps. Continues as new after
    ``iterations_per_run`` sweeps to bound history size. The ``stop``
    signal ends the loop after the current sweep.
    """

    def __init__(self) -> None:
        self.summary = SweepSummary()
        self._stop_requested = False

    @workflow.query
    def get_summary(self) -> SweepSummary:
        return self.summary

    @workflow.signal
    def stop(self) -> None:
        self._stop_requested = True

    @workflow.run
    async def run(self, config: SweepConfig) -> SweepSummary:
        workflow.logger.info(
            "Starting webhook sweep workflow",
            extra={
                "interval_seconds": config.interval_seconds,
                "completed_sweeps": config.completed_sweeps,
            },
        )
        sweep = WorkflowDeliverySweepProxy()

        for _ in range(config.iterations_per_run):
            self.summary.processed += await sweep.process_pending_events()
            self.summary.requeued += await sweep.retry_failed_events()
            self.summary.sweeps += 1

            total_sweeps = config.completed_sweeps + self.summary.sweeps
            if total_sweeps % config.cleanup_every == 0:
                self.summary.cleaned_up += await sweep.cleanup_old_events(
                    config.retention_days
                )

            try:
                await workflow.wait_condition(
                    lambda: self._stop_requested,
                    timeout=timedelta(seconds=config.interval_seconds),
                )
            except asyncio.TimeoutError:
                pass

            if self._stop_requested:
                workflow.logger.info(
                    "Webhook sweep workflow stopped",
                    extra={"sweeps": self.summary.sweeps},
                )
                self.summary.stopped = True
                return self.summary

        workflow.continue_as_new(
            config.model_copy(
                update={
                    "completed_sweeps": config.completed_sweeps
                    + self.summary.sweeps
                }
            )
        )
