"""
Bounded retry and timeout around command execution, with the audit trail.

The audit trail lives in process memory only and is lost on restart; the
persisted ``CancellationRecord`` keyed by the same correlation id is the
durable history.
"""

import asyncio
import logging
import time
from typing import List, Optional

from pydantic import BaseModel, Field

from cancellation.commands import CancellationCommand
from cancellation.domain import AuditRecord, CancellationResult
from cancellation.errors import CommandTimeout, ProviderFailure

logger = logging.getLogger(__name__)


class CommandExecutionOptions(BaseModel):
    """Per-call overrides of the invoker defaults"""

    max_retries: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=1000, ge=0)
    timeout_ms: int = Field(default=30000, gt=0)


class CommandInvoker:
    """
    Runs a command with a timeout and bounded retry.

    Each attempt awaits ``command.execute()`` under ``asyncio.wait_for`` so a
    timed-out attempt is cancelled rather than left running. A resolved
    result is returned as-is, including a business failure
    (``success=False``); only an exception or a timeout triggers another
    attempt. One audit record is appended per attempt.
    """

    def __init__(
        self, defaults: Optional[CommandExecutionOptions] = None
    ) -> None:
        self.defaults = defaults or CommandExecutionOptions()
        self._audit_trail: List[AuditRecord] = []

    async def execute(
        self,
        command: CancellationCommand,
        options: Optional[CommandExecutionOptions] = None,
    ) -> CancellationResult:
        """
        Execute a command, retrying on exception or timeout.

        Raises:
            ProviderFailure: When every attempt raised or timed out. The
                last underlying error is chained as ``__cause__``.
        """
        opts = options or self.defaults
        correlation_id = command.context.correlation_id
        last_error: Optional[BaseException] = None

        for attempt in range(1, opts.max_retries + 1):
            started = time.monotonic()
            try:
                result = await asyncio.wait_for(
                    command.execute(), timeout=opts.timeout_ms / 1000
                )
            except asyncio.TimeoutError:
                last_error = CommandTimeout(
                    f"Command timeout after {opts.timeout_ms}ms"
                )
            except Exception as e:
                last_error = e
            else:
                self._record(
                    command,
                    attempt,
                    started,
                    success=result.success,
                    error_message=None if result.success else result.message,
                )
                return result

            self._record(
                command,
                attempt,
                started,
                success=False,
                error_message=str(last_error),
            )
            logger.warning(
                "Command attempt failed",
                extra={
                    "command_type": command.command_type,
                    "correlation_id": correlation_id,
                    "attempt": attempt,
                    "max_retries": opts.max_retries,
                    "error": str(last_error),
                    "error_type": type(last_error).__name__,
                },
            )
            if attempt < opts.max_retries:
                await asyncio.sleep(opts.retry_delay_ms / 1000)

        logger.error(
            "Command failed after all retries",
            extra={
                "command_type": command.command_type,
                "correlation_id": correlation_id,
                "attempts": opts.max_retries,
            },
        )
        if isinstance(last_error, ProviderFailure):
            raise last_error
        raise ProviderFailure(
            f"Command failed after {opts.max_retries} attempts: {last_error}"
        ) from last_error

    def _record(
        self,
        command: CancellationCommand,
        attempt: int,
        started: float,
        success: bool,
        error_message: Optional[str],
    ) -> None:
        self._audit_trail.append(
            AuditRecord(
                command_type=command.command_type,
                provider=command.provider,
                execution_time_ms=int((time.monotonic() - started) * 1000),
                correlation_id=command.context.correlation_id,
                success=success,
                error_message=error_message,
                attempt=attempt,
            )
        )

    def get_audit_trail(self) -> List[AuditRecord]:
        return list(self._audit_trail)

    def get_audit_trail_by_correlation_id(
        self, correlation_id: str
    ) -> List[AuditRecord]:
        return [
            r for r in self._audit_trail if r.correlation_id == correlation_id
        ]

    def get_audit_trail_by_provider(self, provider: str) -> List[AuditRecord]:
        provider = provider.lower()
        return [r for r in self._audit_trail if r.provider == provider]

    def clear_audit_trail(self) -> None:
        self._audit_trail.clear()
