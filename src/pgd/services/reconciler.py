"""Converges a project's container toward its pgd.toml configuration."""

import asyncio
import enum
from dataclasses import dataclass, replace
from typing import Optional

from pgd.constants import MAX_START_ATTEMPTS, RETRY_BACKOFF_SECONDS, VERIFY_SECONDS
from pgd.errors import (
    DowngradeUnsupportedError,
    RuntimeOperationError,
    StartFailedError,
    UpgradeUnsupportedError,
)
from pgd.errors_catalog import actionable_error
from pgd.models import InstanceRecord, Project


class ReconcileState(enum.Enum):
    RESOLVE = "resolve"
    NO_USABLE_CONTAINER = "no_usable_container"
    CREATED = "created"
    VERSION_CHECKED = "version_checked"
    START_RETRY_LOOP = "start_retry_loop"
    ALREADY_RUNNING = "already_running"
    RUNNING = "running"


TERMINAL_STATES = frozenset({ReconcileState.ALREADY_RUNNING, ReconcileState.RUNNING})


@dataclass(frozen=True)
class ReconcileStep:
    state: ReconcileState
    container_id: Optional[str] = None
    provisioned: bool = False


@dataclass(frozen=True)
class ReconcileOutcome:
    state: ReconcileState
    container_id: str
    provisioned: bool


class Reconciler:
    """Drives one project through the reconcile states.

    Each non-terminal state has a handler that inspects or mutates the
    runtime and returns the next step. Failures are raised, never returned.
    The ledger is written at most once per call, right after a container is
    created and before it is started.
    """

    def __init__(
        self,
        runtime,
        ledger,
        logger,
        console,
        max_start_attempts: int = MAX_START_ATTEMPTS,
        verify_seconds: float = VERIFY_SECONDS,
        retry_backoff_seconds: float = RETRY_BACKOFF_SECONDS,
        sleep=asyncio.sleep,
    ):
        self.runtime = runtime
        self.ledger = ledger
        self.logger = logger
        self.console = console
        self.max_start_attempts = max(1, int(max_start_attempts))
        self.verify_seconds = verify_seconds
        self.retry_backoff_seconds = retry_backoff_seconds
        self.sleep = sleep

        self._handlers = {
            ReconcileState.RESOLVE: self._resolve,
            ReconcileState.NO_USABLE_CONTAINER: self._provision,
            ReconcileState.CREATED: self._check_version,
            ReconcileState.VERSION_CHECKED: self._check_running,
            ReconcileState.START_RETRY_LOOP: self._start_with_retries,
        }

    async def reconcile(self, project: Project) -> ReconcileOutcome:
        step = ReconcileStep(ReconcileState.RESOLVE)

        while step.state not in TERMINAL_STATES:
            self.logger.debug("reconcile[%s] %s", project.name, step.state.value)
            step = await self._handlers[step.state](project, step)

        self.logger.debug("reconcile[%s] finished in %s", project.name, step.state.value)
        return ReconcileOutcome(
            state=step.state,
            container_id=step.container_id,
            provisioned=step.provisioned,
        )

    async def _resolve(self, project: Project, step: ReconcileStep) -> ReconcileStep:
        record = self.ledger.get(project.name)
        if record is None:
            self.logger.info("No instance recorded for %s", project.name)
            return ReconcileStep(ReconcileState.NO_USABLE_CONTAINER)

        if await self.runtime.container_exists(record.container_id):
            return ReconcileStep(ReconcileState.CREATED, container_id=record.container_id)

        self.logger.warning(
            "Recorded container %s for %s no longer exists, provisioning a replacement.",
            record.container_id,
            project.name,
        )
        return ReconcileStep(ReconcileState.NO_USABLE_CONTAINER)

    async def _provision(self, project: Project, step: ReconcileStep) -> ReconcileStep:
        config = project.config
        self.console.print(f"[cyan]Creating container[/cyan] [yellow]{project.container_name}[/yellow]")

        await self.runtime.ensure_image_present(config.version)
        container_id = await self.runtime.create_container(
            project.container_name,
            config.version,
            config.password,
            config.port,
        )

        self.ledger.upsert(project.name, InstanceRecord.new(container_id, config.version, config.port))
        self.ledger.save()

        self.console.print("[green]Container created successfully[/green]")
        self.logger.info("Created container %s for %s", container_id, project.name)
        return ReconcileStep(ReconcileState.CREATED, container_id=container_id, provisioned=True)

    async def _check_version(self, project: Project, step: ReconcileStep) -> ReconcileStep:
        actual = await self.runtime.get_version_label(step.container_id)
        desired = project.config.version

        if desired > actual:
            raise UpgradeUnsupportedError(
                actionable_error("upgrade_unsupported", actual=str(actual), desired=str(desired)),
                actual,
                desired,
            )
        if desired < actual:
            raise DowngradeUnsupportedError(
                actionable_error("downgrade_unsupported", actual=str(actual), desired=str(desired)),
                actual,
                desired,
            )

        record = self.ledger.get(project.name)
        if record is not None and record.port != project.config.port:
            self.logger.warning(
                "pgd.toml asks for port %s but the instance was created on port %s. "
                "Destroy and recreate the instance to apply the new port.",
                project.config.port,
                record.port,
            )

        return replace(step, state=ReconcileState.VERSION_CHECKED)

    async def _check_running(self, project: Project, step: ReconcileStep) -> ReconcileStep:
        if await self.runtime.is_running(step.container_id):
            self.logger.info("Container is already running")
            return replace(step, state=ReconcileState.ALREADY_RUNNING)
        return replace(step, state=ReconcileState.START_RETRY_LOOP)

    async def _start_with_retries(self, project: Project, step: ReconcileStep) -> ReconcileStep:
        attempts = self.max_start_attempts

        for attempt in range(1, attempts + 1):
            self.console.print(f"[cyan]Starting container (attempt {attempt}/{attempts})...[/cyan]")

            try:
                if await self._try_start(step.container_id):
                    self.console.print("[bold green]Container started successfully[/bold green]")
                    return replace(step, state=ReconcileState.RUNNING)
                reason = "Container stopped unexpectedly after start"
            except RuntimeOperationError as exc:
                reason = str(exc)

            self.console.print(f"[yellow]Attempt {attempt}/{attempts} failed:[/yellow] {reason}")
            self.logger.warning("Start attempt %s/%s failed: %s", attempt, attempts, reason)

            if attempt < attempts:
                await self.sleep(self.retry_backoff_seconds)

        self.console.print("[red]Failed to start container[/red]")
        raise StartFailedError(actionable_error("start_failed", attempts=str(attempts)))

    async def _try_start(self, container_id: str) -> bool:
        await self.runtime.start(container_id)
        self.console.print(f"[cyan]Verifying container is running ({self.verify_seconds}s)...[/cyan]")
        await self.sleep(self.verify_seconds)
        return await self.runtime.is_running(container_id)
