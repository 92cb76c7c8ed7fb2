import logging
import os
import sys
from datetime import datetime
from typing import Optional, Tuple

import requests
from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .constants import DATABASE, LOCALHOST, USERNAME
from .errors import ContainerNotFoundError, PgdError, RuntimeOperationError
from .errors_catalog import actionable_error
from .models import InstanceRecord, Project, ProjectConfig, Settings
from .services.credentials import generate_password
from .services.docker_runtime import DockerRuntimeService
from .services.ports import find_available_port
from .services.project import ProjectService
from .services.reconciler import Reconciler, ReconcileState
from .services.state import InstanceLedger
from .services.version_catalog import VersionCatalog

console = Console()
logger = logging.getLogger("pgd")


class Context:
    """Everything one command invocation works with.

    The ledger is loaded once here and handed to whoever mutates it; each
    mutation is followed by an explicit save.
    """

    def __init__(
        self,
        runtime,
        ledger: InstanceLedger,
        settings: Settings,
        project_dir: str,
        project: Optional[Project] = None,
        instance_override: Optional[str] = None,
    ):
        self.runtime = runtime
        self.ledger = ledger
        self.settings = settings
        self.project_dir = project_dir
        self.project = project
        self.instance_override = instance_override

    @classmethod
    async def create(
        cls,
        settings: Settings,
        instance_override: Optional[str] = None,
        project_dir: Optional[str] = None,
        runtime=None,
    ) -> "Context":
        project_dir = project_dir or os.getcwd()
        project = ProjectService(logger).load(project_dir)
        ledger = InstanceLedger.load(settings.state_file, logger)

        if runtime is None:
            runtime = await DockerRuntimeService.connect(logger, console, base_url=settings.docker_base_url)

        return cls(
            runtime=runtime,
            ledger=ledger,
            settings=settings,
            project_dir=project_dir,
            project=project,
            instance_override=instance_override,
        )

    @property
    def instance_name(self) -> Optional[str]:
        if self.instance_override:
            return self.instance_override
        if self.project is not None:
            return self.project.name
        return None

    def require_project(self) -> Project:
        if self.project is None:
            raise PgdError(actionable_error("project_required"))
        return self.project

    def require_instance(self) -> Tuple[str, InstanceRecord]:
        name = self.instance_name
        record = self.ledger.get(name) if name else None
        if record is None:
            raise PgdError(actionable_error("instance_required"))
        return name, record


class Controller:
    """Main CLI command dispatcher."""

    def __init__(self, ctx: Context, console: Console = console, catalog: Optional[VersionCatalog] = None):
        self.ctx = ctx
        self.console = console
        self.project_service = ProjectService(logger)
        self.catalog = catalog or VersionCatalog(
            logger,
            requests_module=requests,
            url=ctx.settings.version_catalog_url,
            timeout=ctx.settings.version_catalog_timeout,
        )

    def _reconciler(self) -> Reconciler:
        settings = self.ctx.settings
        return Reconciler(
            runtime=self.ctx.runtime,
            ledger=self.ctx.ledger,
            logger=logger,
            console=self.console,
            max_start_attempts=settings.max_start_attempts,
            verify_seconds=settings.verify_seconds,
            retry_backoff_seconds=settings.retry_backoff_seconds,
        )

    async def init_project(self) -> Project:
        if self.ctx.project is not None:
            await self._reconciler().reconcile(self.ctx.project)
            return self.ctx.project

        self.console.print("[cyan]Initializing new pgd project...[/cyan]")

        settings = self.ctx.settings
        config = ProjectConfig(
            version=self.catalog.latest(),
            password=generate_password(),
            port=find_available_port(
                self.ctx.ledger,
                default_port=settings.default_port,
                search_range=settings.port_search_range,
            ),
        )
        project = self.project_service.create(self.ctx.project_dir, config)
        self.ctx.project = project
        logger.info("Created %s", self.project_service.config_path(project.path))

        self.console.print(f"\nCreated pgd.toml in [bold]{project.path}[/bold]\n")
        table = _ui_table("Project Configuration")
        table.add_row("Project", f"[bold]{project.name}[/bold]")
        table.add_row("PostgreSQL Version", f"[bold]{project.config.version}[/bold]")
        table.add_row("Port", f"[bold]{project.config.port}[/bold]")
        table.add_row("Password", f"[bright_black]{'*' * len(project.config.password)}[/bright_black]")
        self.console.print(table)

        await self._reconciler().reconcile(project)

        self.console.print("\n[bold green]✓ Project initialized successfully![/bold green]")
        return project

    async def start(self):
        project = self.ctx.require_project()
        outcome = await self._reconciler().reconcile(project)
        if outcome.state is ReconcileState.ALREADY_RUNNING:
            self.console.print(f"[green]{project.name} is already running.[/green]")
        return outcome

    async def stop(self):
        name, record = self.ctx.require_instance()
        self.console.print(f"[blue]Stopping {name}...[/blue]")
        await self.ctx.runtime.stop(record.container_id, self.ctx.settings.stop_timeout)
        self.console.print(f"[green]{name} stopped.[/green]")

    async def restart(self):
        name, record = self.ctx.require_instance()
        self.console.print(f"[blue]Restarting {name}...[/blue]")
        await self.ctx.runtime.restart(record.container_id, self.ctx.settings.stop_timeout)
        self.console.print(f"[green]{name} restarted.[/green]")

    async def destroy(self):
        name, record = self.ctx.require_instance()
        try:
            await self.ctx.runtime.remove(record.container_id, force=True)
        except ContainerNotFoundError:
            logger.warning("Container %s is already gone.", record.container_id)

        self.ctx.ledger.remove(name)
        self.ctx.ledger.save()
        self.console.print(f"[green]Instance {name} destroyed.[/green]")

    async def status(self) -> dict:
        name, record = self.ctx.require_instance()
        runtime = self.ctx.runtime

        if not await runtime.container_exists(record.container_id):
            state, ready = "missing", "-"
        elif await runtime.is_running(record.container_id):
            state = "running"
            ready = await self._readiness(record.container_id)
        else:
            state, ready = "stopped", "-"

        created = datetime.fromtimestamp(record.created_at).strftime("%Y-%m-%d %H:%M:%S")
        table = _ui_table("Instance")
        table.add_row("Project", f"[bold]{name}[/bold]")
        table.add_row("Container", record.container_id[:12])
        table.add_row("PostgreSQL Version", str(record.postgres_version))
        table.add_row("Port", str(record.port))
        table.add_row("Created", created)
        table.add_row("State", _STATE_STYLES.get(state, state))
        table.add_row("Ready", ready)
        self.console.print(table)

        return {"name": name, "state": state, "ready": ready}

    async def _readiness(self, container_id: str) -> str:
        try:
            exit_code, _ = await self.ctx.runtime.exec(
                container_id, ["pg_isready", "-U", USERNAME, "-d", DATABASE]
            )
        except RuntimeOperationError as exc:
            logger.debug("pg_isready failed: %s", exc)
            return "unknown"
        return "accepting connections" if exit_code == 0 else "not ready"

    async def logs(self, follow: bool, stream=None):
        _, record = self.ctx.require_instance()
        stream = stream or sys.stdout

        async for chunk in self.ctx.runtime.stream_logs(record.container_id, follow):
            stream.write(chunk.decode("utf-8", errors="replace"))
            stream.flush()

    async def show_connection(self, fmt: str = "dsn"):
        project = self.ctx.require_project()
        await self._reconciler().reconcile(project)

        if fmt == "dsn":
            self.console.print(dsn(project), markup=False, highlight=False, soft_wrap=True)
            return

        table = _ui_table("Instance")
        table.add_row("Project", f"[bold]{project.name}[/bold]")
        table.add_row("PostgreSQL Version", f"[bold]{project.config.version}[/bold]")
        table.add_row("Host", f"[bold]{LOCALHOST}[/bold]")
        table.add_row("Port", f"[bold]{project.config.port}[/bold]")
        table.add_row("Username", f"[bold]{USERNAME}[/bold]")
        table.add_row("Password", f"[bright_black]{escape(project.config.password)}[/bright_black]")
        self.console.print(table)


_STATE_STYLES = {
    "running": "[green]running[/green]",
    "stopped": "[yellow]stopped[/yellow]",
    "missing": "[red]missing[/red]",
}


def dsn(project: Project) -> str:
    return f"postgres://{USERNAME}:{project.config.password}@{LOCALHOST}:{project.config.port}/{DATABASE}"


def _ui_table(header: str) -> Table:
    table = Table(title=header, box=box.ROUNDED, show_header=False, title_style="bold")
    table.add_column(style="white")
    table.add_column()
    return table
