import asyncio
import logging
from pathlib import Path

import click
from rich.logging import RichHandler

from . import __version__
from .constants import (
    DEFAULT_POSTGRES_PORT,
    DOCKERHUB_TAGS_URL,
    MAX_START_ATTEMPTS,
    PORT_SEARCH_RANGE,
    RETRY_BACKOFF_SECONDS,
    STOP_TIMEOUT,
    VERIFY_SECONDS,
)
from .core import Context, Controller, console
from .errors import PgdError
from .models import Settings, default_home
from .services.config_loader import ConfigLoader


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


def _build_settings(config_values, verbose, log_file) -> Settings:
    state_file = _resolve_option(None, config_values, "state_file", default=default_home() / "state.json")
    return Settings(
        state_file=Path(state_file).expanduser(),
        verbose=bool(_resolve_option(verbose, config_values, "verbose", default=False)),
        log_file=_resolve_option(log_file, config_values, "log_file"),
        docker_base_url=config_values.get("docker_base_url"),
        max_start_attempts=int(
            _resolve_option(None, config_values, "max_start_attempts", default=MAX_START_ATTEMPTS)
        ),
        verify_seconds=float(_resolve_option(None, config_values, "verify_seconds", default=VERIFY_SECONDS)),
        retry_backoff_seconds=float(
            _resolve_option(None, config_values, "retry_backoff_seconds", default=RETRY_BACKOFF_SECONDS)
        ),
        stop_timeout=int(_resolve_option(None, config_values, "stop_timeout", default=STOP_TIMEOUT)),
        default_port=int(_resolve_option(None, config_values, "default_port", default=DEFAULT_POSTGRES_PORT)),
        port_search_range=int(
            _resolve_option(None, config_values, "port_search_range", default=PORT_SEARCH_RANGE)
        ),
        version_catalog_url=str(
            _resolve_option(None, config_values, "version_catalog_url", default=DOCKERHUB_TAGS_URL)
        ),
        version_catalog_timeout=float(
            _resolve_option(None, config_values, "version_catalog_timeout", default=10.0)
        ),
    )


def _configure_logging(settings: Settings):
    logger = logging.getLogger("pgd")

    if settings.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if settings.log_file:
        file_handler = logging.FileHandler(settings.log_file)
        file_handler.setLevel(logging.DEBUG if settings.verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)


async def _dispatch(settings: Settings, instance, action: str, **kwargs):
    context = await Context.create(settings, instance_override=instance)
    controller = Controller(context)
    return await getattr(controller, action)(**kwargs)


def _run(obj, action: str, **kwargs):
    try:
        return asyncio.run(_dispatch(obj["settings"], obj.get("instance"), action, **kwargs))
    except PgdError as exc:
        raise click.ClickException(str(exc)) from exc
    except KeyboardInterrupt:
        console.print("[bold red]Operation cancelled by user.[/bold red]")
        raise SystemExit(1)


@click.group()
@click.version_option(version=__version__, prog_name="pgd")
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help="Path to a YAML settings file. Defaults to ~/.pgd/config.yml if present.",
)
@click.option("--verbose", "-v", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.pass_context
def main(ctx, config, verbose, log_file):
    """Project-scoped PostgreSQL instance manager."""
    try:
        resolved_config = config
        if resolved_config is None:
            default_config_path = default_home() / "config.yml"
            if default_config_path.exists():
                resolved_config = str(default_config_path)

        config_values = ConfigLoader().load(resolved_config)
    except PgdError as exc:
        raise click.ClickException(str(exc)) from exc

    settings = _build_settings(config_values, verbose, log_file)
    _configure_logging(settings)
    ctx.obj = {"settings": settings, "instance": None}


@main.command()
@click.pass_obj
def init(obj):
    """Create a new project, or initialize the instance for an existing one."""
    _run(obj, "init_project")


@main.group()
@click.option(
    "-I",
    "--name",
    "instance",
    required=False,
    help="Name of the instance to control. Defaults to the current project.",
)
@click.pass_obj
def instance(obj, instance):
    """Control the PostgreSQL instance of a project."""
    obj["instance"] = instance


@instance.command()
@click.pass_obj
def start(obj):
    """Start the PostgreSQL instance."""
    _run(obj, "start")


@instance.command()
@click.pass_obj
def stop(obj):
    """Stop the PostgreSQL instance."""
    _run(obj, "stop")


@instance.command()
@click.pass_obj
def restart(obj):
    """Restart the PostgreSQL instance."""
    _run(obj, "restart")


@instance.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_obj
def destroy(obj, yes):
    """(WARNING!) Destroy the PostgreSQL instance and its data."""
    if not yes:
        click.confirm("This permanently deletes the container and its data. Continue?", abort=True)
    _run(obj, "destroy")


@instance.command()
@click.pass_obj
def status(obj):
    """Show the status of the instance."""
    _run(obj, "status")


@instance.command()
@click.option("--follow", "-f", is_flag=True, help="Keep streaming new log output.")
@click.pass_obj
def logs(obj, follow):
    """View logs produced by PostgreSQL."""
    _run(obj, "logs", follow=follow)


@instance.command()
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["dsn", "human"]),
    default="dsn",
    show_default=True,
    help="Output format.",
)
@click.pass_obj
def connection(obj, fmt):
    """(Sensitive) Print connection details."""
    _run(obj, "show_connection", fmt=fmt)


if __name__ == "__main__":
    main()
