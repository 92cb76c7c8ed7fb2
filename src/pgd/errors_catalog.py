"""Actionable error catalog for pgd."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "docker_unreachable": {
        "what": "Failed to connect to Docker: {detail}",
        "next": "pgd requires Docker. Make sure the daemon is installed and running.",
    },
    "upgrade_unsupported": {
        "what": "Upgrading PostgreSQL from {actual} to {desired} is not supported.",
        "next": "Set `version = \"{actual}\"` in pgd.toml, or destroy the instance with "
        "`pgd instance destroy` and start again.",
    },
    "downgrade_unsupported": {
        "what": "Cannot downgrade PostgreSQL from {actual} to {desired}.",
        "next": "Set `version = \"{actual}\"` in pgd.toml, or destroy the instance with "
        "`pgd instance destroy` and start again.",
    },
    "start_failed": {
        "what": "Failed to start container after {attempts} attempts.",
        "next": "Inspect the output of `pgd instance logs` for the cause.",
    },
    "port_exhausted": {
        "what": "No available ports found in range {first}-{last}.",
        "next": "Free a port in that range or set `default_port` in the pgd settings file.",
    },
    "container_name_conflict": {
        "what": "A container named {name} already exists but is not tracked by pgd.",
        "next": "Remove it with `docker rm -f {name}` and retry.",
    },
    "project_required": {
        "what": "This command requires a project.",
        "next": "Run `pgd init` in the project directory.",
    },
    "instance_required": {
        "what": "This command requires an instance.",
        "next": "Initialize a project with `pgd init`, or pass `-I` with an instance name.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
