"""Instance ledger persistence: project name to last provisioned container."""

import json
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Set

from pgd.errors import LedgerError
from pgd.models import InstanceRecord


class InstanceLedger:
    """In-memory copy of the ledger document.

    Mutations stay in memory until ``save`` is called. Saving replaces the
    whole document, so an interrupted process never leaves a partial file.
    """

    def __init__(self, state_file, logger, instances: Optional[Dict[str, InstanceRecord]] = None):
        self.state_file = Path(state_file)
        self.logger = logger
        self._instances: Dict[str, InstanceRecord] = dict(instances or {})

    @classmethod
    def load(cls, state_file, logger) -> "InstanceLedger":
        path = Path(state_file)
        if not path.exists():
            logger.debug("No ledger at %s, starting empty", path)
            return cls(path, logger)

        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                data = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            raise LedgerError(f"Could not read state file '{path}': {exc}") from exc

        if not isinstance(data, dict):
            raise LedgerError(f"State file '{path}' has invalid format.")

        raw_instances = data.get("instances") or {}
        if not isinstance(raw_instances, dict):
            raise LedgerError(f"State file '{path}' has invalid format: 'instances' must be a mapping.")

        instances = {}
        for name, raw in raw_instances.items():
            try:
                instances[name] = InstanceRecord.from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                raise LedgerError(f"State file '{path}' has an invalid record for '{name}': {exc}") from exc

        return cls(path, logger, instances)

    def save(self):
        document = {
            "instances": {name: record.to_dict() for name, record in sorted(self._instances.items())}
        }

        temp_path = None
        try:
            os.makedirs(self.state_file.parent, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                prefix="state-", suffix=".json", dir=str(self.state_file.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(document, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.state_file)
        except OSError as exc:
            raise LedgerError(f"Could not write state file '{self.state_file}': {exc}") from exc
        finally:
            if temp_path is not None and os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

        self.logger.debug("Saved ledger with %s instance(s) to %s", len(self._instances), self.state_file)

    def get(self, project_name: str) -> Optional[InstanceRecord]:
        return self._instances.get(project_name)

    def upsert(self, project_name: str, record: InstanceRecord):
        self._instances[project_name] = record

    def remove(self, project_name: str) -> Optional[InstanceRecord]:
        return self._instances.pop(project_name, None)

    def names(self):
        return sorted(self._instances)

    def used_ports(self) -> Set[int]:
        return {record.port for record in self._instances.values()}

    def get_highest_used_port(self) -> Optional[int]:
        return max(self.used_ports(), default=None)
