"""Progress rendering for Docker image pulls."""

from typing import Any, Dict, Iterable, Optional

from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from pgd.errors import RuntimeOperationError

_FINISHED_STATUSES = {"Pull complete", "Already exists"}


def check_for_error(event: Dict[str, Any]):
    detail = event.get("errorDetail") or {}
    code = detail.get("code")
    message = detail.get("message") or event.get("error")

    if code is not None and message:
        raise RuntimeOperationError(f"docker image download error: code {code}, message: {message}")
    if message:
        raise RuntimeOperationError(f"docker image download error: {message}")
    if code is not None:
        raise RuntimeOperationError(f"docker image download error: code {code}")


class _Layer:
    def __init__(self, task: TaskID):
        self.task = task
        self.total: Optional[float] = None


class ImagePullProgress:
    """Renders the daemon's pull status stream as one progress bar per layer."""

    def __init__(self, console):
        self.console = console

    def consume(self, events: Iterable[Dict[str, Any]]) -> int:
        """Drains ``events`` and returns the number of layers seen."""
        layers: Dict[str, _Layer] = {}

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            "•",
            TimeElapsedColumn(),
            console=self.console,
            transient=True,
        ) as progress:
            for event in events:
                check_for_error(event)

                layer_id = event.get("id")
                status = event.get("status") or ""
                if not layer_id or status.startswith("Pulling from"):
                    continue

                if layer_id not in layers:
                    layers[layer_id] = _Layer(progress.add_task(f"[cyan]Layer {layer_id}", total=None))
                self._drive(progress, layers[layer_id], event)

        return len(layers)

    @staticmethod
    def _drive(progress: Progress, layer: _Layer, event: Dict[str, Any]):
        if event.get("status") in _FINISHED_STATUSES:
            total = layer.total or 1
            progress.update(layer.task, total=total, completed=total)
            return

        detail = event.get("progressDetail") or {}
        current = detail.get("current")
        total = detail.get("total")

        if current is None and total is None:
            progress.advance(layer.task)
            return
        if total:
            layer.total = total
            progress.update(layer.task, total=total)
        if current is not None:
            progress.update(layer.task, completed=current)
