"""In-memory RuntimeClient used by the test suite."""

import itertools
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from pgd.errors import ContainerNotFoundError, RuntimeOperationError
from pgd.models import PostgresVersion


@dataclass
class FakeContainer:
    id: str
    name: str
    version: PostgresVersion
    password: str
    port: int
    running: bool = False
    logs: List[bytes] = field(default_factory=list)


class InMemoryRuntime:
    """Records every call and keeps containers in a dict.

    ``start_failures`` makes that many start calls raise before starts begin
    to succeed. ``crash_after_start`` makes that many successful starts leave
    the container stopped. Either may be None to fail forever.
    """

    def __init__(
        self,
        images=(),
        start_failures: Optional[int] = 0,
        crash_after_start: Optional[int] = 0,
    ):
        self.images = set(images)
        self.containers: Dict[str, FakeContainer] = {}
        self.calls: List[Tuple] = []
        self.start_failures = start_failures
        self.crash_after_start = crash_after_start
        self.on_start: Optional[Callable[[str], None]] = None
        self._ids = (f"container-{n}" for n in itertools.count(1))

    def call_count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    def add_container(
        self,
        version: PostgresVersion,
        running: bool = False,
        name: str = "pgd-existing",
        port: int = 5432,
        container_id: Optional[str] = None,
    ) -> FakeContainer:
        container = FakeContainer(
            id=container_id or next(self._ids),
            name=name,
            version=version,
            password="secret",
            port=port,
            running=running,
        )
        self.containers[container.id] = container
        return container

    def _require(self, container_id: str) -> FakeContainer:
        try:
            return self.containers[container_id]
        except KeyError:
            raise ContainerNotFoundError(f"No such container: {container_id}") from None

    @staticmethod
    def _consume(budget: Optional[int]) -> Tuple[bool, Optional[int]]:
        if budget is None:
            return True, None
        if budget > 0:
            return True, budget - 1
        return False, 0

    async def ensure_image_present(self, version: PostgresVersion):
        self.calls.append(("ensure_image_present", version))
        self.images.add(str(version))

    async def container_exists(self, container_id: str) -> bool:
        self.calls.append(("container_exists", container_id))
        return container_id in self.containers

    async def is_running(self, container_id: str) -> bool:
        self.calls.append(("is_running", container_id))
        return self._require(container_id).running

    async def get_version_label(self, container_id: str) -> PostgresVersion:
        self.calls.append(("get_version_label", container_id))
        return self._require(container_id).version

    async def create_container(self, name: str, version: PostgresVersion, password: str, port: int) -> str:
        self.calls.append(("create_container", name, version, password, port))
        if str(version) not in self.images:
            raise RuntimeOperationError(f"Image postgres:{version} is not available locally")
        container = FakeContainer(
            id=next(self._ids),
            name=name,
            version=version,
            password=password,
            port=port,
        )
        self.containers[container.id] = container
        return container.id

    async def start(self, container_id: str):
        self.calls.append(("start", container_id))
        if self.on_start is not None:
            self.on_start(container_id)
        container = self._require(container_id)

        fail, self.start_failures = self._consume(self.start_failures)
        if fail:
            raise RuntimeOperationError(f"Failed to start container: {container_id}")

        crash, self.crash_after_start = self._consume(self.crash_after_start)
        container.running = not crash

    async def stop(self, container_id: str, timeout: int):
        self.calls.append(("stop", container_id, timeout))
        self._require(container_id).running = False

    async def restart(self, container_id: str, timeout: int):
        self.calls.append(("restart", container_id, timeout))
        self._require(container_id).running = True

    async def remove(self, container_id: str, force: bool):
        self.calls.append(("remove", container_id, force))
        container = self._require(container_id)
        if container.running and not force:
            raise RuntimeOperationError(f"Cannot remove running container {container_id}")
        del self.containers[container_id]

    async def exec(self, container_id: str, argv: List[str]) -> Tuple[int, bytes]:
        self.calls.append(("exec", container_id, tuple(argv)))
        if self._require(container_id).running:
            return 0, b"/var/run/postgresql:5432 - accepting connections\n"
        raise RuntimeOperationError(f"Container {container_id} is not running")

    async def stream_logs(self, container_id: str, follow: bool):
        self.calls.append(("stream_logs", container_id, follow))
        for chunk in list(self._require(container_id).logs):
            yield chunk
