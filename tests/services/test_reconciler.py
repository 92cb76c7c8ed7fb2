import json

import pytest

from pgd.errors import (
    DowngradeUnsupportedError,
    RuntimeConnectivityError,
    StartFailedError,
    UpgradeUnsupportedError,
)
from pgd.models import InstanceRecord, PostgresVersion, Project, ProjectConfig
from pgd.services.reconciler import Reconciler, ReconcileState
from pgd.services.state import InstanceLedger
from pgd.testing import InMemoryRuntime

V16 = PostgresVersion(16, 4)
V17 = PostgresVersion(17, 2)


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


class SleepRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def _project(tmp_path, version=V17, port=5440) -> Project:
    return Project(
        name="shop",
        path=tmp_path,
        config=ProjectConfig(version=version, password="pw", port=port),
    )


def _ledger(tmp_path) -> InstanceLedger:
    return InstanceLedger(tmp_path / "state.json", logger=DummyLogger())


def _reconciler(runtime, ledger, sleep, **kwargs) -> Reconciler:
    return Reconciler(
        runtime,
        ledger,
        logger=DummyLogger(),
        console=DummyConsole(),
        verify_seconds=5,
        retry_backoff_seconds=1,
        sleep=sleep,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_new_project_is_recorded_before_first_start(tmp_path):
    runtime = InMemoryRuntime()
    ledger = _ledger(tmp_path)
    state_file = tmp_path / "state.json"

    recorded_at_start = []
    runtime.on_start = lambda _cid: recorded_at_start.append(
        json.loads(state_file.read_text(encoding="utf-8"))["instances"]["shop"]["container_id"]
    )

    outcome = await _reconciler(runtime, ledger, SleepRecorder()).reconcile(_project(tmp_path))

    assert outcome.state is ReconcileState.RUNNING
    assert outcome.provisioned is True
    assert runtime.call_count("create_container") == 1
    assert recorded_at_start == [outcome.container_id]

    record = InstanceLedger.load(state_file, DummyLogger()).get("shop")
    assert record.container_id == outcome.container_id
    assert record.postgres_version == V17
    assert record.port == 5440


@pytest.mark.asyncio
async def test_new_container_uses_project_naming_and_pulls_image_first(tmp_path):
    runtime = InMemoryRuntime()

    await _reconciler(runtime, _ledger(tmp_path), SleepRecorder()).reconcile(_project(tmp_path))

    methods = [call[0] for call in runtime.calls]
    assert methods.index("ensure_image_present") < methods.index("create_container")
    create = next(call for call in runtime.calls if call[0] == "create_container")
    assert create[1:] == ("pgd-shop-17_2", V17, "pw", 5440)


@pytest.mark.asyncio
async def test_missing_recorded_container_is_replaced(tmp_path):
    runtime = InMemoryRuntime()
    ledger = _ledger(tmp_path)
    ledger.upsert("shop", InstanceRecord("gone-id", V17, 5440, created_at=1))
    ledger.save()

    outcome = await _reconciler(runtime, ledger, SleepRecorder()).reconcile(_project(tmp_path))

    assert outcome.provisioned is True
    assert outcome.container_id != "gone-id"
    assert ledger.get("shop").container_id == outcome.container_id
    assert "gone-id" not in (tmp_path / "state.json").read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_newer_configured_version_is_rejected_as_upgrade(tmp_path):
    runtime = InMemoryRuntime()
    existing = runtime.add_container(V16, running=True)
    ledger = _ledger(tmp_path)
    ledger.upsert("shop", InstanceRecord(existing.id, V16, 5440, created_at=1))

    with pytest.raises(UpgradeUnsupportedError) as excinfo:
        await _reconciler(runtime, ledger, SleepRecorder()).reconcile(_project(tmp_path, version=V17))

    assert "16.4" in str(excinfo.value)
    assert "17.2" in str(excinfo.value)
    assert excinfo.value.actual == V16
    assert excinfo.value.desired == V17
    assert runtime.call_count("start") == 0
    assert runtime.call_count("create_container") == 0


@pytest.mark.asyncio
async def test_older_configured_version_is_rejected_as_downgrade(tmp_path):
    runtime = InMemoryRuntime()
    existing = runtime.add_container(V17, running=False)
    ledger = _ledger(tmp_path)
    ledger.upsert("shop", InstanceRecord(existing.id, V17, 5440, created_at=1))

    with pytest.raises(DowngradeUnsupportedError, match="Cannot downgrade PostgreSQL from 17.2 to 16.4"):
        await _reconciler(runtime, ledger, SleepRecorder()).reconcile(_project(tmp_path, version=V16))

    assert runtime.call_count("start") == 0


@pytest.mark.asyncio
async def test_minor_version_drift_is_also_rejected(tmp_path):
    runtime = InMemoryRuntime()
    existing = runtime.add_container(PostgresVersion(17, 1), running=True)
    ledger = _ledger(tmp_path)
    ledger.upsert("shop", InstanceRecord(existing.id, PostgresVersion(17, 1), 5440, created_at=1))

    with pytest.raises(UpgradeUnsupportedError, match="from 17.1 to 17.2"):
        await _reconciler(runtime, ledger, SleepRecorder()).reconcile(_project(tmp_path))


@pytest.mark.asyncio
async def test_running_matching_container_is_left_alone(tmp_path):
    runtime = InMemoryRuntime()
    existing = runtime.add_container(V17, running=True)
    ledger = _ledger(tmp_path)
    ledger.upsert("shop", InstanceRecord(existing.id, V17, 5440, created_at=1))
    ledger.save()
    before = (tmp_path / "state.json").read_bytes()
    sleep = SleepRecorder()

    outcome = await _reconciler(runtime, ledger, sleep).reconcile(_project(tmp_path))

    assert outcome.state is ReconcileState.ALREADY_RUNNING
    assert outcome.container_id == existing.id
    assert outcome.provisioned is False
    assert runtime.call_count("create_container") == 0
    assert runtime.call_count("start") == 0
    assert sleep.calls == []
    assert (tmp_path / "state.json").read_bytes() == before


@pytest.mark.asyncio
async def test_stopped_container_is_started_without_ledger_write(tmp_path):
    runtime = InMemoryRuntime()
    existing = runtime.add_container(V17, running=False)
    ledger = _ledger(tmp_path)
    ledger.upsert("shop", InstanceRecord(existing.id, V17, 5440, created_at=1))

    outcome = await _reconciler(runtime, ledger, SleepRecorder()).reconcile(_project(tmp_path))

    assert outcome.state is ReconcileState.RUNNING
    assert runtime.call_count("start") == 1
    assert runtime.call_count("create_container") == 0
    assert not (tmp_path / "state.json").exists()


@pytest.mark.asyncio
async def test_start_succeeds_after_three_failures(tmp_path):
    runtime = InMemoryRuntime(start_failures=3)
    sleep = SleepRecorder()

    outcome = await _reconciler(runtime, _ledger(tmp_path), sleep).reconcile(_project(tmp_path))

    assert outcome.state is ReconcileState.RUNNING
    assert runtime.call_count("start") == 4
    assert sleep.calls.count(1) == 3
    assert sleep.calls.count(5) == 1


@pytest.mark.asyncio
async def test_start_gives_up_after_max_attempts(tmp_path):
    runtime = InMemoryRuntime(start_failures=None)
    sleep = SleepRecorder()

    with pytest.raises(StartFailedError, match="after 10 attempts"):
        await _reconciler(runtime, _ledger(tmp_path), sleep).reconcile(_project(tmp_path))

    assert runtime.call_count("start") == 10
    assert sleep.calls == [1] * 9


@pytest.mark.asyncio
async def test_configured_attempt_count_is_honoured(tmp_path):
    runtime = InMemoryRuntime(start_failures=None)

    with pytest.raises(StartFailedError, match="after 3 attempts"):
        await _reconciler(
            runtime, _ledger(tmp_path), SleepRecorder(), max_start_attempts=3
        ).reconcile(_project(tmp_path))

    assert runtime.call_count("start") == 3


@pytest.mark.asyncio
async def test_container_that_exits_after_start_counts_as_failed_attempt(tmp_path):
    runtime = InMemoryRuntime(crash_after_start=2)
    sleep = SleepRecorder()

    outcome = await _reconciler(runtime, _ledger(tmp_path), sleep).reconcile(_project(tmp_path))

    assert outcome.state is ReconcileState.RUNNING
    assert runtime.call_count("start") == 3
    assert sleep.calls == [5, 1, 5, 1, 5]


class UnreachableOnStart(InMemoryRuntime):
    async def start(self, container_id):
        self.calls.append(("start", container_id))
        raise RuntimeConnectivityError("daemon went away")


@pytest.mark.asyncio
async def test_connectivity_errors_are_not_retried(tmp_path):
    runtime = UnreachableOnStart()

    with pytest.raises(RuntimeConnectivityError):
        await _reconciler(runtime, _ledger(tmp_path), SleepRecorder()).reconcile(_project(tmp_path))

    assert runtime.call_count("start") == 1


@pytest.mark.asyncio
async def test_port_mismatch_only_warns(tmp_path):
    warnings = []

    class RecordingLogger(DummyLogger):
        def warning(self, message, *args, **_kwargs):
            warnings.append(message % args)

    runtime = InMemoryRuntime()
    existing = runtime.add_container(V17, running=True)
    ledger = _ledger(tmp_path)
    ledger.upsert("shop", InstanceRecord(existing.id, V17, 5432, created_at=1))

    reconciler = Reconciler(runtime, ledger, logger=RecordingLogger(), console=DummyConsole())
    outcome = await reconciler.reconcile(_project(tmp_path, port=5440))

    assert outcome.state is ReconcileState.ALREADY_RUNNING
    assert any("5440" in message and "5432" in message for message in warnings)
