import sys
from pathlib import Path

import pytest

# Ensure repository root is on sys.path so the in-tree package imports cleanly.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from netledger.config import Config, _reset_config_for_tests  # noqa: E402
from netledger.models.domain import Caller, Role  # noqa: E402
from netledger.runtime import Runtime  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch):
    for name in ("NETLEDGER_DB_URL", "NETLEDGER_DB_PATH", "NETLEDGER_LOG_JSON"):
        monkeypatch.delenv(name, raising=False)
    _reset_config_for_tests()
    yield
    _reset_config_for_tests()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(db_path=tmp_path / "netledger.sqlite")


@pytest.fixture
def runtime(config: Config):
    rt = Runtime.open(config)
    yield rt
    rt.close()


@pytest.fixture
def setter() -> Caller:
    return Caller(Role.POLICY_SETTER, "setter-1")


@pytest.fixture
def planner() -> Caller:
    return Caller(Role.PLANNER, "planner-1")


@pytest.fixture
def executor() -> Caller:
    return Caller(Role.EXECUTOR, "worker-a")


def make_planned_network(rt: Runtime, network_id: str, steps: int, setter: Caller, planner: Caller):
    """Create a network with a saved policy and one sub-task per step; returns the sub-tasks."""
    rt.network.create_network(network_id, description=f"Network {network_id}")
    saved = rt.network.save_policy(setter, network_id, {"strategy": "work through the steps in order"})
    assert saved.success, saved.message
    created = rt.network.create_subtasks(
        planner,
        network_id,
        [
            {"task_type": "work", "description": f"Step {n}", "step_number": n}
            for n in range(1, steps + 1)
        ],
    )
    assert created.success, created.message
    return created.data["tasks"]


@pytest.fixture
def planned_network(runtime, setter, planner):
    def _make(network_id: str = "net-1", steps: int = 2):
        return make_planned_network(runtime, network_id, steps, setter, planner)

    return _make
