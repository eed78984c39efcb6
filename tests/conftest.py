import pytest

from appbuilder.agent.toolkit import Toolkit
from appbuilder.config import Settings
from appbuilder.project_store import InMemoryProjectStore
from appbuilder.sandbox.exclusions import DEFAULT_POLICY
from appbuilder.sandbox.manager import SandboxLifecycleManager
from appbuilder.sandbox.registry import SandboxRegistry
from appbuilder.sandbox.sync import FileSyncEngine
from appbuilder.services import BuilderServices
from fakes import FakeClock, FakeSandboxProvider


@pytest.fixture
def settings() -> Settings:
    return Settings(stream_chunk_delay_seconds=0.0, sandbox_runtime="node22")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def services(settings: Settings, clock: FakeClock) -> BuilderServices:
    store = InMemoryProjectStore()
    provider = FakeSandboxProvider()
    registry = SandboxRegistry()
    manager = SandboxLifecycleManager(provider, store, registry, settings, clock=clock)
    sync = FileSyncEngine(store, DEFAULT_POLICY, settings)
    return BuilderServices(
        settings=settings,
        store=store,
        provider=provider,
        registry=registry,
        manager=manager,
        sync=sync,
        toolkit=Toolkit(store, manager, sync, settings),
    )
