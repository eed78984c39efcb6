from __future__ import annotations

import logging
from dataclasses import dataclass, field

from appbuilder.agent.toolkit import Toolkit
from appbuilder.config import Settings, get_settings
from appbuilder.project_store import InMemoryProjectStore, ProjectStore, RuntimeCacheProjectStore
from appbuilder.sandbox.exclusions import DEFAULT_POLICY, ExclusionPolicy
from appbuilder.sandbox.manager import SandboxLifecycleManager
from appbuilder.sandbox.provider import SandboxProvider, VercelSandboxProvider
from appbuilder.sandbox.registry import SandboxRegistry
from appbuilder.sandbox.sync import FileSyncEngine
from appbuilder.streaming import StreamHub


logger = logging.getLogger("appbuilder.services")


@dataclass
class BuilderServices:
    """Everything the HTTP layer and the agent need, wired once per process."""

    settings: Settings
    store: ProjectStore
    provider: SandboxProvider
    registry: SandboxRegistry
    manager: SandboxLifecycleManager
    sync: FileSyncEngine
    toolkit: Toolkit
    hub: StreamHub = field(default_factory=StreamHub)

    @classmethod
    def build(
        cls,
        settings: Settings | None = None,
        *,
        store: ProjectStore | None = None,
        provider: SandboxProvider | None = None,
        policy: ExclusionPolicy = DEFAULT_POLICY,
    ) -> "BuilderServices":
        settings = settings or get_settings()
        if store is None:
            store = make_store(settings)
        if provider is None:
            provider = VercelSandboxProvider(project_root=settings.sandbox_project_root)
        registry = SandboxRegistry()
        manager = SandboxLifecycleManager(provider, store, registry, settings)
        sync = FileSyncEngine(store, policy, settings)
        toolkit = Toolkit(store, manager, sync, settings)
        return cls(
            settings=settings,
            store=store,
            provider=provider,
            registry=registry,
            manager=manager,
            sync=sync,
            toolkit=toolkit,
        )


def make_store(settings: Settings) -> ProjectStore:
    backend = settings.project_store_backend
    if backend == "runtime-cache":
        logger.info("using runtime cache project store namespace=%s", settings.project_store_namespace)
        return RuntimeCacheProjectStore(
            settings.project_store_namespace, settings.project_store_ttl_seconds
        )
    if backend != "memory":
        raise ValueError(f"Unknown PROJECT_STORE_BACKEND: {backend}")
    return InMemoryProjectStore()
