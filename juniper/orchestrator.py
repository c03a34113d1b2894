"""Juniper: executable code cells backed by a remote kernel.

``Juniper`` wires the cache, Binder provisioner, kernel manager, acquisition
policy and execution controller together from a ``JuniperConfig``. Each
instance is independent; several can run side by side.
"""

from __future__ import annotations

import logging

from juniper.acquisition import SessionAcquisitionPolicy
from juniper.binder import BinderClient, BinderProvisioner
from juniper.cache import SessionCache
from juniper.config import JuniperConfig
from juniper.controller import ExecutionController, ExecutionOutcome
from juniper.kernel import KernelConnectionManager, KernelLauncher, SessionHandle
from juniper.output import OutputArea, OutputSink
from juniper.status import Listener, StatusEventBus
from juniper.storage import KeyValueStore, SqliteStore

log = logging.getLogger("juniper")


class Juniper:
    def __init__(
        self,
        config: JuniperConfig | None = None,
        *,
        store: KeyValueStore | None = None,
        bus: StatusEventBus | None = None,
        launcher: KernelLauncher | None = None,
        provisioner: BinderProvisioner | None = None,
    ):
        self.config = config or JuniperConfig()
        self.config.validate()
        cfg = self.config

        self.bus = bus or StatusEventBus(cfg.event_name)

        if store is None and cfg.use_cache:
            store = SqliteStore(cfg.storage_path)
        self.store = store
        self.cache = SessionCache(
            store,
            key=cfg.cache_key,
            ttl_minutes=cfg.cache_ttl_minutes,
            enabled=cfg.use_cache,
        )

        self.kernels = KernelConnectionManager(
            self.cache,
            self.bus,
            kernel_type=cfg.kernel_type,
            launcher=launcher,
            http_timeout_s=cfg.http_timeout_s,
        )

        if provisioner is None and cfg.use_provisioning:
            provisioner = BinderProvisioner(
                BinderClient(
                    cfg.provisioning_service_url,
                    connect_timeout_s=cfg.connect_timeout_s,
                    max_buffer_bytes=cfg.sse_max_buffer_bytes,
                ),
                self.bus,
            )
        self.provisioner = provisioner

        self.policy = SessionAcquisitionPolicy(
            self.cache,
            self.kernels,
            provisioner,
            use_provisioning=cfg.use_provisioning,
            repository=cfg.repository,
            branch=cfg.branch,
            static_settings=cfg.server_settings,
        )
        self.controller = ExecutionController(
            self.policy,
            self.cache,
            self.bus,
            isolate=cfg.isolate_executions,
            loading_message=cfg.loading_message,
            error_message=cfg.error_message,
            service_url=cfg.provisioning_service_url,
        )

    @property
    def session(self) -> SessionHandle | None:
        return self.controller.session

    @property
    def from_cache(self) -> bool:
        return self.controller.from_cache

    def subscribe(self, listener: Listener):
        """Subscribe to status events. Returns an unsubscribe function."""
        return self.bus.subscribe(listener)

    async def execute(self, code: str, sink: OutputSink | None = None) -> ExecutionOutcome:
        """Run ``code`` as one cell; output goes to ``sink`` (a new OutputArea if omitted)."""
        return await self.controller.execute(code, sink if sink is not None else OutputArea())

    async def close(self) -> None:
        await self.controller.close()
        if isinstance(self.store, SqliteStore):
            self.store.close()

    async def __aenter__(self) -> Juniper:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
