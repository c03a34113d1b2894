"""Session acquisition policy.

Decides where kernel connection settings come from, in priority order:

1. a non-expired cached record (when caching is enabled)
2. a fresh Binder build (when Binder is enabled)
3. the statically configured server
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from juniper.binder.provisioner import BinderProvisioner
from juniper.cache import SessionCache
from juniper.errors import JuniperError, KernelStartError, ProvisioningTransportError
from juniper.kernel.manager import KernelConnectionManager
from juniper.kernel.ports import SessionHandle
from juniper.models import ConnectionSettings, Err, Ok, Result

log = logging.getLogger("juniper.acquisition")


class AcquisitionOrigin(str, Enum):
    CACHE = "cache"
    PROVISIONING = "provisioning"
    STATIC = "static"


@dataclass(frozen=True)
class AcquisitionPlan:
    origin: AcquisitionOrigin
    settings: ConnectionSettings | None = None  # None until Binder provides them

    @property
    def from_cache(self) -> bool:
        return self.origin is AcquisitionOrigin.CACHE


class SessionAcquisitionPolicy:
    def __init__(
        self,
        cache: SessionCache,
        kernels: KernelConnectionManager,
        provisioner: BinderProvisioner | None,
        *,
        use_provisioning: bool,
        repository: str | None,
        branch: str,
        static_settings: ConnectionSettings,
    ):
        self._cache = cache
        self._kernels = kernels
        self._provisioner = provisioner
        self.use_provisioning = use_provisioning and provisioner is not None
        self.repository = repository
        self.branch = branch
        self.static_settings = static_settings

    def plan(self) -> AcquisitionPlan:
        cached = self._cache.load()
        if cached is not None:
            return AcquisitionPlan(AcquisitionOrigin.CACHE, cached.settings)
        if self.use_provisioning:
            return AcquisitionPlan(AcquisitionOrigin.PROVISIONING)
        return AcquisitionPlan(AcquisitionOrigin.STATIC, self.static_settings)

    async def acquire(self, plan: AcquisitionPlan | None = None) -> Result[SessionHandle]:
        """Run ``plan`` (or a fresh one) and return Ok(handle) or Err(error)."""
        plan = plan or self.plan()
        log.info(f"Acquiring kernel session from {plan.origin.value}")
        try:
            settings = plan.settings
            if settings is None:
                settings = await self._provision()
            handle = await self._start(settings)
        except JuniperError as e:
            log.warning(f"Kernel acquisition from {plan.origin.value} failed: {e}")
            return Err(e)
        return Ok(handle)

    async def _provision(self) -> ConnectionSettings:
        repository = self.repository or ""
        try:
            return await self._provisioner.request(repository, self.branch)
        except JuniperError:
            raise
        except Exception as e:
            log.exception("Unexpected error while provisioning")
            raise ProvisioningTransportError(
                f"{repository}@{self.branch}", f"{type(e).__name__}: {e}"
            ) from e

    async def _start(self, settings: ConnectionSettings) -> SessionHandle:
        try:
            return await self._kernels.start(settings)
        except JuniperError:
            raise
        except Exception as e:
            log.exception("Unexpected error while starting kernel")
            raise KernelStartError(
                f"Could not start kernel on {settings.base_url}: {type(e).__name__}: {e}"
            ) from e
