"""Juniper: run code snippets on remote Jupyter kernels launched via Binder."""

from juniper.config import JuniperConfig, get_juniper_config, load_env
from juniper.controller import ExecutionOutcome, ExecutionState
from juniper.errors import (
    JuniperError,
    KernelStartError,
    ProvisioningFailedError,
    ProvisioningTransportError,
    RestartError,
)
from juniper.models import CachedSession, ConnectionSettings
from juniper.orchestrator import Juniper
from juniper.output import OutputArea, OutputSink
from juniper.status import StatusEvent, StatusEventBus

__all__ = [
    "CachedSession",
    "ConnectionSettings",
    "ExecutionOutcome",
    "ExecutionState",
    "Juniper",
    "JuniperConfig",
    "JuniperError",
    "KernelStartError",
    "OutputArea",
    "OutputSink",
    "ProvisioningFailedError",
    "ProvisioningTransportError",
    "RestartError",
    "StatusEvent",
    "StatusEventBus",
    "get_juniper_config",
    "load_env",
]
