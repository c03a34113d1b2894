"""Binder provisioning package."""

from juniper.binder.client import BinderClient
from juniper.binder.protocol import (
    BinderMessage,
    Building,
    Failed,
    PhaseTracker,
    PhaseUpdate,
    Ready,
    parse_message,
    status_data,
)
from juniper.binder.provisioner import BinderProvisioner

__all__ = [
    "BinderClient",
    "BinderMessage",
    "BinderProvisioner",
    "Building",
    "Failed",
    "PhaseTracker",
    "PhaseUpdate",
    "Ready",
    "parse_message",
    "status_data",
]
