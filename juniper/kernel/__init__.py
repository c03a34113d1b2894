"""Remote Jupyter kernel package."""

from juniper.kernel.client import KernelServiceClient
from juniper.kernel.handle import JupyterExecutionFuture, JupyterKernel
from juniper.kernel.manager import KernelConnectionManager
from juniper.kernel.ports import ExecutionFuture, KernelLauncher, SessionHandle

__all__ = [
    "ExecutionFuture",
    "JupyterExecutionFuture",
    "JupyterKernel",
    "KernelConnectionManager",
    "KernelLauncher",
    "KernelServiceClient",
    "SessionHandle",
]
