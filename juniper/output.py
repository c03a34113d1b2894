"""Output sinks.

``OutputSink`` is the boundary to whatever renders cell output. ``OutputArea``
is a small in-memory implementation that keeps nbformat-style output dicts,
used by the CLI and tests.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from juniper.errors import JuniperError
from juniper.kernel.ports import ExecutionFuture

log = logging.getLogger("juniper.output")


class OutputSink(Protocol):
    def clear(self, wait: bool = False) -> None: ...

    def add(self, output: dict[str, Any]) -> None: ...

    def attach(self, future: ExecutionFuture) -> None: ...


def stream_output(name: str, text: str) -> dict[str, Any]:
    return {"output_type": "stream", "name": name, "text": text}


def output_from_message(msg: dict) -> dict[str, Any] | None:
    """Convert an iopub message to an nbformat output dict (None if not output)."""
    header = msg.get("header") or {}
    msg_type = header.get("msg_type") or msg.get("msg_type")
    content = msg.get("content") or {}

    if msg_type == "stream":
        return stream_output(content.get("name", "stdout"), content.get("text", ""))
    if msg_type in ("execute_result", "display_data"):
        output: dict[str, Any] = {
            "output_type": msg_type,
            "data": content.get("data", {}),
            "metadata": content.get("metadata", {}),
        }
        if msg_type == "execute_result":
            output["execution_count"] = content.get("execution_count")
        return output
    if msg_type == "error":
        return {
            "output_type": "error",
            "ename": content.get("ename", ""),
            "evalue": content.get("evalue", ""),
            "traceback": content.get("traceback", []),
        }
    return None


class OutputArea:
    """Collects the outputs of one cell."""

    def __init__(self) -> None:
        self.outputs: list[dict[str, Any]] = []
        self.future: ExecutionFuture | None = None
        self._clear_pending = False
        self._task: asyncio.Task | None = None

    def clear(self, wait: bool = False) -> None:
        if wait:
            self._clear_pending = True
            return
        self._clear_pending = False
        self.outputs.clear()

    def add(self, output: dict[str, Any]) -> None:
        if self._clear_pending:
            self.outputs.clear()
            self._clear_pending = False
        # Consecutive writes to the same stream are merged, as notebooks do.
        if (
            output.get("output_type") == "stream"
            and self.outputs
            and self.outputs[-1].get("output_type") == "stream"
            and self.outputs[-1].get("name") == output.get("name")
        ):
            last = self.outputs[-1]
            self.outputs[-1] = {**last, "text": last.get("text", "") + output.get("text", "")}
            return
        self.outputs.append(dict(output))

    def attach(self, future: ExecutionFuture) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
        self.future = future
        self._task = asyncio.create_task(self._consume(future))

    async def wait(self) -> None:
        """Wait until the attached execution has produced all its output."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def _consume(self, future: ExecutionFuture) -> None:
        try:
            async for msg in future:
                header = msg.get("header") or {}
                if (header.get("msg_type") or msg.get("msg_type")) == "clear_output":
                    self.clear(wait=bool((msg.get("content") or {}).get("wait")))
                    continue
                output = output_from_message(msg)
                if output is not None:
                    self.add(output)
        except JuniperError as e:
            log.warning(f"Execution {future.msg_id} lost its channel: {e}")
            self.add(
                {
                    "output_type": "error",
                    "ename": type(e).__name__,
                    "evalue": str(e),
                    "traceback": [],
                }
            )
        finally:
            # Nothing replaced the loading text; drop it.
            if self._clear_pending:
                self.clear()

    def text(self) -> str:
        parts: list[str] = []
        for output in self.outputs:
            kind = output.get("output_type")
            if kind == "stream":
                parts.append(output.get("text", ""))
            elif kind in ("execute_result", "display_data"):
                plain = (output.get("data") or {}).get("text/plain")
                if isinstance(plain, list):
                    plain = "".join(plain)
                if plain:
                    parts.append(f"{plain}\n")
            elif kind == "error":
                parts.append(f"{output.get('ename')}: {output.get('evalue')}\n")
        return "".join(parts)
