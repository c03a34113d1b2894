#!/usr/bin/env python3
"""Run code snippets as Juniper cells from the command line.

Each file (or ``-c`` snippet) is one cell. Cells run in order on a kernel
obtained from the session cache, a Binder build, or a static server, and each
cell's output is printed to stdout.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Iterable

from juniper.config import JuniperConfig, get_juniper_config, load_env
from juniper.errors import ConfigError
from juniper.orchestrator import Juniper
from juniper.output import OutputArea
from juniper.status import StatusEvent

log = logging.getLogger("juniper.cli")


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def _parse_args(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="juniper", description="Run code cells on a remote Jupyter kernel"
    )
    parser.add_argument("files", nargs="*", type=Path, help="Files to run, one cell each")
    parser.add_argument(
        "-c", "--code", action="append", default=[], help="Inline cell (repeatable)"
    )
    parser.add_argument("--repo", help="GitHub repository for Binder, e.g. user/repo")
    parser.add_argument("--branch", help="Repository branch (default: master)")
    parser.add_argument("--binder-url", help="Binder deployment URL")
    parser.add_argument(
        "--no-binder", action="store_true", help="Use the static server instead of Binder"
    )
    parser.add_argument(
        "--no-cache", action="store_true", help="Do not reuse or persist sessions"
    )
    parser.add_argument(
        "--shared-state",
        action="store_true",
        help="Keep interpreter state between cells (no restart before each cell)",
    )
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(list(argv))


def _apply_args(cfg: JuniperConfig, args: argparse.Namespace) -> JuniperConfig:
    changes: dict[str, object] = {}
    if args.repo:
        changes["repository"] = args.repo
    if args.branch:
        changes["branch"] = args.branch
    if args.binder_url:
        changes["provisioning_service_url"] = args.binder_url.rstrip("/")
    if args.no_binder:
        changes["use_provisioning"] = False
    if args.no_cache:
        changes["use_cache"] = False
    if args.shared_state:
        changes["isolate_executions"] = False
    return cfg.with_overrides(**changes) if changes else cfg


def _collect_cells(args: argparse.Namespace) -> list[tuple[str, str]]:
    cells: list[tuple[str, str]] = []
    for path in args.files:
        cells.append((str(path), path.read_text(encoding="utf-8")))
    for i, code in enumerate(args.code, start=1):
        cells.append((f"<cell {i}>", code))
    return cells


def _log_status(event: StatusEvent) -> None:
    if event.data:
        log.info(f"[{event.name}] {event.status}: {event.data}")
    else:
        log.info(f"[{event.name}] {event.status}")


async def run_cells(cfg: JuniperConfig, cells: list[tuple[str, str]]) -> int:
    failures = 0
    async with Juniper(cfg) as juniper:
        juniper.subscribe(_log_status)
        for label, code in cells:
            area = OutputArea()
            outcome = await juniper.execute(code, area)
            await area.wait()
            print(f"--- {label}")
            print(area.text(), end="")
            if not outcome.ok:
                failures += 1
                log.error(f"{label}: {outcome.error}")
    return 1 if failures else 0


def main(argv: Iterable[str]) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)
    load_env()

    cells = _collect_cells(args)
    if not cells:
        print("Nothing to run: pass files or -c CODE", file=sys.stderr)
        return 2

    cfg = _apply_args(get_juniper_config(), args)
    try:
        cfg.validate()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    return asyncio.run(run_cells(cfg, cells))


def _entrypoint() -> None:
    raise SystemExit(main(sys.argv[1:]))


if __name__ == "__main__":
    _entrypoint()
