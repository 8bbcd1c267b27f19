"""Entry point: python -m studymemo <command> [args]

Debug tooling for the memo tiers:
- status              Probe the catalog
- save UID TEXT       Save a memo (catalog first, local backup as fallback)
- load UID            Load a memo and report which tier answered
- has UID             Whether a non-blank memo exists
- delete UID          Delete a memo from every tier
- local UID           Read the local backup only
- embed UID TEXT      Write through the legacy embedded-tag channel
- clear               Remove every memo from the local backup
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import asdict

from studymemo.catalog.client import CatalogError
from studymemo.config import StudyMemoConfig, load_config

_USAGE = """\
Usage: python -m studymemo <command> [args]
  status            Probe the catalog
  save UID TEXT     Save a memo
  load UID          Load a memo
  has UID           Check for a non-blank memo
  delete UID        Delete a memo from every tier
  local UID         Read the local backup only
  embed UID TEXT    Write through the legacy embedded-tag channel
  clear             Remove every memo from the local backup"""

_ARITY = {"status": 0, "save": 2, "load": 1, "has": 1, "delete": 1, "local": 1, "embed": 2, "clear": 0}


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


async def _run(config: StudyMemoConfig, cmd: str, args: list[str]) -> dict:
    from studymemo.core import build_service

    async with build_service(config) as service:
        if cmd == "status":
            await service.check_connection()
            return {"status": service.status}
        if cmd == "save":
            return asdict(await service.save(args[0], args[1]))
        if cmd == "load":
            return asdict(await service.load(args[0]))
        if cmd == "has":
            return {"has_memo": await service.has_memo(args[0])}
        if cmd == "delete":
            await service.delete(args[0])
            return {"deleted": args[0]}
        if cmd == "local":
            return {"memo": service.load_local_only(args[0])}
        if cmd == "embed":
            try:
                return {"instance": await service.embed(args[0], args[1])}
            except CatalogError as e:
                return {"error": str(e)}
        return {"cleared": service.clear_all()}


def main(argv: list[str] | None = None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    cmd = argv[0] if argv else ""
    args = argv[1:]

    if cmd not in _ARITY or len(args) != _ARITY[cmd]:
        print(_USAGE)
        sys.exit(1)

    config = load_config()
    _setup_logging(config.log_level)

    result = asyncio.run(_run(config, cmd, args))
    print(json.dumps(result, ensure_ascii=False, indent=2))
    if "error" in result:
        sys.exit(1)


if __name__ == "__main__":
    main()
