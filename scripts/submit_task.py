from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from ai_tasks.app.errors import TaskError
from ai_tasks.app.models import SubmitOptions, Task
from ai_tasks.app.orchestrator import TaskOrchestrator, build_orchestrator
from ai_tasks.config.settings import get_settings


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Submit a generation job to the remote processor and follow it."
    )
    parser.add_argument(
        "kind",
        choices=["cover_letter", "job_match", "interview_questions"],
        help="Content type to generate.",
    )
    parser.add_argument(
        "--params",
        required=True,
        help="Generation parameters as a JSON object, or @path to a JSON file.",
    )
    parser.add_argument("--account", default="cli", help="Owning account id for history.")
    parser.add_argument("--mode", choices=["sync", "async"], default=None)
    parser.add_argument(
        "--no-history",
        action="store_true",
        help="Do not retain the generated artifact in history.",
    )
    parser.add_argument("--interval-s", type=float, default=None, help="Polling interval.")
    parser.add_argument("--max-attempts", type=int, default=None, help="Polling attempt budget.")
    parser.add_argument("--verbose", action="store_true", help="Print lifecycle logs.")
    return parser.parse_args(argv)


def _load_params(raw: str) -> dict[str, Any]:
    if raw.startswith("@"):
        with open(raw[1:], encoding="utf-8") as f:
            parsed = json.load(f)
    else:
        parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise SystemExit("--params must be a JSON object")
    return parsed


async def _run(orchestrator: TaskOrchestrator, args: argparse.Namespace) -> Task:
    task = await orchestrator.submit(
        args.account,
        args.kind,
        _load_params(args.params),
        SubmitOptions(mode=args.mode, save_to_history=False if args.no_history else None),
    )
    if task.is_terminal:
        return task

    print(f"submitted task_id={task.id} status={task.status}", file=sys.stderr)

    def report(snapshot: Task) -> None:
        print(f"task_id={snapshot.id} status={snapshot.status}", file=sys.stderr)

    options = orchestrator.poll_options(
        interval_s=args.interval_s,
        max_attempts=args.max_attempts,
        on_progress=report,
    )
    return await orchestrator.poll(task.id, options, last_seen=task)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    orchestrator = build_orchestrator(get_settings())
    try:
        task = asyncio.run(_run(orchestrator, args))
    except TaskError as exc:
        print(json.dumps(exc.to_dict(), indent=2, default=str))
        return 1
    print(json.dumps(task.model_dump(mode="json"), indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
