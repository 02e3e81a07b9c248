#!/usr/bin/env python3
"""Safety gate - scripted session replay.

Usage:
    python -m safegate.main script.json                  # Replay with AI replies
    python -m safegate.main script.json --no-llm         # Fallback replies only
    python -m safegate.main script.json --session-id s1  # Trace under a fixed id
    python -m safegate.main script.json --trace-path out.json

A script is {"task_context": {...}, "events": [{"type": "CHILD_RESPONSE", ...}]}.
An event of type "BREAK" resets the session for a break.
"""

import argparse
import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Optional

from safegate.config import load_safety_config, settings
from safegate.models import TaskContext, UIPackage, parse_event
from safegate.orchestrator import Orchestrator
from safegate.planner import prompt_intensity_label
from safegate.services.llm import LLMService
from safegate.services.trace_store import TraceStore

logging.basicConfig(level=settings.LOG_LEVEL, format="%(levelname)s: %(message)s")
log = logging.getLogger(__name__)


async def run_script(orchestrator: Orchestrator, script: dict[str, Any]) -> list[UIPackage]:
    """Feed every scripted event through the orchestrator, in order."""
    task_context: Optional[TaskContext] = None
    if script.get("task_context"):
        task_context = TaskContext.model_validate(script["task_context"])

    packages: list[UIPackage] = []
    for index, payload in enumerate(script.get("events", []), 1):
        if isinstance(payload, dict) and payload.get("type") == "BREAK":
            orchestrator.reset_for_break()
            continue
        event = parse_event(payload)
        if event is None:
            continue
        ui_package = await orchestrator.process_event(event, task_context)
        config = ui_package.session_config
        log.info(
            f"[{index}] {ui_package.overlay.safety_level.name} "
            f"({prompt_intensity_label(config.prompt_intensity)}, {config.avatar_tone}): "
            f"{ui_package.speech.text}"
        )
        packages.append(ui_package)
    return packages


def main(argv: Optional[list[str]] = None) -> list[UIPackage]:
    parser = argparse.ArgumentParser(description="Safety gate session replay")
    parser.add_argument("script", type=Path, help="JSON file with task_context and events")
    parser.add_argument("--session-id", type=str, default=None)
    parser.add_argument(
        "--no-llm", action="store_true", help="Skip the AI and use fallback replies"
    )
    parser.add_argument(
        "--trace-path",
        type=str,
        default=settings.TRACE_PATH,
        help="Where to record the session trace",
    )
    args = parser.parse_args(argv)

    session_id = args.session_id or str(uuid.uuid4())[:12]
    script = json.loads(args.script.read_text())
    llm = None if args.no_llm else LLMService.from_settings()
    classifier = llm if llm is not None and settings.USE_LLM_SIGNAL_CLASSIFIER else None

    log.info(
        f"Config: session={session_id}, events={len(script.get('events', []))}, "
        f"ai={'on' if llm else 'off'}, trace={args.trace_path}"
    )

    orchestrator = Orchestrator(
        config=load_safety_config(),
        llm=llm,
        classifier=classifier,
        trace_store=TraceStore(args.trace_path),
        session_id=session_id,
    )
    return asyncio.run(run_script(orchestrator, script))


if __name__ == "__main__":
    main()
