import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

from harness.config import load_settings
from harness.errors import Aborted, HarnessError
from harness.orchestrator import run_harness
from harness.progress import ConsoleReporter


def env_help() -> str:
    key = os.getenv("OPENAI_API_KEY", "")
    key_state = f"set (len: {len(key)}); not printed" if key else "NOT SET"
    lines = [
        "Env:",
        f"  OPENAI_API_KEY ({key_state})",
        f"  HARNESS_MODEL_THINKING (current: {os.getenv('HARNESS_MODEL_THINKING', 'gpt-5.2')})",
        f"  HARNESS_MODEL_CHEAP (current: {os.getenv('HARNESS_MODEL_CHEAP', 'gpt-5-mini')})",
        f"  HARNESS_REASONING_EFFORT (current: {os.getenv('HARNESS_REASONING_EFFORT', 'high')})",
        f"  HARNESS_MAX_STEPS (current: {os.getenv('HARNESS_MAX_STEPS', '20')})",
        f"  HARNESS_VERBOSITY (current: {os.getenv('HARNESS_VERBOSITY', '0')})",
        f"  HARNESS_SEARCH_BACKEND (current: {os.getenv('HARNESS_SEARCH_BACKEND', 'auto')})",
    ]
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="harness",
        description="Answer a task with routing, drafts, critique and verification.",
        epilog=env_help(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("task", nargs="*", help="Task text")
    output = parser.add_mutually_exclusive_group()
    output.add_argument("--pretty", action="store_true", default=None, help="Human-readable progress on stderr")
    output.add_argument("--jsonl", action="store_true", help="One JSON progress record per line on stdout")
    parser.add_argument("--max-steps", type=int, default=None, help="Hard step budget")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More detail lines (-v, -vv, -vvv)")
    parser.add_argument("--config", default=None, help="Path to config.json")
    return parser


async def run_cli(args: argparse.Namespace) -> int:
    overrides = {
        "pretty": False if args.jsonl else args.pretty,
        "jsonl": True if args.jsonl else None,
        "max_steps": args.max_steps,
        "verbosity": min(3, args.verbose) if args.verbose else None,
    }
    settings = load_settings(Path(args.config) if args.config else None, overrides)
    reporter = ConsoleReporter(pretty=settings.pretty, jsonl=settings.jsonl, verbosity=settings.verbosity)

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except (NotImplementedError, RuntimeError):
        pass

    try:
        result = await run_harness(" ".join(args.task).strip(), settings, reporter, cancel_event)
    except Aborted as exc:
        print(f"Aborted: {exc}", file=sys.stderr)
        return 130
    except HarnessError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

    if settings.jsonl:
        print(json.dumps({"type": "final_answer", "text": result.final_answer}, ensure_ascii=False))
    else:
        print(result.final_answer)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.task:
        parser.print_help()
        return 1
    logging.basicConfig(
        level=logging.INFO if args.verbose >= 2 else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(run_cli(args))
    except KeyboardInterrupt:
        return 130
    except Exception as exc:
        logging.getLogger("harness").debug("run failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
