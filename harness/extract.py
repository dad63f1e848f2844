import json
import logging
import re
from typing import Any, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import ExtractionFailed


logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def parse_json_object(text: str) -> Any:
    cleaned = (text or "").strip()
    match = _FENCE_RE.match(cleaned)
    if match:
        cleaned = match.group(1)
    return json.loads(cleaned)


def _validate(text: str, model_cls: Type[T]) -> Tuple[Optional[T], str]:
    try:
        data = parse_json_object(text)
    except ValueError as exc:
        return None, f"invalid JSON: {exc}"
    if not isinstance(data, dict):
        return None, "expected a JSON object"
    try:
        return model_cls.model_validate(data), ""
    except ValidationError as exc:
        return None, str(exc)


def extractor_prompt(instruction: str, input: str) -> str:
    return "\n".join(
        [
            "You are a JSON extractor.",
            "Return JSON only. No prose, no markdown, no code fences.",
            "If the input is ambiguous, choose the most reasonable interpretation and proceed.",
            "",
            "Instruction:",
            instruction,
            "",
            "Input:",
            input,
        ]
    )


def repair_prompt(instruction: str, bad: str, error: str) -> str:
    return "\n".join(
        [
            "Fix the following into valid JSON that satisfies the instruction.",
            "Return JSON only. No prose, no markdown, no code fences.",
            "",
            "Instruction:",
            instruction,
            "",
            "Validation error:",
            error,
            "",
            "Bad JSON:",
            bad,
        ]
    )


async def extract_json(ctx: Any, instruction: str, input: str, model_cls: Type[T]) -> T:
    """Ask the cheap model for JSON matching ``model_cls``; one repair attempt, then fail."""
    model = ctx.settings.model_cheap
    first = await ctx.call_text(model, extractor_prompt(instruction, input), temperature=0)
    parsed, error = _validate(first.text, model_cls)
    if parsed is not None:
        return parsed

    logger.info("Extraction for %s needs repair: %s", model_cls.__name__, error[:200])
    repaired = await ctx.call_text(model, repair_prompt(instruction, first.text, error), temperature=0)
    parsed, error = _validate(repaired.text, model_cls)
    if parsed is not None:
        return parsed
    raise ExtractionFailed(
        f"Failed to extract valid {model_cls.__name__} JSON from model output: {error[:200]}",
        raw=repaired.text,
    )
