from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field


class ModelPrice(BaseModel):
    # USD per 1M tokens.
    input: float = Field(ge=0)
    output: float = Field(ge=0)
    cached_input: Optional[float] = Field(default=None, ge=0)


class ModelUsage(BaseModel):
    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    total_tokens: int = 0
    cost_usd: Optional[float] = None


class CostTotals(ModelUsage):
    web_search_calls: int = 0
    tool_calls: Dict[str, int] = Field(default_factory=dict)
    tool_cost_usd: Optional[float] = None


class CostSummary(BaseModel):
    totals: CostTotals
    by_model: Dict[str, ModelUsage] = Field(default_factory=dict)
    priced: bool = False
    partially_priced: bool = False
    unpriced: bool = True
    missing_pricing_for: List[str] = Field(default_factory=list)


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def usage_counts(usage: Optional[Mapping[str, Any]]) -> Dict[str, int]:
    """Flatten a Responses API usage block; absent fields count as zero."""
    usage = usage or {}
    input_details = usage.get("input_tokens_details") or {}
    output_details = usage.get("output_tokens_details") or {}
    input_tokens = _as_int(usage.get("input_tokens"))
    output_tokens = _as_int(usage.get("output_tokens"))
    total = usage.get("total_tokens")
    return {
        "input": input_tokens,
        "cached_input": _as_int(input_details.get("cached_tokens")),
        "output": output_tokens,
        "reasoning": _as_int(output_details.get("reasoning_tokens")),
        "total": _as_int(total) if total is not None else input_tokens + output_tokens,
    }


class CostTracker:
    def __init__(self) -> None:
        self.by_model: Dict[str, Dict[str, int]] = {}
        self.tool_calls: Dict[str, int] = {}

    def record(self, model: str, usage: Optional[Mapping[str, Any]]) -> None:
        counts = usage_counts(usage)
        prev = self.by_model.setdefault(
            model, {"input": 0, "cached_input": 0, "output": 0, "reasoning": 0, "total": 0}
        )
        for key, value in counts.items():
            prev[key] += value

    @property
    def web_search_calls(self) -> int:
        return sum(self.tool_calls.values())

    def record_web_search_call(self, tool: str = "web_search") -> None:
        # Keyed by the backend that bills the call; rates differ per backend.
        self.tool_calls[tool] = self.tool_calls.get(tool, 0) + 1

    def summary(
        self,
        pricing: Optional[Mapping[str, ModelPrice]] = None,
        web_search_usd_per_1k_calls: Optional[float] = None,
        tavily_usd_per_1k_calls: Optional[float] = None,
    ) -> CostSummary:
        pricing = pricing or {}
        tool_rates = {"web_search": web_search_usd_per_1k_calls, "tavily": tavily_usd_per_1k_calls}
        configured = bool(pricing) or any(rate is not None for rate in tool_rates.values())
        by_model: Dict[str, ModelUsage] = {}
        totals = {"input": 0, "cached_input": 0, "output": 0, "reasoning": 0, "total": 0}
        missing: List[str] = []
        model_cost = 0.0
        tool_cost = 0.0
        priced_any = False

        for model, t in self.by_model.items():
            for key in totals:
                totals[key] += t[key]
            entry = ModelUsage(
                input_tokens=t["input"],
                cached_input_tokens=t["cached_input"],
                output_tokens=t["output"],
                reasoning_tokens=t["reasoning"],
                total_tokens=t["total"],
            )
            price = pricing.get(model)
            if price is None:
                missing.append(f"model:{model}")
                by_model[model] = entry
                continue
            cached_rate = price.cached_input if price.cached_input is not None else price.input
            non_cached = max(0, t["input"] - t["cached_input"])
            cost = (non_cached * price.input + t["cached_input"] * cached_rate + t["output"] * price.output) / 1_000_000
            entry.cost_usd = cost
            model_cost += cost
            priced_any = True
            by_model[model] = entry

        # Searches carry a per-call fee that token usage does not capture.
        for tool, calls in sorted(self.tool_calls.items()):
            rate = tool_rates.get(tool)
            if rate is None:
                missing.append(f"tool:{tool}")
                continue
            tool_cost += calls * rate / 1000
            priced_any = True

        total_cost = model_cost + tool_cost
        cost_totals = CostTotals(
            input_tokens=totals["input"],
            cached_input_tokens=totals["cached_input"],
            output_tokens=totals["output"],
            reasoning_tokens=totals["reasoning"],
            total_tokens=totals["total"],
            web_search_calls=self.web_search_calls,
            tool_calls=dict(self.tool_calls),
            cost_usd=total_cost if priced_any else None,
            tool_cost_usd=tool_cost if priced_any else None,
        )
        return CostSummary(
            totals=cost_totals,
            by_model=by_model,
            priced=priced_any and not missing,
            partially_priced=priced_any and bool(missing),
            unpriced=not configured,
            missing_pricing_for=missing,
        )
