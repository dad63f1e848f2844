import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from dotenv import load_dotenv

from .cost import ModelPrice

CONFIG_PATH = Path("config.json")
ENV_OVERRIDE_KEY = "HARNESS_ENV_OVERRIDES_CONFIG"
ENV_OVERRIDE_TRUE = {"1", "true", "yes", "on"}

# Keep in sync with https://openai.com/api/pricing/ (override via HARNESS_PRICING_USD_PER_1M_TOKENS_JSON).
DEFAULT_PRICING_USD_PER_1M_TOKENS: Dict[str, ModelPrice] = {
    "gpt-5.2": ModelPrice(input=1.75, cached_input=0.175, output=14.0),
    "gpt-5-mini": ModelPrice(input=0.25, cached_input=0.025, output=2.0),
}
DEFAULT_WEB_SEARCH_USD_PER_1K_CALLS = 10.0

ReasoningEffort = Literal["low", "medium", "high"]
SearchBackend = Literal["auto", "tavily", "openai"]


class HarnessSettings(BaseModel):
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    model_thinking: str = "gpt-5.2"
    model_cheap: str = "gpt-5-mini"
    reasoning_effort: ReasoningEffort = "high"
    max_steps: int = Field(default=20, gt=0)
    pretty: bool = True
    jsonl: bool = False
    verbosity: Literal[0, 1, 2, 3] = 0

    pricing_usd_per_1m_tokens: Dict[str, ModelPrice] = Field(
        default_factory=lambda: dict(DEFAULT_PRICING_USD_PER_1M_TOKENS)
    )
    web_search_usd_per_1k_calls: Optional[float] = Field(default=DEFAULT_WEB_SEARCH_USD_PER_1K_CALLS, ge=0)
    # Unset means Tavily searches are reported as missing a price.
    tavily_usd_per_1k_calls: Optional[float] = Field(default=None, ge=0)

    tavily_api_key: Optional[str] = None
    search_backend: SearchBackend = "auto"
    search_top_k: int = 8
    python_command: List[str] = Field(default_factory=lambda: [sys.executable])
    python_timeout_ms: int = 30_000
    max_repair_cycles: int = Field(default=1, ge=0)

    database_path: str = "harness_data.db"
    host: str = "127.0.0.1"
    port: int = 8000

    def to_safe_dict(self) -> dict:
        data = self.model_dump()
        for key in ("openai_api_key", "tavily_api_key"):
            if data.get(key):
                data[key] = "********"
        return data

    model_config = {"protected_namespaces": ()}


def _parse_pricing_json(raw: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(raw)
        if not isinstance(parsed, dict):
            raise ValueError("expected a JSON object keyed by model id")
        return {model: ModelPrice(**price).model_dump() for model, price in parsed.items()}
    except Exception as exc:
        raise ValueError(f"Invalid HARNESS_PRICING_USD_PER_1M_TOKENS_JSON: {exc}") from exc


def _parse_web_search_price(raw: str, name: str = "HARNESS_WEB_SEARCH_USD_PER_1K_CALLS") -> float:
    try:
        value = float(raw)
    except ValueError:
        value = -1.0
    if value < 0:
        raise ValueError(f"Invalid {name} (must be a non-negative number).")
    return value


def _parse_verbosity(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        return 0
    return value if value in (0, 1, 2, 3) else 0


def _load_from_env() -> dict:
    load_dotenv()
    env_map = {
        "openai_api_key": os.getenv("OPENAI_API_KEY"),
        "openai_base_url": os.getenv("OPENAI_BASE_URL"),
        "model_thinking": os.getenv("HARNESS_MODEL_THINKING"),
        "model_cheap": os.getenv("HARNESS_MODEL_CHEAP"),
        "reasoning_effort": os.getenv("HARNESS_REASONING_EFFORT"),
        "max_steps": os.getenv("HARNESS_MAX_STEPS"),
        "verbosity": os.getenv("HARNESS_VERBOSITY"),
        "pretty": os.getenv("HARNESS_PRETTY"),
        "pricing_usd_per_1m_tokens": os.getenv("HARNESS_PRICING_USD_PER_1M_TOKENS_JSON"),
        "web_search_usd_per_1k_calls": os.getenv("HARNESS_WEB_SEARCH_USD_PER_1K_CALLS"),
        "tavily_usd_per_1k_calls": os.getenv("HARNESS_TAVILY_USD_PER_1K_CALLS"),
        "tavily_api_key": os.getenv("TAVILY_API_KEY"),
        "search_backend": os.getenv("HARNESS_SEARCH_BACKEND"),
        "python_timeout_ms": os.getenv("HARNESS_PYTHON_TIMEOUT_MS"),
        "max_repair_cycles": os.getenv("HARNESS_MAX_REPAIR_CYCLES"),
        "database_path": os.getenv("HARNESS_DATABASE_PATH"),
        "host": os.getenv("HOST"),
        "port": os.getenv("PORT"),
    }
    cleaned = {k: v.strip() for k, v in env_map.items() if v not in (None, "") and v.strip()}
    if "max_steps" in cleaned:
        cleaned["max_steps"] = int(cleaned["max_steps"])
    if "verbosity" in cleaned:
        cleaned["verbosity"] = _parse_verbosity(cleaned["verbosity"])
    if "pretty" in cleaned:
        cleaned["pretty"] = cleaned["pretty"].lower() in ENV_OVERRIDE_TRUE
    if "pricing_usd_per_1m_tokens" in cleaned:
        cleaned["pricing_usd_per_1m_tokens"] = _parse_pricing_json(cleaned["pricing_usd_per_1m_tokens"])
    if "web_search_usd_per_1k_calls" in cleaned:
        cleaned["web_search_usd_per_1k_calls"] = _parse_web_search_price(cleaned["web_search_usd_per_1k_calls"])
    if "tavily_usd_per_1k_calls" in cleaned:
        cleaned["tavily_usd_per_1k_calls"] = _parse_web_search_price(
            cleaned["tavily_usd_per_1k_calls"], "HARNESS_TAVILY_USD_PER_1K_CALLS"
        )
    if "reasoning_effort" in cleaned:
        cleaned["reasoning_effort"] = cleaned["reasoning_effort"].lower()
    if "search_backend" in cleaned:
        cleaned["search_backend"] = cleaned["search_backend"].lower()
    if "python_timeout_ms" in cleaned:
        cleaned["python_timeout_ms"] = int(cleaned["python_timeout_ms"])
    if "max_repair_cycles" in cleaned:
        cleaned["max_repair_cycles"] = int(cleaned["max_repair_cycles"])
    if "port" in cleaned:
        cleaned["port"] = int(cleaned["port"])
    return cleaned


def _env_overrides_config() -> bool:
    return str(os.getenv(ENV_OVERRIDE_KEY, "")).strip().lower() in ENV_OVERRIDE_TRUE


def load_settings(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> HarnessSettings:
    env_data = _load_from_env()
    path = config_path or CONFIG_PATH
    file_data: Dict[str, Any] = {}
    if path.exists():
        try:
            file_data = json.loads(path.read_text())
        except json.JSONDecodeError:
            file_data = {}
    # Config wins by default; allow env overrides only when explicitly enabled.
    if _env_overrides_config():
        merged = {**file_data, **env_data}
    else:
        merged = {**env_data, **file_data}
    # Secrets normally live in the environment only.
    for key in ("openai_api_key", "tavily_api_key"):
        if not merged.get(key) and env_data.get(key):
            merged[key] = env_data[key]
    # Command-line flags; None never clobbers env or config values.
    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value
    return HarnessSettings(**merged)

