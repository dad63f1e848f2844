import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx


DEFAULT_BASE_URL = "https://api.openai.com/v1"


@dataclass
class LLMResult:
    id: str
    text: str
    usage: Dict[str, Any] = field(default_factory=dict)


def supports_temperature(model: str, reasoning_effort: Optional[str] = None) -> bool:
    # gpt-5.1/5.2 accept temperature only with reasoning effort "none"; the rest of gpt-5 rejects it.
    name = model.lower()
    if name.startswith("gpt-5.2") or name.startswith("gpt-5.1"):
        return reasoning_effort == "none"
    if name.startswith("gpt-5"):
        return False
    return True


def extract_output_text(data: Dict[str, Any]) -> str:
    direct = data.get("output_text")
    if isinstance(direct, str):
        return direct
    parts: List[str] = []
    for item in data.get("output") or []:
        if not isinstance(item, dict) or item.get("type") != "message":
            continue
        for content in item.get("content") or []:
            if isinstance(content, dict) and content.get("type") == "output_text":
                text = content.get("text")
                if isinstance(text, str):
                    parts.append(text)
    return "".join(parts)


def collect_web_sources(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    sources: List[Dict[str, Any]] = []
    for item in data.get("output") or []:
        if not isinstance(item, dict) or item.get("type") != "web_search_call":
            continue
        action = item.get("action") or {}
        for source in action.get("sources") or []:
            if isinstance(source, dict) and isinstance(source.get("url"), str):
                sources.append(
                    {"url": source["url"], "title": source.get("title"), "snippet": source.get("snippet")}
                )
    return sources


class ResponsesClient:
    """Thin async client for the OpenAI Responses API."""

    def __init__(self, api_key: Optional[str], base_url: str = DEFAULT_BASE_URL, timeout: float = 300):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_connections=16, max_keepalive_connections=8),
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _extract_error_detail(self, response: httpx.Response) -> str:
        try:
            data = response.json()
            if isinstance(data, dict):
                error = data.get("error")
                if isinstance(error, dict) and error.get("message"):
                    return str(error["message"])
                return json.dumps(data, ensure_ascii=True)
        except ValueError:
            pass
        return response.text

    async def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not payload.get("model"):
            raise ValueError("model is required")
        url = f"{self.base_url}/responses"
        resp = await self.client.post(url, json=payload, headers=self._headers())
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = self._extract_error_detail(exc.response)
            raise httpx.HTTPStatusError(
                f"Responses API error {exc.response.status_code}: {detail}",
                request=exc.request,
                response=exc.response,
            ) from exc
        return resp.json()

    async def call_text(
        self,
        model: str,
        input: str,
        temperature: Optional[float] = None,
        reasoning_effort: Optional[str] = None,
    ) -> LLMResult:
        payload: Dict[str, Any] = {"model": model, "input": input}
        if temperature is not None and supports_temperature(model, reasoning_effort):
            payload["temperature"] = temperature
        if reasoning_effort:
            payload["reasoning"] = {"effort": reasoning_effort}
        data = await self.create(payload)
        return LLMResult(
            id=str(data.get("id") or ""),
            text=extract_output_text(data),
            usage=data.get("usage") or {},
        )

    async def web_search(self, model: str, query: str) -> Dict[str, Any]:
        """Run the hosted web_search tool and return the raw response."""
        payload = {
            "model": model,
            "tools": [{"type": "web_search"}],
            "include": ["web_search_call.action.sources"],
            "input": f"Search the web for: {query}\nReturn a short, high-signal summary in plain text.",
            "reasoning": {"effort": "low"},
        }
        return await self.create(payload)

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
