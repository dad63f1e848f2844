from typing import Any, Dict, Optional

import httpx


TAVILY_SEARCH_URL = "https://api.tavily.com/search"


class TavilyClient:
    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key
        self.client = httpx.AsyncClient(
            timeout=60,
            limits=httpx.Limits(max_connections=8, max_keepalive_connections=4),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def search(
        self,
        query: str,
        max_results: int = 8,
        search_depth: str = "basic",
        include_answer: bool = True,
    ) -> Dict[str, Any]:
        if not self.enabled:
            return {"error": "missing_api_key"}
        payload: Dict[str, Any] = {
            "query": query,
            "search_depth": search_depth,
            "max_results": max_results,
            "include_answer": include_answer,
        }
        return await self._post(TAVILY_SEARCH_URL, payload)

    async def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST helper that reports failures as data instead of raising."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            # Tavily dev keys expect the key in the JSON payload; keep the header too.
            payload = {**payload, "api_key": self.api_key}
            headers["X-API-Key"] = self.api_key
        try:
            resp = await self.client.post(url, json=payload, headers=headers)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            detail: Any
            try:
                detail = e.response.json()
            except ValueError:
                detail = e.response.text
            return {"error": "http_status", "status_code": e.response.status_code, "detail": detail}
        except httpx.RequestError as e:
            return {"error": "request_failed", "detail": str(e)}
        except ValueError:
            return {"error": "invalid_json", "status_code": resp.status_code, "detail": resp.text[:200]}

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
