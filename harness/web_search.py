import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from .llm import ResponsesClient, collect_web_sources, extract_output_text
from .schemas import EvidenceItem
from .tavily import TavilyClient


logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 8


def utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_evidence_id() -> str:
    return f"web_{uuid.uuid4().hex[:12]}"


@dataclass
class WebSearchResult:
    evidence: List[EvidenceItem] = field(default_factory=list)
    summary: str = ""
    error: Optional[str] = None
    # Set when the search itself was an inference call (hosted web_search tool).
    model: Optional[str] = None
    usage: Optional[Dict[str, Any]] = None
    # Cost id of the call when the backend billed it: "web_search" (hosted) or "tavily".
    billed_tool: Optional[str] = None


def _to_evidence(sources: List[Dict[str, Any]], top_k: int) -> List[EvidenceItem]:
    fetched_at = utc_iso()
    return [
        EvidenceItem(
            id=new_evidence_id(),
            url=source.get("url"),
            title=source.get("title"),
            snippet=source.get("snippet"),
            fetched_at=fetched_at,
        )
        for source in sources[: max(0, top_k)]
    ]


def format_search_error(resp: Dict[str, Any]) -> str:
    error = resp.get("error") or "unknown_error"
    status = resp.get("status_code")
    detail = resp.get("detail")
    text = f"{error} ({status})" if status else str(error)
    if detail:
        text = f"{text}: {str(detail)[:200]}"
    return text


class WebSearchTool:
    """Evidence retrieval over Tavily or the hosted Responses web_search tool."""

    def __init__(
        self,
        llm: ResponsesClient,
        tavily: Optional[TavilyClient] = None,
        backend: str = "auto",
        search_model: str = "gpt-5-mini",
    ):
        self.llm = llm
        self.tavily = tavily
        self.backend = backend
        self.search_model = search_model

    @property
    def use_tavily(self) -> bool:
        if self.backend == "tavily":
            return True
        if self.backend == "openai":
            return False
        return bool(self.tavily and self.tavily.enabled)

    async def search(self, query: str, top_k: Optional[int] = None) -> WebSearchResult:
        limit = top_k if isinstance(top_k, int) and top_k > 0 else DEFAULT_TOP_K
        if self.use_tavily:
            return await self._search_tavily(query, limit)
        return await self._search_hosted(query, limit)

    async def _search_tavily(self, query: str, top_k: int) -> WebSearchResult:
        if self.tavily is None:
            return WebSearchResult(error="tavily client not configured")
        resp = await self.tavily.search(query, max_results=top_k)
        if not isinstance(resp, dict) or resp.get("error"):
            error = format_search_error(resp if isinstance(resp, dict) else {})
            logger.warning("Tavily search failed for %r: %s", query, error)
            return WebSearchResult(error=error)
        sources = [
            {"url": item.get("url"), "title": item.get("title"), "snippet": item.get("content")}
            for item in resp.get("results") or []
            if isinstance(item, dict) and item.get("url")
        ]
        return WebSearchResult(
            evidence=_to_evidence(sources, top_k),
            summary=str(resp.get("answer") or "").strip(),
            billed_tool="tavily",
        )

    async def _search_hosted(self, query: str, top_k: int) -> WebSearchResult:
        try:
            data = await self.llm.web_search(self.search_model, query)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Hosted web_search failed for %r: %s", query, exc)
            return WebSearchResult(error=str(exc))
        return WebSearchResult(
            evidence=_to_evidence(collect_web_sources(data), top_k),
            summary=extract_output_text(data).strip(),
            model=self.search_model,
            usage=data.get("usage") or {},
            billed_tool="web_search",
        )
