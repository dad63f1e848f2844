from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator


Stakes = Literal["low", "medium", "high"]
Recipe = Literal["direct", "best_of_n", "plan_execute_verify", "rag_cited"]
ToolName = Literal["web_search", "python"]
ClaimStatus = Literal["supported", "unsupported", "unclear"]

TASK_TYPES = {"factual", "coding", "math", "writing", "planning", "research", "other"}
OUTPUT_FORMATS = {"freeform", "json", "markdown", "code", "table", "other"}
KNOWN_TOOLS = {"web_search", "python"}
REVIEW_DIMENSIONS = ("correctness", "constraint_adherence", "completeness", "clarity", "safety")


def _clamp(value: Any, low: float, high: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return low
    return max(low, min(high, number))


def _label(value: Any, known: set) -> str:
    text = str(value or "").strip()
    return text.lower() if text.lower() in known else text


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and str(item).strip()]


class TaskSpec(BaseModel):
    task_type: str
    stakes: Stakes
    tools_needed: List[str] = Field(default_factory=lambda: ["none"])
    output_format: str = "freeform"
    recipe: Recipe
    clarification_needed: bool = False
    clarification_questions: List[str] = Field(default_factory=list)

    model_config = {"frozen": True, "extra": "ignore"}

    @model_validator(mode="before")
    @classmethod
    def normalize_inputs(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for key in ("stakes", "recipe"):
            if isinstance(data.get(key), str):
                data[key] = data[key].strip().lower()
        # Free-form labels pass through; known ones are lower-cased.
        if "task_type" in data and data["task_type"] is not None:
            data["task_type"] = _label(data["task_type"], TASK_TYPES) or "other"
        data["output_format"] = _label(data.get("output_format"), OUTPUT_FORMATS) or "freeform"
        raw_tools = data.get("tools_needed")
        if isinstance(raw_tools, str):
            raw_tools = [raw_tools]
        tools: List[str] = []
        for tool in raw_tools or []:
            name = str(tool).strip().lower()
            if name in KNOWN_TOOLS and name not in tools:
                tools.append(name)
        data["tools_needed"] = tools or ["none"]
        data["clarification_questions"] = _string_list(data.get("clarification_questions"))
        return data

    def needs_tool(self, tool: str) -> bool:
        return tool in self.tools_needed


class EvidenceItem(BaseModel):
    id: str
    url: Optional[str] = None
    title: Optional[str] = None
    snippet: Optional[str] = None
    fetched_at: str

    model_config = {"frozen": True}


class ContextPack(BaseModel):
    system_rules: str
    user_rules: str
    conversation_summary: str
    retrieved_evidence: Tuple[EvidenceItem, ...] = ()
    artifacts: Dict[str, Any] = Field(default_factory=dict)

    def with_evidence(self, items: List[EvidenceItem]) -> "ContextPack":
        return self.model_copy(update={"retrieved_evidence": (*self.retrieved_evidence, *items)})

    def with_artifacts(self, artifacts: Dict[str, Any]) -> "ContextPack":
        return self.model_copy(update={"artifacts": {**self.artifacts, **artifacts}})


class ToolCall(BaseModel):
    tool: str
    input: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("tool", mode="before")
    @classmethod
    def normalize_tool(cls, value: Any) -> str:
        return str(value or "none").strip().lower()

    @field_validator("input", mode="before")
    @classmethod
    def normalize_input(cls, value: Any) -> Dict[str, Any]:
        return value if isinstance(value, dict) else {}


class PlanStep(BaseModel):
    step_id: str
    goal: str = ""
    # Model output is not guaranteed; "none" and unknown tools are treated as no tool call.
    tool_call: Optional[ToolCall] = None
    expected_artifact: str = ""
    stop_condition: str = ""

    @field_validator("step_id", mode="before")
    @classmethod
    def coerce_step_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("goal", "expected_artifact", "stop_condition", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @property
    def tool(self) -> Optional[str]:
        if self.tool_call is None or self.tool_call.tool == "none":
            return None
        return self.tool_call.tool

    @property
    def artifact_key(self) -> str:
        return self.expected_artifact or self.step_id


class Plan(BaseModel):
    plan: List[PlanStep] = Field(default_factory=list)
    acceptance_criteria: List[str] = Field(default_factory=list)
    risks: List[str] = Field(default_factory=list)

    @field_validator("acceptance_criteria", "risks", mode="before")
    @classmethod
    def coerce_lists(cls, value: Any) -> List[str]:
        return _string_list(value)


class Candidate(BaseModel):
    id: str
    draft_text: str
    citations: List[EvidenceItem] = Field(default_factory=list)


class WebSearchInput(BaseModel):
    query: str = ""
    topK: Optional[int] = None


class ToolRequest(BaseModel):
    tool: str
    input: WebSearchInput = Field(default_factory=WebSearchInput)


class Review(BaseModel):
    overall_score: float = 0.0
    subscores: Dict[str, float] = Field(default_factory=dict)
    major_issues: List[str] = Field(default_factory=list)
    minor_issues: List[str] = Field(default_factory=list)
    recommended_repairs: List[str] = Field(default_factory=list)
    verification_targets: List[str] = Field(default_factory=list)
    tool_requests: List[ToolRequest] = Field(default_factory=list)

    @field_validator("overall_score", mode="before")
    @classmethod
    def clamp_overall(cls, value: Any) -> float:
        return _clamp(value, 0.0, 10.0)

    @field_validator("subscores", mode="before")
    @classmethod
    def clamp_subscores(cls, value: Any) -> Dict[str, float]:
        if not isinstance(value, dict):
            return {}
        return {str(k): _clamp(v, 0.0, 10.0) for k, v in value.items()}

    @field_validator("major_issues", "minor_issues", "recommended_repairs", "verification_targets", mode="before")
    @classmethod
    def coerce_lists(cls, value: Any) -> List[str]:
        return _string_list(value)

    @field_validator("tool_requests", mode="before")
    @classmethod
    def drop_malformed_requests(cls, value: Any) -> List[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict) and item.get("tool")]

    def web_search_requests(self) -> List[ToolRequest]:
        return [req for req in self.tool_requests if req.tool == "web_search" and req.input.query.strip()]


class VerifiedClaim(BaseModel):
    claim: str
    status: ClaimStatus = "unclear"
    evidence_ref: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> str:
        cleaned = str(value or "").strip().lower()
        return cleaned if cleaned in ("supported", "unsupported", "unclear") else "unclear"

    @field_validator("evidence_ref", mode="before")
    @classmethod
    def coerce_ref(cls, value: Any) -> Optional[str]:
        return None if value is None else str(value)


class Verification(BaseModel):
    verified: List[VerifiedClaim] = Field(default_factory=list)
    required_edits: List[str] = Field(default_factory=list)
    confidence: float = 0.0

    @field_validator("required_edits", mode="before")
    @classmethod
    def coerce_edits(cls, value: Any) -> List[str]:
        return _string_list(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, value: Any) -> float:
        return _clamp(value, 0.0, 1.0)


class RunResult(BaseModel):
    final_answer: str
    task_spec: TaskSpec
    cost: Dict[str, Any] = Field(default_factory=dict)
    budget: Dict[str, int] = Field(default_factory=dict)


class StartRunRequest(BaseModel):
    prompt: str = Field(min_length=1)
    verbosity: Literal[0, 1, 2, 3] = 1
    max_steps: Optional[int] = Field(default=None, gt=0)
