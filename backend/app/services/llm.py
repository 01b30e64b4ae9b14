"""LLM adapter for taxonomy proposal and batch mapping, with a deterministic dev mock."""

import json
from typing import Any, Dict, List, Optional, Sequence

import httpx
from rapidfuzz import fuzz, process

from app.core.config import settings
from app.core.exceptions import ExternalServiceError, MalformedResponseError
from app.core.logging import get_logger
from app.services.bucket_tree import CATCH_ALL_NAME
from app.services.taxonomy_builder import heuristic_taxonomy

logger = get_logger(__name__)

SERVICE_NAME = "llm"
MOCK_MATCH_THRESHOLD = 80


def _strip_fences(content: str) -> str:
    text = str(content).strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        if first_newline != -1:
            text = text[first_newline + 1 :]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()
    return text


def parse_json_from_content(content: str) -> Any:
    """Parse JSON from LLM content, handling markdown fences and surrounding prose.

    Falls back to the first balanced JSON object or array in the text.
    Raises ``MalformedResponseError`` when nothing parses.
    """
    text = _strip_fences(content)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        raise MalformedResponseError(SERVICE_NAME, "no JSON in response")
    start = min(starts)
    opening = text[start]
    closing = "}" if opening == "{" else "]"

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opening:
            depth += 1
        elif ch == closing:
            depth -= 1
            if depth == 0:
                try:
                    return json.loads(text[start : i + 1])
                except json.JSONDecodeError:
                    break
    raise MalformedResponseError(SERVICE_NAME, "unparseable JSON in response")


def validate_mapping_response(data: Any) -> Dict[str, Any]:
    """Ensure a batch response looks like ``{"mappings": [{value, path}, ...]}``."""
    if not isinstance(data, dict) or not isinstance(data.get("mappings"), list):
        raise MalformedResponseError(SERVICE_NAME, "response lacks a 'mappings' list")
    return data


def _propose_prompt(column: str, sample_values: Sequence[Dict[str, Any]], guide: Optional[List[Any]]) -> str:
    rule = (
        "CRITICAL: Use the provided GUIDE as your Strict Foundation. You can Add new buckets "
        "if necessary, but do NOT remove guide buckets."
        if guide
        else "Create a logical hierarchy from scratch."
    )
    guide_block = f"USER GUIDE (JSON Schema): {json.dumps(guide)}" if guide else ""
    return f"""You are a Strategic Data Architect. I have a dataset with a column named "{column}".
I need you to propose a hierarchical TAXONOMY (Parent -> Child -> Leaf) to categorize this data.

SAMPLE VALUES (Top {len(sample_values)}):
{json.dumps(list(sample_values))}

TAXONOMY RULES:
1. {rule}
2. Focus on BROAD categories (e.g., "Finance") breaking down into specific niches (e.g., "Investment Banking").
3. Propose a nested JSON structure.
4. Mark any new buckets you discover (that were not in the guide) as "isAiSuggested": true.

{guide_block}

OUTPUT FORMAT (JSON ARRAY):
[
  {{
    "name": "Parent Category",
    "description": "Optional description",
    "children": [
      {{ "name": "Sub-Category", "children": [] }}
    ],
    "isAiSuggested": false
  }}
]

Return ONLY valid JSON."""


def _map_prompt(column: str, batch_values: Sequence[str], taxonomy: List[Dict[str, Any]]) -> str:
    return f"""You are a Data Architect. Map the following batch of values from the column "{column}" to the predefined TAXONOMY.

TAXONOMY STRUCTURE:
{json.dumps(taxonomy)}

BATCH VALUES TO MAP:
{json.dumps(list(batch_values))}

GOAL:
1. CRITICAL: You MUST map EVERY single value in the "BATCH VALUES TO MAP" list. Do not skip any.
2. Assign each value to the most specific Child or Leaf bucket available.
3. If a value fits a Parent but no existing Child, you may suggest a NEW Child bucket.
4. If a value truly does not fit ANY category, assign it to the path ["{CATCH_ALL_NAME}"].
5. Return the PATH to the assigned bucket (e.g., "Real Estate > Residential").

OUTPUT FORMAT (JSON):
{{
  "mappings": [
    {{
      "value": "Exact String from Batch",
      "path": ["Parent Name", "Child Name", "Leaf Name"]
    }}
  ]
}}"""


def _taxonomy_paths(taxonomy: List[Dict[str, Any]]) -> List[List[str]]:
    paths: List[List[str]] = []

    def visit(node: Dict[str, Any], prefix: List[str]) -> None:
        path = prefix + [str(node.get("name", ""))]
        paths.append(path)
        for child in node.get("children") or []:
            visit(child, path)

    for root in taxonomy:
        visit(root, [])
    return paths


def mock_map_batch(batch_values: Sequence[str], taxonomy: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Map each value to the most similar taxonomy path by rapidfuzz score."""
    paths = _taxonomy_paths(taxonomy)
    labels = [p[-1] for p in paths]
    mappings = []
    for value in batch_values:
        best = process.extractOne(value, labels, scorer=fuzz.WRatio) if labels else None
        if best is not None and best[1] >= MOCK_MATCH_THRESHOLD:
            path = paths[best[2]]
        else:
            path = [CATCH_ALL_NAME]
        mappings.append({"value": value, "path": path})
    return {"mappings": mappings}


class LLMClient:
    """Classifier connection scoped to one job (``async with LLMClient() as llm``).

    Without ``llm_base_url`` configured every call is answered by the
    deterministic dev mock.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url if base_url is not None else settings.llm_base_url
        self.model = model or settings.llm_model
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_mock(self) -> bool:
        return not self.base_url

    async def __aenter__(self) -> "LLMClient":
        if not self.is_mock:
            headers = {"Content-Type": "application/json"}
            if settings.llm_api_key:
                headers["Authorization"] = f"Bearer {settings.llm_api_key}"
            timeout = httpx.Timeout(settings.llm_timeout_seconds, connect=30)
            self._client = httpx.AsyncClient(
                base_url=self.base_url, headers=headers, timeout=timeout, transport=self.transport
            )
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def complete(self, prompt: str, system: str, temperature: float = 0.2) -> str:
        """Send one prompt to the Ollama-style generate endpoint and return the text."""
        if self._client is None:
            raise ExternalServiceError(SERVICE_NAME, "client is not open")

        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": f"System: {system}\n\nHuman: {prompt}\n\nAssistant:",
            "stream": False,
            "format": "json",
            "options": {
                "temperature": settings.llm_default_temperature
                if settings.llm_default_temperature is not None
                else temperature,
                "num_predict": settings.llm_default_max_tokens
                if settings.llm_default_max_tokens is not None
                else 4000,
            },
        }
        logger.info("LLM gateway request", model=self.model, prompt_chars=len(payload["prompt"]))

        try:
            resp = await self._client.post("/api/generate", json=payload)
        except httpx.HTTPError as exc:
            logger.error("LLM request failed", error=str(exc))
            raise ExternalServiceError(SERVICE_NAME, f"request failed: {exc}") from exc

        if resp.status_code not in (200, 201):
            logger.error("LLM gateway error", status_code=resp.status_code, body_preview=resp.text[:500])
            raise ExternalServiceError(SERVICE_NAME, f"gateway error {resp.status_code}", resp.status_code)

        try:
            content = resp.json().get("response", "")
        except (ValueError, AttributeError) as exc:
            raise MalformedResponseError(SERVICE_NAME, "response body is not a JSON object") from exc
        if not content or not str(content).strip():
            raise MalformedResponseError(SERVICE_NAME, "empty completion")
        return str(content)

    async def propose_taxonomy(
        self,
        column: str,
        sample_values: Sequence[Dict[str, Any]],
        guide: Optional[List[Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Proposed taxonomy forest; an empty list when the call fails."""
        if self.is_mock:
            proposal = heuristic_taxonomy({s["value"]: s["count"] for s in sample_values})
            return list(guide or []) + proposal

        prompt = _propose_prompt(column, sample_values[: settings.propose_sample_limit], guide)
        try:
            text = await self.complete(
                prompt, "Return JSON only. No markdown. No text outside the array.", temperature=0.1
            )
            result = parse_json_from_content(text)
        except ExternalServiceError as exc:
            logger.error("propose_taxonomy_failed", column=column, error=exc.message)
            return []
        if isinstance(result, list):
            return result
        if isinstance(result, dict):
            return list(result.get("buckets") or result.get("taxonomy") or [])
        return []

    async def map_batch(
        self, column: str, batch_values: Sequence[str], taxonomy: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """``{"mappings": [{value, path}]}`` for one batch; raises on any failure."""
        if self.is_mock:
            return mock_map_batch(batch_values, taxonomy)

        text = await self.complete(_map_prompt(column, batch_values, taxonomy), "Return JSON only. No markdown.")
        return validate_mapping_response(parse_json_from_content(text))
