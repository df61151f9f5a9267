"""Gemini adapter: streamGenerateContent over SSE with cumulative-text diffing."""

import re
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from .config import DEFAULT_GEMINI_MODEL, GEMINI_API_BASE, env_flag, env_str
from .errors import MissingApiKeyError, ProviderStreamError
from .fallback import dedupe_tool_sets, request_error_matches, stream_with_fallback
from .sse import iter_sse_data, open_event_stream, parse_sse_json, provider_client

TOOL_HINTS = re.compile(r"(tool|tools|google_search|googlesearch|code_execution|codeexecution)")

THINKING_BUDGETS = {"high": 8192, "medium": 4096, "low": 1024}


def cumulative_delta(incoming: str, previous: str) -> Tuple[str, str]:
    """
    Return (delta, next_baseline) for one cumulative text update.

    Gemini may resend the whole text so far instead of a suffix. A stale or
    repeated fragment produces an empty delta; text with no overlap is taken
    as new and appended to the baseline, so the concatenated deltas always
    equal the baseline.
    """
    if not incoming:
        return "", previous
    if not previous:
        return incoming, incoming
    if incoming.startswith(previous):
        return incoming[len(previous):], incoming
    if previous.endswith(incoming) or incoming in previous:
        return "", previous
    return incoming, previous + incoming


def coerce_effort(effort: str) -> str:
    if effort == "max":
        return "high"
    return effort if effort in THINKING_BUDGETS else "high"


def resolve_model_name(model_id: str) -> str:
    return env_str("GEMINI_MODEL", DEFAULT_GEMINI_MODEL)


def build_tools(search_only: bool = False, disable_all: bool = False) -> List[Dict[str, Any]]:
    if disable_all or env_flag("GEMINI_FORCE_DISABLE_TOOLS", False):
        return []

    tools: List[Dict[str, Any]] = []
    if env_flag("GEMINI_ENABLE_GOOGLE_SEARCH", True):
        tools.append({"googleSearch": {}})
    if not search_only and env_flag("GEMINI_ENABLE_CODE_EXECUTION", True):
        tools.append({"codeExecution": {}})
    return tools


def build_tool_attempts() -> List[List[Dict[str, Any]]]:
    """Full tool set, then search-only, then no tools."""
    primary = build_tools()
    candidates = [primary]
    if any("codeExecution" in tool for tool in primary):
        candidates.append(build_tools(search_only=True))
    if primary:
        candidates.append([])
    return dedupe_tool_sets(candidates)


def build_request_body(
    model_name: str,
    contents: List[Dict[str, Any]],
    effort: str,
    system_instruction: Optional[str],
    tools: List[Dict[str, Any]],
) -> Dict[str, Any]:
    thinking_config: Dict[str, Any] = {"includeThoughts": True}
    if "flash-thinking" in model_name or "2.5" in model_name:
        thinking_config["thinkingBudget"] = THINKING_BUDGETS[coerce_effort(effort)]

    body: Dict[str, Any] = {
        "contents": contents,
        "generationConfig": {"thinkingConfig": thinking_config},
    }
    if system_instruction:
        body["systemInstruction"] = {"parts": [{"text": system_instruction}]}
    if tools:
        body["tools"] = tools
    return body


def _headers() -> Dict[str, str]:
    api_key = env_str("GOOGLE_AI_API_KEY") or env_str("GEMINI_API_KEY")
    if not api_key:
        raise MissingApiKeyError("GOOGLE_AI_API_KEY")
    return {
        "x-goog-api-key": api_key,
        "Content-Type": "application/json",
    }


def _chunk_parts(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return []
    candidate = candidates[0]
    content = candidate.get("content") if isinstance(candidate, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    return [part for part in parts if isinstance(part, dict)] if isinstance(parts, list) else []


class GeminiStreamState:
    """Separate cumulative baselines for answer text and thought text."""

    def __init__(self):
        self.answer_text = ""
        self.thought_text = ""
        self.emitted_thoughts = False

    def consume(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        error = data.get("error")
        if isinstance(error, dict):
            raise ProviderStreamError(f"Gemini stream error: {error.get('message') or error}")

        events = []
        for part in _chunk_parts(data):
            # executableCode / codeExecutionResult parts carry no text and stay out of the answer
            text = part.get("text")
            if not isinstance(text, str) or not text:
                continue

            if part.get("thought") is True:
                delta, self.thought_text = cumulative_delta(text, self.thought_text)
                if delta:
                    self.emitted_thoughts = True
                    events.append({"type": "reasoning_summary_delta", "content": delta})
            else:
                delta, self.answer_text = cumulative_delta(text, self.answer_text)
                if delta:
                    events.append({"type": "answer_delta", "content": delta})
        return events


async def stream_gemini_response(
    contents: List[Dict[str, Any]],
    model_id: str,
    effort: str = "high",
    system_instruction: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> AsyncIterator[Dict[str, Any]]:
    """Stream one Gemini answer as normalized events, degrading tools on compatibility errors."""
    model_name = resolve_model_name(model_id)
    url = f"{GEMINI_API_BASE}/models/{model_name}:streamGenerateContent?alt=sse"
    states: List[GeminiStreamState] = []

    async with provider_client(client) as http:

        async def run_attempt(tools):
            # Baselines start fresh: a rejected attempt never yielded anything
            state = GeminiStreamState()
            states.append(state)
            body = build_request_body(model_name, contents, effort, system_instruction, tools)
            response = await open_event_stream(http, url, _headers(), body, "Gemini", f"{len(tools)} tools")
            try:
                async for payload in iter_sse_data(response.aiter_text()):
                    data = parse_sse_json(payload, "Gemini")
                    if data is None:
                        continue
                    for event in state.consume(data):
                        yield event
            finally:
                await response.aclose()

        async for event in stream_with_fallback(
            build_tool_attempts(),
            run_attempt,
            request_error_matches(TOOL_HINTS),
            f"Gemini {model_name}",
        ):
            yield event

    if any(state.emitted_thoughts for state in states):
        yield {"type": "reasoning_summary_done"}
