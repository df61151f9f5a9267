"""Claude adapter: Messages API over raw SSE with thinking and tool fallbacks and pause_turn continuation."""

import copy
import json
import re
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .config import (
    ANTHROPIC_MESSAGES_URL,
    CLAUDE_CODE_EXECUTION_BETA,
    DEFAULT_ANTHROPIC_VERSION,
    DEFAULT_CLAUDE_MAX_TOKENS,
    DEFAULT_TOOL_PAUSE_TURN_MAX,
    DEFAULT_WEB_SEARCH_MAX_USES,
    EFFORT_LEVELS,
    env_flag,
    env_positive_int,
    env_str,
)
from .errors import MissingApiKeyError, PauseTurnLimitError, ProviderRequestError, ProviderStreamError
from .fallback import dedupe_tool_sets, is_compatibility_error, request_error_matches, stream_with_fallback
from .sse import iter_sse_data, open_event_stream, parse_sse_json, provider_client

WEB_SEARCH_TOOL_TYPE = "web_search_20250305"
CODE_EXECUTION_TOOL_TYPE = "code_execution_20250825"

THINKING_HINTS = re.compile(r"(thinking|adaptive|output_config|effort)")
THINKING_COMPATIBILITY_HINTS = re.compile(
    r"(unsupported|not supported|invalid|unknown|unrecognized|not available|required|beta|header)"
)
TOOL_HINTS = re.compile(r"(tool|tools|web_search|web search|code_execution|code execution)")
TOOL_COMPATIBILITY_HINTS = re.compile(
    r"(unsupported|not supported|invalid|unknown|unrecognized|not available|required|beta|header|not enabled)"
)

THINKING_VARIANTS = [
    {"include_thinking": True, "include_output_config": True, "label": "thinking+effort"},
    {"include_thinking": True, "include_output_config": False, "label": "thinking-only"},
    {"include_thinking": False, "include_output_config": False, "label": "no-thinking"},
]


def is_thinking_compatibility_error(status: int, body: str) -> bool:
    return is_compatibility_error(status, body, THINKING_HINTS, THINKING_COMPATIBILITY_HINTS)


def is_tool_compatibility_error(status: int, body: str) -> bool:
    return is_compatibility_error(status, body, TOOL_HINTS, TOOL_COMPATIBILITY_HINTS)


def resolve_model_name(model_id: str) -> str:
    if model_id.startswith("claude-opus-4-6"):
        return env_str("CLAUDE_MODEL_OPUS") or env_str("CLAUDE_MODEL", "claude-opus-4-6")
    if model_id.startswith("claude-sonnet-4-6"):
        return env_str("CLAUDE_MODEL_SONNET", "claude-sonnet-4-6")
    return model_id


def resolve_output_effort(effort: str) -> str:
    override = (env_str("CLAUDE_OUTPUT_EFFORT", "") or "").lower()
    if override in EFFORT_LEVELS:
        return override
    return effort if effort in EFFORT_LEVELS else "high"


def build_tools(web_only: bool = False) -> List[Dict[str, Any]]:
    if env_flag("CLAUDE_FORCE_DISABLE_TOOLS", False):
        return []

    tools: List[Dict[str, Any]] = []
    if env_flag("CLAUDE_ENABLE_WEB_SEARCH", True):
        tools.append({
            "type": WEB_SEARCH_TOOL_TYPE,
            "name": "web_search",
            "max_uses": env_positive_int("CLAUDE_WEB_SEARCH_MAX_USES", DEFAULT_WEB_SEARCH_MAX_USES),
        })
    if not web_only and env_flag("CLAUDE_ENABLE_CODE_EXECUTION", True):
        tools.append({"type": CODE_EXECUTION_TOOL_TYPE, "name": "code_execution"})
    return tools


def build_tool_attempts() -> List[List[Dict[str, Any]]]:
    """web search + code execution, then web search only, then no tools."""
    return dedupe_tool_sets([build_tools(), build_tools(web_only=True), []])


def has_code_execution_tool(tools: List[Dict[str, Any]]) -> bool:
    return any(tool.get("type") == CODE_EXECUTION_TOOL_TYPE for tool in tools)


def resolve_betas(extra_betas: List[str]) -> List[str]:
    configured = (env_str("ANTHROPIC_BETAS", "") or "").split(",")
    merged: List[str] = []
    for beta in list(extra_betas) + configured:
        beta = beta.strip()
        if beta and beta not in merged:
            merged.append(beta)
    return merged


def normalize_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Deep-copied messages with every content given as a list of parts; empty messages are dropped."""
    normalized = []
    for message in messages:
        parts: List[Dict[str, Any]] = []
        content = message.get("content")

        if isinstance(content, list):
            for part in content:
                if not isinstance(part, dict):
                    continue
                part_type = part.get("type")

                if part_type == "text":
                    if part.get("text"):
                        parts.append({"type": "text", "text": part["text"]})
                elif part_type == "image":
                    source = part.get("source") if isinstance(part.get("source"), dict) else {}
                    if source.get("media_type") and source.get("data"):
                        parts.append({
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": source["media_type"],
                                "data": source["data"],
                            },
                        })
                else:
                    parts.append(copy.deepcopy(part))
        elif isinstance(content, str) and content.strip():
            parts.append({"type": "text", "text": content})

        if parts:
            normalized.append({"role": message.get("role"), "content": parts})

    return normalized


def build_request_body(
    model_name: str,
    messages: List[Dict[str, Any]],
    effort: str,
    system_instruction: Optional[str],
    include_thinking: bool,
    include_output_config: bool,
    tools: List[Dict[str, Any]],
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "model": model_name,
        "max_tokens": env_positive_int("CLAUDE_MAX_TOKENS", DEFAULT_CLAUDE_MAX_TOKENS),
        "stream": True,
        "messages": normalize_messages(messages),
    }
    if system_instruction and system_instruction.strip():
        body["system"] = system_instruction
    if include_thinking:
        body["thinking"] = {"type": "adaptive"}
        if include_output_config:
            body["output_config"] = {"effort": resolve_output_effort(effort)}
    if tools:
        body["tools"] = tools
    return body


def _headers(extra_betas: List[str]) -> Dict[str, str]:
    api_key = env_str("ANTHROPIC_API_KEY")
    if not api_key:
        raise MissingApiKeyError("ANTHROPIC_API_KEY")

    headers = {
        "Content-Type": "application/json",
        "x-api-key": api_key,
        "anthropic-version": env_str("ANTHROPIC_VERSION", DEFAULT_ANTHROPIC_VERSION),
    }
    betas = resolve_betas(extra_betas)
    if betas:
        headers["anthropic-beta"] = ",".join(betas)
    return headers


async def open_with_thinking_fallback(
    client: httpx.AsyncClient,
    model_name: str,
    messages: List[Dict[str, Any]],
    effort: str,
    system_instruction: Optional[str],
    tools: List[Dict[str, Any]],
) -> httpx.Response:
    """
    Open a stream with the richest thinking configuration the model accepts.

    Tool-compatibility errors are raised at once so the tool fallback can
    handle them; thinking-compatibility errors move to the next variant.
    """
    variants = THINKING_VARIANTS if env_flag("CLAUDE_ENABLE_THINKING", True) else THINKING_VARIANTS[-1:]
    headers = _headers([CLAUDE_CODE_EXECUTION_BETA] if has_code_execution_tool(tools) else [])

    for index, variant in enumerate(variants):
        has_next = index < len(variants) - 1
        body = build_request_body(
            model_name,
            messages,
            effort,
            system_instruction,
            variant["include_thinking"],
            variant["include_output_config"],
            tools,
        )
        try:
            return await open_event_stream(
                client, ANTHROPIC_MESSAGES_URL, headers, body, "Claude", variant["label"]
            )
        except ProviderRequestError as e:
            if is_tool_compatibility_error(e.status, e.body):
                raise
            if has_next and is_thinking_compatibility_error(e.status, e.body):
                print(f"Claude {model_name} rejected {variant['label']} request. Retrying with less thinking config.")
                continue
            raise

    raise ProviderStreamError("Claude request failed without a terminal response")


def _block_index(value: Any) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return None


class ClaudeStreamState:
    """
    Per-round buffers for one Claude stream.

    Content blocks are keyed by their wire index because block events
    interleave; they are only ordered when the assistant turn is replayed.
    """

    FALLBACK_BLOCKS = {
        "text": {"type": "text", "text": ""},
        "thinking": {"type": "thinking", "thinking": ""},
        "tool_use": {"type": "tool_use", "input": {}},
    }

    def __init__(self):
        self.blocks_by_index: Dict[int, Dict[str, Any]] = {}
        self.stop_reason: Optional[str] = None
        self.reasoning_seen = False

    def _entry(self, index: int, fallback_type: str) -> Dict[str, Any]:
        entry = self.blocks_by_index.get(index)
        if entry is None:
            entry = {"block": copy.deepcopy(self.FALLBACK_BLOCKS[fallback_type]), "tool_input_json": ""}
            self.blocks_by_index[index] = entry
        return entry

    @staticmethod
    def _append(block: Dict[str, Any], field: str, value: str):
        existing = block.get(field)
        block[field] = (existing if isinstance(existing, str) else "") + value

    def consume(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        event_type = data.get("type")
        events: List[Dict[str, Any]] = []

        if event_type == "error":
            error = data.get("error")
            message = error.get("message") if isinstance(error, dict) else None
            raise ProviderStreamError(f"Claude stream error: {message or 'Unknown Anthropic stream error'}")

        if event_type == "content_block_start":
            index = _block_index(data.get("index"))
            block = data.get("content_block")
            block = copy.deepcopy(block) if isinstance(block, dict) else None
            if index is not None and block is not None:
                self.blocks_by_index[index] = {"block": block, "tool_input_json": ""}
            if block is None:
                return events

            if block.get("type") == "text" and isinstance(block.get("text"), str) and block["text"]:
                events.append({"type": "answer_delta", "content": block["text"]})
            elif block.get("type") == "thinking" and isinstance(block.get("thinking"), str) and block["thinking"]:
                self.reasoning_seen = True
                events.append({"type": "reasoning_summary_delta", "content": block["thinking"]})
            return events

        if event_type == "content_block_delta":
            index = _block_index(data.get("index"))
            delta = data.get("delta")
            if index is None or not isinstance(delta, dict):
                return events

            delta_type = delta.get("type")
            if delta_type == "text_delta" and isinstance(delta.get("text"), str) and delta["text"]:
                self._append(self._entry(index, "text")["block"], "text", delta["text"])
                events.append({"type": "answer_delta", "content": delta["text"]})
            elif delta_type == "thinking_delta" and isinstance(delta.get("thinking"), str) and delta["thinking"]:
                self._append(self._entry(index, "thinking")["block"], "thinking", delta["thinking"])
                self.reasoning_seen = True
                events.append({"type": "reasoning_summary_delta", "content": delta["thinking"]})
            elif delta_type == "input_json_delta" and isinstance(delta.get("partial_json"), str):
                self._entry(index, "tool_use")["tool_input_json"] += delta["partial_json"]
            elif delta_type == "signature_delta" and isinstance(delta.get("signature"), str) and delta["signature"]:
                self._append(self._entry(index, "thinking")["block"], "signature", delta["signature"])
            return events

        if event_type == "message_delta":
            delta = data.get("delta")
            if isinstance(delta, dict) and isinstance(delta.get("stop_reason"), str):
                self.stop_reason = delta["stop_reason"]
        elif event_type == "message_start":
            message = data.get("message")
            if isinstance(message, dict) and isinstance(message.get("stop_reason"), str):
                self.stop_reason = message["stop_reason"]

        return events

    def assistant_blocks(self) -> List[Dict[str, Any]]:
        """Index-ordered blocks for replay, with buffered tool input parsed as JSON."""
        blocks = []
        for index in sorted(self.blocks_by_index):
            entry = self.blocks_by_index[index]
            block = entry["block"]
            raw_input = entry["tool_input_json"]
            if raw_input.strip() and block.get("type") in ("tool_use", "server_tool_use"):
                try:
                    block["input"] = json.loads(raw_input)
                except json.JSONDecodeError:
                    block["input"] = raw_input
            blocks.append(block)
        return blocks


async def stream_claude_response(
    messages: List[Dict[str, Any]],
    model_id: str,
    effort: str = "high",
    system_instruction: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> AsyncIterator[Dict[str, Any]]:
    """
    Stream one Claude answer as normalized events.

    A `pause_turn` stop replays the accumulated assistant blocks and
    re-issues the request, up to CLAUDE_TOOL_PAUSE_TURN_MAX rounds.

    Raises:
        PauseTurnLimitError: the model kept pausing past the configured limit
        ProviderRequestError: the request was rejected and no fallback applied
        ProviderStreamError: the stream carried an error event
    """
    model_name = resolve_model_name(model_id)
    pause_turn_max = env_positive_int("CLAUDE_TOOL_PAUSE_TURN_MAX", DEFAULT_TOOL_PAUSE_TURN_MAX)
    reasoning_seen = False

    async with provider_client(client) as http:

        async def run_attempt(tools):
            nonlocal reasoning_seen
            conversation = copy.deepcopy(messages)
            pause_turn_count = 0

            while True:
                response = await open_with_thinking_fallback(
                    http, model_name, conversation, effort, system_instruction, tools
                )
                state = ClaudeStreamState()
                try:
                    async for payload in iter_sse_data(response.aiter_text()):
                        data = parse_sse_json(payload, "Claude")
                        if data is None:
                            continue
                        events = state.consume(data)
                        reasoning_seen = reasoning_seen or state.reasoning_seen
                        for event in events:
                            yield event
                finally:
                    await response.aclose()

                if state.stop_reason != "pause_turn":
                    return

                pause_turn_count += 1
                if pause_turn_count > pause_turn_max:
                    raise PauseTurnLimitError(pause_turn_max)

                blocks = state.assistant_blocks()
                if not blocks:
                    raise ProviderStreamError("Claude returned pause_turn without assistant content")
                print(f"Claude {model_name} paused its turn ({pause_turn_count}/{pause_turn_max}). Continuing.")
                conversation.append({"role": "assistant", "content": blocks})

        async for event in stream_with_fallback(
            build_tool_attempts(),
            run_attempt,
            request_error_matches(TOOL_HINTS, TOOL_COMPATIBILITY_HINTS),
            f"Claude {model_name}",
        ):
            yield event

    if reasoning_seen:
        yield {"type": "reasoning_summary_done"}
