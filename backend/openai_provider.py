"""OpenAI adapter: Responses API streaming with a chat-completions fallback protocol."""

import re
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .config import (
    OPENAI_CHAT_COMPLETIONS_URL,
    OPENAI_RESPONSES_URL,
    WEB_SEARCH_CONTEXT_SIZES,
    env_flag,
    env_str,
)
from .errors import MissingApiKeyError, ProviderStreamError
from .fallback import request_error_matches, stream_with_fallback, tool_sets_equivalent
from .sse import iter_sse_data, open_event_stream, parse_sse_json, provider_client

PRO_MODEL_ID = "gpt-5.2-pro"

TOOL_HINTS = re.compile(r"(tool|tools|web_search|web_search_preview|code_interpreter)")


def coerce_effort(effort: str) -> str:
    if effort == "max":
        return "high"
    return effort if effort in ("low", "medium", "high") else "high"


def resolve_model_name(model_id: str) -> str:
    if model_id == "gpt-5.2-high":
        return env_str("OPENAI_MODEL_HIGH", "gpt-5.2")
    if model_id == PRO_MODEL_ID:
        return env_str("OPENAI_MODEL_PRO", PRO_MODEL_ID)
    return model_id


def uses_responses_api(model_name: str) -> bool:
    return "5." in model_name or model_name.startswith("gpt-5")


def _is_non_pro_gpt52(requested_model: str, resolved_model: str) -> bool:
    requested = requested_model.lower()
    if requested == PRO_MODEL_ID:
        return False
    if requested in ("gpt-5.2", "gpt-5.2-high"):
        return True
    resolved = resolved_model.lower()
    return "gpt-5.2" in resolved and "pro" not in resolved


def _web_search_tool() -> Optional[Dict[str, Any]]:
    if not env_flag("OPENAI_ENABLE_WEB_SEARCH", True):
        return None

    tool_type = (env_str("OPENAI_WEB_SEARCH_TOOL_TYPE", "") or "").lower()
    if tool_type == "web_search_preview":
        size = (env_str("OPENAI_WEB_SEARCH_CONTEXT_SIZE", "") or "").lower()
        if size not in WEB_SEARCH_CONTEXT_SIZES:
            size = "medium"
        return {"type": "web_search_preview", "search_context_size": size}

    return {"type": "web_search"}


def _code_interpreter_allowed(requested_model: str, resolved_model: str) -> bool:
    if not env_flag("OPENAI_ENABLE_CODE_INTERPRETER", False):
        return False
    return _is_non_pro_gpt52(requested_model, resolved_model)


def build_tools(resolved_model: str, requested_model: str, force_web_only: bool = False) -> List[Dict[str, Any]]:
    if env_flag("OPENAI_FORCE_DISABLE_TOOLS", False):
        return []

    tools: List[Dict[str, Any]] = []
    web_search = _web_search_tool()
    if web_search:
        tools.append(web_search)

    if not force_web_only and _code_interpreter_allowed(requested_model, resolved_model):
        tools.append({"type": "code_interpreter", "container": {"type": "auto"}})

    return tools


def build_tool_attempts(resolved_model: str, requested_model: str) -> List[List[Dict[str, Any]]]:
    """Initial tool set, plus one web-search-only retry when that differs."""
    initial = build_tools(resolved_model, requested_model)
    attempts = [initial]
    web_only = build_tools(resolved_model, requested_model, force_web_only=True)
    if web_only and not tool_sets_equivalent(initial, web_only):
        attempts.append(web_only)
    return attempts


def build_responses_input(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Map chat-style messages onto Responses input items.

    User and system content uses the `input_*` part kinds; assistant history
    must use `output_text`, so any non-text assistant part is carried as text.
    """
    items = []
    for message in messages:
        role = message.get("role")
        is_assistant = role == "assistant"
        content: List[Dict[str, Any]] = []
        raw_content = message.get("content")

        if isinstance(raw_content, list):
            for part in raw_content:
                if not isinstance(part, dict):
                    continue
                part_type = part.get("type")

                if part_type == "text":
                    text = part.get("text") or ""
                    if not text:
                        continue
                    content.append({"type": "output_text" if is_assistant else "input_text", "text": text})
                elif part_type == "image_url":
                    image_url = (part.get("image_url") or {}).get("url")
                    if not image_url:
                        continue
                    if is_assistant:
                        content.append({"type": "output_text", "text": image_url})
                    else:
                        content.append({"type": "input_image", "image_url": image_url})
                elif part_type == "input_file" and not is_assistant:
                    if part.get("file_data"):
                        content.append({
                            "type": "input_file",
                            "filename": part.get("filename") or "document.pdf",
                            "file_data": part["file_data"],
                        })
        elif isinstance(raw_content, str) and raw_content:
            content.append({"type": "output_text" if is_assistant else "input_text", "text": raw_content})

        if content:
            items.append({"role": role, "content": content})

    return items


def build_responses_request_body(
    model_name: str,
    requested_model: str,
    effort: str,
    input_items: List[Dict[str, Any]],
    tools: List[Dict[str, Any]],
) -> Dict[str, Any]:
    summary = "concise" if _is_non_pro_gpt52(requested_model, model_name) else "auto"
    body: Dict[str, Any] = {
        "model": model_name,
        "stream": True,
        "reasoning": {"effort": effort, "summary": summary},
        "text": {"verbosity": "medium"},
        "input": input_items,
    }
    if tools:
        body["tools"] = tools
        body["tool_choice"] = "auto"
    return body


def _chat_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    converted = []
    for message in messages:
        content = message.get("content")
        if isinstance(content, list):
            parts = []
            for part in content:
                if part.get("type") == "input_file":
                    parts.append({
                        "type": "file",
                        "file": {"filename": part.get("filename"), "file_data": part.get("file_data")},
                    })
                else:
                    parts.append(part)
            content = parts
        converted.append({"role": message.get("role"), "content": content})
    return converted


def build_chat_request_body(model_name: str, messages: List[Dict[str, Any]], effort: str) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "model": model_name,
        "messages": _chat_messages(messages),
        "stream": True,
    }
    # Only o-series models accept reasoning_effort on chat completions
    if model_name.startswith("o1") or model_name.startswith("o3"):
        body["reasoning_effort"] = effort
    return body


def _field(value: Any, key: str) -> Any:
    """`value[key]` for an object value, else None."""
    return value.get(key) if isinstance(value, dict) else None


def chat_delta_content(data: Dict[str, Any]) -> Optional[str]:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    content = _field(_field(choices[0], "delta"), "content")
    return content if isinstance(content, str) and content else None


def extract_reasoning_summary_text(summary: Any) -> str:
    if not isinstance(summary, list):
        return ""

    parts = []
    for entry in summary:
        if not isinstance(entry, dict):
            continue
        text = entry.get("text")
        if isinstance(text, str) and text.strip():
            parts.append(text)
            continue
        summary_text = entry.get("summary_text")
        if entry.get("type") == "summary_text" and isinstance(summary_text, str) and summary_text.strip():
            parts.append(summary_text.strip())

    return "\n".join(parts).strip()


class ResponsesStreamState:
    """
    Reasoning-summary bookkeeping for one Responses stream.

    The summary can arrive through incremental deltas, a part-done event, a
    text-done event, or only inside the final output item. The first path
    that carries text wins; later paths only close the summary.
    """

    def __init__(self):
        self.summary_buffer = ""
        self.summary_done_emitted = False

    def _capture(self, text: str) -> List[Dict[str, Any]]:
        if self.summary_buffer.strip() or not text:
            return []
        self.summary_buffer = text
        return [{"type": "reasoning_summary_delta", "content": text}]

    def _close(self) -> List[Dict[str, Any]]:
        if self.summary_done_emitted or not self.summary_buffer.strip():
            return []
        self.summary_done_emitted = True
        return [{"type": "reasoning_summary_done"}]

    def consume(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        event_type = data.get("type")
        events: List[Dict[str, Any]] = []

        if event_type in ("error", "response.failed"):
            error = data.get("error") or _field(data.get("response"), "error")
            message = error.get("message") if isinstance(error, dict) else None
            raise ProviderStreamError(f"OpenAI stream error: {message or data.get('message') or 'unknown error'}")

        chat_content = chat_delta_content(data)
        if chat_content:
            events.append({"type": "answer_delta", "content": chat_content})

        if event_type == "response.output_text.delta" and isinstance(data.get("delta"), str) and data["delta"]:
            events.append({"type": "answer_delta", "content": data["delta"]})

        elif event_type == "response.reasoning_summary_text.delta":
            delta = data.get("delta")
            if isinstance(delta, str) and delta:
                self.summary_buffer += delta
                events.append({"type": "reasoning_summary_delta", "content": delta})

        elif event_type == "response.reasoning_summary_part.done":
            text = _field(data.get("part"), "text")
            if isinstance(text, str) and text:
                events.extend(self._capture(text))
                events.extend(self._close())

        elif event_type == "response.reasoning_summary_text.done":
            text = data.get("text")
            if isinstance(text, str):
                events.extend(self._capture(text if text.strip() else ""))
                events.extend(self._close())

        elif event_type == "response.output_item.done":
            item = data.get("item")
            if _field(item, "type") == "reasoning":
                events.extend(self._capture(extract_reasoning_summary_text(item.get("summary"))))
                events.extend(self._close())

        elif event_type == "response.completed" and not self.summary_done_emitted:
            output = _field(data.get("response"), "output")
            reasoning_item = None
            if isinstance(output, list):
                reasoning_item = next(
                    (item for item in output if isinstance(item, dict) and item.get("type") == "reasoning"),
                    None,
                )
            if reasoning_item:
                events.extend(self._capture(extract_reasoning_summary_text(reasoning_item.get("summary"))))
            events.extend(self._close())

        return events


def _headers() -> Dict[str, str]:
    api_key = env_str("OPENAI_API_KEY")
    if not api_key:
        raise MissingApiKeyError("OPENAI_API_KEY")
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }


async def _stream_payloads(
    client: httpx.AsyncClient,
    url: str,
    body: Dict[str, Any],
    context: str,
) -> AsyncIterator[Dict[str, Any]]:
    response = await open_event_stream(client, url, _headers(), body, "OpenAI", context)
    try:
        async for payload in iter_sse_data(response.aiter_text()):
            data = parse_sse_json(payload, "OpenAI")
            if data is not None:
                yield data
    finally:
        await response.aclose()


async def stream_openai_response(
    messages: List[Dict[str, Any]],
    model_id: str,
    effort: str = "high",
    system_instruction: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> AsyncIterator[Dict[str, Any]]:
    """
    Stream one OpenAI answer as normalized events.

    Args:
        messages: Chat-style conversation messages
        model_id: Registry model id (resolved to a concrete model name)
        effort: low | medium | high | max (max is sent as high)
        system_instruction: Prepended as a system message when given
        client: Optional shared httpx client

    Yields:
        answer_delta, reasoning_summary_delta and reasoning_summary_done events
    """
    model_name = resolve_model_name(model_id)
    effort = coerce_effort(effort)
    if system_instruction:
        messages = [{"role": "system", "content": system_instruction}] + list(messages)

    async with provider_client(client) as http:
        if not uses_responses_api(model_name):
            body = build_chat_request_body(model_name, messages, effort)
            async for data in _stream_payloads(http, OPENAI_CHAT_COMPLETIONS_URL, body, "chat"):
                content = chat_delta_content(data)
                if content:
                    yield {"type": "answer_delta", "content": content}
            return

        input_items = build_responses_input(messages)
        state = ResponsesStreamState()

        async def run_attempt(tools):
            body = build_responses_request_body(model_name, model_id, effort, input_items, tools)
            async for data in _stream_payloads(http, OPENAI_RESPONSES_URL, body, "responses"):
                for event in state.consume(data):
                    yield event

        async for event in stream_with_fallback(
            build_tool_attempts(model_name, model_id),
            run_attempt,
            request_error_matches(TOOL_HINTS),
            f"OpenAI {model_name}",
        ):
            yield event
