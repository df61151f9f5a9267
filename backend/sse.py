"""Server-Sent Events framing for the browser and parsing for vendor streams."""

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from .config import REQUEST_TIMEOUT
from .errors import ProviderRequestError


def format_sse(payload: Dict[str, Any]) -> str:
    """Frame one envelope as a single `data:` event."""
    return f"data: {json.dumps(payload)}\n\n"


def _block_data(block: str) -> Optional[str]:
    data_lines = []
    for line in block.split("\n"):
        if not line.startswith("data:"):
            continue
        value = line[5:]
        if value.startswith(" "):
            value = value[1:]
        data_lines.append(value)

    if not data_lines:
        return None

    payload = "\n".join(data_lines).strip()
    if not payload or payload == "[DONE]":
        return None
    return payload


async def iter_sse_data(chunks: AsyncIterator[str]) -> AsyncIterator[str]:
    """
    Reassemble SSE events from arbitrarily split text chunks.

    Events are separated by a blank line. Multiple `data:` lines inside one
    event are joined with newlines; `event:`/`id:` lines and comments are
    ignored, as is the `[DONE]` sentinel.

    Yields:
        The data payload of each event, in order
    """
    buffer = ""
    async for chunk in chunks:
        buffer = (buffer + chunk).replace("\r\n", "\n")
        while "\n\n" in buffer:
            block, buffer = buffer.split("\n\n", 1)
            payload = _block_data(block)
            if payload is not None:
                yield payload

    payload = _block_data(buffer)
    if payload is not None:
        yield payload


def parse_sse_json(payload: str, source: str) -> Optional[Dict[str, Any]]:
    """Decode one data payload; malformed payloads are reported and skipped."""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        print(f"Skipping malformed {source} stream payload: {e}. Raw: {payload[:200]}")
        return None
    if not isinstance(data, dict):
        print(f"Skipping non-object {source} stream payload: {payload[:200]}")
        return None
    return data


@asynccontextmanager
async def provider_client(client: Optional[httpx.AsyncClient] = None):
    """Reuse a caller-owned client, or open a short-lived one."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as owned:
        yield owned


async def open_event_stream(
    client: httpx.AsyncClient,
    url: str,
    headers: Dict[str, str],
    body: Dict[str, Any],
    provider: str,
    context: Optional[str] = None,
) -> httpx.Response:
    """
    POST a streaming request and return the open response.

    The caller owns the returned response and must `aclose()` it.

    Raises:
        ProviderRequestError: the vendor answered with a non-2xx status
    """
    request = client.build_request("POST", url, headers=headers, json=body)
    response = await client.send(request, stream=True)
    if response.status_code < 400:
        return response

    try:
        raw = await response.aread()
    finally:
        await response.aclose()
    error_body = raw.decode("utf-8", errors="replace")
    raise ProviderRequestError(
        provider,
        response.status_code,
        response.reason_phrase,
        error_body,
        context,
    )
