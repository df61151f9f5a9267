"""Scripted vendor responses for the adapter and orchestrator tests."""

import json
from typing import Any, Dict, List, Optional

import httpx


def sse_frames(*events: Dict[str, Any]) -> List[bytes]:
    return [f"data: {json.dumps(event)}\n\n".encode("utf-8") for event in events]


class ChunkedStream(httpx.AsyncByteStream):
    """Byte stream that yields fixed chunks, then optionally fails like a dropped connection."""

    def __init__(self, chunks: List[bytes], error: Optional[Exception] = None):
        self.chunks = chunks
        self.error = error

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self):
        pass


def sse_response(*events: Dict[str, Any], error: Optional[Exception] = None) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"content-type": "text/event-stream"},
        stream=ChunkedStream(sse_frames(*events), error),
    )


def raw_sse_response(*chunks: str) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"content-type": "text/event-stream"},
        stream=ChunkedStream([chunk.encode("utf-8") for chunk in chunks]),
    )


def error_response(status: int, message: str) -> httpx.Response:
    return httpx.Response(status, json={"error": {"message": message}})


def scripted_client(*responses: httpx.Response):
    """
    AsyncClient answering each request with the next scripted response.

    Returns:
        (client, requests) where requests collects every sent httpx.Request
    """
    requests: List[httpx.Request] = []
    pending = list(responses)

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if not pending:
            raise AssertionError(f"Unexpected request to {request.url}")
        return pending.pop(0)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), requests


def request_json(request: httpx.Request) -> Dict[str, Any]:
    return json.loads(request.content)


async def collect(events) -> List[Dict[str, Any]]:
    return [event async for event in events]
