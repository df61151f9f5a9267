"""Fan-out of one question to several models and fan-in of their events into one SSE stream."""

import asyncio
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

from .claude_provider import stream_claude_response
from .config import REQUEST_TIMEOUT, get_model_by_id
from .gemini_provider import stream_gemini_response
from .history import build_conversation, sanitize_history, system_prompt
from .openai_provider import stream_openai_response
from .sse import format_sse

PROVIDER_STREAMS: Dict[str, Callable[..., AsyncIterator[Dict[str, Any]]]] = {
    "openai": stream_openai_response,
    "gemini": stream_gemini_response,
    "claude": stream_claude_response,
}

_BRANCHES_FINISHED = object()


def _dedupe(model_ids: List[str]) -> List[str]:
    seen = set()
    ordered = []
    for model_id in model_ids:
        if model_id in seen:
            continue
        seen.add(model_id)
        ordered.append(model_id)
    return ordered


class AnswerOrchestrator:
    """
    Runs one question against every selected model concurrently.

    Each model branch is an asyncio task that pushes tagged envelopes onto a
    shared queue; `stream()` is the only consumer, so envelopes reach the
    transport one at a time. A failing branch produces an `error` envelope and
    never disturbs its siblings. Setting `cancel_event` stops every branch;
    branches that already started finish with `done`, keeping partial output.
    """

    def __init__(
        self,
        question: str,
        images: List[str],
        pdfs: List[str],
        model_ids: List[str],
        language: str = "Chinese",
        history: Any = None,
        cancel_event: Optional[asyncio.Event] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.question = question or ""
        self.images = list(images or [])
        self.pdfs = list(pdfs or [])
        self.model_ids = _dedupe(model_ids)
        self.language = language
        self.history = sanitize_history(history or [])
        self.cancel_event = cancel_event
        self.client = client

        self.answers: Dict[str, str] = {}
        self.reasoning: Dict[str, str] = {}
        self.statuses: Dict[str, str] = {model_id: "pending" for model_id in self.model_ids}

    def _emit(self, queue: asyncio.Queue, envelope: Dict[str, Any]):
        queue.put_nowait(envelope)

    async def _run_model(self, model_id: str, queue: asyncio.Queue, client: httpx.AsyncClient):
        model_config = get_model_by_id(model_id)
        stream_fn = PROVIDER_STREAMS.get(model_config["provider"]) if model_config else None
        if stream_fn is None:
            self.statuses[model_id] = "error"
            self._emit(queue, {"type": "error", "modelId": model_id, "error": "Model not found"})
            return

        self.statuses[model_id] = "streaming"
        self._emit(queue, {"type": "start", "modelId": model_id, "modelName": model_config["name"]})

        reasoning_started = False
        reasoning_done = False
        try:
            conversation = build_conversation(
                model_config["provider"],
                self.question,
                self.images,
                self.pdfs,
                self.history,
                model_id,
                self.language,
            )
            events = stream_fn(
                conversation,
                model_id,
                model_config["effort"],
                system_prompt(self.language),
                client=client,
            )
            async for event in events:
                event_type = event.get("type")
                content = event.get("content")

                if event_type == "answer_delta" and content:
                    self.answers[model_id] = self.answers.get(model_id, "") + content
                    self._emit(queue, {"type": "chunk", "modelId": model_id, "content": content})
                elif event_type == "reasoning_summary_delta" and content:
                    if not reasoning_started:
                        reasoning_started = True
                        self._emit(queue, {"type": "reasoning_summary_start", "modelId": model_id})
                    self.reasoning[model_id] = self.reasoning.get(model_id, "") + content
                    self._emit(queue, {"type": "reasoning_summary_chunk", "modelId": model_id, "content": content})
                elif event_type == "reasoning_summary_done" and reasoning_started and not reasoning_done:
                    reasoning_done = True
                    self._emit(queue, {"type": "reasoning_summary_done", "modelId": model_id})

            if reasoning_started and not reasoning_done:
                self._emit(queue, {"type": "reasoning_summary_done", "modelId": model_id})
            self.statuses[model_id] = "done"
            self._emit(queue, {"type": "done", "modelId": model_id})

        except asyncio.CancelledError:
            # Stopping is not a failure: keep what was streamed
            if reasoning_started and not reasoning_done:
                self._emit(queue, {"type": "reasoning_summary_done", "modelId": model_id})
            self.statuses[model_id] = "done"
            self._emit(queue, {"type": "done", "modelId": model_id})
            raise
        except Exception as e:
            print(f"Error with model {model_id}: {e}")
            self.statuses[model_id] = "error"
            self._emit(queue, {"type": "error", "modelId": model_id, "error": str(e) or type(e).__name__})

    async def _close_when_finished(self, tasks: List[asyncio.Task], queue: asyncio.Queue):
        await asyncio.gather(*tasks, return_exceptions=True)
        queue.put_nowait(_BRANCHES_FINISHED)

    async def _cancel_when_signalled(self, tasks: List[asyncio.Task]):
        await self.cancel_event.wait()
        print("Answer stream cancelled. Finalizing in-flight models.")
        for task in tasks:
            task.cancel()

    async def _stream(self, client: httpx.AsyncClient) -> AsyncIterator[Dict[str, Any]]:
        queue: asyncio.Queue = asyncio.Queue()
        tasks = [
            asyncio.create_task(self._run_model(model_id, queue, client))
            for model_id in self.model_ids
        ]
        helpers = [asyncio.create_task(self._close_when_finished(tasks, queue))]
        if self.cancel_event is not None:
            helpers.append(asyncio.create_task(self._cancel_when_signalled(tasks)))

        try:
            while True:
                envelope = await queue.get()
                if envelope is _BRANCHES_FINISHED:
                    break
                yield envelope
            yield {"type": "complete"}
        finally:
            for task in tasks + helpers:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, *helpers, return_exceptions=True)

    async def stream(self) -> AsyncIterator[Dict[str, Any]]:
        """Yield outbound envelopes until every model branch has finished."""
        if self.client is not None:
            async for envelope in self._stream(self.client):
                yield envelope
            return

        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            async for envelope in self._stream(client):
                yield envelope

    def completed_answers(self) -> Dict[str, str]:
        """Answers of the models that finished successfully, for session history."""
        return {
            model_id: text
            for model_id, text in self.answers.items()
            if self.statuses.get(model_id) == "done" and text.strip()
        }


async def stream_answers(orchestrator: AnswerOrchestrator) -> AsyncIterator[str]:
    """SSE text frames for every envelope of the orchestrator."""
    async for envelope in orchestrator.stream():
        yield format_sse(envelope)
