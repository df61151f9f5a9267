"""Tool-compatibility fallback shared by the provider adapters."""

import json
import re
from typing import Any, AsyncIterator, Callable, Dict, List, Pattern, Sequence

from .errors import ProviderRequestError

COMPATIBILITY_HINTS = re.compile(
    r"(unsupported|not supported|invalid|unknown|unrecognized|not allowed|not available)"
)


def is_compatibility_error(
    status: int,
    body: str,
    feature_pattern: Pattern[str],
    compatibility_pattern: Pattern[str] = COMPATIBILITY_HINTS,
) -> bool:
    """
    Guess whether a 4xx error body says a requested feature is unsupported.

    Both the feature hint (tool or thinking names) and the compatibility hint
    must appear. Vendors word these errors freely, so misses are expected.
    """
    if status < 400 or status >= 500:
        return False
    message = (body or "").lower()
    return bool(feature_pattern.search(message)) and bool(compatibility_pattern.search(message))


def tool_sets_equivalent(a: Sequence[Dict[str, Any]], b: Sequence[Dict[str, Any]]) -> bool:
    def signature(tools):
        return sorted(json.dumps(tool, sort_keys=True) for tool in tools)

    return signature(a) == signature(b)


def dedupe_tool_sets(candidates: List[List[Dict[str, Any]]]) -> List[List[Dict[str, Any]]]:
    attempt_sets: List[List[Dict[str, Any]]] = []
    for tools in candidates:
        if any(tool_sets_equivalent(tools, existing) for existing in attempt_sets):
            continue
        attempt_sets.append(tools)
    return attempt_sets


def request_error_matches(pattern: Pattern[str], compatibility_pattern: Pattern[str] = COMPATIBILITY_HINTS):
    """Build an `is_recoverable` predicate for `stream_with_fallback`."""

    def predicate(error: Exception) -> bool:
        return isinstance(error, ProviderRequestError) and is_compatibility_error(
            error.status, error.body, pattern, compatibility_pattern
        )

    return predicate


async def stream_with_fallback(
    attempts: Sequence[Any],
    run_attempt: Callable[[Any], AsyncIterator[Dict[str, Any]]],
    is_recoverable: Callable[[Exception], bool],
    label: str,
) -> AsyncIterator[Dict[str, Any]]:
    """
    Run `run_attempt` over progressively less capable configurations.

    A failed attempt moves on to the next configuration only when another one
    exists, the attempt has not yielded anything yet, and the error is
    recoverable. Otherwise the error propagates: partial output already shown
    to the user is never retried.
    """
    for index, attempt in enumerate(attempts):
        has_next = index < len(attempts) - 1
        emitted_this_attempt = False

        try:
            async for event in run_attempt(attempt):
                emitted_this_attempt = True
                yield event
            return
        except Exception as e:
            if has_next and not emitted_this_attempt and is_recoverable(e):
                print(f"{label}: attempt {index + 1}/{len(attempts)} rejected ({e}). Falling back.")
                continue
            raise
