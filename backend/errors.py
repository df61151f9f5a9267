"""Errors raised by the provider adapters."""

from typing import Optional


class ProviderError(Exception):
    """Base class for failures of a single provider invocation."""


class MissingApiKeyError(ProviderError):
    def __init__(self, env_name: str):
        super().__init__(f"{env_name} is not set")
        self.env_name = env_name


class ProviderRequestError(ProviderError):
    """The vendor answered the streaming request with a non-2xx status."""

    def __init__(self, provider: str, status: int, reason: str, body: str, context: Optional[str] = None):
        label = f" [{context}]" if context else ""
        super().__init__(f"{provider} API error ({status} {reason}){label}: {body}")
        self.provider = provider
        self.status = status
        self.reason = reason
        self.body = body
        self.context = context


class ProviderStreamError(ProviderError):
    """The vendor reported an error event inside an accepted stream."""


class PauseTurnLimitError(ProviderError):
    def __init__(self, limit: int):
        super().__init__(f"Claude pause_turn limit exceeded ({limit})")
        self.limit = limit
