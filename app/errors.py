"""Exceptions raised while talking to upstream providers."""

from __future__ import annotations


class ProviderError(Exception):
    """Base class for failures originating from an upstream provider."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class UpstreamUnavailable(ProviderError):
    """A provider call failed (network error, timeout or non-2xx status)."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None):
        super().__init__(provider, message)
        self.status_code = status_code


class RateLimitExceeded(UpstreamUnavailable):
    """The local token bucket had no permits left for the call."""

    def __init__(self, provider: str):
        super().__init__(provider, "rate limit exceeded, please wait")


class MalformedUpstreamResponse(UpstreamUnavailable):
    """The provider answered but the payload could not be decoded."""


class NoStreamAvailable(Exception):
    """No provider produced a playable stream for the episode."""

    def __init__(self, episode_id: str, last_error: Exception | None = None):
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"No stream available for {episode_id}{detail}")
        self.episode_id = episode_id
        self.last_error = last_error
