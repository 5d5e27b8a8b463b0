"""Council exception hierarchy."""

from __future__ import annotations


class CouncilError(Exception):
    """Base exception for the decision core."""


class ConfigError(CouncilError):
    """Configuration could not be loaded or is inconsistent."""


class UnknownAgentError(CouncilError, KeyError):
    """No profile is registered for the requested agent id."""

    def __init__(self, agent_id: str):
        super().__init__(agent_id)
        self.agent_id = agent_id

    def __str__(self) -> str:
        return f"Unknown agent: {self.agent_id!r}"


class DataUnavailableError(CouncilError):
    """An upstream data source returned nothing usable."""


class RateLimitedError(DataUnavailableError):
    """An upstream data source refused the request (HTTP 429 or similar)."""


class SellExecutionError(CouncilError):
    """The external sell executor failed to close a position."""
