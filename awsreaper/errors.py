"""
Error types shared across the reaper.
"""


class ReaperError(Exception):
    """Base class for reaper errors."""


class NotFound(ReaperError):
    """A resource is not present in the registry."""

    def __init__(self, region: str, resource_id: str):
        self.region = region
        self.resource_id = resource_id
        super().__init__(f"No resource {resource_id} in {region}")


class MalformedState(ReaperError):
    """A serialized lifecycle state could not be parsed."""


class InvalidToken(ReaperError):
    """An action token failed verification or could not be decoded."""


class ProviderError(ReaperError):
    """The cloud provider rejected a call; the message is the provider's own."""


class UnsupportedAction(ProviderError):
    """The resource kind has no implementation of the requested action."""


class ConfigError(ReaperError):
    """Configuration could not be loaded or validated."""
