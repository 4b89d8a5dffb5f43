"""Exception hierarchy for pipeline building, execution and result combination.

Provider failures live next to the provider contract (``chorus.providers.base``).
Cancellation is never represented here: it surfaces as ``asyncio.CancelledError``
or ``TimeoutError`` from the caller's own deadline.
"""


class ChorusError(Exception):
    """Base for all errors raised by the orchestration core."""


class ConfigurationError(ChorusError):
    """Raised when a pipeline cannot be built from its configuration."""


class PipelineError(ChorusError):
    """Raised when a pipeline fails during execution.

    Carries enough context to tell which stage, provider or round failed.
    """

    def __init__(
        self,
        message: str,
        *,
        stage: int | None = None,
        provider: str | None = None,
        round_number: int | None = None,
    ) -> None:
        self.stage = stage
        self.provider = provider
        self.round_number = round_number
        super().__init__(message)


class CombinationError(ChorusError):
    """Raised when a combiner cannot reduce its inputs to a single response."""
