"""Exception taxonomy for the link generation engine."""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every error raised by the engine."""


class NotFound(EngineError):
    """Requested project, page or run does not exist."""


class ImportNotReady(NotFound):
    """The project has no completed content import to generate links from."""


class ProfileError(EngineError, ValueError):
    """The supplied SEO profile contains invalid values."""


class ScenarioError(EngineError):
    """A scenario generator failed; the run continues without its candidates."""

    def __init__(self, scenario: str, message: str) -> None:
        super().__init__(f"{scenario}: {message}")
        self.scenario = scenario


class AnchorResolutionFailure(EngineError):
    """No natural anchor could be found or produced for a candidate."""


class ExternalServiceError(EngineError):
    """An external collaborator (AI service, liveness checker) is unavailable."""


class PersistenceError(EngineError):
    """Results could not be written; the run must fail without partial writes."""


class RunCanceled(EngineError):
    """Raised at a checkpoint once cancellation has been requested."""


class RunAlreadyActive(EngineError):
    """Another run is already generating links for the same project."""


class InvalidTransition(EngineError):
    """A run status change would break the monotonic state machine."""
