"""
Scenario engine errors.

Logic errors (subclasses of ScenarioError) are caller-visible and never
retried. StorageUnavailable is raised only after the storage layer has
exhausted its retries on transient failures.
"""
from typing import Optional


class EngineError(Exception):
    """Base class for every error raised by the scenario engine."""

    code = "engine_error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)


class ScenarioError(EngineError):
    """A request the engine refuses for a logical reason."""

    code = "scenario_error"


class NotFound(ScenarioError):
    """Unknown scenario or entity."""

    code = "not_found"


class InvalidBase(ScenarioError):
    """The base scenario cannot be branched from."""

    code = "invalid_base"


class InvalidKind(ScenarioError):
    """The scenario or entity kind does not allow this operation."""

    code = "invalid_kind"


class AlreadyTerminal(ScenarioError):
    """The scenario is already archived or merged."""

    code = "already_terminal"


class ScenarioImmutable(ScenarioError):
    """The scenario no longer accepts overlay writes."""

    code = "scenario_immutable"


class NotMergeable(ScenarioError):
    """The scenario cannot be merged."""

    code = "not_mergeable"


class InvalidPayload(ScenarioError):
    """The entity payload failed validation."""

    code = "invalid_payload"


class HasChildren(ScenarioError):
    """The scenario still has child scenarios."""

    code = "has_children"


class StorageUnavailable(EngineError):
    """The storage layer is unavailable."""

    code = "storage_unavailable"
