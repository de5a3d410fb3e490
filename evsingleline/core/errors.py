from __future__ import annotations


class SurveyError(Exception):
    """Base class for errors raised by the distribution tree model."""


class EntityNotFoundError(SurveyError, KeyError):
    """A service, panel or breaker id does not exist in the snapshot."""

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} '{entity_id}' not found")

    def __str__(self) -> str:
        return self.args[0]


class StructuralEditError(SurveyError, ValueError):
    """An edit would break a panel/feeder link or change an immutable field."""


class InvalidEditError(SurveyError, ValueError):
    """An edit names unknown fields or carries values the model rejects."""
