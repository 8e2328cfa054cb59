from __future__ import annotations

from datetime import date
from typing import Optional


class EngineError(RuntimeError):
    """Base class for failures raised by the allocation engine."""


class NotFoundError(EngineError):
    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidRangeError(EngineError):
    def __init__(
        self,
        start: Optional[date],
        end: Optional[date],
        reason: str = "end date precedes start date",
    ) -> None:
        super().__init__(f"invalid range {start} to {end}: {reason}")
        self.start = start
        self.end = end
        self.reason = reason


class UpstreamUnavailableError(EngineError):
    """The snapshot source could not supply data.

    Callers decide whether to substitute a fallback dataset; the engine never
    does so on its own.
    """

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"upstream source {source} unavailable: {reason}")
        self.source = source
        self.reason = reason
