"""Engine exceptions."""

from __future__ import annotations

from state_router.engine.models import ViolationKind


class ContractViolation(RuntimeError):
    """A condition the engine guarantees can never happen did happen.

    Raised only for bugs in the rule tables or centroid data, never for
    degraded user input.
    """

    def __init__(self, kind: ViolationKind, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        message = f"{kind.value}: {detail}" if detail else kind.value
        super().__init__(message)
