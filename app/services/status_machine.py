"""Legal generation status transitions.

pending -> processing -> completed | failed

Completed and failed are terminal. Nothing here knows about time; stalled
jobs are handled by the generation service.
"""

from app.models.artifact import GenerationStatus

INITIAL_STATUS = GenerationStatus.PENDING

TRANSITIONS: dict[GenerationStatus, frozenset[GenerationStatus]] = {
    GenerationStatus.PENDING: frozenset({GenerationStatus.PROCESSING}),
    GenerationStatus.PROCESSING: frozenset(
        {GenerationStatus.COMPLETED, GenerationStatus.FAILED}
    ),
    GenerationStatus.COMPLETED: frozenset(),
    GenerationStatus.FAILED: frozenset(),
}


class InvalidTransitionError(ValueError):
    """Raised when a status change is not allowed."""

    def __init__(self, current: GenerationStatus | str, target: GenerationStatus | str):
        self.current = GenerationStatus(current)
        self.target = GenerationStatus(target)
        super().__init__(
            f"Cannot move generation from '{self.current.value}' to '{self.target.value}'"
        )


def is_terminal(status: GenerationStatus | str) -> bool:
    return not TRANSITIONS[GenerationStatus(status)]


def can_transition(current: GenerationStatus | str, target: GenerationStatus | str) -> bool:
    """Check whether ``current -> target`` is a legal move."""
    return GenerationStatus(target) in TRANSITIONS[GenerationStatus(current)]


def ensure_transition(current: GenerationStatus | str, target: GenerationStatus | str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def predecessors(target: GenerationStatus | str) -> list[GenerationStatus]:
    """Statuses from which ``target`` can be reached in one step."""
    target = GenerationStatus(target)
    return [status for status, allowed in TRANSITIONS.items() if target in allowed]


def is_valid_history(history: list[GenerationStatus | str]) -> bool:
    """Check that an observed status sequence is a prefix of a legal run."""
    if not history:
        return True
    statuses = [GenerationStatus(s) for s in history]
    if statuses[0] != INITIAL_STATUS:
        return False
    return all(can_transition(a, b) for a, b in zip(statuses, statuses[1:], strict=False))
