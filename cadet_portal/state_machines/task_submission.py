"""
Task Submission State Machine

State Flow: taken → submitted → completed | rejected
            taken → abandoned (row removed)

The table below is the single definition of legal transitions. The
submission service consults it before every conditional update, and the
conditional update itself re-checks the source state in the WHERE clause so
a concurrent transition can never be applied twice.
"""
from typing import Dict, List

from cadet_portal.orm.task import SubmissionStatus


class SubmissionStateMachine:
    """Transition rules for a (task, cadet) submission."""

    TRANSITIONS: Dict[SubmissionStatus, List[SubmissionStatus]] = {
        SubmissionStatus.TAKEN: [SubmissionStatus.SUBMITTED, SubmissionStatus.ABANDONED],
        SubmissionStatus.SUBMITTED: [SubmissionStatus.COMPLETED, SubmissionStatus.REJECTED],
        SubmissionStatus.COMPLETED: [],
        SubmissionStatus.REJECTED: [],
        SubmissionStatus.ABANDONED: [],
    }

    # Decisions a reviewer may record
    REVIEW_DECISIONS = (SubmissionStatus.COMPLETED, SubmissionStatus.REJECTED)

    @classmethod
    def can_transition(cls, from_state: SubmissionStatus, to_state: SubmissionStatus) -> bool:
        return to_state in cls.TRANSITIONS.get(from_state, [])

    @classmethod
    def allowed_from(cls, from_state: SubmissionStatus) -> List[str]:
        return [state.value for state in cls.TRANSITIONS.get(from_state, [])]

    @classmethod
    def is_terminal(cls, state: SubmissionStatus) -> bool:
        return not cls.TRANSITIONS.get(state)

    @classmethod
    def source_state(cls, to_state: SubmissionStatus) -> SubmissionStatus:
        """The only state a given target can be reached from."""
        sources = [
            from_state for from_state, targets in cls.TRANSITIONS.items()
            if to_state in targets
        ]
        if len(sources) != 1:
            raise ValueError(f"{to_state.value} has no unique source state")
        return sources[0]
