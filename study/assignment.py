"""
Assignment engine: gives a study to a reporting doctor.

Reassignment is the same operation with a different doctor. Each call appends
one AssignmentRecord and recomputes the denormalized pointer
(``current_assignee``, ``last_assigned_at``, ``priority``) in the same
version-guarded write, so the pointer can never disagree with the history.
"""

import logging
from datetime import datetime
from typing import Any

from common.collaborators import ActorDirectory, OpaqueActorDirectory
from common.config import resolve_now
from common.exceptions import AlreadyAssignedError, DoctorNotFoundError, InvalidTransitionError
from study.models import Study
from study.repository import StudyRepository
from study.schemas import AssignmentRecord
from study.workflow import WorkflowStatus, is_terminal, normalize_priority

logger = logging.getLogger(__name__)

# Assigning from these states moves the study to assigned_to_doctor.
# Later states keep their status; the assignment is still recorded.
PRE_ASSIGNMENT_STATUSES = frozenset({
    WorkflowStatus.NEW_STUDY_RECEIVED.value,
    WorkflowStatus.PENDING_ASSIGNMENT.value,
})


class AssignmentEngine:
    """
    Assign and reassign studies.

    Args:
        repository: Persistence with optimistic concurrency (default StudyRepository)
        directory: Validates doctor identities (default accepts any token)
    """

    def __init__(
        self,
        repository: StudyRepository | None = None,
        directory: ActorDirectory | None = None,
    ):
        self.repository = repository or StudyRepository()
        self.directory = directory or OpaqueActorDirectory()

    def assign(
        self,
        study_id: Any,
        doctor_id: str,
        priority: str | None,
        actor: str,
        now: datetime | None = None,
    ) -> Study:
        """
        Assign ``study_id`` to ``doctor_id``.

        Preconditions are re-checked on every optimistic retry, against the
        state that won the race.

        Raises:
            StudyNotFoundError: Unknown study
            DoctorNotFoundError: The directory does not know ``doctor_id``
            InvalidTransitionError: The study is archived
            AlreadyAssignedError: ``doctor_id`` already holds the study
            ConcurrentModificationError: Retries exhausted
        """
        if not self.directory.exists(doctor_id):
            raise DoctorNotFoundError(doctor_id)

        assigned_at = resolve_now(now)
        level = normalize_priority(priority)

        def apply(study: Study) -> None:
            if is_terminal(study.workflow_status):
                raise InvalidTransitionError(
                    study.workflow_status,
                    WorkflowStatus.ASSIGNED_TO_DOCTOR,
                    'archived studies cannot be assigned',
                )
            if study.current_assignee == doctor_id:
                raise AlreadyAssignedError(study.pk, doctor_id)

            study.append_assignment(AssignmentRecord(
                doctor=doctor_id,
                assigned_at=assigned_at,
                assigned_by=actor,
                priority=level,
            ))
            if study.workflow_status in PRE_ASSIGNMENT_STATUSES:
                study.append_status(
                    WorkflowStatus.ASSIGNED_TO_DOCTOR,
                    assigned_at,
                    actor,
                    note=f'Assigned to {self.directory.display_name(doctor_id)}',
                )

        study = self.repository.mutate(study_id, apply, operation='assign study')
        logger.info(f"Study {study_id} assigned to {doctor_id} by {actor} (priority {level})")
        return study

    reassign = assign

