"""
Optimistic-concurrency persistence for Study records.

Every mutation is one read-modify-write cycle:

    1. load the current row (including ``version``)
    2. apply the mutator in memory; business-rule errors propagate untouched
    3. ``UPDATE ... WHERE id = ? AND version = ?`` with ``version = version + 1``

Zero rows updated means a concurrent writer committed first. The whole cycle
is then repeated against the fresh row, so business rules are re-validated
against the state that actually won. After ``MAX_MUTATION_RETRIES`` lost races
ConcurrentModificationError is raised.
"""

import logging
from typing import Any, Callable

from django.db import DatabaseError
from django.db.models import F

from common.config import ServiceConfig
from common.exceptions import (
    ConcurrentModificationError,
    DatabaseQueryError,
    StudyNotFoundError,
)
from study.models import Study, build_modalities_key

logger = logging.getLogger(__name__)


class StudyRepository:
    """Loads studies and commits version-guarded mutations."""

    # Columns a mutation may change. ``version`` is bumped separately.
    MUTABLE_FIELDS = (
        'workflow_status',
        'priority',
        'case_type',
        'assignments',
        'status_history',
        'report_artifacts',
        'current_assignee',
        'last_assigned_at',
        'report_started_at',
        'report_finalized_at',
        'report_content',
        'reported_by',
        'modalities',
        'study_date',
        'study_time',
        'series_count',
        'image_count',
    )

    def get(self, study_id: Any) -> Study:
        """
        Load a study by primary key.

        Raises:
            StudyNotFoundError: No study with this id
            DatabaseQueryError: The database query failed
        """
        try:
            return Study.objects.get(pk=study_id)
        except (Study.DoesNotExist, ValueError):
            raise StudyNotFoundError(study_id) from None
        except DatabaseError as e:
            raise DatabaseQueryError('Get study', e) from e

    def get_by_external_id(self, external_study_id: str) -> Study | None:
        try:
            return Study.objects.filter(external_study_id=external_study_id).first()
        except DatabaseError as e:
            raise DatabaseQueryError('Get study by external id', e) from e

    def mutate(
        self,
        study_id: Any,
        mutator: Callable[[Study], None],
        operation: str = 'mutate study',
    ) -> Study:
        """
        Apply ``mutator`` to the study under optimistic concurrency.

        Args:
            study_id: Primary key of the study
            mutator: Changes the loaded Study in place. Called once per
                attempt with a freshly loaded instance; raising aborts the
                mutation without writing anything.
            operation: Short description used in logs and error messages

        Returns:
            The committed Study, with ``version`` reflecting the write

        Raises:
            StudyNotFoundError: The study does not exist
            ConcurrentModificationError: Every attempt lost the race
            DatabaseQueryError: The database rejected the read or write
        """
        attempts = ServiceConfig.get('MAX_MUTATION_RETRIES')
        for attempt in range(1, attempts + 1):
            study = self.get(study_id)
            expected_version = study.version
            mutator(study)

            if self._commit(study, expected_version, operation):
                study.version = expected_version + 1
                return study

            logger.warning(
                f"Version conflict on study {study_id} during {operation} "
                f"(attempt {attempt}/{attempts}, expected version {expected_version})"
            )

        logger.error(f"Giving up {operation} on study {study_id} after {attempts} conflicting attempts")
        raise ConcurrentModificationError(study_id, attempts)

    def _commit(self, study: Study, expected_version: int, operation: str) -> bool:
        changes = {name: getattr(study, name) for name in self.MUTABLE_FIELDS}
        changes['modalities_key'] = build_modalities_key(study.modalities)
        try:
            updated = Study.objects.filter(pk=study.pk, version=expected_version).update(
                version=F('version') + 1,
                **changes,
            )
        except DatabaseError as e:
            raise DatabaseQueryError(operation, e) from e
        return updated == 1
