"""
Report lifecycle: from the doctor opening a study to delivery and archival.

All transitions go through StudyRepository.mutate, so each one is a single
version-guarded write that re-validates its preconditions on every retry.

Blob-backed operations (submit_report, upload_report_artifact) write the blob
first and commit the status change second. The status row is the only record
of success: when the status write fails, the freshly written blob is deleted
again and the error propagates, so callers never observe half an operation.
"""

import logging
from datetime import datetime
from typing import Any, Callable

from common.collaborators import BlobRef, BlobStore, default_blob_store
from common.config import ServiceConfig, resolve_now
from common.exceptions import InvalidTransitionError, NotAssignedError, StorageError
from study.models import Study
from study.repository import StudyRepository
from study.workflow import WorkflowStatus, ensure_transition, is_terminal

logger = logging.getLogger(__name__)

START_REPORT_FROM = frozenset({
    WorkflowStatus.ASSIGNED_TO_DOCTOR.value,
    WorkflowStatus.DOCTOR_OPENED_REPORT.value,
})

ALREADY_OPEN = frozenset({
    WorkflowStatus.DOCTOR_OPENED_REPORT.value,
    WorkflowStatus.REPORT_IN_PROGRESS.value,
})

# Delivery milestones recorded after finalization, in pipeline order.
DELIVERY_STATUSES = (
    WorkflowStatus.REPORT_UPLOADED.value,
    WorkflowStatus.REPORT_DOWNLOADED_RADIOLOGIST.value,
    WorkflowStatus.REPORT_DOWNLOADED.value,
    WorkflowStatus.FINAL_REPORT_DOWNLOADED.value,
)


def _require_assignee(study: Study, doctor_id: str) -> None:
    if study.current_assignee != doctor_id:
        raise NotAssignedError(study.pk, doctor_id, study.current_assignee)


class ReportLifecycleController:
    """
    Report authoring and delivery transitions.

    Args:
        repository: Persistence with optimistic concurrency
        blob_store: Stores report bodies and artifacts (default time-bounded
            Django storage)
    """

    def __init__(
        self,
        repository: StudyRepository | None = None,
        blob_store: BlobStore | None = None,
    ):
        self.repository = repository or StudyRepository()
        self.blob_store = blob_store or default_blob_store()

    # ========== AUTHORING ==========

    def open_report(self, study_id: Any, doctor_id: str, actor: str, now: datetime | None = None) -> Study:
        """
        Record that the assignee opened the study for reporting.

        Re-opening a study that is already open or in progress changes nothing.
        """
        changed_at = resolve_now(now)
        current = self.repository.get(study_id)
        _require_assignee(current, doctor_id)
        if current.workflow_status in ALREADY_OPEN:
            return current

        def apply(study: Study) -> None:
            _require_assignee(study, doctor_id)
            if study.workflow_status != WorkflowStatus.ASSIGNED_TO_DOCTOR:
                raise InvalidTransitionError(
                    study.workflow_status,
                    WorkflowStatus.DOCTOR_OPENED_REPORT,
                    'only an assigned study can be opened',
                )
            study.append_status(WorkflowStatus.DOCTOR_OPENED_REPORT, changed_at, actor)

        study = self.repository.mutate(study_id, apply, operation='open report')
        logger.info(f"Study {study_id} opened by {doctor_id}")
        return study

    def start_report(self, study_id: Any, doctor_id: str, actor: str, now: datetime | None = None) -> Study:
        """
        Move an assigned study to report_in_progress.

        ``report_started_at`` is set only the first time reporting starts.

        Raises:
            NotAssignedError: ``doctor_id`` is not the current assignee
            InvalidTransitionError: Status is not assigned_to_doctor or
                doctor_opened_report
        """
        started_at = resolve_now(now)

        def apply(study: Study) -> None:
            _require_assignee(study, doctor_id)
            if study.workflow_status not in START_REPORT_FROM:
                raise InvalidTransitionError(
                    study.workflow_status,
                    WorkflowStatus.REPORT_IN_PROGRESS,
                    'reporting starts from assigned_to_doctor or doctor_opened_report',
                )
            if study.report_started_at is None:
                study.report_started_at = started_at
            study.append_status(WorkflowStatus.REPORT_IN_PROGRESS, started_at, actor)

        study = self.repository.mutate(study_id, apply, operation='start report')
        logger.info(f"Report started on study {study_id} by {doctor_id}")
        return study

    def submit_report(
        self,
        study_id: Any,
        doctor_id: str,
        content: str | bytes,
        actor: str,
        now: datetime | None = None,
    ) -> Study:
        """
        Store the report body and finalize the study.

        Submitting again on a finalized study re-finalizes it: the new body
        replaces the old one and ``report_finalized_at`` moves forward.

        Raises:
            NotAssignedError: ``doctor_id`` is not the current assignee
            InvalidTransitionError: The study is past finalization or archived
            StorageTimeoutError: The blob write exceeded its time bound;
                nothing was committed
        """
        finalized_at = resolve_now(now)
        self._check_submit(self.repository.get(study_id), doctor_id)

        data = content.encode('utf-8') if isinstance(content, str) else bytes(content)
        ref = self.blob_store.put(
            data,
            ServiceConfig.get('REPORT_CONTENT_TYPE'),
            {'clinical': True, 'study_id': str(study_id), 'author': doctor_id},
        )
        superseded: list[dict] = []

        def apply(study: Study) -> None:
            self._check_submit(study, doctor_id)
            superseded[:] = [study.report_content] if study.report_content else []
            study.report_content = ref.to_dict()
            study.report_finalized_at = finalized_at
            study.reported_by = doctor_id
            study.append_status(WorkflowStatus.REPORT_FINALIZED, finalized_at, actor)

        study = self._commit_with_blob(study_id, apply, ref, 'submit report')
        for previous in superseded:
            self._discard_blob(BlobRef.from_dict(previous), 'superseded report body')
        logger.info(f"Report submitted on study {study_id} by {doctor_id}")
        return study

    @staticmethod
    def _check_submit(study: Study, doctor_id: str) -> None:
        _require_assignee(study, doctor_id)
        if study.workflow_status != WorkflowStatus.REPORT_FINALIZED:
            ensure_transition(study.workflow_status, WorkflowStatus.REPORT_FINALIZED)

    # ========== ARTIFACTS ==========

    def attach_report_artifact(
        self,
        study_id: Any,
        blob_ref: BlobRef | dict,
        actor: str,
        now: datetime | None = None,
    ) -> Study:
        """
        Append an already stored artifact to the study.

        The first clinical artifact on a study in report_in_progress finalizes
        it: uploading the signed report counts as submitting it.
        """
        ref = blob_ref if isinstance(blob_ref, BlobRef) else BlobRef.from_dict(blob_ref)
        changed_at = resolve_now(now)

        def apply(study: Study) -> None:
            if is_terminal(study.workflow_status):
                raise InvalidTransitionError(study.workflow_status, study.workflow_status, 'study is archived')
            first_clinical = ref.clinical and not any(a.clinical for a in study.artifact_refs)
            study.append_artifact(ref)
            if first_clinical and study.workflow_status == WorkflowStatus.REPORT_IN_PROGRESS:
                study.report_finalized_at = changed_at
                study.append_status(
                    WorkflowStatus.REPORT_FINALIZED,
                    changed_at,
                    actor,
                    note='Finalized by clinical report upload',
                )

        study = self.repository.mutate(study_id, apply, operation='attach report artifact')
        logger.info(f"Artifact {ref.key} attached to study {study_id} by {actor}")
        return study

    def upload_report_artifact(
        self,
        study_id: Any,
        data: bytes,
        content_type: str,
        actor: str,
        clinical: bool = True,
        filename: str | None = None,
        now: datetime | None = None,
    ) -> Study:
        """Store ``data`` through the BlobStore, then attach it to the study."""
        current = self.repository.get(study_id)
        if is_terminal(current.workflow_status):
            raise InvalidTransitionError(current.workflow_status, current.workflow_status, 'study is archived')

        ref = self.blob_store.put(
            data,
            content_type,
            {'clinical': clinical, 'filename': filename, 'study_id': str(study_id), 'uploaded_by': actor},
        )
        try:
            return self.attach_report_artifact(study_id, ref, actor, now=now)
        except Exception:
            self._discard_blob(ref, 'uncommitted artifact')
            raise

    def get_report_content(self, study_id: Any) -> bytes | None:
        """The submitted report body, or None when no report was submitted."""
        study = self.repository.get(study_id)
        if not study.report_content:
            return None
        return self.blob_store.get(BlobRef.from_dict(study.report_content))

    # ========== PIPELINE MOVES ==========

    def mark_pending_assignment(self, study_id: Any, actor: str, now: datetime | None = None) -> Study:
        return self._transition(study_id, WorkflowStatus.PENDING_ASSIGNMENT, actor, now=now)

    def record_download(
        self,
        study_id: Any,
        actor: str,
        status: str = WorkflowStatus.REPORT_DOWNLOADED.value,
        now: datetime | None = None,
    ) -> Study:
        """
        Record a delivery milestone (upload to the lab, or a download).

        Milestones only move forward; repeating the current one is a no-op.
        """
        if status not in DELIVERY_STATUSES:
            current = self.repository.get(study_id)
            raise InvalidTransitionError(current.workflow_status, status, 'not a delivery status')
        return self._transition(study_id, status, actor, now=now, repeatable=True)

    def archive(self, study_id: Any, actor: str, note: str = '', now: datetime | None = None) -> Study:
        """Archive a study from any non-terminal state. Archived is final."""
        return self._transition(study_id, WorkflowStatus.ARCHIVED, actor, note=note, now=now)

    def _transition(
        self,
        study_id: Any,
        target: str,
        actor: str,
        note: str = '',
        now: datetime | None = None,
        repeatable: bool = False,
    ) -> Study:
        changed_at = resolve_now(now)
        if repeatable:
            current = self.repository.get(study_id)
            if current.workflow_status == target:
                return current

        def apply(study: Study) -> None:
            ensure_transition(study.workflow_status, target)
            study.append_status(target, changed_at, actor, note=note)

        study = self.repository.mutate(study_id, apply, operation=f'transition to {target}')
        logger.info(f"Study {study_id} moved to {target} by {actor}")
        return study

    # ========== BLOB / STATUS ORDERING ==========

    def _commit_with_blob(
        self,
        study_id: Any,
        apply: Callable[[Study], None],
        ref: BlobRef,
        operation: str,
    ) -> Study:
        try:
            return self.repository.mutate(study_id, apply, operation=operation)
        except Exception:
            self._discard_blob(ref, f'uncommitted {operation}')
            raise

    def _discard_blob(self, ref: BlobRef, reason: str) -> None:
        try:
            self.blob_store.delete(ref)
        except StorageError as e:
            logger.warning(f"Could not delete {reason} blob {ref.key}: {e}")
