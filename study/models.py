"""
Study Model - imaging studies moving through the reporting pipeline.

PRAGMATIC DESIGN: one flat, document-style record per study.
Append-only histories (assignments, status transitions, report artifacts) are
JSON arrays on the record itself, so a single version-guarded UPDATE commits a
mutation together with every denormalized field derived from it.

Design Principles:
    - ``assignments`` is the source of truth for who holds the study;
      ``current_assignee``, ``last_assigned_at`` and ``priority`` are derived
      from its last entry inside the same write, never written on their own
    - ``version`` is the optimistic-concurrency counter (see study.repository)
    - Category and TAT are computed on read and never stored
    - Studies are never deleted, only archived
"""

from datetime import date, datetime
from typing import Any

from django.db import models
from django.utils import timezone

from common.collaborators import BlobRef
from study.schemas import AssignmentRecord, ReportTimeline, StatusHistoryEntry
from study.workflow import Category, Priority, WorkflowStatus, category_of


def build_modalities_key(modalities) -> str:
    """Search key such as ``|CT|MR|``; substring match works on every backend."""
    cleaned = sorted({str(m).strip().upper() for m in modalities or [] if str(m).strip()})
    if not cleaned:
        return ''
    return '|' + '|'.join(cleaned) + '|'


class Study(models.Model):
    """
    Imaging study record.

    Data Organization:
        1. Identification (external_study_id, accession_number, patient/lab refs)
        2. Imaging metadata (modalities, study date/time, series/image counts)
        3. Workflow (status, priority, case type, append-only histories)
        4. Denormalized assignment pointer and optimistic-concurrency version
        5. Report timeline and report references

    See Also:
        - Registry: study.workflow
        - Mutations: study.assignment.AssignmentEngine,
          study.reporting.ReportLifecycleController
        - Reads: study.services.StudyQueryEngine
    """

    # ========== IDENTIFIERS ==========

    external_study_id = models.CharField(
        max_length=255,
        unique=True,
        help_text='Imaging-source study identifier (e.g. StudyInstanceUID)',
    )
    accession_number = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        db_index=True,
        help_text='RIS accession number',
    )
    patient_ref = models.CharField(
        max_length=100,
        db_index=True,
        help_text='Patient identifier in the patient registry',
    )
    patient_name = models.CharField(
        max_length=200,
        null=True,
        blank=True,
        help_text='Patient display name, denormalized for search',
    )
    source_lab_ref = models.CharField(
        max_length=100,
        db_index=True,
        help_text='Lab that uploaded the study',
    )

    # ========== IMAGING METADATA ==========

    modalities = models.JSONField(
        default=list,
        blank=True,
        help_text='Distinct modalities in the study (CT, MR, ...)',
    )
    modalities_key = models.CharField(
        max_length=255,
        blank=True,
        default='',
        db_index=True,
        help_text='Derived from modalities; used for modality filtering',
    )
    study_date = models.DateField(null=True, blank=True, db_index=True)
    study_time = models.CharField(
        max_length=20,
        null=True,
        blank=True,
        help_text='DICOM study time (HHMMSS.FFFFFF)',
    )
    series_count = models.IntegerField(default=0)
    image_count = models.IntegerField(default=0)
    ingested_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text='When the study was uploaded into the reporting pipeline',
    )

    # ========== WORKFLOW ==========

    workflow_status = models.CharField(
        max_length=40,
        choices=WorkflowStatus.choices,
        default=WorkflowStatus.NEW_STUDY_RECEIVED,
        db_index=True,
    )
    priority = models.CharField(
        max_length=20,
        choices=Priority.choices,
        default=Priority.NORMAL,
        db_index=True,
    )
    case_type = models.CharField(max_length=50, default='routine')

    assignments = models.JSONField(default=list, blank=True)
    status_history = models.JSONField(default=list, blank=True)
    report_artifacts = models.JSONField(default=list, blank=True)

    # ========== DENORMALIZED POINTER / CONCURRENCY ==========

    current_assignee = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        db_index=True,
        help_text='Equals the last assignment doctor; null when never assigned',
    )
    last_assigned_at = models.DateTimeField(null=True, blank=True, db_index=True)
    version = models.PositiveIntegerField(default=1)

    # ========== REPORT ==========

    report_started_at = models.DateTimeField(null=True, blank=True)
    report_finalized_at = models.DateTimeField(null=True, blank=True)
    report_content = models.JSONField(
        null=True,
        blank=True,
        help_text='BlobRef of the submitted report body',
    )
    reported_by = models.CharField(max_length=100, null=True, blank=True)

    class Meta:
        db_table = 'study_records'
        ordering = ['-ingested_at']
        indexes = [
            models.Index(fields=['current_assignee', 'workflow_status'], name='idx_study_assignee_status'),
            models.Index(fields=['source_lab_ref', '-ingested_at'], name='idx_study_lab_ingested'),
            models.Index(fields=['-last_assigned_at', '-ingested_at'], name='idx_study_recency'),
        ]
        verbose_name = 'Study'
        verbose_name_plural = 'Studies'

    def __str__(self) -> str:
        return f'{self.external_study_id} [{self.workflow_status}]'

    def save(self, *args, **kwargs):
        self.modalities_key = build_modalities_key(self.modalities)
        super().save(*args, **kwargs)

    # ========== TYPED VIEWS OF THE JSON HISTORIES ==========

    @property
    def assignment_records(self) -> list[AssignmentRecord]:
        return [AssignmentRecord.model_validate(item) for item in self.assignments]

    @property
    def history_entries(self) -> list[StatusHistoryEntry]:
        return [StatusHistoryEntry.model_validate(item) for item in self.status_history]

    @property
    def artifact_refs(self) -> list[BlobRef]:
        return [BlobRef.from_dict(item) for item in self.report_artifacts]

    @property
    def report_timeline(self) -> ReportTimeline:
        return ReportTimeline(started_at=self.report_started_at, finalized_at=self.report_finalized_at)

    @property
    def category(self) -> Category:
        return category_of(self.workflow_status)

    @property
    def report_available(self) -> bool:
        return self.report_content is not None or bool(self.report_artifacts)

    # ========== IN-MEMORY MUTATION HELPERS ==========
    # Used by the mutation services inside a repository read-modify-write
    # cycle; nothing here touches the database.

    def append_assignment(self, record: AssignmentRecord) -> None:
        self.assignments = [*self.assignments, record.model_dump(mode='json')]
        self.sync_assignment_pointer()

    def sync_assignment_pointer(self) -> None:
        """Recompute every field derived from the last assignment."""
        if not self.assignments:
            self.current_assignee = None
            self.last_assigned_at = None
            return
        last = AssignmentRecord.model_validate(self.assignments[-1])
        self.current_assignee = last.doctor
        self.last_assigned_at = last.assigned_at
        self.priority = last.priority

    def append_status(self, status: str, changed_at: datetime, changed_by: str, note: str = '') -> None:
        """Set the workflow status and append the matching history entry.

        ``changed_at`` is raised to the previous entry's timestamp when the
        caller's clock is behind, keeping the history non-decreasing.
        """
        if self.status_history:
            previous = StatusHistoryEntry.model_validate(self.status_history[-1]).changed_at
            if changed_at < previous:
                changed_at = previous
        entry = StatusHistoryEntry(
            status=str(status),
            changed_at=changed_at,
            changed_by=changed_by,
            note=note,
        )
        self.workflow_status = str(status)
        self.status_history = [*self.status_history, entry.model_dump(mode='json')]

    def append_artifact(self, ref: BlobRef) -> None:
        self.report_artifacts = [*self.report_artifacts, ref.to_dict()]

    def to_dict(self) -> dict[str, Any]:
        """Serialize the full record; datetimes as ISO 8601 strings."""

        def iso(value: date | datetime | None) -> str | None:
            return value.isoformat() if value else None

        return {
            'id': self.pk,
            'external_study_id': self.external_study_id,
            'accession_number': self.accession_number,
            'patient_ref': self.patient_ref,
            'patient_name': self.patient_name,
            'source_lab_ref': self.source_lab_ref,
            'modalities': list(self.modalities),
            'study_date': iso(self.study_date),
            'study_time': self.study_time,
            'series_count': self.series_count,
            'image_count': self.image_count,
            'ingested_at': iso(self.ingested_at),
            'workflow_status': self.workflow_status,
            'category': str(self.category),
            'priority': self.priority,
            'case_type': self.case_type,
            'assignments': list(self.assignments),
            'current_assignee': self.current_assignee,
            'status_history': list(self.status_history),
            'report_timeline': {
                'started_at': iso(self.report_started_at),
                'finalized_at': iso(self.report_finalized_at),
            },
            'report_artifacts': list(self.report_artifacts),
            'report_content': self.report_content,
            'reported_by': self.reported_by,
            'version': self.version,
        }
