from datetime import date, datetime

from ninja import Field, Schema
from pydantic import ConfigDict


class AssignmentRecord(Schema):
    """One entry of a study's append-only assignment history."""

    model_config = ConfigDict(frozen=True)

    doctor: str
    assigned_at: datetime
    assigned_by: str
    priority: str = 'NORMAL'


class StatusHistoryEntry(Schema):
    """One workflow transition. changed_at is non-decreasing along the list."""

    model_config = ConfigDict(frozen=True)

    status: str
    changed_at: datetime
    changed_by: str
    note: str = ''


class ReportTimeline(Schema):
    started_at: datetime | None = None
    finalized_at: datetime | None = None


class TAT(Schema):
    """Turnaround-time view of a study. Computed on read, never persisted.

    Every delta is in minutes and is None when either endpoint is missing.
    """

    study_to_upload: int | None = None
    upload_to_assignment: int | None = None
    assignment_to_report: int | None = None
    study_to_report: int | None = None
    upload_to_report: int | None = None
    total_days: int | None = None
    is_overdue: bool = False
    phase: str = 'awaiting_assignment'

    study_to_report_formatted: str = 'unknown'
    upload_to_report_formatted: str = 'unknown'
    assignment_to_report_formatted: str = 'unknown'
    total_formatted: str = 'unknown'


class OwnerScope(Schema):
    """Restricts a query to one doctor's and/or one lab's studies."""

    doctor: str | None = None
    lab: str | None = None


class StudyFilter(Schema):
    """Filter dimensions for StudyQueryEngine.query().

    ``category`` and ``status`` are mutually exclusive. ``date_preset`` is
    resolved through TimeWindowResolver; ``assignedToday`` switches the date
    field to the assignment timestamp and resolves like ``today``.
    """

    owner_scope: OwnerScope | None = None
    category: str | None = Field(None, description='pending | inprogress | completed | unknown | all')
    status: str | None = Field(None, description='Exact workflow status')
    date_field: str = Field('ingestedAt', description='studyDate | ingestedAt | assignedAt')
    date_preset: str | None = Field(None, description='today, yesterday, last24h, thisWeek, ...')
    custom_from: str | None = Field(None, description='YYYY-MM-DD, used with preset=custom')
    custom_to: str | None = Field(None, description='YYYY-MM-DD, used with preset=custom')
    free_text: str | None = Field(None, max_length=200, description='Accession number or external study id')
    modality: str | None = None
    priority: str | None = None
    patient_name_or_id: str | None = Field(None, max_length=200)
    page: int = 1
    page_size: int | None = None


class CategoryCounts(Schema):
    pending: int = 0
    inprogress: int = 0
    completed: int = 0
    unknown: int = 0
    all: int = 0


class StudyListItem(Schema):
    """Study as returned by the query engine, with ephemeral category and TAT."""

    id: int
    external_study_id: str
    accession_number: str | None = None
    patient_ref: str
    patient_name: str | None = None
    source_lab_ref: str
    modalities: list[str]
    study_date: date | None = None
    study_time: str | None = None
    ingested_at: datetime
    workflow_status: str
    category: str
    priority: str
    case_type: str
    current_assignee: str | None = None
    last_assigned_at: datetime | None = None
    report_started_at: datetime | None = None
    report_finalized_at: datetime | None = None
    report_available: bool = False
    tat: TAT


class QueryResult(Schema):
    """Filtered page of studies plus badge counts for the same filter."""

    items: list[StudyListItem]
    total: int
    page: int
    page_size: int
    category_counts: CategoryCounts
    status_counts: dict[str, int] = {}
    urgent_count: int = 0
    assigned_today_count: int = 0


class DoctorStats(Schema):
    doctor: str
    total_assigned: int
    pending: int
    inprogress: int
    completed: int
    urgent_open: int


class FilterOptions(Schema):
    """Available filter values. All values from database, sorted, no duplicates."""

    modalities: list[str]
    priorities: list[str]
    source_labs: list[str]
    workflow_statuses: list[str]
