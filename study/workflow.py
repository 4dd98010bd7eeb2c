"""
Workflow status registry.

Single authoritative definition of the study workflow states, their pipeline
order, the dashboard category each state belongs to, and the transition rule.
Every consumer of a category (dashboards, tab counts, category filters) goes
through ``category_of`` / ``statuses_in`` so the mapping cannot drift.
"""

import logging

from django.db import models

from common.exceptions import InvalidTransitionError

logger = logging.getLogger(__name__)


class WorkflowStatus(models.TextChoices):
    """Canonical workflow states, declared in pipeline order."""

    NEW_STUDY_RECEIVED = "new_study_received", "New study received"
    PENDING_ASSIGNMENT = "pending_assignment", "Pending assignment"
    ASSIGNED_TO_DOCTOR = "assigned_to_doctor", "Assigned to doctor"
    DOCTOR_OPENED_REPORT = "doctor_opened_report", "Doctor opened report"
    REPORT_IN_PROGRESS = "report_in_progress", "Report in progress"
    REPORT_FINALIZED = "report_finalized", "Report finalized"
    REPORT_UPLOADED = "report_uploaded", "Report uploaded"
    REPORT_DOWNLOADED_RADIOLOGIST = "report_downloaded_radiologist", "Report downloaded (radiologist)"
    REPORT_DOWNLOADED = "report_downloaded", "Report downloaded"
    FINAL_REPORT_DOWNLOADED = "final_report_downloaded", "Final report downloaded"
    ARCHIVED = "archived", "Archived"


class Category(models.TextChoices):
    """Coarse dashboard bucket derived from a workflow status. Never stored."""

    PENDING = "pending", "Pending"
    INPROGRESS = "inprogress", "In progress"
    COMPLETED = "completed", "Completed"
    UNKNOWN = "unknown", "Unknown"


class Priority(models.TextChoices):
    NORMAL = "NORMAL", "Normal"
    URGENT = "URGENT", "Urgent"
    STAT = "STAT", "Stat"
    EMERGENCY = "EMERGENCY", "Emergency"


PIPELINE_ORDER: tuple[WorkflowStatus, ...] = tuple(WorkflowStatus)

TERMINAL_STATUSES = frozenset({WorkflowStatus.ARCHIVED})

# The one category table. archived has no dashboard bucket yet and falls
# through to unknown together with anything unrecognized.
CATEGORY_MAPPING: dict[WorkflowStatus, Category] = {
    WorkflowStatus.NEW_STUDY_RECEIVED: Category.PENDING,
    WorkflowStatus.PENDING_ASSIGNMENT: Category.PENDING,
    WorkflowStatus.ASSIGNED_TO_DOCTOR: Category.PENDING,
    WorkflowStatus.DOCTOR_OPENED_REPORT: Category.INPROGRESS,
    WorkflowStatus.REPORT_IN_PROGRESS: Category.INPROGRESS,
    WorkflowStatus.REPORT_FINALIZED: Category.COMPLETED,
    WorkflowStatus.REPORT_UPLOADED: Category.COMPLETED,
    WorkflowStatus.REPORT_DOWNLOADED_RADIOLOGIST: Category.COMPLETED,
    WorkflowStatus.REPORT_DOWNLOADED: Category.COMPLETED,
    WorkflowStatus.FINAL_REPORT_DOWNLOADED: Category.COMPLETED,
}

# Aliases still written by older lab integrations.
LEGACY_STATUS_ALIASES: dict[str, WorkflowStatus] = {
    "NEW": WorkflowStatus.NEW_STUDY_RECEIVED,
    "PENDING": WorkflowStatus.PENDING_ASSIGNMENT,
    "ASSIGNED": WorkflowStatus.ASSIGNED_TO_DOCTOR,
    "IN_PROGRESS": WorkflowStatus.REPORT_IN_PROGRESS,
    "COMPLETED": WorkflowStatus.REPORT_FINALIZED,
    "DOWNLOADED": WorkflowStatus.REPORT_DOWNLOADED,
}


def _coerce(status) -> WorkflowStatus | None:
    if isinstance(status, WorkflowStatus):
        return status
    try:
        return WorkflowStatus(status)
    except ValueError:
        return None


def category_of(status) -> Category:
    """Dashboard category for a status; unknown for anything unmapped."""
    known = _coerce(status)
    if known is None:
        return Category.UNKNOWN
    return CATEGORY_MAPPING.get(known, Category.UNKNOWN)


def statuses_in(category) -> list[WorkflowStatus]:
    """Inverse of ``category_of``: every status that maps to ``category``."""
    wanted = Category(category)
    return [status for status in PIPELINE_ORDER if category_of(status) == wanted]


def pipeline_index(status) -> int:
    known = _coerce(status)
    if known is None:
        raise ValueError(f"Unknown workflow status: {status!r}")
    return PIPELINE_ORDER.index(known)


def is_terminal(status) -> bool:
    return _coerce(status) in TERMINAL_STATUSES


def is_valid_transition(from_status, to_status) -> bool:
    """
    Forward-only along the pipeline order, or any non-terminal state to archived.

    Staying in the same state is not a transition and returns False; callers
    that allow re-entry (report re-finalization) check for it explicitly.
    """
    source = _coerce(from_status)
    target = _coerce(to_status)
    if source is None or target is None or source in TERMINAL_STATUSES:
        return False
    if target == WorkflowStatus.ARCHIVED:
        return True
    return PIPELINE_ORDER.index(target) > PIPELINE_ORDER.index(source)


def ensure_transition(from_status, to_status, reason: str | None = None) -> None:
    """Raise InvalidTransitionError unless ``is_valid_transition`` holds."""
    if not is_valid_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status, reason)


def normalize_status(value) -> WorkflowStatus:
    """Map canonical names and legacy aliases to a WorkflowStatus.

    Empty or unrecognized values normalize to ``new_study_received``.
    """
    if not value:
        return WorkflowStatus.NEW_STUDY_RECEIVED
    known = _coerce(value)
    if known is not None:
        return known
    return LEGACY_STATUS_ALIASES.get(str(value).strip().upper(), WorkflowStatus.NEW_STUDY_RECEIVED)


def normalize_priority(value) -> str:
    """Upper-cased Priority value; empty or unknown values fall back to NORMAL."""
    if not value:
        return Priority.NORMAL.value
    priority = str(value).strip().upper()
    if priority not in Priority.values:
        logger.warning(f"Unknown priority {value!r}; using {Priority.NORMAL.value}")
        return Priority.NORMAL.value
    return priority
