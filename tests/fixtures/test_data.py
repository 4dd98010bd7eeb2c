"""
Test fixtures and data factories for study workflow tests.

Provides reusable test data generation functions and collaborator doubles to
avoid duplication across test files and ensure consistency in test scenarios.
"""

import time as time_module
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any

from common.collaborators import BlobRef, BlobStore, ImagingSource, StudyDescription
from study.models import Study
from study.schemas import AssignmentRecord, StatusHistoryEntry
from study.workflow import WorkflowStatus


class DateTimeHelper:
    """Helper functions for generating timezone-aware datetimes."""

    IST = timezone(timedelta(hours=5, minutes=30))

    # Wednesday 13 November 2024, 15:30 IST
    REFERENCE_NOW = datetime(2024, 11, 13, 15, 30, tzinfo=IST)

    @classmethod
    def ist(cls, year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> datetime:
        """Aware datetime in the operational +05:30 offset."""
        return datetime(year, month, day, hour, minute, second, tzinfo=cls.IST)

    @classmethod
    def hours_ago(cls, hours: float, now: datetime | None = None) -> datetime:
        return (now or cls.REFERENCE_NOW) - timedelta(hours=hours)


class StudyFactory:
    """
    Factory for Study records in a given workflow state.

    Records are written straight through the ORM so tests can start from any
    point of the pipeline without replaying every transition.
    """

    @staticmethod
    def build_study_data(external_study_id: str = "STU001", **overrides) -> dict[str, Any]:
        """
        Study field values with every commonly used field populated.

        Args:
            external_study_id: Unique imaging-source study id
            **overrides: Override any default field values
        """
        ingested_at = overrides.pop("ingested_at", DateTimeHelper.ist(2024, 11, 13, 9, 0))
        defaults = {
            "external_study_id": external_study_id,
            "accession_number": f"ACC-{external_study_id}",
            "patient_ref": f"PAT-{external_study_id}",
            "patient_name": "Test Patient",
            "source_lab_ref": "LAB-1",
            "modalities": ["CT"],
            "study_date": date(2024, 11, 13),
            "study_time": "083000",
            "ingested_at": ingested_at,
            "workflow_status": WorkflowStatus.NEW_STUDY_RECEIVED.value,
            "priority": "NORMAL",
            "status_history": [
                StatusHistoryEntry(
                    status=WorkflowStatus.NEW_STUDY_RECEIVED.value,
                    changed_at=ingested_at,
                    changed_by="system",
                ).model_dump(mode="json")
            ],
        }
        defaults.update(overrides)
        return defaults

    @classmethod
    def create_study(cls, external_study_id: str = "STU001", **overrides) -> Study:
        return Study.objects.create(**cls.build_study_data(external_study_id, **overrides))

    @classmethod
    def create_assigned_study(
        cls,
        external_study_id: str = "ASG001",
        doctor: str = "dr.alice",
        assigned_at: datetime | None = None,
        status: str = WorkflowStatus.ASSIGNED_TO_DOCTOR.value,
        priority: str = "NORMAL",
        **overrides,
    ) -> Study:
        """
        Study already assigned to ``doctor`` and sitting in ``status``.

        The assignment pointer is derived from the assignment list, exactly as
        the assignment engine maintains it.
        """
        assigned_at = assigned_at or DateTimeHelper.ist(2024, 11, 13, 10, 0)
        study = Study(**cls.build_study_data(external_study_id, **overrides))
        study.append_assignment(AssignmentRecord(
            doctor=doctor,
            assigned_at=assigned_at,
            assigned_by="admin",
            priority=priority,
        ))
        study.append_status(status, assigned_at, "admin")
        study.save()
        return study

    @classmethod
    def create_batch_studies(cls, count: int = 10, base_id: str = "BATCH", **common_fields) -> list[Study]:
        return [
            cls.create_study(f"{base_id}{str(i + 1).zfill(3)}", **common_fields)
            for i in range(count)
        ]


class InMemoryBlobStore(BlobStore):
    """BlobStore double that keeps blobs in a dict and counts calls."""

    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.deleted: list[str] = []

    def put(self, data: bytes, content_type: str, meta: dict[str, Any] | None = None) -> BlobRef:
        meta = dict(meta or {})
        key = f"mem/{uuid.uuid4().hex}"
        self.blobs[key] = data
        return BlobRef(
            key=key,
            content_type=content_type,
            size=len(data),
            filename=meta.pop("filename", None),
            clinical=bool(meta.pop("clinical", True)),
            meta=meta,
        )

    def get(self, ref: BlobRef) -> bytes:
        return self.blobs[ref.key]

    def delete(self, ref: BlobRef) -> None:
        self.deleted.append(ref.key)
        self.blobs.pop(ref.key, None)


class SlowBlobStore(InMemoryBlobStore):
    """Blocks every put for ``delay`` seconds; used to trigger timeouts."""

    def __init__(self, delay: float = 0.5):
        super().__init__()
        self.delay = delay

    def put(self, data: bytes, content_type: str, meta: dict[str, Any] | None = None) -> BlobRef:
        time_module.sleep(self.delay)
        return super().put(data, content_type, meta)


class StaticImagingSource(ImagingSource):
    """ImagingSource double returning one fixed description."""

    def __init__(self, description: StudyDescription):
        self.description = description
        self.calls: list[str] = []

    def describe_study(self, external_study_id: str) -> StudyDescription:
        self.calls.append(external_study_id)
        return self.description


class MockDataGenerator:
    """Generators for query-engine scenarios."""

    DOCTORS = ["dr.alice", "dr.bob"]

    @classmethod
    def studies_for_query_testing(cls) -> list[Study]:
        """
        Create a mixed worklist at REFERENCE_NOW (2024-11-13 15:30 IST).

        Layout:
            Q001  new_study_received   LAB-1  CT     ingested today 09:00
            Q002  pending_assignment   LAB-1  MR     ingested yesterday
            Q003  assigned_to_doctor   LAB-1  CT|MR  dr.alice today 10:00, URGENT
            Q004  report_in_progress   LAB-2  CR     dr.alice yesterday 11:00
            Q005  report_finalized     LAB-2  CT     dr.bob today 12:00
            Q006  report_downloaded    LAB-1  MR     dr.bob 2024-11-01
            Q007  archived             LAB-2  CT     ingested 2024-10-01
        """
        ist = DateTimeHelper.ist
        studies = [
            StudyFactory.create_study(
                "Q001", modalities=["CT"], patient_name="Asha Rao",
                ingested_at=ist(2024, 11, 13, 9, 0),
            ),
            StudyFactory.create_study(
                "Q002", modalities=["MR"], workflow_status=WorkflowStatus.PENDING_ASSIGNMENT.value,
                ingested_at=ist(2024, 11, 12, 14, 0), study_date=date(2024, 11, 12),
            ),
            StudyFactory.create_assigned_study(
                "Q003", doctor="dr.alice", assigned_at=ist(2024, 11, 13, 10, 0), priority="URGENT",
                modalities=["CT", "MR"], ingested_at=ist(2024, 11, 13, 8, 0),
            ),
            StudyFactory.create_assigned_study(
                "Q004", doctor="dr.alice", assigned_at=ist(2024, 11, 12, 11, 0),
                status=WorkflowStatus.REPORT_IN_PROGRESS.value, source_lab_ref="LAB-2",
                modalities=["CR"], ingested_at=ist(2024, 11, 12, 10, 0), study_date=date(2024, 11, 12),
                report_started_at=ist(2024, 11, 12, 12, 0),
            ),
            StudyFactory.create_assigned_study(
                "Q005", doctor="dr.bob", assigned_at=ist(2024, 11, 13, 12, 0),
                status=WorkflowStatus.REPORT_FINALIZED.value, source_lab_ref="LAB-2",
                ingested_at=ist(2024, 11, 13, 7, 0),
                report_finalized_at=ist(2024, 11, 13, 14, 0),
            ),
            StudyFactory.create_assigned_study(
                "Q006", doctor="dr.bob", assigned_at=ist(2024, 11, 1, 10, 0),
                status=WorkflowStatus.REPORT_DOWNLOADED.value, modalities=["MR"],
                ingested_at=ist(2024, 11, 1, 9, 0), study_date=date(2024, 11, 1),
                report_finalized_at=ist(2024, 11, 2, 9, 0),
            ),
            StudyFactory.create_study(
                "Q007", workflow_status=WorkflowStatus.ARCHIVED.value, source_lab_ref="LAB-2",
                ingested_at=ist(2024, 10, 1, 9, 0), study_date=date(2024, 10, 1),
            ),
        ]
        return studies
