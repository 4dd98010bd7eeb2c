"""
Turnaround-time (TAT) analytics.

Milestones, in pipeline order:
    study date -> upload (ingested_at) -> assignment -> report finalized

Each delta is computed only when both endpoints are present; a missing
endpoint yields None, never an exception. Deltas are clamped at zero so clock
skew between the modality, the uploader and this server cannot produce a
negative turnaround.
"""

import math
import re
from datetime import date, datetime, time, tzinfo

from common.config import ServiceConfig, resolve_now, resolve_timezone
from study.schemas import TAT

_STUDY_TIME_DIGITS = re.compile(r'\d+')


class TATCalculator:
    """Stateless TAT computations shared by every read path."""

    AWAITING_ASSIGNMENT = 'awaiting_assignment'
    AWAITING_REPORT = 'awaiting_report'
    REPORTING_IN_PROGRESS = 'reporting_in_progress'
    FINALIZED = 'finalized'

    @staticmethod
    def minutes_between(start: datetime | None, end: datetime | None) -> int | None:
        """Whole minutes from start to end, half rounded up, never negative."""
        if start is None or end is None:
            return None
        minutes = (end - start).total_seconds() / 60
        return max(0, math.floor(minutes + 0.5))

    @staticmethod
    def days_between(start: datetime | None, end: datetime | None) -> int | None:
        if start is None or end is None:
            return None
        days = (end - start).total_seconds() / 86400
        return max(0, math.floor(days + 0.5))

    @classmethod
    def compute(
        cls,
        study_date: datetime | None = None,
        upload_date: datetime | None = None,
        assigned_date: datetime | None = None,
        finalized_date: datetime | None = None,
        now: datetime | None = None,
        priority: str | None = None,
        started_date: datetime | None = None,
    ) -> TAT:
        """
        Compute every stage delta plus overdue flag and phase.

        Args:
            study_date: Acquisition instant (study date + time)
            upload_date: When the study entered the pipeline
            assigned_date: Latest assignment instant
            finalized_date: When the report was finalized
            now: Reference instant for open-ended values (total days, overdue)
            priority: Study priority, selects the SLA threshold
            started_date: When reporting started; only affects ``phase``

        Returns:
            TAT with None for every delta whose endpoints are missing
        """
        minutes = cls.minutes_between
        origin = study_date or upload_date
        total_days = cls.days_between(origin, finalized_date or now)

        tat = TAT(
            study_to_upload=minutes(study_date, upload_date),
            upload_to_assignment=minutes(upload_date, assigned_date),
            assignment_to_report=minutes(assigned_date, finalized_date),
            study_to_report=minutes(study_date, finalized_date),
            upload_to_report=minutes(upload_date, finalized_date),
            total_days=total_days,
            is_overdue=cls.is_overdue(upload_date, assigned_date, finalized_date, now, priority),
            phase=cls.phase(assigned_date, started_date, finalized_date),
        )
        return tat.model_copy(update={
            'study_to_report_formatted': cls.format(tat.study_to_report),
            'upload_to_report_formatted': cls.format(tat.upload_to_report),
            'assignment_to_report_formatted': cls.format(tat.assignment_to_report),
            'total_formatted': cls.format_days(total_days),
        })

    @classmethod
    def phase(
        cls,
        assigned_date: datetime | None,
        started_date: datetime | None,
        finalized_date: datetime | None,
    ) -> str:
        if finalized_date is not None:
            return cls.FINALIZED
        if started_date is not None:
            return cls.REPORTING_IN_PROGRESS
        if assigned_date is not None:
            return cls.AWAITING_REPORT
        return cls.AWAITING_ASSIGNMENT

    @staticmethod
    def is_overdue(
        upload_date: datetime | None,
        assigned_date: datetime | None,
        finalized_date: datetime | None,
        now: datetime | None,
        priority: str | None = None,
    ) -> bool:
        """Unfinalized and waiting longer than the priority's SLA threshold."""
        if finalized_date is not None or now is None:
            return False
        reference = assigned_date or upload_date
        if reference is None:
            return False
        return now - reference > ServiceConfig.sla_threshold(priority)

    @staticmethod
    def format(minutes: int | None) -> str:
        """
        Human-readable duration.

        Examples:
            45    -> '45 minutes'
            120   -> '2h'
            135   -> '2h 15m'
            2880  -> '2d'
            3000  -> '2d 2h'
        """
        if minutes is None:
            return ServiceConfig.get('TAT_UNKNOWN_LABEL')
        if minutes < 60:
            return f'{minutes} minutes'
        if minutes < 1440:
            hours, rest = divmod(minutes, 60)
            return f'{hours}h {rest}m' if rest else f'{hours}h'
        days, rest = divmod(minutes, 1440)
        hours = rest // 60
        return f'{days}d {hours}h' if hours else f'{days}d'

    @staticmethod
    def format_days(days: int | None) -> str:
        if days is None:
            return ServiceConfig.get('TAT_UNKNOWN_LABEL')
        return f'{days} days'

    @staticmethod
    def study_instant(
        study_date: date | None,
        study_time: str | None,
        tz: tzinfo | str | None = None,
    ) -> datetime | None:
        """
        Combine a DICOM study date and time (``HHMMSS.FFFFFF``) in ``tz``.

        A missing or unreadable time means midnight.
        """
        if study_date is None:
            return None
        clock = time.min
        if study_time:
            digits = ''.join(_STUDY_TIME_DIGITS.findall(study_time.split('.')[0]))
            digits = (digits + '000000')[:6]
            try:
                clock = time(int(digits[0:2]), int(digits[2:4]), int(digits[4:6]))
            except ValueError:
                clock = time.min
        return datetime.combine(study_date, clock, tzinfo=resolve_timezone(tz))

    @classmethod
    def for_study(cls, study, now: datetime, tz: tzinfo | str | None = None) -> TAT:
        """TAT of a Study record, using its denormalized timestamps."""
        if now is not None:
            now = resolve_now(now, tz)
        return cls.compute(
            study_date=cls.study_instant(study.study_date, study.study_time, tz),
            upload_date=study.ingested_at,
            assigned_date=study.last_assigned_at,
            finalized_date=study.report_finalized_at,
            now=now,
            priority=study.priority,
            started_date=study.report_started_at,
        )
