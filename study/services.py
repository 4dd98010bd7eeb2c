"""
Read side of the study workflow: filtered worklists, badge counts and stats.

PRAGMATIC DESIGN:
    - One predicate builder shared by items and every count, so a tab badge
      always agrees with the list behind it
    - Category and TAT are derived on read from the registry and the
      calculator; nothing here is stored
    - Caching only where staleness is acceptable (doctor stats, filter options)

Architecture:
    StudyQueryEngine
    ├── Query Building: _build_predicate(), _apply_date_window(), _restrict()
    ├── Read Operations: query(), assigned_today(), average_total_days()
    └── Caching: doctor_stats(), get_filter_options(), _get_filter_options_from_db()

Query Algorithm:
    1. Build the predicate from every filter field except category/status
    2. Count the predicate once per workflow status; fold those rows into
       category counts through study.workflow.category_of
    3. Apply the category or status restriction, then sort and page

See Also:
    - Models: study.models.Study
    - Registry: study.workflow
    - Config: common.config.ServiceConfig
    - Exceptions: common.exceptions
"""

import logging
from datetime import datetime, tzinfo

from django.core.cache import cache
from django.db import DatabaseError
from django.db.models import Count, F, Q, QuerySet

from common.config import ServiceConfig, resolve_now, resolve_timezone
from common.exceptions import DatabaseQueryError, InvalidSearchParameterError, NoFilterError
from study.models import Study
from study.schemas import (
    CategoryCounts,
    DoctorStats,
    FilterOptions,
    QueryResult,
    StudyFilter,
    StudyListItem,
)
from study.tat import TATCalculator
from study.time_windows import TimeWindow, TimeWindowResolver
from study.workflow import (
    PIPELINE_ORDER,
    Category,
    Priority,
    category_of,
    statuses_in,
)

logger = logging.getLogger(__name__)

ASSIGNED_TODAY = 'assignedToday'
ALL_CATEGORIES = 'all'


class StudyQueryEngine:
    """
    Query service for worklists and dashboards.

    Methods:
        - query(): Filtered, sorted, paged studies with badge counts
        - assigned_today(): A doctor's studies assigned since local midnight
        - doctor_stats(): Cached per-doctor counters
        - get_filter_options(): Cached distinct filter values
        - average_total_days(): Mean total TAT in days over a filter
    """

    # ========== DATA STRUCTURES ==========
    # Maps filter date_field names to model columns

    DATE_FIELD_MAPPING = {
        'studyDate': 'study_date',
        'ingestedAt': 'ingested_at',
        'assignedAt': 'last_assigned_at',
    }

    # Assignment recency first, never-assigned studies last, then ingestion
    # time; pk makes paging deterministic on ties.
    ORDERING = (
        F('last_assigned_at').desc(nulls_last=True),
        F('ingested_at').desc(),
        F('id').desc(),
    )

    FILTER_OPTIONS_CACHE_KEY = ServiceConfig.FILTER_OPTIONS_CACHE_KEY
    FILTER_OPTIONS_CACHE_TTL = ServiceConfig.FILTER_OPTIONS_CACHE_TTL

    # ========== QUERY ==========

    @classmethod
    def query(
        cls,
        study_filter: StudyFilter | None = None,
        now: datetime | None = None,
        tz: tzinfo | str | None = None,
    ) -> QueryResult:
        """
        Run a worklist query.

        Args:
            study_filter: Filter dimensions; None means everything
            now: Reference instant for date presets and TAT (default: now)
            tz: Timezone for calendar presets (default fixed +05:30)

        Returns:
            QueryResult whose ``category_counts`` ignore the category/status
            restriction but honor every other filter

        Raises:
            InvalidSearchParameterError: Malformed filter values
            DatabaseQueryError: Database failure
        """
        study_filter = study_filter or StudyFilter()
        zone = cls._resolve_zone(tz)
        now = resolve_now(now, zone)

        predicate = cls._build_predicate(study_filter, now, zone)
        restricted = cls._restrict(predicate, study_filter)
        page_size = cls.clamp_page_size(study_filter.page_size)
        page = max(1, study_filter.page or 1)
        offset = (page - 1) * page_size

        try:
            status_counts = cls._status_counts(predicate)
            today = TimeWindowResolver.resolve(TimeWindowResolver.TODAY, now, zone)
            urgent_count = predicate.filter(priority__in=ServiceConfig.get('URGENT_PRIORITIES')).count()
            assigned_today_count = cls._in_window(predicate, 'last_assigned_at', today).count()

            total = restricted.count()
            rows = list(restricted.order_by(*cls.ORDERING)[offset:offset + page_size])
        except DatabaseError as e:
            raise DatabaseQueryError('Study worklist query', e) from e

        logger.debug(
            f"Worklist query {study_filter.model_dump(exclude_none=True)} -> "
            f"{total} studies, page {page} ({len(rows)} items)"
        )

        return QueryResult(
            items=[cls.to_item(study, now, zone) for study in rows],
            total=total,
            page=page,
            page_size=page_size,
            category_counts=cls.fold_category_counts(status_counts),
            status_counts=status_counts,
            urgent_count=urgent_count,
            assigned_today_count=assigned_today_count,
        )

    @staticmethod
    def clamp_page_size(page_size: int | None) -> int:
        """Oversized limits are clamped to MAX_PAGE_SIZE, never rejected."""
        if page_size is None or page_size < ServiceConfig.get('MIN_PAGE_SIZE'):
            return ServiceConfig.get('DEFAULT_PAGE_SIZE')
        return min(page_size, ServiceConfig.get('MAX_PAGE_SIZE'))

    @staticmethod
    def _resolve_zone(tz: tzinfo | str | None) -> tzinfo:
        try:
            return resolve_timezone(tz)
        except ValueError as e:
            raise InvalidSearchParameterError('tz', tz, str(e)) from e

    @staticmethod
    def fold_category_counts(status_counts: dict[str, int]) -> CategoryCounts:
        counts = {category.value: 0 for category in Category}
        for status, count in status_counts.items():
            counts[category_of(status).value] += count
        return CategoryCounts(**counts, all=sum(status_counts.values()))

    @staticmethod
    def _status_counts(queryset: QuerySet) -> dict[str, int]:
        rows = queryset.order_by().values('workflow_status').annotate(count=Count('id'))
        return {row['workflow_status']: row['count'] for row in rows}

    @staticmethod
    def to_item(study: Study, now: datetime, tz: tzinfo) -> StudyListItem:
        return StudyListItem(
            id=study.pk,
            external_study_id=study.external_study_id,
            accession_number=study.accession_number,
            patient_ref=study.patient_ref,
            patient_name=study.patient_name,
            source_lab_ref=study.source_lab_ref,
            modalities=list(study.modalities),
            study_date=study.study_date,
            study_time=study.study_time,
            ingested_at=study.ingested_at,
            workflow_status=study.workflow_status,
            category=category_of(study.workflow_status).value,
            priority=study.priority,
            case_type=study.case_type,
            current_assignee=study.current_assignee,
            last_assigned_at=study.last_assigned_at,
            report_started_at=study.report_started_at,
            report_finalized_at=study.report_finalized_at,
            report_available=study.report_available,
            tat=TATCalculator.for_study(study, now, tz),
        )

    # ========== PREDICATE BUILDING ==========

    @classmethod
    def _build_predicate(cls, study_filter: StudyFilter, now: datetime, zone: tzinfo) -> QuerySet:
        """Every filter dimension except category and status."""
        queryset = Study.objects.all()

        scope = study_filter.owner_scope
        if scope is not None:
            if scope.doctor:
                queryset = queryset.filter(current_assignee=scope.doctor)
            if scope.lab:
                queryset = queryset.filter(source_lab_ref=scope.lab)

        text = (study_filter.free_text or '').strip()
        if text:
            queryset = queryset.filter(
                Q(accession_number__icontains=text) | Q(external_study_id__icontains=text)
            )

        modality = (study_filter.modality or '').strip().upper()
        if modality:
            queryset = queryset.filter(modalities_key__contains=f'|{modality}|')

        priority = (study_filter.priority or '').strip().upper()
        if priority:
            if priority not in Priority.values:
                raise InvalidSearchParameterError('priority', study_filter.priority, f'Must be one of {Priority.values}')
            queryset = queryset.filter(priority=priority)

        patient = (study_filter.patient_name_or_id or '').strip()
        if patient:
            queryset = queryset.filter(Q(patient_name__icontains=patient) | Q(patient_ref__icontains=patient))

        return cls._apply_date_window(queryset, study_filter, now, zone)

    @classmethod
    def _apply_date_window(
        cls,
        queryset: QuerySet,
        study_filter: StudyFilter,
        now: datetime,
        zone: tzinfo,
    ) -> QuerySet:
        preset = study_filter.date_preset
        if not preset:
            return queryset

        date_field = study_filter.date_field or 'ingestedAt'
        if preset == ASSIGNED_TODAY:
            date_field, preset = 'assignedAt', TimeWindowResolver.TODAY

        column = cls.DATE_FIELD_MAPPING.get(date_field)
        if column is None:
            raise InvalidSearchParameterError(
                'date_field', date_field, f'Must be one of {list(cls.DATE_FIELD_MAPPING)}'
            )

        try:
            window = TimeWindowResolver.resolve(
                preset, now, zone, study_filter.custom_from, study_filter.custom_to
            )
        except NoFilterError as e:
            logger.warning(str(e))
            return queryset

        if column == 'study_date':
            first, last = window.date_bounds()
            if first is not None:
                queryset = queryset.filter(study_date__gte=first)
            if last is not None:
                queryset = queryset.filter(study_date__lte=last)
            return queryset
        return cls._in_window(queryset, column, window)

    @staticmethod
    def _in_window(queryset: QuerySet, column: str, window: TimeWindow) -> QuerySet:
        if window.start is not None:
            queryset = queryset.filter(**{f'{column}__gte': window.start})
        if window.end is not None:
            lookup = 'lte' if window.end_inclusive else 'lt'
            queryset = queryset.filter(**{f'{column}__{lookup}': window.end})
        return queryset

    @staticmethod
    def _restrict(queryset: QuerySet, study_filter: StudyFilter) -> QuerySet:
        """Apply the category or exact-status restriction."""
        category = (study_filter.category or '').strip().lower()
        status = (study_filter.status or '').strip()
        if status and category and category != ALL_CATEGORIES:
            raise InvalidSearchParameterError('status', status, 'category and status are mutually exclusive')

        if status:
            return queryset.filter(workflow_status=status)
        if not category or category == ALL_CATEGORIES:
            return queryset
        if category not in Category.values:
            raise InvalidSearchParameterError(
                'category', study_filter.category, f'Must be one of {Category.values + [ALL_CATEGORIES]}'
            )
        if category == Category.UNKNOWN:
            # Unknown also covers values outside the pipeline
            mapped = [s.value for s in PIPELINE_ORDER if category_of(s) != Category.UNKNOWN]
            return queryset.exclude(workflow_status__in=mapped)
        return queryset.filter(workflow_status__in=[s.value for s in statuses_in(category)])

    # ========== DOCTOR VIEWS ==========

    @classmethod
    def assigned_today(
        cls,
        doctor_ref: str,
        now: datetime | None = None,
        tz: tzinfo | str | None = None,
    ) -> list[StudyListItem]:
        """
        Studies whose latest assignment went to ``doctor_ref`` since local midnight.

        Derived from the assignment data on each record on every call.
        """
        zone = cls._resolve_zone(tz)
        now = resolve_now(now, zone)
        window = TimeWindowResolver.resolve(TimeWindowResolver.TODAY, now, zone)
        queryset = cls._in_window(Study.objects.filter(current_assignee=doctor_ref), 'last_assigned_at', window)
        try:
            rows = list(queryset.order_by(*cls.ORDERING))
        except DatabaseError as e:
            raise DatabaseQueryError('Assigned-today lookup', e) from e
        return [cls.to_item(study, now, zone) for study in rows]

    @classmethod
    def doctor_stats(cls, doctor_ref: str) -> DoctorStats:
        """
        Counters for a doctor's dashboard, cached for DOCTOR_STATS_CACHE_TTL.

        The cache is not invalidated by mutations; counters may lag by up to
        one TTL.
        """
        cache_key = f"{ServiceConfig.get('DOCTOR_STATS_CACHE_KEY_PREFIX')}:{doctor_ref}"
        try:
            cached = cache.get(cache_key)
            if cached is not None:
                logger.debug(f"Doctor stats for {doctor_ref} served from cache")
                return DoctorStats.model_validate(cached)
        except Exception as e:
            logger.warning(f"Cache unavailable for doctor stats: {str(e)}")

        stats = cls._doctor_stats_from_db(doctor_ref)

        try:
            cache.set(cache_key, stats.model_dump(), ServiceConfig.get('DOCTOR_STATS_CACHE_TTL'))
        except Exception as e:
            logger.warning(f"Failed to cache doctor stats: {str(e)}")
        return stats

    @classmethod
    def _doctor_stats_from_db(cls, doctor_ref: str) -> DoctorStats:
        queryset = Study.objects.filter(current_assignee=doctor_ref)
        completed = [s.value for s in statuses_in(Category.COMPLETED)]
        try:
            counts = cls.fold_category_counts(cls._status_counts(queryset))
            urgent_open = (
                queryset.filter(priority__in=ServiceConfig.get('URGENT_PRIORITIES'))
                .exclude(workflow_status__in=completed)
                .count()
            )
        except DatabaseError as e:
            raise DatabaseQueryError('Doctor statistics', e) from e
        return DoctorStats(
            doctor=doctor_ref,
            total_assigned=counts.all,
            pending=counts.pending,
            inprogress=counts.inprogress,
            completed=counts.completed,
            urgent_open=urgent_open,
        )

    # ========== FILTER OPTIONS ==========

    @classmethod
    def _get_filter_options_from_db(cls) -> FilterOptions:
        """
        Distinct filter values straight from the database.

        Modalities are stored as JSON lists, so they are flattened here
        rather than with SQL DISTINCT.
        """
        try:
            modalities: set[str] = set()
            for values in Study.objects.order_by().values_list('modalities', flat=True):
                modalities.update(str(m).upper() for m in values or [] if m)

            def distinct(column: str) -> list[str]:
                values = (
                    Study.objects.exclude(**{f'{column}__isnull': True})
                    .exclude(**{column: ''})
                    .order_by(column)
                    .values_list(column, flat=True)
                    .distinct()
                )
                return list(values)

            return FilterOptions(
                modalities=sorted(modalities),
                priorities=distinct('priority'),
                source_labs=distinct('source_lab_ref'),
                workflow_statuses=distinct('workflow_status'),
            )
        except DatabaseError as e:
            raise DatabaseQueryError('Get filter options from database', e) from e

    @classmethod
    def get_filter_options(cls) -> FilterOptions:
        """
        Filter options with graceful cache degradation.

        Cache hit returns immediately; a miss or an unavailable cache falls
        back to the database, and a failed cache write still returns the
        database result.

        Raises:
            DatabaseQueryError: Only if the database queries fail
        """
        try:
            cached_options = cache.get(cls.FILTER_OPTIONS_CACHE_KEY)
            if cached_options is not None:
                logger.debug("Filter options served from cache")
                return FilterOptions.model_validate(cached_options)
        except Exception as e:
            logger.warning(f"Cache unavailable for filter options: {str(e)}")

        logger.debug("Filter options cache miss - querying database")
        filter_options = cls._get_filter_options_from_db()

        try:
            cache.set(cls.FILTER_OPTIONS_CACHE_KEY, filter_options.model_dump(), cls.FILTER_OPTIONS_CACHE_TTL)
        except Exception as e:
            logger.warning(f"Failed to cache filter options: {str(e)}")
        return filter_options

    # ========== LAB TAT SUMMARY ==========

    @classmethod
    def average_total_days(
        cls,
        study_filter: StudyFilter | None = None,
        now: datetime | None = None,
        tz: tzinfo | str | None = None,
    ) -> float | None:
        """
        Mean ``TAT.total_days`` over every study matching the filter.

        Studies without a computable total are skipped; None when no study
        has one.
        """
        study_filter = study_filter or StudyFilter()
        zone = cls._resolve_zone(tz)
        now = resolve_now(now, zone)
        queryset = cls._restrict(cls._build_predicate(study_filter, now, zone), study_filter)
        try:
            rows = list(queryset.only(
                'study_date', 'study_time', 'ingested_at', 'last_assigned_at',
                'report_started_at', 'report_finalized_at', 'priority',
            ))
        except DatabaseError as e:
            raise DatabaseQueryError('Average TAT', e) from e

        totals = [
            tat.total_days
            for tat in (TATCalculator.for_study(study, now, zone) for study in rows)
            if tat.total_days is not None
        ]
        if not totals:
            return None
        return round(sum(totals) / len(totals), 2)
