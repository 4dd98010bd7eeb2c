"""
Study ingestion: the single entry point that creates Study records.

A study enters the pipeline in ``new_study_received`` with one status history
entry. When an ImagingSource is supplied, imaging metadata (modalities, study
date and time, series and image counts) is read from it; explicitly passed
values win over the source.
"""

import logging
from datetime import date, datetime

from django.db import DatabaseError, IntegrityError, transaction

from common.collaborators import ImagingSource
from common.config import resolve_now
from common.exceptions import DatabaseQueryError
from study.models import Study
from study.workflow import WorkflowStatus, normalize_priority

logger = logging.getLogger(__name__)

INGESTION_ACTOR = 'system'


def ingest_study(
    external_study_id: str,
    patient_ref: str,
    source_lab_ref: str,
    *,
    accession_number: str | None = None,
    patient_name: str | None = None,
    modalities: list[str] | None = None,
    study_date: date | None = None,
    study_time: str | None = None,
    priority: str | None = None,
    case_type: str = 'routine',
    imaging_source: ImagingSource | None = None,
    actor: str = INGESTION_ACTOR,
    now: datetime | None = None,
) -> Study:
    """
    Create a study in ``new_study_received``.

    Ingesting an ``external_study_id`` that already exists returns the
    existing record unchanged, so uploads can be retried safely.

    Raises:
        DatabaseQueryError: The insert failed for a reason other than a
            duplicate external id
    """
    existing = Study.objects.filter(external_study_id=external_study_id).first()
    if existing is not None:
        logger.info(f"Study {external_study_id} already ingested as {existing.pk}")
        return existing

    ingested_at = resolve_now(now)
    series_count = image_count = 0

    if imaging_source is not None:
        description = imaging_source.describe_study(external_study_id)
        modalities = modalities or description.modalities
        study_date = study_date or description.study_date
        study_time = study_time or description.study_time
        series_count = description.series_count
        image_count = description.image_count

    study = Study(
        external_study_id=external_study_id,
        accession_number=accession_number,
        patient_ref=patient_ref,
        patient_name=patient_name,
        source_lab_ref=source_lab_ref,
        modalities=sorted({m.strip().upper() for m in modalities or [] if m and m.strip()}),
        study_date=study_date,
        study_time=study_time,
        series_count=series_count,
        image_count=image_count,
        ingested_at=ingested_at,
        priority=normalize_priority(priority),
        case_type=case_type,
    )
    study.append_status(WorkflowStatus.NEW_STUDY_RECEIVED, ingested_at, actor, note='Study received')

    try:
        with transaction.atomic():
            study.save()
    except IntegrityError as e:
        # Lost an insert race on external_study_id
        winner = Study.objects.filter(external_study_id=external_study_id).first()
        if winner is None:
            raise DatabaseQueryError('Ingest study', e) from e
        return winner
    except DatabaseError as e:
        raise DatabaseQueryError('Ingest study', e) from e

    logger.info(f"Ingested study {external_study_id} from lab {source_lab_ref} as {study.pk}")
    return study
