# Generated manually for study module

import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Study",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "external_study_id",
                    models.CharField(
                        help_text="Imaging-source study identifier (e.g. StudyInstanceUID)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "accession_number",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="RIS accession number",
                        max_length=100,
                        null=True,
                    ),
                ),
                (
                    "patient_ref",
                    models.CharField(
                        db_index=True,
                        help_text="Patient identifier in the patient registry",
                        max_length=100,
                    ),
                ),
                (
                    "patient_name",
                    models.CharField(
                        blank=True,
                        help_text="Patient display name, denormalized for search",
                        max_length=200,
                        null=True,
                    ),
                ),
                (
                    "source_lab_ref",
                    models.CharField(
                        db_index=True, help_text="Lab that uploaded the study", max_length=100
                    ),
                ),
                (
                    "modalities",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="Distinct modalities in the study (CT, MR, ...)",
                    ),
                ),
                (
                    "modalities_key",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        default="",
                        help_text="Derived from modalities; used for modality filtering",
                        max_length=255,
                    ),
                ),
                ("study_date", models.DateField(blank=True, db_index=True, null=True)),
                (
                    "study_time",
                    models.CharField(
                        blank=True,
                        help_text="DICOM study time (HHMMSS.FFFFFF)",
                        max_length=20,
                        null=True,
                    ),
                ),
                ("series_count", models.IntegerField(default=0)),
                ("image_count", models.IntegerField(default=0)),
                (
                    "ingested_at",
                    models.DateTimeField(
                        db_index=True,
                        default=django.utils.timezone.now,
                        help_text="When the study was uploaded into the reporting pipeline",
                    ),
                ),
                (
                    "workflow_status",
                    models.CharField(
                        choices=[
                            ("new_study_received", "New study received"),
                            ("pending_assignment", "Pending assignment"),
                            ("assigned_to_doctor", "Assigned to doctor"),
                            ("doctor_opened_report", "Doctor opened report"),
                            ("report_in_progress", "Report in progress"),
                            ("report_finalized", "Report finalized"),
                            ("report_uploaded", "Report uploaded"),
                            ("report_downloaded_radiologist", "Report downloaded (radiologist)"),
                            ("report_downloaded", "Report downloaded"),
                            ("final_report_downloaded", "Final report downloaded"),
                            ("archived", "Archived"),
                        ],
                        db_index=True,
                        default="new_study_received",
                        max_length=40,
                    ),
                ),
                (
                    "priority",
                    models.CharField(
                        choices=[
                            ("NORMAL", "Normal"),
                            ("URGENT", "Urgent"),
                            ("STAT", "Stat"),
                            ("EMERGENCY", "Emergency"),
                        ],
                        db_index=True,
                        default="NORMAL",
                        max_length=20,
                    ),
                ),
                ("case_type", models.CharField(default="routine", max_length=50)),
                ("assignments", models.JSONField(blank=True, default=list)),
                ("status_history", models.JSONField(blank=True, default=list)),
                ("report_artifacts", models.JSONField(blank=True, default=list)),
                (
                    "current_assignee",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Equals the last assignment doctor; null when never assigned",
                        max_length=100,
                        null=True,
                    ),
                ),
                (
                    "last_assigned_at",
                    models.DateTimeField(blank=True, db_index=True, null=True),
                ),
                ("version", models.PositiveIntegerField(default=1)),
                ("report_started_at", models.DateTimeField(blank=True, null=True)),
                ("report_finalized_at", models.DateTimeField(blank=True, null=True)),
                (
                    "report_content",
                    models.JSONField(
                        blank=True,
                        help_text="BlobRef of the submitted report body",
                        null=True,
                    ),
                ),
                ("reported_by", models.CharField(blank=True, max_length=100, null=True)),
            ],
            options={
                "verbose_name": "Study",
                "verbose_name_plural": "Studies",
                "db_table": "study_records",
                "ordering": ["-ingested_at"],
                "indexes": [
                    models.Index(
                        fields=["current_assignee", "workflow_status"],
                        name="idx_study_assignee_status",
                    ),
                    models.Index(
                        fields=["source_lab_ref", "-ingested_at"],
                        name="idx_study_lab_ingested",
                    ),
                    models.Index(
                        fields=["-last_assigned_at", "-ingested_at"],
                        name="idx_study_recency",
                    ),
                ],
            },
        ),
    ]
