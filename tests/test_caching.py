"""
Test cases for caching behavior.

Tests cache hit/miss scenarios and graceful degradation for filter options
and doctor statistics.

CRITICAL: Cache failures should NOT break the service - graceful degradation required.
"""

from unittest.mock import patch

from django.core.cache import cache
from django.test import TestCase

from common.config import ServiceConfig
from study.assignment import AssignmentEngine
from study.schemas import DoctorStats, FilterOptions
from study.services import StudyQueryEngine
from tests.fixtures.test_data import MockDataGenerator, StudyFactory


class FilterOptionsCacheTests(TestCase):
    """Test cache hit and miss scenarios for filter options."""

    @classmethod
    def setUpTestData(cls):
        MockDataGenerator.studies_for_query_testing()

    def setUp(self):
        cache.clear()

    def tearDown(self):
        cache.clear()

    def test_filter_options_values(self):
        # Act
        options = StudyQueryEngine.get_filter_options()

        # Assert
        self.assertEqual(options.modalities, ['CR', 'CT', 'MR'])
        self.assertEqual(options.priorities, ['NORMAL', 'URGENT'])
        self.assertEqual(options.source_labs, ['LAB-1', 'LAB-2'])
        self.assertEqual(options.workflow_statuses, sorted(options.workflow_statuses))
        self.assertIn('archived', options.workflow_statuses)

    def test_cache_miss_on_first_call(self):
        # Arrange - Cache is empty
        self.assertIsNone(cache.get(ServiceConfig.FILTER_OPTIONS_CACHE_KEY))

        # Act
        with patch.object(StudyQueryEngine, '_get_filter_options_from_db') as mock_db:
            mock_db.return_value = FilterOptions(
                modalities=['CT'], priorities=['NORMAL'], source_labs=['LAB-1'], workflow_statuses=[]
            )
            result = StudyQueryEngine.get_filter_options()

        # Assert - Database should be called on cache miss
        mock_db.assert_called_once()
        self.assertEqual(result.modalities, ['CT'])

    def test_cache_hit_on_second_call(self):
        # Arrange - Prime the cache
        first_result = StudyQueryEngine.get_filter_options()
        self.assertIsNotNone(cache.get(ServiceConfig.FILTER_OPTIONS_CACHE_KEY))

        # Act - Second call should hit cache
        with patch.object(StudyQueryEngine, '_get_filter_options_from_db') as mock_db:
            second_result = StudyQueryEngine.get_filter_options()

        # Assert - Database should NOT be called on cache hit
        mock_db.assert_not_called()
        self.assertEqual(first_result, second_result)

    def test_cache_get_failure_falls_back_to_database(self):
        with patch('study.services.cache.get', side_effect=Exception('Redis unavailable')):
            with self.assertLogs('study.services', level='WARNING'):
                options = StudyQueryEngine.get_filter_options()

        self.assertEqual(options.source_labs, ['LAB-1', 'LAB-2'])

    def test_cache_set_failure_still_returns_result(self):
        with patch('study.services.cache.set', side_effect=Exception('Redis unavailable')):
            options = StudyQueryEngine.get_filter_options()

        self.assertEqual(options.priorities, ['NORMAL', 'URGENT'])


class DoctorStatsCacheTests(TestCase):

    @classmethod
    def setUpTestData(cls):
        MockDataGenerator.studies_for_query_testing()

    def setUp(self):
        cache.clear()

    def tearDown(self):
        cache.clear()

    def test_doctor_stats_values(self):
        # Act
        alice = StudyQueryEngine.doctor_stats('dr.alice')
        bob = StudyQueryEngine.doctor_stats('dr.bob')

        # Assert
        self.assertEqual(
            alice,
            DoctorStats(doctor='dr.alice', total_assigned=2, pending=1, inprogress=1, completed=0, urgent_open=1),
        )
        self.assertEqual((bob.total_assigned, bob.completed, bob.urgent_open), (2, 2, 0))

    def test_doctor_stats_are_cached_per_doctor(self):
        StudyQueryEngine.doctor_stats('dr.alice')

        with patch.object(StudyQueryEngine, '_doctor_stats_from_db') as mock_db:
            cached = StudyQueryEngine.doctor_stats('dr.alice')

        mock_db.assert_not_called()
        self.assertEqual(cached.total_assigned, 2)
        self.assertIsNotNone(cache.get(f"{ServiceConfig.DOCTOR_STATS_CACHE_KEY_PREFIX}:dr.alice"))

    def test_doctor_stats_are_eventually_consistent(self):
        # Arrange - prime, then assign one more study
        StudyQueryEngine.doctor_stats('dr.alice')
        study = StudyFactory.create_study('EXTRA001')
        AssignmentEngine().assign(study.pk, 'dr.alice', 'NORMAL', 'admin')

        # Act / Assert - stale until the entry expires
        self.assertEqual(StudyQueryEngine.doctor_stats('dr.alice').total_assigned, 2)
        cache.clear()
        self.assertEqual(StudyQueryEngine.doctor_stats('dr.alice').total_assigned, 3)
