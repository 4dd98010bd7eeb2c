"""
Test cases for the exception hierarchy and error-code mapping.
"""

from django.test import SimpleTestCase

from common.exceptions import (
    AlreadyAssignedError,
    ConcurrentModificationError,
    DatabaseQueryError,
    DoctorNotFoundError,
    InvalidSearchParameterError,
    InvalidTransitionError,
    NoFilterError,
    NotAssignedError,
    NotFoundError,
    StorageError,
    StorageTimeoutError,
    StudyNotFoundError,
    StudyServiceError,
    get_error_code,
    to_error_dict,
)


class HierarchyTests(SimpleTestCase):

    def test_not_found_kinds(self):
        self.assertIsInstance(StudyNotFoundError(1), NotFoundError)
        self.assertIsInstance(DoctorNotFoundError('dr.x'), NotFoundError)
        self.assertEqual(str(StudyNotFoundError('STU001')), 'Study not found: STU001')

    def test_storage_timeout_is_storage_error(self):
        exc = StorageTimeoutError('put', 10.0)

        self.assertIsInstance(exc, StorageError)
        self.assertEqual(str(exc), 'Blob storage put exceeded 10.0s')

    def test_everything_is_a_service_error(self):
        for exc in (
            InvalidTransitionError('a', 'b'),
            AlreadyAssignedError(1, 'dr.a'),
            NotAssignedError(1, 'dr.a'),
            NoFilterError('x'),
            ConcurrentModificationError(1, 3),
            DatabaseQueryError('q', RuntimeError('x')),
        ):
            self.assertIsInstance(exc, StudyServiceError)

    def test_transition_message_includes_reason(self):
        exc = InvalidTransitionError('archived', 'assigned_to_doctor', 'archived studies cannot be assigned')

        self.assertIn('archived -> assigned_to_doctor', str(exc))
        self.assertIn('cannot be assigned', str(exc))


class ErrorCodeTests(SimpleTestCase):

    def test_codes(self):
        self.assertEqual(get_error_code(StudyNotFoundError(1)), 'STUDY_NOT_FOUND')
        self.assertEqual(get_error_code(DoctorNotFoundError('dr.x')), 'DOCTOR_NOT_FOUND')
        self.assertEqual(get_error_code(AlreadyAssignedError(1, 'dr.a')), 'ALREADY_ASSIGNED')
        self.assertEqual(get_error_code(NotAssignedError(1, 'dr.a')), 'NOT_ASSIGNED')
        self.assertEqual(get_error_code(NoFilterError('x')), 'NO_DATE_FILTER')
        self.assertEqual(get_error_code(StorageTimeoutError('put', 1)), 'STORAGE_TIMEOUT')
        self.assertEqual(get_error_code(ConcurrentModificationError(1, 3)), 'CONCURRENT_MODIFICATION')

    def test_unmapped_falls_back(self):
        self.assertEqual(get_error_code(StudyServiceError('x')), 'STUDY_SERVICE_ERROR')

    def test_error_dict_with_details(self):
        # Act
        payload = to_error_dict(NotAssignedError(7, 'dr.b', 'dr.a'), request_id='req-1')

        # Assert
        self.assertEqual(payload['error']['code'], 'NOT_ASSIGNED')
        self.assertEqual(
            payload['error']['details'],
            {'study_id': '7', 'doctor_id': 'dr.b', 'current_assignee': 'dr.a'},
        )
        self.assertEqual(payload['error']['request_id'], 'req-1')

    def test_error_dict_for_timeout(self):
        payload = to_error_dict(StorageTimeoutError('put', 2.5))

        self.assertEqual(payload['error']['details'], {'operation': 'put', 'timeout_seconds': 2.5})
        self.assertNotIn('request_id', payload['error'])

    def test_error_dict_without_details(self):
        payload = to_error_dict(DatabaseQueryError('q', RuntimeError('down')))

        self.assertNotIn('details', payload['error'])
        self.assertIn('down', payload['error']['message'])
