"""
Custom exception hierarchy for the study workflow services.

This module defines domain-specific exceptions for clear error semantics
and better error handling throughout the application.

Exception Hierarchy:
    StudyServiceError (base)
    ├── NotFoundError
    │   ├── StudyNotFoundError
    │   └── DoctorNotFoundError
    ├── InvalidTransitionError
    ├── AlreadyAssignedError
    ├── NotAssignedError
    ├── NoFilterError
    ├── InvalidSearchParameterError
    ├── StorageError
    │   └── StorageTimeoutError
    ├── ConcurrentModificationError
    └── DatabaseQueryError

Business-rule violations (InvalidTransitionError, AlreadyAssignedError,
NotAssignedError) are raised straight to the caller and never retried.
ConcurrentModificationError is only raised after the optimistic retry budget
is exhausted.

Usage Examples:
    >>> raise StudyNotFoundError('STU001')
    StudyNotFoundError: Study not found: STU001

    >>> raise InvalidTransitionError('report_finalized', 'report_in_progress')
    InvalidTransitionError: Invalid status transition: report_finalized -> report_in_progress
"""

from typing import Any, Dict, Optional


class StudyServiceError(Exception):
    """Base exception for all study workflow operations.

    All custom exceptions inherit from this base class, allowing for easy
    exception catching at service boundaries.

    Example:
        try:
            study = AssignmentEngine().assign('STU001', 'dr.a', 'NORMAL', 'admin')
        except StudyServiceError as e:
            logger.error(f"Service error: {e}")
            return to_error_dict(e)
    """
    pass


class NotFoundError(StudyServiceError):
    """Raised when a referenced study or doctor does not exist."""

    def __init__(self, kind: str, identifier: Any):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class StudyNotFoundError(NotFoundError):
    """Raised when a study with the given id cannot be found.

    Attributes:
        study_id: The study id that was not found
    """

    def __init__(self, study_id: Any):
        self.study_id = study_id
        super().__init__('Study', study_id)


class DoctorNotFoundError(NotFoundError):
    """Raised when the actor directory does not know the doctor."""

    def __init__(self, doctor_id: str):
        self.doctor_id = doctor_id
        super().__init__('Doctor', doctor_id)


class InvalidTransitionError(StudyServiceError):
    """Raised when a workflow status rule is violated.

    Attributes:
        from_status: Status the study was in
        to_status: Status the operation tried to reach
        reason: Optional human-readable explanation
    """

    def __init__(self, from_status: str, to_status: str, reason: Optional[str] = None):
        self.from_status = str(from_status)
        self.to_status = str(to_status)
        self.reason = reason
        message = f"Invalid status transition: {self.from_status} -> {self.to_status}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class AlreadyAssignedError(StudyServiceError):
    """Raised when a study is re-assigned to the doctor who already holds it.

    Guards against duplicate assignment history entries.
    """

    def __init__(self, study_id: Any, doctor_id: str):
        self.study_id = study_id
        self.doctor_id = doctor_id
        super().__init__(f"Study {study_id} is already assigned to {doctor_id}")


class NotAssignedError(StudyServiceError):
    """Raised when an actor works on a study not currently assigned to them.

    Attributes:
        study_id: Study being acted on
        doctor_id: Doctor who attempted the action
        current_assignee: The doctor actually holding the study (may be None)
    """

    def __init__(self, study_id: Any, doctor_id: str, current_assignee: Optional[str] = None):
        self.study_id = study_id
        self.doctor_id = doctor_id
        self.current_assignee = current_assignee
        super().__init__(f"Study {study_id} is not assigned to {doctor_id}")


class NoFilterError(StudyServiceError):
    """Raised for an unrecognized date preset.

    Non-fatal: callers log it and continue without a date restriction.
    """

    def __init__(self, preset: Any):
        self.preset = preset
        super().__init__(f"Unknown date preset: {preset!r}; no date filter applied")


class InvalidSearchParameterError(StudyServiceError):
    """Raised when search parameters are invalid or malformed.

    Attributes:
        param: The parameter name that is invalid
        value: The invalid value that was provided
        reason: Explanation of why the value is invalid

    Example:
        >>> raise InvalidSearchParameterError(
        ...     'custom_from', '2024-13-01', 'Must be YYYY-MM-DD format'
        ... )
    """

    def __init__(self, param: str, value: Any, reason: str):
        self.param = param
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {param}={value}: {reason}")


class StorageError(StudyServiceError):
    """Raised when the BlobStore collaborator fails.

    Wraps the driver exception so it never surfaces raw to callers.
    """

    def __init__(
        self,
        operation: str,
        original_error: Optional[Exception] = None,
        message: Optional[str] = None,
    ):
        self.operation = operation
        self.original_error = original_error
        message = message or f"Blob storage failed during {operation}"
        if original_error is not None:
            message += f". Error: {type(original_error).__name__}: {original_error}"
        super().__init__(message)


class StorageTimeoutError(StorageError):
    """Raised when a BlobStore call exceeds its time bound."""

    def __init__(self, operation: str, timeout: float):
        self.timeout = timeout
        super().__init__(operation, message=f"Blob storage {operation} exceeded {timeout}s")


class ConcurrentModificationError(StudyServiceError):
    """Raised when optimistic-concurrency retries are exhausted.

    Attributes:
        study_id: Study that kept changing underneath the writer
        attempts: Number of read-modify-write cycles attempted
    """

    def __init__(self, study_id: Any, attempts: int):
        self.study_id = study_id
        self.attempts = attempts
        super().__init__(
            f"Study {study_id} was modified concurrently; gave up after {attempts} attempts"
        )


class DatabaseQueryError(StudyServiceError):
    """Raised when database queries fail due to connection or execution errors.

    This wraps database-level exceptions to provide consistent error handling
    at the service layer.

    Attributes:
        query_description: Human-readable description of the query
        original_error: The original database exception

    Example:
        >>> try:
        ...     Study.objects.filter(pk=pk, version=v).update(**changes)
        ... except DatabaseError as e:
        ...     raise DatabaseQueryError('Commit study mutation', e) from e
    """

    def __init__(self, query_description: str, original_error: Exception):
        self.query_description = query_description
        self.original_error = original_error
        super().__init__(
            f"Database query failed: {query_description}. "
            f"Error: {type(original_error).__name__}: {str(original_error)}"
        )


# Error code mapping for transport layers
ERROR_CODES = {
    StudyNotFoundError: 'STUDY_NOT_FOUND',
    DoctorNotFoundError: 'DOCTOR_NOT_FOUND',
    NotFoundError: 'NOT_FOUND',
    InvalidTransitionError: 'INVALID_TRANSITION',
    AlreadyAssignedError: 'ALREADY_ASSIGNED',
    NotAssignedError: 'NOT_ASSIGNED',
    NoFilterError: 'NO_DATE_FILTER',
    InvalidSearchParameterError: 'INVALID_SEARCH_PARAMETER',
    StorageTimeoutError: 'STORAGE_TIMEOUT',
    StorageError: 'STORAGE_ERROR',
    ConcurrentModificationError: 'CONCURRENT_MODIFICATION',
    DatabaseQueryError: 'DATABASE_QUERY_ERROR',
}


def get_error_code(exception: StudyServiceError) -> str:
    """Get standardized error code for an exception.

    Args:
        exception: The exception to get code for

    Returns:
        String error code suitable for API responses

    Example:
        >>> get_error_code(NotAssignedError('STU001', 'dr.b', 'dr.a'))
        'NOT_ASSIGNED'
    """
    return ERROR_CODES.get(type(exception), 'STUDY_SERVICE_ERROR')


def to_error_dict(exception: StudyServiceError, request_id: Optional[str] = None) -> Dict:
    """Convert exception to standardized error dictionary for API responses.

    Args:
        exception: The exception to convert
        request_id: Optional request identifier for tracking

    Returns:
        Dictionary with error details in API-friendly format

    Example:
        >>> exc = AlreadyAssignedError('STU001', 'dr.a')
        >>> to_error_dict(exc, 'req-123')
        {
            'error': {
                'code': 'ALREADY_ASSIGNED',
                'message': 'Study STU001 is already assigned to dr.a',
                'details': {'study_id': 'STU001', 'doctor_id': 'dr.a'},
                'request_id': 'req-123'
            }
        }
    """
    error_dict = {
        'error': {
            'code': get_error_code(exception),
            'message': str(exception),
        }
    }

    # Add exception-specific details
    details: Optional[Dict[str, Any]] = None
    if isinstance(exception, InvalidTransitionError):
        details = {
            'from_status': exception.from_status,
            'to_status': exception.to_status,
        }
    elif isinstance(exception, AlreadyAssignedError):
        details = {
            'study_id': str(exception.study_id),
            'doctor_id': exception.doctor_id,
        }
    elif isinstance(exception, NotAssignedError):
        details = {
            'study_id': str(exception.study_id),
            'doctor_id': exception.doctor_id,
            'current_assignee': exception.current_assignee,
        }
    elif isinstance(exception, NotFoundError):
        details = {
            'kind': exception.kind,
            'id': str(exception.identifier),
        }
    elif isinstance(exception, InvalidSearchParameterError):
        details = {
            'param': exception.param,
            'value': str(exception.value),
            'reason': exception.reason,
        }
    elif isinstance(exception, StorageTimeoutError):
        details = {
            'operation': exception.operation,
            'timeout_seconds': exception.timeout,
        }
    elif isinstance(exception, ConcurrentModificationError):
        details = {
            'study_id': str(exception.study_id),
            'attempts': exception.attempts,
        }

    if details is not None:
        error_dict['error']['details'] = details

    if request_id:
        error_dict['error']['request_id'] = request_id

    return error_dict
