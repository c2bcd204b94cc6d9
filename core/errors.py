"""
ctxrepo Exceptions

Every error carries an HTTP-style status code and an error type so the API
layer can serialize it without translation.

Usage:
    from core.errors import InputError, StorageError

    if not entries:
        raise InputError("No transcript entries provided")

    try:
        ...
    except OSError as e:
        raise StorageError(f"Failed to write {path}", path=str(path)) from e
"""


class CtxRepoError(Exception):
    """Base exception for ctxrepo errors."""

    status_code = 500
    error_type = 'internal_error'
    message = 'An unexpected error occurred'

    def __init__(self, message=None, **kwargs):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.details = kwargs

    def to_dict(self):
        return {
            'error': self.error_type,
            'message': self.message,
            'details': self.details
        }


class InputError(CtxRepoError):
    """Extraction called without any transcript entries."""
    status_code = 400
    error_type = 'input_error'
    message = 'No transcript entries provided'


class ValidationError(CtxRepoError):
    """Invalid input data."""
    status_code = 400
    error_type = 'validation_error'
    message = 'Invalid input'


class NotFoundError(CtxRepoError):
    """Resource not found."""
    status_code = 404
    error_type = 'not_found'
    message = 'Resource not found'


class ConfigurationError(CtxRepoError):
    """Configuration issue."""
    status_code = 500
    error_type = 'configuration_error'
    message = 'Configuration error'


class StorageError(CtxRepoError):
    """Reading or writing the archive failed."""
    status_code = 500
    error_type = 'storage_error'
    message = 'Storage operation failed'


class IndexCorruptionError(CtxRepoError):
    """A persisted search index could not be parsed."""
    status_code = 500
    error_type = 'index_corruption'
    message = 'Search index is corrupted'
