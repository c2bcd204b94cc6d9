"""
ctxrepo Logging Configuration

Provides:
- JSON structured logging for production
- Colorized console output for development
- Timing decorator for heavy operations
- Audit trail for archive, search and index operations

Usage:
    from core.logging_config import setup_logging, get_logger

    # At startup
    setup_logging(level='INFO')

    # In modules
    logger = get_logger(__name__)
    logger.info('Archived session', extra={'session_id': 'abc'})
"""

import json
import logging
import os
import sys
import time
import traceback
from datetime import datetime, timezone
from functools import wraps

# Attributes every LogRecord has; anything else came in through ``extra``
_RESERVED_ATTRS = frozenset((
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
    'levelno', 'lineno', 'module', 'msecs', 'pathname', 'process',
    'processName', 'relativeCreated', 'stack_info', 'exc_info', 'exc_text',
    'thread', 'threadName', 'message', 'taskName',
))


# =============================================================================
# Custom Formatters
# =============================================================================

class JSONFormatter(logging.Formatter):
    """JSON structured log formatter for production."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith('_'):
                continue
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = repr(value)
            log_entry[key] = value

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': traceback.format_exception(*record.exc_info)
            }

        return json.dumps(log_entry)


class ColoredFormatter(logging.Formatter):
    """Colorized console formatter for development."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        reset = self.RESET
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')

        parts = [
            f'{color}[{timestamp}]{reset}',
            f'{color}{record.levelname:8}{reset}',
            f'{record.name}:',
            record.getMessage()
        ]

        if hasattr(record, 'request_id'):
            parts.insert(2, f'[{str(record.request_id)[:8]}]')
        if hasattr(record, 'duration_ms'):
            parts.append(f'({record.duration_ms}ms)')

        message = ' '.join(parts)
        if record.exc_info:
            message += '\n' + ''.join(traceback.format_exception(*record.exc_info))
        return message


# =============================================================================
# Logger Setup
# =============================================================================

def setup_logging(level='INFO', json_format=None):
    """
    Configure the root logger.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (default: True when CTXREPO_ENV is production)
    """
    if json_format is None:
        json_format = os.getenv('CTXREPO_ENV', 'development') == 'production'

    log_level = getattr(logging, str(level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(JSONFormatter() if json_format else ColoredFormatter())
    root_logger.addHandler(console_handler)

    root_logger.debug('Logging configured', extra={
        'format': 'json' if json_format else 'colored',
        'log_level': logging.getLevelName(log_level)
    })
    return root_logger


def get_logger(name):
    """Get a logger with the given name."""
    return logging.getLogger(name)


# =============================================================================
# Performance Logging Decorator
# =============================================================================

def log_performance(logger_name=None):
    """
    Decorator to log function duration at DEBUG, and failures at ERROR.

    Usage:
        @log_performance('ctxrepo.extraction')
        def extract(self, entries):
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger(logger_name or func.__module__)
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f'{func.__name__} failed: {e}',
                    extra={
                        'function': func.__name__,
                        'duration_ms': int((time.time() - start_time) * 1000),
                        'error_type': type(e).__name__,
                    }
                )
                raise

            logger.debug(
                f'{func.__name__} completed',
                extra={
                    'function': func.__name__,
                    'duration_ms': int((time.time() - start_time) * 1000),
                }
            )
            return result

        return wrapper
    return decorator


# =============================================================================
# Audit Logging
# =============================================================================

class AuditLogger:
    """
    Audit logger for tracking archive operations.

    Usage:
        audit = AuditLogger()
        audit.log_archive(session_id='abc', project_path='/repo', problems=3)
    """

    def __init__(self):
        self.logger = get_logger('ctxrepo.audit')

    def log_archive(self, session_id, project_path, archive_path=None, **counts):
        """Log a stored extraction."""
        self.logger.info(
            'Context archived',
            extra={
                'audit_type': 'archive',
                'session_id': session_id,
                'project_path': project_path,
                'archive_path': archive_path,
                **counts
            }
        )

    def log_search(self, query, results_count, mode='relevance'):
        """Log a search operation."""
        self.logger.info(
            'Search performed',
            extra={
                'audit_type': 'search',
                'query': query[:100] if query else None,
                'results_count': results_count,
                'search_mode': mode,
            }
        )

    def log_index_rebuild(self, index_path, sessions, duration_seconds=None):
        """Log a full index rebuild."""
        self.logger.info(
            'Search index rebuilt',
            extra={
                'audit_type': 'index_rebuild',
                'index_path': str(index_path),
                'sessions': sessions,
                'duration_seconds': duration_seconds,
            }
        )
