"""
Sensitive Data Filter for ctxrepo

Redacts credentials and personal information from extracted contexts
before they are archived.

Detected categories:
- API keys, bearer tokens, provider keys (AWS, GitHub, OpenAI, Anthropic)
- Database connection strings
- Private keys and SSH public keys
- Passwords and client secrets
- Emails, phone numbers, SSNs, card numbers, IP addresses
- JWTs and ``*_KEY=`` environment assignments

Redaction keeps enough shape for debugging: emails keep their domain, IPs
keep the first two octets, and ``label: value`` pairs keep the label.

Usage:
    from core.security_filter import SecurityFilter

    security = SecurityFilter()
    clean = security.filter_text("password=hunter2hunter2")   # "password=[REDACTED]"
    clean_context = security.filter_object(context)
    print(security.get_stats()["redactedCount"])
"""

import logging
import re
import threading
from typing import Any, Dict, Optional, Pattern, Union

from .models import Context

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"


# =============================================================================
# Pattern Definitions
# =============================================================================

class SecurityPatterns:
    """Compiled regex patterns, applied in declaration order."""

    # API keys and tokens
    API_KEY = re.compile(
        r'\b(api[_-]?key|apikey|api_secret)\s*[:=]\s*[\'"]?([a-zA-Z0-9_\-]{20,})[\'"]?',
        re.IGNORECASE
    )
    BEARER_TOKEN = re.compile(
        r'\b(bearer|authorization)\s*[:=]\s*[\'"]?(Bearer\s+)?([a-zA-Z0-9_\-\.]{20,})[\'"]?',
        re.IGNORECASE
    )
    AWS_KEY = re.compile(
        r'\b(aws[_-]?access[_-]?key[_-]?id|aws[_-]?secret[_-]?access[_-]?key)\s*[:=]\s*[\'"]?([A-Z0-9]{16,})[\'"]?',
        re.IGNORECASE
    )
    GITHUB_TOKEN = re.compile(
        r'\b(github[_-]?token|gh[_-]?token)\s*[:=]\s*[\'"]?(ghp_[a-zA-Z0-9]{36,}|gho_[a-zA-Z0-9]{36,})[\'"]?',
        re.IGNORECASE
    )
    OPENAI_KEY = re.compile(
        r'\b(openai[_-]?api[_-]?key)\s*[:=]\s*[\'"]?(sk-[a-zA-Z0-9]{48,})[\'"]?',
        re.IGNORECASE
    )
    ANTHROPIC_KEY = re.compile(
        r'\b(anthropic[_-]?api[_-]?key)\s*[:=]\s*[\'"]?(sk-ant-[a-zA-Z0-9]{50,})[\'"]?',
        re.IGNORECASE
    )

    # Database credentials
    DB_CONNECTION = re.compile(
        r'\b(mongodb|postgresql|postgres|mysql|redis)://[^:\s]+:[^@\s]+@\S+',
        re.IGNORECASE
    )
    CONNECTION_STRING = re.compile(
        r'\b(Server|Data Source|User ID|Password|Initial Catalog)=[^;]+;',
        re.IGNORECASE
    )

    # Private keys
    PRIVATE_KEY = re.compile(
        r'-----BEGIN\s+(RSA\s+)?PRIVATE KEY-----[\s\S]+?-----END\s+(RSA\s+)?PRIVATE KEY-----',
        re.IGNORECASE
    )
    SSH_KEY = re.compile(r'ssh-(rsa|ed25519|ecdsa)\s+[A-Za-z0-9+/]+=*', re.IGNORECASE)

    # Passwords
    PASSWORD = re.compile(
        r'\b(password|passwd|pwd)\s*[:=]\s*[\'"]?([^\s\'"]{4,})[\'"]?',
        re.IGNORECASE
    )
    SECRET = re.compile(
        r'\b(secret|client_secret)\s*[:=]\s*[\'"]?([a-zA-Z0-9_\-]{16,})[\'"]?',
        re.IGNORECASE
    )

    # Personal information
    EMAIL = re.compile(r'\b[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}\b')
    PHONE = re.compile(r'\b(\+?1?\s?)?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}\b')
    SSN = re.compile(r'\b\d{3}-\d{2}-\d{4}\b')
    CREDIT_CARD = re.compile(r'\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b')
    IP_ADDRESS = re.compile(r'\b(?:\d{1,3}\.){3}\d{1,3}\b')

    JWT = re.compile(r'\beyJ[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+')
    ENV_SECRET = re.compile(r'\b(export\s+)?[A-Z_]{2,}_KEY\s*=\s*[\'"]?[^\s\'"]+[\'"]?')


DEFAULT_PATTERNS: Dict[str, Pattern] = {
    'api_key': SecurityPatterns.API_KEY,
    'bearer_token': SecurityPatterns.BEARER_TOKEN,
    'aws_key': SecurityPatterns.AWS_KEY,
    'github_token': SecurityPatterns.GITHUB_TOKEN,
    'openai_key': SecurityPatterns.OPENAI_KEY,
    'anthropic_key': SecurityPatterns.ANTHROPIC_KEY,
    'db_connection': SecurityPatterns.DB_CONNECTION,
    'connection_string': SecurityPatterns.CONNECTION_STRING,
    'private_key': SecurityPatterns.PRIVATE_KEY,
    'ssh_key': SecurityPatterns.SSH_KEY,
    'password': SecurityPatterns.PASSWORD,
    'secret': SecurityPatterns.SECRET,
    'email': SecurityPatterns.EMAIL,
    'phone': SecurityPatterns.PHONE,
    'ssn': SecurityPatterns.SSN,
    'credit_card': SecurityPatterns.CREDIT_CARD,
    'ip_address': SecurityPatterns.IP_ADDRESS,
    'jwt': SecurityPatterns.JWT,
    'env_secret': SecurityPatterns.ENV_SECRET,
}

# Identifier and timestamp fields are never rewritten
PRESERVED_KEYS = frozenset((
    'id', 'sessionId', 'timestamp', 'firstSeen', 'lastSeen',
    'extractedAt', 'extractionVersion', 'type', 'impact',
))


# =============================================================================
# Filter
# =============================================================================

class SecurityFilter:
    """
    Pattern-based redaction of sensitive values.

    Counters are guarded by a lock so one filter can be shared between
    threads.
    """

    def __init__(self, custom_patterns: Optional[Dict[str, str]] = None):
        self.patterns: Dict[str, Pattern] = dict(DEFAULT_PATTERNS)
        self._redacted_count = 0
        self._redacted_by_type: Dict[str, int] = {}
        self._lock = threading.Lock()

        for name, pattern in (custom_patterns or {}).items():
            self.add_custom_pattern(name, pattern)

    # -------------------------------------------------------------------------
    # Text
    # -------------------------------------------------------------------------

    def filter_text(self, text: str) -> str:
        """Redact every sensitive value in ``text``."""
        if not text or not isinstance(text, str):
            return text

        filtered = text
        for name, pattern in self.patterns.items():
            filtered, count = pattern.subn(self._replacer(name), filtered)
            if count:
                with self._lock:
                    self._redacted_count += count
                    self._redacted_by_type[name] = self._redacted_by_type.get(name, 0) + count
        return filtered

    @staticmethod
    def _replacer(name: str):
        if name == 'email':
            return lambda m: f"***@{m.group(0).split('@', 1)[1]}"
        if name == 'ip_address':
            def mask_ip(m):
                parts = m.group(0).split('.')
                return f"{parts[0]}.{parts[1]}.***.***"
            return mask_ip

        def redact(m):
            # Keep the label of "label: value" / "label=value" pairs
            value = m.group(0)
            separators = [i for i in (value.find(':'), value.find('=')) if i >= 0]
            if separators:
                cut = min(separators)
                return f"{value[:cut + 1]}{REDACTED}"
            return REDACTED
        return redact

    def contains_sensitive_data(self, text: str) -> bool:
        if not text or not isinstance(text, str):
            return False
        return any(pattern.search(text) for pattern in self.patterns.values())

    # -------------------------------------------------------------------------
    # Structures
    # -------------------------------------------------------------------------

    def filter_object(self, obj: Union[Context, Dict[str, Any], list, str, Any]):
        """
        Recursively redact strings inside dicts and lists.

        A ``Context`` yields a new sanitized ``Context``; the original is left
        untouched.
        """
        if isinstance(obj, Context):
            return Context.from_dict(self._filter_value(obj.to_dict()))
        return self._filter_value(obj)

    def _filter_value(self, value: Any, key: Optional[str] = None) -> Any:
        if key in PRESERVED_KEYS:
            return value
        if isinstance(value, str):
            return self.filter_text(value)
        if isinstance(value, dict):
            return {k: self._filter_value(v, k) for k, v in value.items()}
        if isinstance(value, list):
            return [self._filter_value(item) for item in value]
        return value

    # -------------------------------------------------------------------------
    # Pattern management
    # -------------------------------------------------------------------------

    def add_custom_pattern(self, name: str, pattern: Union[str, Pattern]) -> bool:
        """Register an extra pattern. Invalid regexes are logged and skipped."""
        if isinstance(pattern, str):
            try:
                pattern = re.compile(pattern)
            except re.error as e:
                logger.warning(f"Invalid custom pattern '{name}': {e}")
                return False
        self.patterns[name] = pattern
        return True

    def remove_pattern(self, name: str) -> bool:
        return self.patterns.pop(name, None) is not None

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    @property
    def redacted_count(self) -> int:
        return self._redacted_count

    def get_stats(self) -> Dict[str, Any]:
        """Get redaction statistics."""
        with self._lock:
            return {
                'patternsCount': len(self.patterns),
                'redactedCount': self._redacted_count,
                'redactedByType': dict(self._redacted_by_type),
                'patterns': list(self.patterns.keys()),
            }

    def reset_stats(self):
        with self._lock:
            self._redacted_count = 0
            self._redacted_by_type.clear()


def redact_text(text: str) -> str:
    """Quick redaction with the default patterns."""
    return SecurityFilter().filter_text(text)
