"""
Safety validation for configuration values

Kill patterns and filesystem paths end up in process matching and in
external commands. Both are checked before any monitor runs.
"""

import re
from typing import Iterable

from defib.errors import InvalidPathError, InvalidPatternError

MIN_PATTERN_LENGTH = 3

# Tokens that would match nearly every process on a host
DANGEROUS_PATTERNS = frozenset([".", "..", "/", "\\", " ", "node", "python", "bash", "sh"])

SHELL_METACHARACTERS = re.compile(r"[;&|`$(){}\[\]<>!#*?~]")


def validate_patterns(patterns: Iterable[str], context: str) -> None:
    """Reject empty, short or overly broad match-and-kill patterns"""
    for pattern in patterns:
        if not pattern or len(pattern) < MIN_PATTERN_LENGTH:
            raise InvalidPatternError(
                f'Invalid {context} pattern: "{pattern}" - patterns must be at least '
                f'{MIN_PATTERN_LENGTH} characters'
            )
        if pattern.lower() in DANGEROUS_PATTERNS:
            raise InvalidPatternError(
                f'Dangerous {context} pattern: "{pattern}" - too broad, could match critical processes'
            )


def validate_path(path: str, context: str) -> None:
    """Reject paths with shell metacharacters or that are not absolute"""
    if SHELL_METACHARACTERS.search(path):
        raise InvalidPathError(f'Invalid {context}: "{path}" - contains shell metacharacters')
    if not path.startswith("/"):
        raise InvalidPathError(f'Invalid {context}: "{path}" - must be an absolute path')
