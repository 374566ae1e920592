"""Exception hierarchy for defib."""


class DefibError(Exception):
    """Base class for fatal defib errors."""


class ConfigurationError(DefibError):
    """Configuration is missing, malformed or unsafe."""


class InvalidPatternError(ConfigurationError):
    """A process-matching pattern is too broad to be used safely."""


class InvalidPathError(ConfigurationError):
    """A filesystem path could be used for command injection."""


class StateError(DefibError):
    """The watchdog state file could not be persisted."""


class InvalidPidError(DefibError):
    """A process ID given on the command line is not a number."""
