"""
Error handling for podgraph.

Provides the exception kinds raised by the resolver and the curation and
configuration loaders, the structured ``Issue`` attached to analyzer results,
and a central error handler that logs with credential masking and notifies
registered callbacks.
"""

import logging
import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence


class PodgraphError(ValueError):
    """Base class for all podgraph errors."""


class MalformedEntryError(PodgraphError):
    """A lock-file entry cannot be decomposed into a name and children."""

    def __init__(self, entry: Any, reason: str):
        self.entry = entry
        self.reason = reason
        super().__init__(f"Malformed lock-file entry {entry!r}: {reason}")


class MissingDependencyVersionError(PodgraphError):
    """A referenced pod has no version and no authoritative entry to complete it."""

    def __init__(self, namespace: str, name: str):
        self.namespace = namespace
        self.name = name
        display = f"{namespace}/{name}" if namespace else name
        super().__init__(
            f"Cannot resolve the version of '{display}': no entry in the PODS table."
        )


class CyclicDependencyError(PodgraphError):
    """Recursive expansion re-entered an identity already on the current path."""

    def __init__(self, path: Sequence[str], reason: str = "Cyclic dependency detected"):
        self.path = list(path)
        super().__init__(f"{reason}: {' -> '.join(self.path)}")


class AmbiguousCurationScopeError(PodgraphError):
    """A curation or configuration record violates its scope invariants."""


class Severity(Enum):
    """Severity of an issue attached to an analyzer result."""

    HINT = "HINT"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass(frozen=True)
class Issue:
    """A problem found while analyzing a project that did not abort the analysis."""

    source: str
    message: str
    severity: Severity = Severity.ERROR

    def to_dict(self) -> Dict[str, str]:
        return {
            "source": self.source,
            "message": self.message,
            "severity": self.severity.value,
        }


class ErrorLevel(Enum):
    """Log level of a handled problem."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorCategory(Enum):
    """Which stage of the analysis a problem belongs to."""

    PARSING = "PARSING"
    RESOLUTION = "RESOLUTION"
    CURATION = "CURATION"
    CONFIGURATION = "CONFIGURATION"
    VALIDATION = "VALIDATION"
    FILESYSTEM = "FILESYSTEM"


@dataclass
class ErrorContext:
    """What went wrong, where in podgraph, and which input file it came from."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[Exception] = None
    source_file: Optional[str] = None

    @property
    def location(self) -> str:
        return f"{self.module}.{self.function}"


_MASKS = [
    # user:password@ or token@ in VCS and artifact URLs
    (re.compile(r"([a-z][a-z0-9+.\-]*://)[^@\s/]+@", re.IGNORECASE), r"\1[REDACTED]@"),
    (re.compile(r'token["\s]*[:=]["\s]*([a-zA-Z0-9_\-+=/.]{8,})', re.IGNORECASE), 'token="[REDACTED]"'),
    (re.compile(r'password["\s]*[:=]["\s]*([^\s"\']+)', re.IGNORECASE), 'password="[REDACTED]"'),
]

_MASKED_KEYS = ("token", "password", "secret", "credential", "auth")


class SecureLogger:
    """Logger that masks credentials before anything is written."""

    def __init__(self, name: str, level: int = logging.WARNING, mask: bool = True):
        """
        Args:
            name: Logger name
            level: Logging level
            mask: Whether URL credentials and tokens are masked
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.mask = mask

        if not self.logger.handlers:
            stream = logging.StreamHandler(sys.stderr)
            stream.setFormatter(logging.Formatter("%(levelname)s [%(name)s] %(message)s"))
            self.logger.addHandler(stream)

    def sanitize_message(self, message: str) -> str:
        """Remove credentials from a message."""
        if not self.mask:
            return message
        for pattern, replacement in _MASKS:
            message = pattern.sub(replacement, message)
        return message

    def _masked_details(self, details: Dict[str, Any]) -> Dict[str, Any]:
        masked = {}
        for key, value in details.items():
            if self.mask and any(part in key.lower() for part in _MASKED_KEYS):
                masked[key] = "[REDACTED]"
            elif isinstance(value, str):
                masked[key] = self.sanitize_message(value)
            else:
                masked[key] = value
        return masked

    def log_error_context(self, context: ErrorContext) -> None:
        parts = [f"{context.category.value} in {context.location}: {self.sanitize_message(context.message)}"]
        if context.source_file:
            parts.append(f"file={context.source_file}")
        if context.exception is not None:
            parts.append(f"exception={type(context.exception).__name__}")
        if context.details:
            parts.append(f"details={self._masked_details(context.details)}")

        self.logger.log(getattr(logging, context.level.value), " | ".join(parts))


ErrorCallback = Callable[[ErrorContext], None]


class ErrorHandler:
    """
    Central sink for recoverable problems.

    Every problem is logged through a ``SecureLogger``, counted under
    ``"<CATEGORY>_<LEVEL>"`` and handed to the callbacks registered for its
    category and to the global callbacks.
    """

    def __init__(
        self,
        logger_name: str = "podgraph",
        log_level: int = logging.WARNING,
        enable_callbacks: bool = True,
        mask_sensitive_data: bool = True,
    ):
        self.logger = SecureLogger(logger_name, log_level, mask_sensitive_data)
        self.enable_callbacks = enable_callbacks
        self.category_callbacks: Dict[ErrorCategory, List[ErrorCallback]] = {}
        self.global_callbacks: List[ErrorCallback] = []
        self.error_stats: Dict[str, int] = {}

    def register_callback(self, callback: ErrorCallback, category: Optional[ErrorCategory] = None) -> None:
        """Call ``callback`` for problems of ``category``, or for all problems if it is None."""
        if not self.enable_callbacks:
            return
        if category is None:
            self.global_callbacks.append(callback)
        else:
            self.category_callbacks.setdefault(category, []).append(callback)

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
        source_file: Optional[str] = None,
    ) -> ErrorContext:
        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            source_file=source_file,
        )

        key = f"{category.value}_{level.value}"
        self.error_stats[key] = self.error_stats.get(key, 0) + 1

        self.logger.log_error_context(context)

        if self.enable_callbacks:
            for callback in self.category_callbacks.get(category, []) + self.global_callbacks:
                try:
                    callback(context)
                except Exception as callback_error:
                    self.logger.logger.error(f"Error callback failed for {context.location}: {callback_error}")

        return context

    def debug(self, category: ErrorCategory, message: str, module: str, function: str, **kwargs) -> ErrorContext:
        return self.handle_error(ErrorLevel.DEBUG, category, message, module, function, **kwargs)

    def warning(self, category: ErrorCategory, message: str, module: str, function: str, **kwargs) -> ErrorContext:
        return self.handle_error(ErrorLevel.WARNING, category, message, module, function, **kwargs)

    def error(self, category: ErrorCategory, message: str, module: str, function: str, **kwargs) -> ErrorContext:
        return self.handle_error(ErrorLevel.ERROR, category, message, module, function, **kwargs)

    def get_error_stats(self) -> Dict[str, int]:
        return dict(self.error_stats)

    def reset_stats(self) -> None:
        self.error_stats.clear()


_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Return the process-wide error handler, creating a default one on first use."""
    global _error_handler
    if _error_handler is None:
        _error_handler = ErrorHandler()
    return _error_handler


def setup_error_handling(
    log_level: int = logging.WARNING,
    enable_callbacks: bool = True,
    logger_name: str = "podgraph",
    mask_sensitive_data: bool = True,
) -> ErrorHandler:
    """Replace the process-wide error handler, e.g. after the CLI read its configuration."""
    global _error_handler
    _error_handler = ErrorHandler(logger_name, log_level, enable_callbacks, mask_sensitive_data)
    return _error_handler


_ISSUE_LEVELS = {
    Severity.HINT: ErrorLevel.INFO,
    Severity.WARNING: ErrorLevel.WARNING,
    Severity.ERROR: ErrorLevel.ERROR,
}


def create_and_log_issue(
    source: str,
    message: str,
    severity: Severity = Severity.ERROR,
    category: ErrorCategory = ErrorCategory.RESOLUTION,
    exception: Optional[Exception] = None,
) -> Issue:
    """Create an ``Issue`` and route it through the error handler."""
    get_error_handler().handle_error(
        _ISSUE_LEVELS[severity], category, message, source, "issue", exception=exception
    )
    return Issue(source=source, message=message, severity=severity)


def log_parsing_error(
    message: str,
    module: str,
    function: str,
    file_path: Optional[str] = None,
    exception: Optional[Exception] = None,
    category: ErrorCategory = ErrorCategory.PARSING,
) -> None:
    """
    Log a problem with an input file that podgraph recovers from.

    Args:
        message: What is wrong with the input
        module: Module name
        function: Function name
        file_path: Input file; only its name is logged
        exception: Underlying exception, if any
        category: Category to count the problem under
    """
    get_error_handler().warning(
        category,
        message,
        module,
        function,
        exception=exception,
        source_file=Path(file_path).name if file_path is not None else None,
    )
