"""
Error Handler - Exception taxonomy and classification system.

Every failure raised inside the engine is one of the exceptions below. At the
edge of a request the ErrorClassifier turns it into a user-safe ErrorDetail so
callers never see raw technical errors.

Recovery policy per error kind:
1. Validation errors (empty request, unsupported role combination) - block
2. Normalization errors - block when the input is required, skip otherwise
3. Classification errors - fall back to heuristic routing
4. Reference resolution failures - continue with an empty reference
5. Backend errors - one fallback where defined, otherwise the step fails
"""

from enum import Enum
from typing import Optional, Dict
from dataclasses import dataclass
import asyncio
import logging

from intent_engine.models import ErrorDetail


logger = logging.getLogger(__name__)


# ============================================
# EXCEPTIONS
# ============================================

class EngineError(Exception):
    """Base class for every engine failure"""


class ValidationError(EngineError):
    """The request itself is malformed"""


class UnsupportedCombinationError(ValidationError):
    """Populated roles and free text match none of the composition workflows"""

    def __init__(self, has_product: bool, has_design: bool, has_color: bool, has_free_text: bool):
        self.inputs = {
            "product": has_product,
            "design": has_design,
            "color": has_color,
            "free_text": has_free_text,
        }
        present = [name for name, value in self.inputs.items() if value]
        missing = [name for name, value in self.inputs.items() if not value]
        super().__init__(
            f"Unsupported input combination: provided [{', '.join(present) or 'nothing'}], "
            f"missing [{', '.join(missing)}]"
        )


class NormalizationError(EngineError):
    """A media input could not be turned into a stored artifact"""

    def __init__(self, message: str, field_name: str = "", required: bool = True):
        self.field_name = field_name
        self.required = required
        super().__init__(f"{field_name}: {message}" if field_name else message)


class ClassificationError(EngineError):
    """The semantic classifier produced nothing usable"""


class ReferenceResolutionFailure(EngineError):
    """A reference pointer could not be followed"""


class BackendError(EngineError):
    """A generation backend call failed"""

    def __init__(self, message: str, operation: Optional[str] = None, status_code: Optional[int] = None):
        self.operation = operation
        self.status_code = status_code
        super().__init__(message)


# ============================================
# CLASSIFICATION
# ============================================

class ErrorType(str, Enum):
    """Enumeration of all error types"""
    INVALID_REQUEST = "invalid_request"
    UNSUPPORTED_COMBINATION = "unsupported_combination"
    NORMALIZATION_FAILURE = "normalization_failure"
    CLASSIFICATION_FAILURE = "classification_failure"
    REFERENCE_FAILURE = "reference_failure"
    BACKEND_FAILURE = "backend_failure"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


class ErrorSeverity(str, Enum):
    """Error severity levels"""
    LOW = "low"  # Can auto-recover or skip
    MEDIUM = "medium"  # Should ask user
    HIGH = "high"  # Cannot continue


@dataclass
class ErrorClassification:
    """Classification result for an error"""
    error_type: ErrorType
    severity: ErrorSeverity
    user_message: str
    system_message: str
    action: str  # 'skip', 'fallback', 'block'
    can_recover: bool = False

    def to_detail(self) -> ErrorDetail:
        return ErrorDetail(
            error_type=self.error_type.value,
            severity=self.severity.value,
            user_message=self.user_message,
            system_message=self.system_message,
            action=self.action,
        )


class ErrorClassifier:
    """Maps engine exceptions to user-facing classifications"""

    USER_MESSAGES: Dict[ErrorType, str] = {
        ErrorType.INVALID_REQUEST: "Please send a message or at least one image.",
        ErrorType.UNSUPPORTED_COMBINATION: "I need a bit more to work with. Add a description or another image.",
        ErrorType.NORMALIZATION_FAILURE: "One of your images couldn't be read. Try a JPG, PNG or WebP under the size limit.",
        ErrorType.CLASSIFICATION_FAILURE: "I couldn't work out what you'd like to do. Could you rephrase?",
        ErrorType.REFERENCE_FAILURE: "I couldn't find the earlier result you're referring to.",
        ErrorType.BACKEND_FAILURE: "The generation service failed. Please try again.",
        ErrorType.TIMEOUT: "That took too long. Please try again.",
        ErrorType.INTERNAL: "Something went wrong. Please try again.",
    }

    @staticmethod
    def classify(exc: BaseException) -> ErrorClassification:
        """Classify any exception raised while handling a request."""
        if isinstance(exc, UnsupportedCombinationError):
            error_type, severity, action = ErrorType.UNSUPPORTED_COMBINATION, ErrorSeverity.MEDIUM, "block"
        elif isinstance(exc, ValidationError):
            error_type, severity, action = ErrorType.INVALID_REQUEST, ErrorSeverity.MEDIUM, "block"
        elif isinstance(exc, NormalizationError):
            severity = ErrorSeverity.HIGH if exc.required else ErrorSeverity.LOW
            error_type, action = ErrorType.NORMALIZATION_FAILURE, "block" if exc.required else "skip"
        elif isinstance(exc, ClassificationError):
            error_type, severity, action = ErrorType.CLASSIFICATION_FAILURE, ErrorSeverity.LOW, "fallback"
        elif isinstance(exc, ReferenceResolutionFailure):
            error_type, severity, action = ErrorType.REFERENCE_FAILURE, ErrorSeverity.LOW, "fallback"
        elif isinstance(exc, BackendError):
            error_type, severity, action = ErrorType.BACKEND_FAILURE, ErrorSeverity.HIGH, "block"
        elif isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
            error_type, severity, action = ErrorType.TIMEOUT, ErrorSeverity.HIGH, "block"
        else:
            error_type, severity, action = ErrorType.INTERNAL, ErrorSeverity.HIGH, "block"

        classification = ErrorClassification(
            error_type=error_type,
            severity=severity,
            user_message=ErrorClassifier.USER_MESSAGES[error_type],
            system_message=f"{type(exc).__name__}: {exc}",
            action=action,
            can_recover=action != "block",
        )
        logger.info(f"[ERROR CLASSIFIED] {error_type.value} ({action}): {exc}")
        return classification


# Retry policy constants
MAX_RETRIES = 1  # Never infinite loops
