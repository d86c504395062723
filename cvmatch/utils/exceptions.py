"""
Custom Exception Classes for the CV matching engine
"""
import asyncio
import functools
import inspect
import time
from enum import Enum
from random import uniform
from typing import Dict, Any

from fastapi import HTTPException
from pymongo.errors import PyMongoError


class CVMatcherError(Exception):
    """Base exception for the matching engine"""

    def __init__(
        self,
        message: str,
        error_code: str = None,
        details: Dict[str, Any] = None,
        cause: Exception = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/response"""
        result = {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }
        if self.cause:
            result["cause"] = str(self.cause)
        return result


class ValidationError(CVMatcherError):
    """Raised when data validation fails"""

    def __init__(self, message: str, field: str = None, value: Any = None, **kwargs):
        details = kwargs.pop('details', {})
        if field:
            details['field'] = field
        if value is not None:
            details['invalid_value'] = str(value)
        super().__init__(message, error_code="VALIDATION_ERROR", details=details, **kwargs)


class ConfigurationError(CVMatcherError):
    """Raised when configuration is invalid or missing"""

    def __init__(self, message: str, config_key: str = None, config_value: Any = None, **kwargs):
        details = kwargs.pop('details', {})
        if config_key:
            details['config_key'] = config_key
        if config_value is not None:
            details['config_value'] = str(config_value)
        super().__init__(message, error_code="CONFIGURATION_ERROR", details=details, **kwargs)


class DatabaseError(CVMatcherError):
    """Raised when database operations fail"""

    def __init__(self, message: str, operation: str = None, collection: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if operation:
            details['operation'] = operation
        if collection:
            details['collection'] = collection
        super().__init__(message, error_code="DATABASE_ERROR", details=details, **kwargs)


class NotFoundError(CVMatcherError):
    """Raised when a document, posting or application does not exist"""

    def __init__(self, resource: str, resource_id: str, **kwargs):
        details = kwargs.pop('details', {})
        details.update({"resource": resource, "resource_id": resource_id})
        super().__init__(f"{resource} {resource_id} not found", error_code="NOT_FOUND", details=details, **kwargs)


class EmptyContentError(CVMatcherError):
    """Raised when a document has no extracted text to score"""

    def __init__(self, document_id: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if document_id:
            details['document_id'] = document_id
        message = f"Document {document_id} has no content to analyze" if document_id else "Document text is empty"
        super().__init__(message, error_code="EMPTY_CONTENT", details=details, **kwargs)


class OracleErrorKind(str, Enum):
    TRANSPORT = "transport"
    MALFORMED_RESPONSE = "malformed_response"


class OracleError(CVMatcherError):
    """Raised when the scoring oracle cannot produce a scorecard"""

    kind: OracleErrorKind = None

    def __init__(self, message: str, model_name: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if model_name:
            details['model_name'] = model_name
        details['kind'] = self.kind.value if self.kind else None
        super().__init__(message, error_code="ORACLE_ERROR", details=details, **kwargs)


class OracleTransportError(OracleError):
    """Network, timeout or authentication failure talking to the oracle"""

    kind = OracleErrorKind.TRANSPORT

    def __init__(self, message: str, status_code: int = None, **kwargs):
        details = kwargs.pop('details', {})
        if status_code:
            details['status_code'] = status_code
        super().__init__(message, details=details, **kwargs)


class OracleMalformedResponseError(OracleError):
    """The oracle answered but its reply is not a valid scorecard"""

    kind = OracleErrorKind.MALFORMED_RESPONSE

    def __init__(self, message: str, raw_response: str = None, **kwargs):
        details = kwargs.pop('details', {})
        if raw_response is not None:
            details['raw_response'] = raw_response[:500]
        super().__init__(message, details=details, **kwargs)


class ConflictOnInsert(CVMatcherError):
    """Duplicate (document, posting) insert; resolved inside the scorecard store"""

    def __init__(self, document_id: str, posting_id: str, **kwargs):
        details = {"document_id": document_id, "posting_id": posting_id}
        super().__init__(
            f"Scorecard for document {document_id} and posting {posting_id} already exists",
            error_code="CONFLICT_ON_INSERT", details=details, **kwargs
        )


def map_to_http_exception(exc: CVMatcherError) -> HTTPException:
    """Map engine exceptions to HTTP exceptions for the embedding request layer"""

    status_code_mapping = {
        ValidationError: 400,
        NotFoundError: 404,
        EmptyContentError: 422,
        ConfigurationError: 500,
        DatabaseError: 500,
        OracleTransportError: 502,
        OracleMalformedResponseError: 502,
        OracleError: 502,
    }

    status_code = 500
    for exc_type in type(exc).__mro__:
        if exc_type in status_code_mapping:
            status_code = status_code_mapping[exc_type]
            break

    detail = {
        "error": exc.to_dict(),
        "message": exc.message
    }

    return HTTPException(status_code=status_code, detail=detail)


class ExceptionContext:
    """Context manager that turns driver failures into DatabaseError with context"""

    def __init__(self, operation: str, logger=None, collection: str = None, **context):
        self.operation = operation
        self.logger = logger
        self.collection = collection
        self.context = context

    def __enter__(self):
        if self.logger:
            self.logger.debug(f"Starting operation: {self.operation}", extra=self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            if self.logger:
                self.logger.debug(f"Operation completed: {self.operation}", extra=self.context)
            return False

        if isinstance(exc_val, CVMatcherError):
            return False

        if isinstance(exc_val, PyMongoError):
            if self.logger:
                self.logger.error(
                    f"Operation failed: {self.operation} - {exc_val}",
                    extra={**self.context, "exception_type": exc_type.__name__}
                )
            raise DatabaseError(
                f"Database error in {self.operation}: {str(exc_val)}",
                operation=self.operation,
                collection=self.collection,
                details=dict(self.context),
                cause=exc_val
            ) from exc_val

        return False


def retry_with_logging(
    max_attempts: int = 3,
    backoff_factor: float = 1.0,
    exceptions: tuple = (Exception,),
    logger=None
):
    """Decorator to retry operations with exponential backoff and logging"""

    def decorator(func):
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if logger:
                        logger.warning(
                            f"Attempt {attempt + 1}/{max_attempts} failed for {func.__name__}: {str(e)}"
                        )
                    if attempt == max_attempts - 1:
                        if logger:
                            logger.error(f"All {max_attempts} attempts failed for {func.__name__}")
                        raise
                    await asyncio.sleep(backoff_factor * (2 ** attempt) + uniform(0, backoff_factor))

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if logger:
                        logger.warning(
                            f"Attempt {attempt + 1}/{max_attempts} failed for {func.__name__}: {str(e)}"
                        )
                    if attempt == max_attempts - 1:
                        if logger:
                            logger.error(f"All {max_attempts} attempts failed for {func.__name__}")
                        raise
                    time.sleep(backoff_factor * (2 ** attempt) + uniform(0, backoff_factor))

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
