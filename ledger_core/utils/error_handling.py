"""
Error Handling Module for LedgerCore

This module provides centralized error handling with:
- The ledger exception hierarchy
- Standardized error responses
- Error logging for FastAPI handlers
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union
from uuid import UUID
import logging

from fastapi import FastAPI, Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    DataError,
)
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("ledgercore.errors")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    UNBALANCED_ENTRY = "UNBALANCED_ENTRY"

    # Authorization Errors (401/403)
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Resource Errors (404/409)
    NOT_FOUND = "NOT_FOUND"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    JOURNAL_ENTRY_NOT_FOUND = "JOURNAL_ENTRY_NOT_FOUND"
    RECONCILIATION_NOT_FOUND = "RECONCILIATION_NOT_FOUND"
    RESOURCE_CONFLICT = "RESOURCE_CONFLICT"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"

    # Ledger State Errors
    INVALID_OPERATION = "INVALID_OPERATION"
    POSTING_NOT_ALLOWED = "POSTING_NOT_ALLOWED"
    ALREADY_POSTED = "ALREADY_POSTED"
    REFERENCED_BY_RECONCILIATION = "REFERENCED_BY_RECONCILIATION"
    UNRESOLVED_DISCREPANCY = "UNRESOLVED_DISCREPANCY"
    LEDGER_INTEGRITY_VIOLATED = "LEDGER_INTEGRITY_VIOLATED"

    # Database Errors (500)
    DATABASE_ERROR = "DATABASE_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    DATA_INTEGRITY_ERROR = "DATA_INTEGRITY_ERROR"

    # Internal Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


def _jsonable(value: Any) -> Any:
    """Make exception details safe for JSONResponse."""
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = _jsonable(self.details)
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Bad input shape or an unbalanced entry; correctable by the caller"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            field=field,
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
    ):
        if message is None:
            if resource_id:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class AccountNotFoundException(NotFoundException):
    """Account not found"""

    def __init__(self, account_id: Union[str, UUID]):
        super().__init__(
            resource_type="Account",
            resource_id=account_id,
            code=ErrorCode.ACCOUNT_NOT_FOUND,
        )


class JournalEntryNotFoundException(NotFoundException):
    """Journal entry not found"""

    def __init__(self, entry_id: Union[str, UUID]):
        super().__init__(
            resource_type="JournalEntry",
            resource_id=entry_id,
            code=ErrorCode.JOURNAL_ENTRY_NOT_FOUND,
        )


class ReconciliationNotFoundException(NotFoundException):
    """Bank reconciliation not found"""

    def __init__(self, reconciliation_id: Union[str, UUID]):
        super().__init__(
            resource_type="BankReconciliation",
            resource_id=reconciliation_id,
            code=ErrorCode.RECONCILIATION_NOT_FOUND,
        )


# ============================================================================
# Ledger State Exceptions
# ============================================================================

class InvalidOperationException(AppException):
    """Valid request shape, illegal state transition"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_OPERATION,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class PostingNotAllowedException(AppException):
    """Account-level posting restriction"""

    def __init__(self, account_id: Union[str, UUID], account_code: Optional[str], reason: str):
        label = account_code or str(account_id)
        super().__init__(
            code=ErrorCode.POSTING_NOT_ALLOWED,
            message=f"Account {label} does not accept postings: {reason}",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"account_id": str(account_id), "account_code": account_code, "reason": reason},
        )


class AlreadyPostedException(InvalidOperationException):
    """Post called on an entry that already left DRAFT"""

    def __init__(self, entry_id: Union[str, UUID], entry_number: Optional[str] = None):
        super().__init__(
            message=f"Journal entry {entry_number or entry_id} has already been posted",
            code=ErrorCode.ALREADY_POSTED,
            details={"entry_id": str(entry_id), "entry_number": entry_number},
        )


class ReferencedByReconciliationException(InvalidOperationException):
    """Ledger rows are matched in an open bank reconciliation"""

    def __init__(self, entry_id: Union[str, UUID], reconciliation_ids: list):
        super().__init__(
            message="Journal entry is matched in an open bank reconciliation and cannot be reversed",
            code=ErrorCode.REFERENCED_BY_RECONCILIATION,
            details={
                "entry_id": str(entry_id),
                "reconciliation_ids": [str(rid) for rid in reconciliation_ids],
            },
        )


class UnresolvedDiscrepancyException(InvalidOperationException):
    """Reconciliation completion blocked by a non-zero discrepancy"""

    def __init__(self, reconciliation_id: Union[str, UUID], discrepancy: Decimal):
        super().__init__(
            message=f"Reconciliation has an unresolved discrepancy of {discrepancy}",
            code=ErrorCode.UNRESOLVED_DISCREPANCY,
            details={"reconciliation_id": str(reconciliation_id), "discrepancy_amount": str(discrepancy)},
        )


class LedgerIntegrityException(AppException):
    """Ledger invariant violated; a defect, never a user error"""

    def __init__(self, message: str, organization_id: Optional[UUID] = None, details: Optional[Dict[str, Any]] = None):
        _details = details or {}
        if organization_id:
            _details["organization_id"] = str(organization_id)
        super().__init__(
            code=ErrorCode.LEDGER_INTEGRITY_VIOLATED,
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=_details,
        )


# ============================================================================
# Exception Handlers
# ============================================================================

def create_error_response(
    code: ErrorCode,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None,
    field: Optional[str] = None,
) -> JSONResponse:
    """Create a standardized error response"""
    content = {
        "detail": {
            "code": code.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    }
    if field:
        content["detail"]["field"] = field
    if details:
        content["detail"]["details"] = _jsonable(details)

    return JSONResponse(status_code=status_code, content=content)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle AppException"""
    log = logger.critical if isinstance(exc, LedgerIntegrityException) else logger.warning
    log(
        f"AppException: {exc.code.value} - {exc.message}",
        extra={
            "code": exc.code.value,
            "path": request.url.path,
            "method": request.method,
        },
    )

    return create_error_response(
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        field=exc.field,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTPException"""
    code_map = {
        400: ErrorCode.INVALID_INPUT,
        401: ErrorCode.UNAUTHORIZED,
        403: ErrorCode.FORBIDDEN,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.RESOURCE_CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
        500: ErrorCode.INTERNAL_ERROR,
    }

    error_code = code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    logger.warning(
        f"HTTPException: {exc.status_code} - {message}",
        extra={"path": request.url.path, "method": request.method},
    )

    return create_error_response(
        code=error_code,
        message=message,
        status_code=exc.status_code,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors"""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })

    logger.warning(
        f"ValidationError: {len(errors)} validation errors",
        extra={"path": request.url.path, "method": request.method},
    )

    return create_error_response(
        code=ErrorCode.VALIDATION_ERROR,
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy errors"""
    error_message = "A database error occurred"
    error_code = ErrorCode.DATABASE_ERROR
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if isinstance(exc, IntegrityError):
        error_message = "Data integrity constraint violated"
        error_code = ErrorCode.DATA_INTEGRITY_ERROR
        error_str = str(exc.orig).lower() if exc.orig else ""
        if "unique" in error_str or "duplicate" in error_str:
            error_message = "A record with this value already exists"
            error_code = ErrorCode.DUPLICATE_ENTRY
            status_code = status.HTTP_409_CONFLICT
        elif "foreign key" in error_str:
            error_message = "Referenced record does not exist"
            status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, OperationalError):
        error_message = "Database operation failed"
        error_code = ErrorCode.CONNECTION_ERROR
    elif isinstance(exc, DataError):
        error_message = "Invalid data format for database"
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    logger.error(
        f"SQLAlchemyError: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=error_code,
        message=error_message,
        status_code=status_code,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions"""
    logger.critical(
        f"UnhandledException: {type(exc).__name__} - {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )

    return create_error_response(
        code=ErrorCode.INTERNAL_ERROR,
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


__all__ = [
    "AppException",
    "ErrorCode",
    "ValidationException",
    "NotFoundException",
    "AccountNotFoundException",
    "JournalEntryNotFoundException",
    "ReconciliationNotFoundException",
    "InvalidOperationException",
    "PostingNotAllowedException",
    "AlreadyPostedException",
    "ReferencedByReconciliationException",
    "UnresolvedDiscrepancyException",
    "LedgerIntegrityException",
    "setup_exception_handlers",
    "create_error_response",
]
