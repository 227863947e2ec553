# marketplace/core/exceptions.py
"""
Domain-specific exceptions for the marketplace ledger.

These exceptions carry business-focused messages that an API layer can
convert directly into HTTP responses.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class InvalidEarningTransitionException(BusinessRuleException):
    """Raised when an earning is moved between two statuses that are not connected."""

    def __init__(self, earning_id: str, current_status: str, new_status: str):
        super().__init__(
            message=f"Earning {earning_id} cannot move from {current_status} to {new_status}",
            code="INVALID_EARNING_TRANSITION",
            details={
                "earning_id": earning_id,
                "current_status": current_status,
                "new_status": new_status,
            },
        )


class InvalidBookingTransitionException(BusinessRuleException):
    """Raised when a booking status change is not allowed."""

    def __init__(self, booking_id: str, current_status: str, new_status: str):
        super().__init__(
            message=f"Booking {booking_id} cannot move from {current_status} to {new_status}",
            code="INVALID_BOOKING_TRANSITION",
            details={
                "booking_id": booking_id,
                "current_status": current_status,
                "new_status": new_status,
            },
        )


class InsufficientEarningsException(BusinessRuleException):
    """Raised when available earnings cannot cover a payout amount."""

    def __init__(self, provider_id: str, requested: str, remaining: str):
        super().__init__(
            message="Insufficient earnings to reserve",
            code="INSUFFICIENT_EARNINGS",
            details={
                "provider_id": provider_id,
                "requested_amount": requested,
                "unreserved_amount": remaining,
            },
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access operations fail, such as database connection
    issues, query failures, or constraint violations.
    """
