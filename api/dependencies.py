"""Shared route dependencies and error translation"""

from typing import Optional
from fastapi import Header, HTTPException
import logging

from invoicebook.exceptions import (
    CodeGenerationExhausted,
    InvoiceBookError,
    InvoiceNotFoundError,
    MalformedAllocationError,
    MissingOrganizationError,
    SupplierNotFoundError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = {
    InvoiceNotFoundError: 404,
    SupplierNotFoundError: 404,
    MalformedAllocationError: 422,
    MissingOrganizationError: 400,
    CodeGenerationExhausted: 409,
}


async def get_organization_id(
    x_organization_id: Optional[str] = Header(default=None),
) -> str:
    """Organization context of the request, from the X-Organization-Id header"""
    if not x_organization_id or not x_organization_id.strip():
        raise HTTPException(status_code=400, detail="X-Organization-Id header is required")
    return x_organization_id.strip()


def to_http_exception(error: Exception) -> HTTPException:
    """Translate a service error into an HTTPException"""
    if isinstance(error, InvoiceBookError):
        for error_type, status_code in _STATUS_BY_ERROR.items():
            if isinstance(error, error_type):
                return HTTPException(status_code=status_code, detail=str(error))
    logger.error(f"Unhandled error: {error}", exc_info=error)
    return HTTPException(status_code=500, detail=f"Internal server error: {str(error)}")
