"""
API models and schemas for the Book Heaven API.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

# Stored document keys set by the server, never by the client
ID_FIELD = "_id"
OWNER_EMAIL_FIELD = "userEmail"
OWNER_NAME_FIELD = "userName"
CREATED_AT_FIELD = "createdAt"

SERVER_MANAGED_FIELDS = frozenset({ID_FIELD, OWNER_EMAIL_FIELD, OWNER_NAME_FIELD, CREATED_AT_FIELD})


class VerifiedIdentity(BaseModel):
    """Identity of the caller, decoded from a verified bearer token."""
    owner_email: str = Field(..., description="Email from the verified token")
    display_name: str = Field(..., description="Name claim, or the email when absent")

    model_config = {"frozen": True}

    @classmethod
    def from_claims(cls, claims: dict) -> "VerifiedIdentity":
        """
        Build an identity from a decoded token claim.

        Raises:
            ValueError: If the claim carries no email
        """
        email = claims.get("email")
        if not email:
            raise ValueError("Token claim has no email")
        return cls(owner_email=email, display_name=claims.get("name") or email)


class BookCreatedResponse(BaseModel):
    """Response for a newly created book."""
    message: str = Field(..., description="Outcome message")
    bookId: str = Field(..., description="Identifier assigned by the database")


class MessageResponse(BaseModel):
    """Plain outcome message."""
    message: str = Field(..., description="Outcome message")


class ErrorResponse(BaseModel):
    """Error response model."""
    message: Optional[str] = Field(None, description="Client-facing error message")
    error: Optional[str] = Field(None, description="Underlying failure for server errors")
    detail: Optional[Any] = Field(None, description="Additional error details")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")
