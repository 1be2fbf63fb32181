"""
API models and schemas for the FastAPI application.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UserRole(str, Enum):
    """User role enumeration."""
    ADMIN = "admin"
    USER = "user"


# Stored records

class UserRecord(BaseModel):
    """User as held by the credential store."""
    id: str = Field(..., description="Unique user identifier")
    email: str = Field(..., description="Unique email address")
    password_hash: str = Field(..., description="bcrypt hash of the password")
    role: UserRole = Field(UserRole.USER, description="User role")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class BookRecord(BaseModel):
    """Book as held by the book store."""
    id: str = Field(..., description="Unique book identifier")
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Book author")
    owner: str = Field(..., description="Identifier of the owning user")


# Requests
#
# Fields are optional at the schema level so that missing values are reported
# with the same message and status as the services use.

class CredentialsRequest(BaseModel):
    """Body for register, create-admin and login."""
    email: Optional[str] = Field(None, description="User email")
    password: Optional[str] = Field(None, description="Plaintext password")


class BookCreateRequest(BaseModel):
    """Body for creating a book. Any client supplied owner is ignored."""
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = Field(None, description="Book title")
    author: Optional[str] = Field(None, description="Book author")


class BookUpdateRequest(BaseModel):
    """Body for PATCH and PUT on a book."""
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = Field(None, description="Book title")
    author: Optional[str] = Field(None, description="Book author")

    def supplied_fields(self) -> dict:
        """Fields present in the request body, including explicit nulls."""
        return self.model_dump(exclude_unset=True)


# Responses

class UserResponse(BaseModel):
    """User response model. Never carries the password or its hash."""
    id: str = Field(..., description="Unique user identifier")
    email: str = Field(..., description="User email")
    role: UserRole = Field(..., description="User role")

    @classmethod
    def from_record(cls, user: UserRecord) -> "UserResponse":
        return cls(id=user.id, email=user.email, role=user.role)


class TokenResponse(BaseModel):
    """Token issued by login and refresh."""
    email: str = Field(..., description="Email the token was issued for")
    token: str = Field(..., description="Bearer token")


class BookResponse(BaseModel):
    """Book response model for API."""
    id: str = Field(..., description="Unique book identifier")
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Book author")
    owner: str = Field(..., description="Identifier of the owning user")

    @classmethod
    def from_record(cls, book: BookRecord) -> "BookResponse":
        return cls(**book.model_dump())


class MessageResponse(BaseModel):
    """Plain message response; also the error envelope."""
    message: str = Field(..., description="Human readable message")


class ErrorResponse(MessageResponse):
    """Error response model."""


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")


class UserListResponse(BaseModel):
    """Users visible to an admin."""
    users: List[UserResponse] = Field(..., description="List of users")
    total: int = Field(..., description="Total number of users")
