"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Message payload variants (one model per message type)
- Response models for API responses
"""

import re
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, EmailStr, Field, field_validator

# Named emoji such as :fire: or :thumbs_up:
EMOJI_SHORTCODE_RE = re.compile(r"^:[a-z0-9_+-]+:$")


# =============================================================================
# Auth Request Models
# =============================================================================

class RegisterRequest(BaseModel):
    """
    Pydantic model for validating registration requests.

    Validates:
    - username: 3..64 characters after trimming
    - email: syntactically valid address
    - password: at least 6 characters
    """
    username: str = Field(..., min_length=3, max_length=64, description="Unique username")
    email: EmailStr = Field(..., description="Unique email address")
    password: str = Field(..., min_length=6, max_length=128, description="Clear-text password")

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, v):
        return v.strip() if isinstance(v, str) else v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"username": "alice", "email": "a@x.com", "password": "secret1"}
            ]
        }
    }


class LoginRequest(BaseModel):
    """Credentials for POST /login."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, v):
        return v.strip() if isinstance(v, str) else v


# =============================================================================
# Message Payload Variants
# =============================================================================

class TextPayload(BaseModel):
    type: Literal["text"]
    text: str = Field(..., max_length=4096)

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("text must not be empty")
        return v


class EmojiPayload(BaseModel):
    """
    A single emoji: either the glyph itself (ZWJ sequences, skin tones and
    flags included) or a :shortcode:. Words and sentences are rejected.
    """
    type: Literal["emoji"]
    emoji: str = Field(..., max_length=32)

    @field_validator("emoji")
    @classmethod
    def single_emoji(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("emoji must not be empty")
        if EMOJI_SHORTCODE_RE.match(v):
            return v
        if len(v) > 16 or any(c.isspace() for c in v) or v.isascii():
            raise ValueError("emoji must be a single emoji or :shortcode:")
        return v


class StickerPayload(BaseModel):
    type: Literal["sticker"]
    sticker: str = Field(..., max_length=64)

    @field_validator("sticker")
    @classmethod
    def sticker_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("sticker must not be empty")
        return v


class _AttachmentPayload(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    file_path: str = Field(..., min_length=1, max_length=255)
    file_size: int = Field(..., ge=0)


class ImagePayload(_AttachmentPayload):
    type: Literal["image"]


class FilePayload(_AttachmentPayload):
    type: Literal["file"]


# Payloads a client may send to POST /messages
OutgoingPayload = Annotated[
    Union[TextPayload, EmojiPayload, StickerPayload],
    Field(discriminator="type"),
]

# Every payload the message repository can store
MessagePayload = Annotated[
    Union[TextPayload, EmojiPayload, StickerPayload, ImagePayload, FilePayload],
    Field(discriminator="type"),
]


# =============================================================================
# Pydantic Response Models
# =============================================================================

class FieldError(BaseModel):
    field: str
    message: str


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")
    errors: Optional[list[FieldError]] = Field(None, description="Field-level validation errors")


class RegisterResponse(BaseModel):
    message: str = Field(default="User registered successfully")


class UserSummary(BaseModel):
    id: int
    username: str


class LoginResponse(BaseModel):
    message: str = Field(default="Login successful")
    token: str = Field(..., description="Bearer token, valid for 24 hours")
    user: UserSummary


class MessageResponse(BaseModel):
    """
    A stored message as returned to clients.

    Only the fields of the message's type are set; the route excludes the
    unset ones from the JSON body. The sender's username is joined in from
    the users table.
    """
    id: int
    type: str
    text: Optional[str] = None
    emoji: Optional[str] = None
    sticker: Optional[str] = None
    file_name: Optional[str] = Field(None, alias="fileName")
    file_url: Optional[str] = Field(None, alias="fileUrl")
    file_size: Optional[int] = Field(None, alias="fileSize")
    sender: UserSummary
    created_at: str = Field(..., alias="createdAt")

    model_config = {"populate_by_name": True}


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    database: Optional[str] = Field(None, description="Database status")
    storage: Optional[str] = Field(None, description="Attachment storage status")
