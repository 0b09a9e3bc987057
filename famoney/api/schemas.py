from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from decimal import Decimal
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from famoney.logging import get_correlation_id
from famoney.service.permissions import Role

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(f"unknown error code: {value}")
        return value


def _request_id() -> str:
    return get_correlation_id() or str(uuid4())


class Envelope(BaseModel):
    """Every response body: ``data`` on success, ``error`` on failure."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)


def _normalize_unicode(value: str) -> str:
    """NFKC-normalize and strip zero-width characters."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    cleaned = "".join(c for c in value if c not in zero_width)
    return unicodedata.normalize("NFKC", cleaned)


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
_HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")


def _validate_email(value: str) -> str:
    if not isinstance(value, str):
        raise ValueError("email must be a string")
    normalized = _normalize_unicode(value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _validate_password(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("password is required")
    if len(value) > 128:
        raise ValueError("password must be at most 128 characters")
    return value


def _strip_required(value: str, field_name: str) -> str:
    stripped = value.strip() if isinstance(value, str) else value
    if not stripped:
        raise ValueError(f"{field_name} is required")
    return stripped


# auth

class SignupRequest(BaseModel):
    email: str
    password: str
    name: str = Field(..., max_length=50)

    @field_validator("email")
    @classmethod
    def _validate_signup_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _validate_signup_password(cls, value: str) -> str:
        return _validate_password(value)

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        return _strip_required(value, "name")


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)


class TokenRefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, max_length=4096)


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    profile_image: Optional[str] = None
    created_at: datetime


class AuthResponse(BaseModel):
    user: UserResponse
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int


# users

class UpdateUserRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    profile_image: Optional[str] = Field(default=None, max_length=500)


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def _validate_new_password(cls, value: str) -> str:
        return _validate_password(value)


# ledgers

class CreateLedgerRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    currency: Optional[str] = Field(default=None, min_length=1, max_length=10)

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        return _strip_required(value, "name")


class UpdateLedgerRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _strip_required(value, "name")


class LedgerResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    currency: str
    created_by: str
    role: Role
    member_count: int
    created_at: datetime
    updated_at: datetime


# members

class InviteMemberRequest(BaseModel):
    email: str
    role: Role = Role.MEMBER

    @field_validator("email")
    @classmethod
    def _validate_invite_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("role", mode="before")
    @classmethod
    def _upper_role(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class UpdateMemberRoleRequest(BaseModel):
    role: Role

    @field_validator("role", mode="before")
    @classmethod
    def _upper_role(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class MemberResponse(BaseModel):
    id: str
    user_id: str
    email: str
    name: str
    profile_image: Optional[str] = None
    role: Role
    joined_at: datetime
    invited_by: Optional[str] = None


# categories

class CreateCategoryRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=50)

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        return _strip_required(value, "name")

    @field_validator("color")
    @classmethod
    def _validate_color(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not _HEX_COLOR.match(value):
            raise ValueError("color must be a hex color such as #FF5733")
        return value


class CategoryResponse(BaseModel):
    id: str
    name: str
    color: str
    icon: Optional[str] = None
    is_default: bool
    ledger_id: Optional[str] = None


# expenses

_AMOUNT = dict(ge=Decimal("0.01"), max_digits=15, decimal_places=2)


class CreateExpenseRequest(BaseModel):
    amount: Decimal = Field(..., **_AMOUNT)
    description: str = Field(..., min_length=1, max_length=255)
    expense_date: date
    category_id: Optional[str] = None
    payment_method: Optional[str] = Field(default=None, max_length=50)

    @field_validator("description")
    @classmethod
    def _validate_description(cls, value: str) -> str:
        return _strip_required(value, "description")


class UpdateExpenseRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    amount: Optional[Decimal] = Field(default=None, **_AMOUNT)
    description: Optional[str] = Field(default=None, min_length=1, max_length=255)
    expense_date: Optional[date] = None
    category_id: Optional[str] = None
    payment_method: Optional[str] = Field(default=None, max_length=50)

    @model_validator(mode="after")
    def _reject_empty(self):
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided")
        return self


class ExpenseCreatorResponse(BaseModel):
    id: str
    name: str
    profile_image: Optional[str] = None


class ExpenseResponse(BaseModel):
    id: str
    ledger_id: str
    amount: Decimal
    description: str
    expense_date: date
    category_id: Optional[str] = None
    category: Optional[CategoryResponse] = None
    payment_method: Optional[str] = None
    created_by: str
    created_by_user: ExpenseCreatorResponse
    created_at: datetime
    updated_at: datetime


class PageResponse(BaseModel):
    items: List[Any]
    page: int
    size: int
    total: int
    total_pages: int
    first: bool
    last: bool
