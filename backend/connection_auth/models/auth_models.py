import re
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, EmailStr, Field, ValidationInfo, field_validator

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{3,50}$")
PHONE_PATTERN = re.compile(r"^\+[1-9]\d{6,14}$")


def normalize_email(value: str) -> str:
    """Addresses are stored and matched lower-cased; EmailStr has already validated them"""
    return value.strip().lower()


class UserRegistrationRequest(BaseModel):
    """Request model for user registration"""
    username: str = Field(..., min_length=3, max_length=50, description="Unique username")
    email: EmailStr = Field(..., description="Email address, must be verified before login")
    password: str = Field(..., min_length=8, max_length=128, description="User's password")
    display_name: Optional[str] = Field(None, max_length=100, description="Name shown to other members")
    phone_number: Optional[str] = Field(None, description="E.164 phone number, verified by SMS")

    @field_validator('username')
    @classmethod
    def validate_username(cls, v):
        v = v.strip()
        if not USERNAME_PATTERN.match(v):
            raise ValueError('Username may only contain letters, numbers, ".", "_" and "-"')
        return v

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return normalize_email(v)

    @field_validator('display_name')
    @classmethod
    def validate_display_name(cls, v):
        if v is None:
            return v
        v = v.strip()
        return v or None

    @field_validator('phone_number')
    @classmethod
    def validate_phone_number(cls, v):
        if v is None or not v.strip():
            return None
        v = re.sub(r"[\s()-]", "", v)
        if not PHONE_PATTERN.match(v):
            raise ValueError('Phone number must be in international format, e.g. +15551234567')
        return v


class LoginRequest(BaseModel):
    """Request model for password login; username may also be an email address"""
    username: str = Field(..., min_length=1, max_length=254)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator('username')
    @classmethod
    def validate_username(cls, v):
        return v.strip()


class UserResponse(BaseModel):
    """Response model for user information (never includes secrets)"""
    id: int
    username: str
    email: str
    display_name: str
    phone_number: Optional[str] = None
    email_verified: bool
    sms_verified: bool
    is_admin: bool
    created_at: datetime
    last_login: Optional[datetime] = None

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    """Response model for successful login"""
    user: UserResponse
    token: Optional[str] = Field(None, description="Bearer token when the service runs in bearer mode")
    token_type: Optional[str] = None
    expires_at: Optional[datetime] = None
    message: str = "Login successful"


class MagicCodeRequest(BaseModel):
    email: EmailStr

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return normalize_email(v)


class MagicCodeResponse(BaseModel):
    token: str = Field(..., description="Opaque request token; the code itself is only emailed")
    message: str = "Magic code sent"


class MagicVerifyRequest(BaseModel):
    token: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1, max_length=12)

    @field_validator('code', mode='before')
    @classmethod
    def coerce_code(cls, v):
        return str(v).strip()


class MagicUser(BaseModel):
    id: Optional[int] = None
    email: str
    username: Optional[str] = None


class MagicVerifyResponse(BaseModel):
    token: str
    user: MagicUser
    expires_at: datetime


class SendVerificationRequest(BaseModel):
    email: EmailStr

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return normalize_email(v)


class SendVerificationResponse(BaseModel):
    ok: bool = True
    expires_at: Optional[datetime] = None
    next_allowed_at: datetime


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1)


class VerifyPhoneRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=1, max_length=12)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return normalize_email(v)

    @field_validator('code', mode='before')
    @classmethod
    def coerce_code(cls, v):
        return str(v).strip()


class ForgotPasswordRequest(BaseModel):
    email: EmailStr

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return normalize_email(v)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=128, description="New password")


class ChangePasswordRequest(BaseModel):
    """Request model for changing password"""
    current_password: str = Field(..., min_length=1, max_length=128, description="Current password")
    new_password: str = Field(..., min_length=8, max_length=128, description="New password")

    @field_validator('new_password')
    @classmethod
    def validate_new_password(cls, v, info: ValidationInfo):
        if v == info.data.get('current_password'):
            raise ValueError('New password must be different from current password')
        return v


class MessageResponse(BaseModel):
    ok: bool = True
    message: str


class AuditLogResponse(BaseModel):
    id: int
    user_id: Optional[int] = None
    username: Optional[str] = None
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    status: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    class Config:
        from_attributes = True
