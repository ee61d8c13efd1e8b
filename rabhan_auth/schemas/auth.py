from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, model_validator

from rabhan_auth.models.identity import UserType


class RegisterRequest(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str
    phone: str | None = None
    national_id: str | None = None
    user_type: str = "HOMEOWNER"


class ContractorRegisterRequest(RegisterRequest):
    user_type: str = "INDIVIDUAL"
    company_name: str | None = None
    cr_number: str | None = None
    vat_number: str | None = None


class LoginRequest(BaseModel):
    email: EmailStr | None = None
    phone: str | None = None
    password: str
    user_type: UserType
    device_id: str | None = None

    @model_validator(mode="after")
    def require_identifier(self):
        if not self.email and not self.phone:
            raise ValueError("Either email or phone is required")
        return self


class EmailLookupRequest(BaseModel):
    email: EmailStr
    user_type: UserType


class LoginOtpVerify(EmailLookupRequest):
    otp: str = Field(min_length=6, max_length=6)


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    token: str
    new_password: str


class ChangePasswordRequest(BaseModel):
    old_password: str
    new_password: str


class PasswordStrengthRequest(BaseModel):
    password: str


class ProfileUpdate(BaseModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    company_name: str | None = None
    cr_number: str | None = None
    vat_number: str | None = None


class IdentityView(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: str
    role: UserType
    phone: str | None
    national_id: str | None
    user_type: str | None
    status: str
    email_verified: bool
    phone_verified: bool
    bnpl_eligible: bool = False
    company_name: str | None = None
    last_login_at: datetime | None = None


class AuthTokens(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: IdentityView | None = None
