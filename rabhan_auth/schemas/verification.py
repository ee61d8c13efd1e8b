from pydantic import BaseModel, EmailStr, Field


class PhoneOtpRequest(BaseModel):
    phone_number: str
    country_code: str | None = Field(default=None, min_length=2, max_length=2)


class PhoneOtpVerify(PhoneOtpRequest):
    otp: str = Field(min_length=6, max_length=6)


class PhoneValidateRequest(BaseModel):
    phone_number: str
    country_code: str | None = Field(default=None, min_length=2, max_length=2)


class EmailVerificationRequest(BaseModel):
    email: EmailStr
    display_name: str | None = None


class EmailTokenVerify(BaseModel):
    token: str


class EmailOtpRequest(BaseModel):
    email: EmailStr


class EmailOtpVerify(EmailOtpRequest):
    otp: str = Field(min_length=6, max_length=6)
