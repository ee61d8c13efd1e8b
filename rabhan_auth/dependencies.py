from fastapi import Request

from rabhan_auth.container import ServiceContainer
from rabhan_auth.services.auth_service import AuthService
from rabhan_auth.services.email_verification_service import EmailVerificationService
from rabhan_auth.services.phone_verification_service import PhoneVerificationService


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_auth_service(request: Request) -> AuthService:
    return get_container(request).auth_service


def get_phone_verification(request: Request) -> PhoneVerificationService:
    return get_container(request).phone_verification


def get_email_verification(request: Request) -> EmailVerificationService:
    return get_container(request).email_verification
