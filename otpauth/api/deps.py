"""
otpauth/api/deps.py

Purpose: FastAPI dependencies

- Access to the service container on app.state
- Bearer credential -> CredentialClaims
"""

from fastapi import Depends, Request

from otpauth.core.container import ServiceContainer
from otpauth.core.exceptions import ConfigurationError, InvalidCredentialError
from otpauth.flow.dispatcher import AuthFlow
from otpauth.services.token_service import CredentialClaims


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise ConfigurationError(details="Service container not initialized. Is the lifespan running?")
    return container


def get_flow(container: ServiceContainer = Depends(get_container)) -> AuthFlow:
    return container.flow


def get_principal(request: Request, container: ServiceContainer = Depends(get_container)) -> CredentialClaims:
    auth = request.headers.get("authorization") or ""
    prefix = "bearer "
    if not auth.lower().startswith(prefix):
        raise InvalidCredentialError("Missing bearer token")
    token = auth[len(prefix):].strip()
    return container.tokens.validate(token)
