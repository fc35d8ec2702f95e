"""
Service container and FastAPI dependencies.

The services are built once in the application lifespan and stored on
``app.state.services``; handlers receive them through ``get_services``
instead of importing module-level instances.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Annotated, Any, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import sessionmaker

from chat_api.attachments import AttachmentStore
from chat_api.config import Settings
from chat_api.credentials import CredentialStore
from chat_api.errors import AuthError, InvalidPayload, MissingToken, TokenExpired
from chat_api.logging_utils import log_request_data
from chat_api.messages import MessageRepository
from chat_api.metrics import record_auth_failure
from chat_api.tokens import TokenClaims, TokenService

logger = logging.getLogger(__name__)

UPLOADS_URL_PREFIX = "/uploads"


@dataclass(frozen=True)
class Services:
    credentials: CredentialStore
    tokens: TokenService
    attachments: AttachmentStore
    messages: MessageRepository


def build_services(settings: Settings, session_factory: sessionmaker) -> Services:
    attachments = AttachmentStore(settings.UPLOAD_DIR, max_bytes=settings.MAX_UPLOAD_BYTES)
    attachments.ensure_root()
    return Services(
        credentials=CredentialStore(session_factory),
        tokens=TokenService(
            settings.JWT_SECRET,
            algorithm=settings.JWT_ALGORITHM,
            lifetime=timedelta(hours=settings.TOKEN_EXPIRE_HOURS),
        ),
        attachments=attachments,
        messages=MessageRepository(session_factory, files_url_prefix=UPLOADS_URL_PREFIX),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    request: Request,
    services: Annotated[Services, Depends(get_services)],
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> TokenClaims:
    """
    Authentication gate for protected routes.

    Raises:
        MissingToken: no ``Authorization: Bearer`` header
        InvalidToken / TokenExpired: verification failed
    """
    if credentials is None or not credentials.credentials:
        logger.warning("Missing bearer token")
        record_auth_failure("missing")
        log_request_data(request, result="missing_token")
        raise MissingToken()

    try:
        claims = services.tokens.verify(credentials.credentials)
    except AuthError as e:
        reason = "expired" if isinstance(e, TokenExpired) else "invalid"
        logger.warning(f"Bearer token rejected: {reason}")
        record_auth_failure(reason)
        log_request_data(request, result="invalid_token")
        raise

    log_request_data(request, user_id=claims.user_id)
    return claims


CurrentUser = Annotated[TokenClaims, Depends(get_current_user)]
ServicesDep = Annotated[Services, Depends(get_services)]


async def read_json_body(request: Request, user: CurrentUser) -> Any:
    """
    The decoded JSON request body, read only once the caller is authenticated.

    Raises:
        InvalidPayload: the body is not valid JSON
    """
    try:
        return await request.json()
    except ValueError:
        logger.info(f"Malformed JSON body from user_id={user.user_id}")
        raise InvalidPayload(errors=[{"field": "body", "message": "Malformed JSON"}])


JsonBody = Annotated[Any, Depends(read_json_body)]
