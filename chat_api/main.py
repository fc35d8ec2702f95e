import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import FastAPI, File, Request, Response, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse

from chat_api.attachments import is_image
from chat_api.config import get_settings
from chat_api.dependencies import UPLOADS_URL_PREFIX, CurrentUser, JsonBody, ServicesDep, build_services
from chat_api.errors import (
    ChatError,
    FileTooLarge,
    InvalidCredentials,
    InvalidPayload,
    MissingFile,
    NotFound,
    UnsupportedType,
    UpstreamError,
)
from chat_api.logging_utils import setup_logging, RequestLoggingMiddleware, log_request_data
from chat_api.messages import parse_payload
from chat_api.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_auth_failure,
    record_message_created,
    record_upload_outcome,
)
from chat_api.schemas import (
    ErrorResponse,
    HealthResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
)
from chat_api.storage import SessionLocal, check_db_health, init_db


settings = get_settings()

# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: create tables, build the service objects
    """
    init_db()
    app.state.services = build_services(settings, SessionLocal)
    logger.info("Services initialized")
    yield


app = FastAPI(
    title="Chat API",
    description="Authenticated single-channel messaging service",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)

AUTH_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Missing token"},
    403: {"model": ErrorResponse, "description": "Invalid or expired token"},
}


# =============================================================================
# Error Handlers
# =============================================================================

@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    if isinstance(exc, UpstreamError):
        logger.error(f"Upstream failure on {request.method} {request.url.path}", exc_info=exc.__cause__ or exc)

    content = {"detail": exc.detail}
    if exc.errors:
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for err in exc.errors():
        # Malformed JSON carries the byte offset in loc
        if err["type"] == "json_invalid":
            errors.append({"field": "body", "message": "Malformed JSON"})
            continue
        loc = [str(part) for part in err["loc"] if part != "body" and not isinstance(part, int)]
        errors.append({"field": ".".join(loc) or "body", "message": err["msg"]})

    logger.info(f"Request validation failed: {errors}")
    log_request_data(request, result="validation_error")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Validation failed", "errors": errors},
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health", response_model=HealthResponse)
def health(response: Response, services: ServicesDep) -> HealthResponse:
    """
    Dependency health: database reachable with schema applied, attachment
    storage writable. 200 when both are fine, 500 otherwise.
    """
    database_ok = check_db_health()
    storage_ok = services.attachments.check_health()

    if not (database_ok and storage_ok):
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    return HealthResponse(
        status="ok" if database_ok and storage_ok else "error",
        database="ok" if database_ok else "unavailable",
        storage="ok" if storage_ok else "unavailable",
    )


@app.get("/health/live", response_model=HealthResponse, response_model_exclude_none=True)
async def health_live() -> HealthResponse:
    """
    Liveness check: always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


# =============================================================================
# Auth Routes
# =============================================================================

@app.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse, "description": "Validation error or duplicate user"}},
)
def register(request: Request, body: RegisterRequest, services: ServicesDep) -> RegisterResponse:
    """
    Create an account.

    - username: at least 3 characters
    - email: valid address
    - password: at least 6 characters

    Username and email must both be unused.
    """
    logger.info(f"POST /register: username={body.username}")

    user_id = services.credentials.register(body.username, body.email, body.password)

    log_request_data(request, user_id=user_id, result="registered")
    return RegisterResponse()


@app.post(
    "/login",
    response_model=LoginResponse,
    responses={400: {"model": ErrorResponse, "description": "Invalid username or password"}},
)
def login(request: Request, body: LoginRequest, services: ServicesDep) -> LoginResponse:
    """
    Exchange username and password for a bearer token valid for 24 hours.

    Unknown usernames and wrong passwords produce the same error.
    """
    logger.info(f"POST /login: username={body.username}")

    try:
        is_valid = services.credentials.verify(body.username, body.password)
    except NotFound:
        is_valid = False

    if not is_valid:
        record_auth_failure("bad_credentials")
        log_request_data(request, result="invalid_credentials")
        raise InvalidCredentials()

    user = services.credentials.get_by_username(body.username)
    token = services.tokens.issue(user.id, user.username)

    log_request_data(request, user_id=user.id, result="logged_in")
    return LoginResponse(token=token, user=user)


# =============================================================================
# Message Routes
# =============================================================================

@app.post(
    "/messages",
    response_model=MessageResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse, "description": "Invalid payload"}, **AUTH_RESPONSES},
)
def send_message(
    request: Request,
    user: CurrentUser,
    services: ServicesDep,
    body: JsonBody,
) -> MessageResponse:
    """
    Post a text, emoji or sticker message to the channel.

    Body:
        - {"type": "text", "text": "..."}
        - {"type": "emoji", "emoji": "..."}
        - {"type": "sticker", "sticker": "..."}

    The body is decoded only after the bearer token is accepted, so an
    unauthenticated request gets 401/403 whatever it carries.
    """
    payload = parse_payload(body, outgoing=True)
    logger.info(f"POST /messages: user_id={user.user_id}, type={payload.type}")

    message = services.messages.append(user.user_id, payload)

    record_message_created(message.type)
    log_request_data(request, result="stored", message_type=message.type)
    return message


@app.get(
    "/messages",
    response_model=list[MessageResponse],
    response_model_exclude_none=True,
    responses=AUTH_RESPONSES,
)
def list_messages(request: Request, user: CurrentUser, services: ServicesDep) -> list[MessageResponse]:
    """
    The most recent messages (at most MESSAGES_LIMIT), oldest first.
    """
    messages = services.messages.list(limit=settings.MESSAGES_LIMIT)

    logger.info(f"GET /messages: returned {len(messages)} messages")
    log_request_data(request, result="listed")
    return messages


# =============================================================================
# Upload Routes
# =============================================================================

@app.post(
    "/upload",
    response_model=MessageResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse, "description": "No file, file too large or type not allowed"}, **AUTH_RESPONSES},
)
def upload_file(
    request: Request,
    user: CurrentUser,
    services: ServicesDep,
    file: Annotated[Optional[UploadFile], File()] = None,
) -> MessageResponse:
    """
    Store an attachment and post it to the channel.

    The message type is "image" for jpg/jpeg/png/gif/webp files and "file"
    for everything else on the allow-list.
    """
    if file is None or not file.filename:
        record_upload_outcome("no_file")
        raise MissingFile()

    logger.info(f"POST /upload: user_id={user.user_id}, filename={file.filename}, content_type={file.content_type}")

    # One byte past the ceiling is enough to reject without reading everything
    data = file.file.read(services.attachments.max_bytes + 1)

    # Validated before the write; the stored name is filled in afterwards
    try:
        payload = parse_payload({
            "type": "image" if is_image(file.filename) else "file",
            "file_name": file.filename,
            "file_path": "pending",
            "file_size": len(data),
        })
    except InvalidPayload:
        record_upload_outcome("invalid")
        raise

    try:
        stored = services.attachments.save(data, file.filename, file.content_type)
    except FileTooLarge:
        record_upload_outcome("too_large")
        raise
    except UnsupportedType:
        record_upload_outcome("unsupported_type")
        raise
    except UpstreamError:
        record_upload_outcome("error")
        raise

    payload = payload.model_copy(update={"file_path": stored.path, "file_size": stored.size})

    try:
        message = services.messages.append(user.user_id, payload)
    except ChatError:
        # The file stays on disk without a message pointing at it
        logger.warning(f"Orphaned attachment after failed append: {stored.path}")
        record_upload_outcome("error")
        raise

    record_upload_outcome("stored")
    record_message_created(message.type)
    log_request_data(request, result="stored", message_type=message.type)
    return message


@app.get(f"{UPLOADS_URL_PREFIX}/{{name}}", responses={404: {"model": ErrorResponse}})
def get_upload(name: str, services: ServicesDep) -> FileResponse:
    """
    Serve a stored attachment by its generated name.
    """
    return FileResponse(services.attachments.resolve(name))


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
