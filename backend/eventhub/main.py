"""
FastAPI application for the EventHub registration backend.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from a local .env before modules read settings
_ENV_PATH = Path(__file__).resolve().parent / '.env'
if _ENV_PATH.exists():
    load_dotenv(dotenv_path=_ENV_PATH, override=False)

import contextvars
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from . import notifications
from .db import close as close_mongo
from .db import connect as connect_to_mongo
from .errors import ErrorCode, RegistrationError
from .logging_config import configure_logging
from .routers import admin, events, organizer, registrations
from .settings import get_settings

# Context variables for request-scoped logging
_ctx_request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)
_ctx_client_ip: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("client_ip", default=None)

# Attach request context to every LogRecord
_original_factory = logging.getLogRecordFactory()


def _record_factory(*args, **kwargs):
    record = _original_factory(*args, **kwargs)
    rid = _ctx_request_id.get()
    cip = _ctx_client_ip.get()
    if rid is not None:
        record.request_id = rid
    if cip is not None:
        record.client_ip = cip
    return record


logging.setLogRecordFactory(_record_factory)

configure_logging()
settings = get_settings()

# domain error kind -> HTTP status
ERROR_STATUS = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.DUPLICATE: 409,
    ErrorCode.CAPACITY: 409,
    ErrorCode.INVALID_STATE: 400,
    ErrorCode.WINDOW_CLOSED: 400,
    ErrorCode.VALIDATION: 422,
    ErrorCode.UNAUTHORIZED: 403,
    ErrorCode.STORAGE: 503,
}


@asynccontextmanager
async def _lifespan(app: FastAPI):
    await connect_to_mongo()
    try:
        yield
    finally:
        # let in-flight notifications finish before the client goes away
        await notifications.drain()
        await close_mongo()


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    version="1.0.0",
    root_path=os.getenv('BACKEND_ROOT_PATH', ''),
    docs_url=None if os.getenv('DISABLE_DOCS', '0') == '1' else '/docs',
    redoc_url=None if os.getenv('DISABLE_DOCS', '0') == '1' else '/redoc',
    openapi_url=None if os.getenv('DISABLE_DOCS', '0') == '1' else '/openapi.json',
    lifespan=_lifespan,
    redirect_slashes=False,
)


######## Structured Logging & Request ID Middleware ########
class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get('X-Request-ID', str(uuid.uuid4()))
        xff = request.headers.get('X-Forwarded-For')
        if xff:
            client_ip = xff.split(',')[0].strip()
        else:
            # request.client may be None in test transports
            client = getattr(request, 'client', None)
            client_ip = client.host if client else None
        request.state.request_id = request_id
        request.state.client_ip = client_ip
        _ctx_request_id.set(request_id)
        _ctx_client_ip.set(client_ip)
        start = time.time()
        logger = logging.getLogger('request')
        logger.info('request.start method=%s path=%s', request.method, request.url.path)
        try:
            response = await call_next(request)
        except Exception:
            logger.exception('request.error')
            raise
        duration_ms = int((time.time() - start) * 1000)
        response.headers['X-Request-ID'] = request_id
        logger.info('request.end status=%s dur_ms=%s', response.status_code, duration_ms)
        return response


app.add_middleware(RequestIDMiddleware)


######## Global Exception Handlers ########

@app.exception_handler(RegistrationError)
async def registration_error_handler(request: Request, exc: RegistrationError):
    status_code = ERROR_STATUS.get(exc.code, 400)
    if status_code >= 500:
        logging.getLogger('app').error('domain.storage_error rid=%s error=%s cause=%r',
                                       getattr(request.state, 'request_id', None), exc, exc.__cause__)
    return JSONResponse(status_code=status_code, content={
        'error': exc.kind,
        'detail': exc.message,
        'request_id': getattr(request.state, 'request_id', None),
    })


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=422, content={
        'error': 'validation_error',
        'detail': exc.errors(),
        'request_id': getattr(request.state, 'request_id', None),
    })


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logging.getLogger('app').exception('unhandled exception rid=%s', getattr(request.state, 'request_id', None))
    return JSONResponse(status_code=500, content={
        'error': 'internal_server_error',
        'detail': 'An unexpected error occurred',
        'request_id': getattr(request.state, 'request_id', None),
    })


if settings.allowed_origins == '*':
    origins = ["*"]
else:
    origins = [o.strip() for o in settings.allowed_origins.split(',') if o.strip()]

# Browsers reject wildcard origins when credentials are allowed
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(registrations.router, prefix="/registrations", tags=["registrations"])
app.include_router(organizer.router, prefix="/organizer", tags=["organizer"])
app.include_router(events.router, prefix="/events", tags=["events"])
app.include_router(admin.router, prefix="/admin", tags=["admin"])


# Fast healthcheck (no DB access)
@app.get('/health', tags=["health"], include_in_schema=False)
async def health():
    return {"status": "ok"}
