from contextlib import asynccontextmanager

from textflow.config import settings
from textflow.dependencies.database import create_tables, engine
from textflow.dependencies.scheduler import start_scheduler, stop_scheduler
from textflow.helpers import bg_tasks, utcnow
from textflow.log import system_logger
from textflow.models.error import RequestError
from textflow.router import auth_router, chat_router
from textflow.tasks import register_chat_purge_job

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import sentry_sdk

logger = system_logger("Server")


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    await create_tables()
    register_chat_purge_job()
    start_scheduler()
    logger.info("TextFlow chat server is up")

    yield

    # pending fan-out is best-effort, drop it instead of waiting on slow clients
    bg_tasks.stop()
    stop_scheduler()
    await engine.dispose()
    logger.info("TextFlow chat server stopped")


desc = """TextFlow chat server: anonymous, code-addressed chat rooms for the TextFlow note editor.

Rooms are created under a random 4-digit code, live for one hour and are destroyed as soon as the
last member leaves. All chat endpoints begin with `/api/chat/` and require a bearer token issued by
`POST /api/auth/anonymous`.

Errors are returned as `{"error": "<ERROR_KEY>", "message": "<fallback text>"}`; clients translate the key.
"""

if settings.sentry_dsn is not None:
    sentry_sdk.init(
        dsn=str(settings.sentry_dsn),
        send_default_pii=False,
        environment="development" if settings.debug else "production",
    )

app = FastAPI(title="textflow-chat", version="0.1.0", lifespan=lifespan, description=desc)
app.include_router(auth_router)
app.include_router(chat_router)


def _cors_origins() -> list[str]:
    urls = [str(url) for url in settings.cors_urls]
    if settings.frontend_url:
        urls.append(str(settings.frontend_url))
    # HttpUrl renders a trailing slash that browsers never send in Origin
    return sorted({variant for url in urls for variant in (url, url.removesuffix("/"))})


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", include_in_schema=False)
async def health_check():
    return {"status": "ok", "timestamp": utcnow().isoformat()}


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):  # noqa: ARG001
    return JSONResponse(
        status_code=422,
        content={
            "error": "INVALID_REQUEST",
            "message": "Request validation failed",
            "details": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(RequestError)
async def request_error_handler(request: Request, exc: RequestError):  # noqa: ARG001
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.msg_key, "message": exc.formatted_message, **exc.details},
        headers=exc.headers,
    )


@app.exception_handler(exc_class_or_status_code=HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):  # noqa: ARG001
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


if settings.secret_key == "your_jwt_secret_here":  # noqa: S105
    raise RuntimeError("JWT_SECRET_KEY is not set. Generate one with: openssl rand -hex 32")
if not settings.database_url.startswith("mysql"):
    logger.opt(colors=True).warning(
        f"Using <y>{settings.database_url.split(':', 1)[0]}</y>, intended for development and tests only."
    )

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=settings.debug, log_config=None)
