"""EduRetrieve – FastAPI application (Google-verified signup)."""
# Load .env before any app code that might read config
from dotenv import load_dotenv
from pathlib import Path
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.dependencies import get_oauth_client, get_verification_store
from app.exceptions import SignupError
from app.routers import auth, signup

log = logging.getLogger("uvicorn.error")

settings = get_settings()
app = FastAPI(title=settings.app_name, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(signup.router)
app.include_router(auth.router)

_scheduler = None


def _validation_message(errors: list[dict]) -> str:
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = [p for p in first.get("loc") or () if p != "body"]
    field = str(loc[-1]) if loc else "request"
    if first.get("type") == "missing":
        return f"{field.capitalize()} is required"
    msg = str(first.get("msg") or "Invalid request")
    return msg.removeprefix("Value error, ")


@app.exception_handler(SignupError)
async def signup_error_handler(request: Request, exc: SignupError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    return JSONResponse(
        status_code=400,
        content={"error": _validation_message(errors)},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.on_event("startup")
def startup():
    if settings.mailgun_api_key and settings.mailgun_domain:
        from_addr = settings.mailgun_from_email or ""
        from_domain = from_addr.split("@")[-1].lower() if "@" in from_addr else ""
        send_domain = settings.mailgun_domain.strip().lower()
        if from_domain and send_domain and from_domain != send_domain:
            log.warning("[Mailgun] from=%s does not match domain=%s; sender will be rewritten to noreply@%s", from_addr, send_domain, send_domain)
        else:
            log.info("[Mailgun] Using domain=%s from=%s for verification emails", settings.mailgun_domain, from_addr or "(none)")
    elif settings.sendgrid_api_key:
        log.info("[SendGrid] Using SendGrid for verification emails")
    else:
        log.warning("[Email] Not configured - verification emails will be skipped; set MAILGUN_API_KEY and MAILGUN_DOMAIN in .env and restart")

    if not get_oauth_client().is_configured():
        log.warning("[Google OAuth] GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET missing; signup callbacks will fail")

    if settings.account_store_backend == "database":
        try:
            from app.database import Base, engine
            from app.models import User, Profile  # noqa: F401
            Base.metadata.create_all(bind=engine)
        except Exception as e:
            log.warning("Database startup failed (tables skipped). Check DATABASE_URL and network. Error: %s", e)

    # Lazy expiry on read is authoritative; the sweep only frees memory held by abandoned signups
    global _scheduler
    try:
        from apscheduler.schedulers.background import BackgroundScheduler
        _scheduler = BackgroundScheduler()
        _scheduler.add_job(
            purge_expired_verifications,
            "interval",
            seconds=settings.verification_purge_interval_seconds,
        )
        _scheduler.start()
    except Exception as e:
        log.warning("Verification purge scheduler not started: %s", e)


@app.on_event("shutdown")
def shutdown():
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)


def purge_expired_verifications() -> None:
    removed = get_verification_store().purge_expired()
    if removed:
        log.info("Verification cleanup: removed %d expired pending signup(s).", removed)


@app.get("/")
def root():
    return {"app": settings.app_name, "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}
