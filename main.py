import logging
import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Form, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, ValidationError
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

from auth import AccessGuard, AdminPrincipal, SessionIssuer, require_admin
from config import Settings, configure_logging
from database import CONTACT_DETAILS, TRIAL_STUDENTS, DbClient, MongoDbClient, create_db_client
from errors import AuthError, InvalidCredentials, Unauthenticated
from notifications import (
    Broadcaster,
    Notifier,
    build_notifier,
    contact_payload,
    create_broadcaster,
    trial_payload,
)
from schemas import NotificationPayload, SubscriptionKeys

logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
TEMPLATES_DIR = os.path.join(BASE_DIR, "templates")
# Service worker and admin page scripts, served from the site root.
PUBLIC_DIR = os.path.join(BASE_DIR, "public")
templates = Jinja2Templates(directory=TEMPLATES_DIR)

router = APIRouter()


# Request bodies
class SubscriptionBody(BaseModel):
    endpoint: str
    keys: SubscriptionKeys


class EndpointBody(BaseModel):
    endpoint: str


# Dependencies
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> DbClient:
    return request.app.state.db


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_broadcaster(request: Request) -> Optional[Broadcaster]:
    return request.app.state.broadcaster


def redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=303)


def form_fields(form) -> dict:
    return {key: value for key, value in form.items() if isinstance(value, str)}


# Exception handlers
async def unauthenticated_handler(request: Request, exc: Unauthenticated):
    return redirect("/login")


async def auth_error_handler(request: Request, exc: AuthError):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


async def validation_error_handler(request: Request, exc):
    details = [{"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in exc.errors()]
    return JSONResponse({"error": "validation failed", "details": details}, status_code=400)


async def database_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "database unavailable"}, status_code=503)


# Routes
@router.get("/")
def read_root():
    return {"message": "Playmaker Academy admin API running"}


@router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request):
    return templates.TemplateResponse(request, "login.html", {})


@router.post("/login")
async def login(
    request: Request,
    password: Optional[str] = Form(None),
    settings: Settings = Depends(get_settings),
):
    if not password:
        return JSONResponse({"error": "password required"}, status_code=400)
    issuer: SessionIssuer = request.app.state.session_issuer
    try:
        # bcrypt verification blocks.
        token = await run_in_threadpool(issuer.issue, password)
    except InvalidCredentials:
        logger.warning("Rejected admin login from %s", request.client.host if request.client else "unknown")
        raise

    response = redirect("/admin/dashboard")
    response.set_cookie(
        key=settings.cookie_name,
        value=token,
        max_age=settings.jwt_expires_in,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
    )
    logger.info("Admin session issued")
    return response


@router.get("/logout")
async def logout(settings: Settings = Depends(get_settings)):
    response = redirect("/login")
    response.delete_cookie(settings.cookie_name)
    return response


@router.get("/admin")
async def admin_session(admin: AdminPrincipal = Depends(require_admin)):
    return {"ok": True, "role": admin.role}


@router.get("/admin/dashboard", response_class=HTMLResponse)
async def dashboard(
    request: Request,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    context = {
        "trial_count": await db.count_leads(TRIAL_STUDENTS),
        "contact_count": await db.count_leads(CONTACT_DETAILS),
        "push_enabled": settings.push_configured,
    }
    return templates.TemplateResponse(request, "dashboard.html", context)


# Leads
@router.get("/admin/trialStudents", response_class=HTMLResponse)
async def list_trial_students(
    request: Request,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db),
):
    students = await db.list_leads(TRIAL_STUDENTS)
    return templates.TemplateResponse(request, "trial_students.html", {"students": students})


@router.get("/admin/trialStudents/delete/{lead_id}")
async def delete_trial_student(
    lead_id: str,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db),
):
    deleted = await db.delete_lead(TRIAL_STUDENTS, lead_id)
    if deleted is None:
        logger.info("Trial registration %s not found", lead_id)
        return redirect("/admin/dashboard")
    logger.info("Deleted trial registration %s", lead_id)
    return redirect("/admin/trialStudents")


@router.get("/admin/contactDetails", response_class=HTMLResponse)
async def list_contact_details(
    request: Request,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db),
):
    contact_details = await db.list_leads(CONTACT_DETAILS)
    return templates.TemplateResponse(request, "contact_details.html", {"contact_details": contact_details})


@router.get("/admin/contactDetails/delete/{lead_id}")
async def delete_contact_detail(
    lead_id: str,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db),
):
    deleted = await db.delete_lead(CONTACT_DETAILS, lead_id)
    if deleted is None:
        logger.info("Contact message %s not found", lead_id)
        return redirect("/admin/dashboard")
    logger.info("Deleted contact message %s", lead_id)
    return redirect("/admin/contactDetails")


# Site settings
@router.get("/admin/settings", response_class=HTMLResponse)
async def settings_page(
    request: Request,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db),
):
    site = await db.get_settings()
    return templates.TemplateResponse(request, "settings.html", {"settings": site})


@router.post("/admin/settings")
async def update_settings(
    request: Request,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db),
):
    form = await request.form()
    await db.update_settings(form_fields(form))
    logger.info("Site settings updated")
    return redirect("/admin/settings")


@router.get("/admin/getSetting")
async def get_setting(admin: AdminPrincipal = Depends(require_admin), db: DbClient = Depends(get_db)):
    site = await db.get_settings()
    return site.to_document()


# Push subscriptions
@router.get("/admin/getVapidPublicKey")
async def get_vapid_public_key(
    admin: AdminPrincipal = Depends(require_admin),
    settings: Settings = Depends(get_settings),
):
    if not settings.push_configured:
        return JSONResponse({"error": "push notifications are not configured"}, status_code=404)
    return PlainTextResponse(settings.vapid_public_key)


@router.post("/admin/saveSubscription", status_code=201)
async def save_subscription(
    body: SubscriptionBody,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db),
):
    record = await db.upsert_subscription(body.model_dump())
    logger.info("Saved push subscription %s", record.endpoint)
    return {"ok": True}


@router.post("/admin/removeSubscription")
async def remove_subscription(
    body: EndpointBody,
    admin: AdminPrincipal = Depends(require_admin),
    db: DbClient = Depends(get_db),
):
    removed = await db.delete_subscription(body.endpoint)
    logger.info("Removed push subscription %s (existed: %s)", body.endpoint, removed)
    return {"ok": True, "removed": removed}


@router.post("/admin/resetSubscriptions")
async def reset_subscriptions(admin: AdminPrincipal = Depends(require_admin), db: DbClient = Depends(get_db)):
    deleted = await db.delete_all_subscriptions()
    logger.info("Reset push subscriptions; %d deleted", deleted)
    return {"ok": True, "deleted": deleted}


@router.post("/admin/testNotification")
async def test_notification(
    admin: AdminPrincipal = Depends(require_admin),
    broadcaster: Optional[Broadcaster] = Depends(get_broadcaster),
):
    if broadcaster is None:
        return JSONResponse({"error": "push notifications are not configured"}, status_code=503)
    payload = NotificationPayload(
        title="Test notification",
        body="Push notifications are working.",
        url="/admin/dashboard",
    )
    result = await broadcaster.broadcast(payload)
    return asdict(result)


# Public website forms
@router.post("/api/v1/saveTrialStudents")
async def save_trial_student(
    request: Request,
    background_tasks: BackgroundTasks,
    db: DbClient = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
):
    form = await request.form()
    lead = await db.create_lead(TRIAL_STUDENTS, form_fields(form))
    logger.info("New trial registration %s", lead["id"])
    background_tasks.add_task(notifier.send, trial_payload(lead))
    return redirect(settings.redirect_url)


@router.post("/api/v1/saveContactDetails")
async def save_contact_detail(
    request: Request,
    background_tasks: BackgroundTasks,
    db: DbClient = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
):
    form = await request.form()
    lead = await db.create_lead(CONTACT_DETAILS, form_fields(form))
    logger.info("New contact message %s", lead["id"])
    background_tasks.add_task(notifier.send, contact_payload(lead))
    return redirect(settings.redirect_url)


@router.get("/test")
async def test_database(db: DbClient = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "✅ Connected",
        "store": type(db).__name__,
        "collections": [],
    }
    try:
        response["collections"] = await db.collection_names()
    except PyMongoError as e:
        response["database"] = f"⚠️ Error: {str(e)[:80]}"
    return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = app.state.db
    if isinstance(db, MongoDbClient):
        try:
            await db.ensure_indexes()
        except PyMongoError as exc:
            logger.warning("Could not create indexes: %s", exc)
    yield
    await db.close()


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[DbClient] = None,
    notifier: Optional[Notifier] = None,
    broadcaster: Optional[Broadcaster] = None,
) -> FastAPI:
    """Build the app. Raises ConfigurationError when a required secret is missing."""
    settings = settings or Settings()
    settings.ensure_required()
    configure_logging(settings.log_level)

    if db is None:
        db = create_db_client(settings)
    if broadcaster is None:
        broadcaster = create_broadcaster(settings, db)
    if notifier is None:
        notifier = build_notifier(settings, broadcaster)

    app = FastAPI(title="Playmaker Academy Admin", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.db = db
    app.state.session_issuer = SessionIssuer(settings)
    app.state.access_guard = AccessGuard(settings)
    app.state.broadcaster = broadcaster
    app.state.notifier = notifier

    app.add_exception_handler(Unauthenticated, unauthenticated_handler)
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(PyMongoError, database_error_handler)

    app.include_router(router)
    # Mounted last so every route above takes precedence.
    app.mount("/", StaticFiles(directory=PUBLIC_DIR), name="public")
    logger.info(
        "Notifications: %s; store: %s", type(notifier).__name__, type(db).__name__
    )
    return app


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 3000))
    uvicorn.run("main:create_app", factory=True, host="0.0.0.0", port=port)
