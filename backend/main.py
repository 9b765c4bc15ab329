"""
Student Dashboard - FastAPI Backend
Calendar engine endpoints plus thin proxies to the dashboard's microservices
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import database
from calendar_service import add_event, build_calendar, build_view, import_ics, remove_event
from calendar_sources import DatabaseEventSource, EventFetchError, EventStore
from calendar_view import shift_anchor
from config import get_calendar_config, get_config_summary
from conflicts import EventConflictError
from database import db
from ics_import import IcsParseError
from logger import setup_logging
from models import (
    CalendarEventCreate, CalendarResponse, CalendarScheduleRequest, CalendarView,
    CanvasRequest, EmailPollingRequest, EventCategory, HealthStatus, ImportResult,
    InsertResult, SettingUpdate, VectorStoreRequest, ViewResponse
)
from normalizer import EventNormalizationError, coerce_datetime
from recurrence import RecurrenceError
from services import DashboardServices, ServiceError
from settings_manager import SettingsManager

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()

    # Startup
    await db.connect()
    await database.ensure_calendar_tables()
    logger.info(f"Server started (version {VERSION})")
    yield
    # Shutdown
    logger.info("Server shutting down")
    await db.disconnect()


app = FastAPI(
    title="Student Dashboard",
    description="Calendar conflict resolution and recurrence engine for the student dashboard",
    version=VERSION,
    lifespan=lifespan
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================
# DEPENDENCIES
# ============================================

def get_event_store() -> EventStore:
    return DatabaseEventSource()


def get_services() -> DashboardServices:
    return DashboardServices()


def _parse_timestamp(value: str, field: str) -> datetime:
    try:
        return coerce_datetime(value, get_calendar_config().tzinfo)
    except EventNormalizationError:
        raise HTTPException(status_code=400, detail=f"Invalid {field} format")


async def _proxy(call: Awaitable[Any]) -> Any:
    """Await a service call and relay downstream failures as {"error": ...}."""
    try:
        return await call
    except ServiceError as e:
        logger.error(f"{e.service} service error ({e.status}): {e.message}")
        return JSONResponse(status_code=e.status, content={"error": e.message, "details": e.data})


# ============================================
# HEALTH & STATUS
# ============================================

@app.get("/health", response_model=HealthStatus)
@app.get("/api/health", response_model=HealthStatus)
async def health_check():
    """Check API and database health."""
    database_status = "disconnected"
    if db.is_connected:
        try:
            database_status = "connected" if await database.ping() else "error"
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            database_status = "error"

    return HealthStatus(status="healthy", version=VERSION, database=database_status)


@app.get("/api/config")
async def config_summary():
    """Current configuration (secrets omitted)."""
    return get_config_summary()


@app.get("/api/settings")
async def get_settings():
    return SettingsManager.get_manageable_settings()


@app.put("/api/settings")
async def update_settings(update: SettingUpdate):
    if not SettingsManager.update_setting(update.key, update.value):
        raise HTTPException(status_code=400, detail=f"Cannot update setting {update.key}")
    return {"updated": update.key}


# ============================================
# CALENDAR ENDPOINTS
# ============================================

@app.get("/api/calendar/events", response_model=CalendarResponse)
async def get_calendar_events(
    user_id: str = Query(..., min_length=1),
    start: Optional[str] = None,
    end: Optional[str] = None,
    store: EventStore = Depends(get_event_store)
):
    """Merged, conflict-free events for a user within [start, end)."""
    config = get_calendar_config()
    window_start = _parse_timestamp(start, "start") if start else datetime.now(timezone.utc)
    window_end = (
        _parse_timestamp(end, "end") if end
        else window_start + timedelta(days=config.expansion_horizon_days)
    )
    if window_end <= window_start:
        raise HTTPException(status_code=400, detail="end must be after start")

    try:
        return await build_calendar(store, user_id, window_start, window_end, config)
    except EventFetchError as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.get("/api/calendar/view", response_model=ViewResponse)
async def get_calendar_view(
    user_id: str = Query(..., min_length=1),
    view: CalendarView = CalendarView.MONTH,
    anchor: Optional[str] = Query(default=None, alias="date"),
    steps: int = Query(default=0, ge=-120, le=120),
    store: EventStore = Depends(get_event_store)
):
    """Month, week or day grid; ``steps`` navigates relative to ``date``."""
    target = datetime.now(get_calendar_config().tzinfo).date()
    if anchor:
        try:
            target = date.fromisoformat(anchor)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid date format. Use YYYY-MM-DD")
    if steps:
        target = shift_anchor(view, target, steps)

    try:
        return await build_view(store, user_id, view, target)
    except EventFetchError as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.post("/api/events", response_model=InsertResult)
async def create_event(
    event: CalendarEventCreate,
    user_id: str = Query(..., min_length=1),
    store: EventStore = Depends(get_event_store)
):
    """Add an event; base events prune conflicting free-time and assignment events."""
    try:
        return await add_event(store, user_id, event)
    except EventConflictError as e:
        raise HTTPException(status_code=409, detail={
            "error": str(e),
            "reason": e.reason.value,
            "blocking_event_id": e.blocking_event_id,
        })
    except (EventNormalizationError, RecurrenceError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EventFetchError as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.post("/api/events/import", response_model=ImportResult)
async def import_events(
    file: UploadFile = File(...),
    user_id: str = Form(...),
    category: EventCategory = Form(EventCategory.BASE),
    store: EventStore = Depends(get_event_store)
):
    """Import events from an uploaded .ics file."""
    content = await file.read()
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="Calendar file must be UTF-8 text")

    try:
        return await import_ics(store, user_id, text, category)
    except IcsParseError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EventFetchError as e:
        raise HTTPException(status_code=502, detail=str(e))


@app.delete("/api/events/{category}/{event_id}")
async def delete_event(
    category: EventCategory,
    event_id: str,
    user_id: str = Query(..., min_length=1),
    store: EventStore = Depends(get_event_store)
):
    if not await remove_event(store, user_id, category, event_id):
        raise HTTPException(status_code=404, detail="Event not found")
    return {"deleted": event_id}


# ============================================
# SERVICE PROXIES
# ============================================

@app.post("/api/email")
async def start_email_polling(
    request: EmailPollingRequest,
    services: DashboardServices = Depends(get_services)
):
    if not request.access_token or not request.user_id:
        raise HTTPException(status_code=400, detail="Missing required fields")
    return await _proxy(services.start_email_polling(request.access_token, request.user_id))


@app.post("/api/canvas/agent")
async def canvas_agent(
    request: CanvasRequest,
    services: DashboardServices = Depends(get_services)
):
    if not request.access_token or not request.user_id:
        raise HTTPException(status_code=400, detail="Missing required fields")
    return await _proxy(services.run_canvas_agent(request.access_token, request.user_id))


@app.post("/api/canvas/assignments")
async def canvas_assignments(
    request: CanvasRequest,
    services: DashboardServices = Depends(get_services)
):
    if not request.access_token or not request.user_id:
        raise HTTPException(status_code=400, detail="Missing required fields")
    return await _proxy(services.fetch_canvas_assignments(request.access_token, request.user_id))


@app.post("/api/calendar/schedule")
async def schedule_calendar(
    request: CalendarScheduleRequest,
    services: DashboardServices = Depends(get_services)
):
    if not request.user_id:
        raise HTTPException(status_code=400, detail="Missing user_id")
    return await _proxy(services.schedule_calendar(request.user_id))


@app.get("/api/calendar/status")
async def schedule_status(
    user_id: Optional[str] = None,
    services: DashboardServices = Depends(get_services)
):
    if not user_id:
        raise HTTPException(status_code=400, detail="Missing user_id")
    return await _proxy(services.get_schedule_status(user_id))


@app.post("/api/vector-db/store")
async def create_vector_store(
    request: VectorStoreRequest,
    services: DashboardServices = Depends(get_services)
):
    if not request.user_id or not request.access_token or not request.provider:
        raise HTTPException(status_code=400, detail="Missing required fields")
    return await _proxy(services.create_vector_store(
        request.user_id, request.access_token, request.provider
    ))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
