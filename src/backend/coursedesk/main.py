import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import coursedesk.models  # noqa: F401
from coursedesk.config import settings
from coursedesk.db.database import Base, SessionLocal, engine
from coursedesk.routers.backup import router as backup_router
from coursedesk.routers.dates import router as dates_router
from coursedesk.routers.entitlement import router as entitlement_router
from coursedesk.routers.groups import router as groups_router
from coursedesk.routers.numbers import router as numbers_router
from coursedesk.routers.participants import router as participants_router
from coursedesk.services.entitlement import entitlement_gate
from coursedesk.services.group_lifecycle import maintenance_runner

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="CourseDesk API",
    version="0.1.0",
    description="Course cohorts, participant assignment and certificate numbering.",
    docs_url="/swagger",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup():
    Base.metadata.create_all(bind=engine)
    if entitlement_gate.client.is_configured():
        entitlement_gate.refresh()
        entitlement_gate.start_background_refresh()
    if settings.run_maintenance_on_startup and not entitlement_gate.read_only:
        with SessionLocal() as db:
            maintenance_runner.run(db)
    logger.info("CourseDesk started (read_only=%s)", entitlement_gate.read_only)


@app.on_event("shutdown")
def shutdown():
    entitlement_gate.stop_background_refresh()


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(dates_router)
app.include_router(groups_router)
app.include_router(participants_router)
app.include_router(numbers_router)
app.include_router(backup_router)
app.include_router(entitlement_router)
