import asyncio
import contextlib
import logging

from fastapi import FastAPI
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .db import init_db
from .middleware import LoggingMiddleware
from .seed import ensure_default_admin, ensure_demo_data
from .services.lms_publish import run_publish_scheduler
from .routers import auth, courses, modules, contents
from .routers import assignments, quizzes, grading, chatbot


logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    if settings.is_production:
        ensure_default_admin(force_password_reset=True)
    else:
        ensure_demo_data()

    scheduler_task = None
    if settings.publish_scheduler_interval_seconds > 0:
        scheduler_task = asyncio.create_task(run_publish_scheduler(settings.publish_scheduler_interval_seconds))
        logger.info("Publish scheduler running every %ss", settings.publish_scheduler_interval_seconds)
    yield
    if scheduler_task is not None:
        scheduler_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await scheduler_task


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(LoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(auth.router)
app.include_router(courses.router)
app.include_router(modules.router)
app.include_router(contents.router)
app.include_router(assignments.router)
app.include_router(quizzes.router)
app.include_router(grading.router)
app.include_router(chatbot.router)


@app.get("/")
def root():
    return {"status": "ok", "service": settings.app_name}
