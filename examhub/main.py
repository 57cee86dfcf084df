"""FastAPI entrypoint for the online examination backend."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from examhub.config import settings
from examhub.database import create_db_and_tables
from examhub.errors import ExamServiceError
from examhub.routers import auth as auth_router_module
from examhub.routers import student as student_router_module
from examhub.routers import teacher as teacher_router_module

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Online Examination Backend")


@app.exception_handler(ExamServiceError)
async def exam_service_exception_handler(request: Request, exc: ExamServiceError):
    """Map service-layer errors to a JSON body carrying the message and detail."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return payload validation errors as a field -> message map."""
    errors_dict = {}
    for error in exc.errors():
        field_path = error.get("loc", [])
        field_name = ".".join(str(part) for part in field_path[1:]) or "body"
        if error.get("type", "") == "missing":
            errors_dict[field_name] = f"{field_name.replace('_', ' ').capitalize()} is required."
        else:
            errors_dict[field_name] = error.get("msg", "Invalid input")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": {"message": "Invalid request", "errors": errors_dict}},
    )


# Session middleware for simple cookie-based authentication
app.add_middleware(SessionMiddleware, secret_key=settings.SECRET_KEY)

# Routers
app.include_router(auth_router_module.router, prefix="/auth", tags=["auth"])
app.include_router(teacher_router_module.router, prefix="/teacher/exams", tags=["teacher"])
app.include_router(student_router_module.router, prefix="/student/exams", tags=["student"])


@app.get("/")
def health():
    return {"status": "ok"}


@app.on_event("startup")
def on_startup():
    """Initialize database schema."""
    create_db_and_tables()
    logger.info("Database tables ready")
