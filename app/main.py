from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from app.core.config import settings, assert_groq_ready
from app.core.exceptions import MaintenanceError
from app.core.firebase_init import get_firebase_status
from app.routers import maintenance_requests, notifications

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="IntelliMaintain API",
    description="Facility maintenance work orders: intake, assessment, approval, fulfilment, execution and audit",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Adjust as needed for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MaintenanceError)
async def maintenance_error_handler(request: Request, exc: MaintenanceError):
    logger.info(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    # Malformed or missing body fields share the domain ValidationError contract
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    logger.info(f"ValidationError on {request.method} {request.url.path}: {problems}")
    return JSONResponse(
        status_code=400,
        content={"detail": problems, "error": "ValidationError"},
    )


@app.on_event("startup")
async def startup_event():
    logger.info(f"Starting IntelliMaintain API with '{settings.DATABASE_BACKEND}' storage backend")
    try:
        assert_groq_ready()
    except RuntimeError as e:
        # Classification falls back to defaults; the API stays usable
        logger.warning(str(e))


app.include_router(maintenance_requests.router)
app.include_router(notifications.router)


@app.get("/")
async def root():
    return {"message": "IntelliMaintain API is running", "version": "1.0.0"}


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "storage_backend": settings.DATABASE_BACKEND,
        "ai_classification": "groq" if settings.USE_GROQ else "fallback",
        "firebase": get_firebase_status(),
    }
