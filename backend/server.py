from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
import logging
from contextlib import asynccontextmanager

from database import Database
from appraisalstudio import __product__, __version__
from appraisalstudio.config import load_settings
from appraisalstudio.routes import (
    account_router,
    generation_router,
    history_router,
    stripe_billing_router,
    webhooks_router,
)
from appraisalstudio.services import DocumentStore, build_services

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Loads backend/.env; read once, handed to every service
settings = load_settings()


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting %s API (%s)", __product__, settings.environment)
    database = Database(settings.mongo_url, settings.db_name)
    await database.connect()

    app.state.settings = settings
    app.state.database = database
    app.state.services = build_services(settings, DocumentStore(database.get_db()))

    yield

    # Shutdown
    logger.info("Shutting down %s API", __product__)
    await database.close()


app = FastAPI(
    title="AppraisalStudio API",
    description="Listing copy generation with plan-based usage and Stripe billing",
    version=__version__,
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(generation_router)
app.include_router(history_router)
app.include_router(account_router)
app.include_router(stripe_billing_router)
app.include_router(webhooks_router)


# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "service": __product__,
        "environment": settings.environment,
    }


# Validation error handler: log request_id + error locations for debugging
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.warning(
        "Validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in errors],
                 "request_id": request_id},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=settings.environment == "development"
    )
