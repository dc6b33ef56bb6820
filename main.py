from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.v1 import auth, users
from core.config import settings
from core.security import get_token_codec
from db.mongodb import close_mongo, get_mongo_db, init_mongo_indexes
from utils.logging_config import configure_logging, RequestContextMiddleware
from utils.responses import NO_STORE_HEADERS, envelope

# Configure logging with date-based files and TTL retention
logger = configure_logging("tube_accounts")

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    headers = dict(NO_STORE_HEADERS)
    if exc.headers:
        headers.update(exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(None, str(exc.detail), exc.status_code),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Rejected malformed request at {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content=envelope(None, "Invalid request payload", 400), headers=NO_STORE_HEADERS)


# Global exception handler to ensure 500s for unexpected errors
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error at {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content=envelope(None, "Internal server error", 500), headers=NO_STORE_HEADERS)


app.add_middleware(GZipMiddleware, minimum_size=500)

# Add logging context middleware to capture user_id and API path
app.add_middleware(RequestContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, tags=["Authentication"])
app.include_router(users.router, tags=["Users"])


@app.on_event("startup")
async def startup():
    # A bad signing-key setup must stop the process here, not fail per request.
    get_token_codec()
    try:
        await init_mongo_indexes()
        logger.info("Mongo indexes ensured")
    except Exception as e:
        logger.warning(f"Mongo init skipped or failed: {e}")
    logger.info("Application startup complete")


@app.on_event("shutdown")
async def shutdown():
    close_mongo()
    logger.info("Application shutdown complete")


@app.get("/")
async def root():
    return {"message": settings.APP_NAME, "version": settings.VERSION}


@app.get("/health")
async def health_check():
    db = get_mongo_db()
    if db is None:
        return {"status": "degraded", "database": "mongo_unconfigured"}
    try:
        await db.command({"ping": 1})
        return {"status": "healthy", "database": "mongo_connected"}
    except Exception as e:
        logger.warning(f"Health Mongo check failed: {e}")
        return {"status": "degraded", "database": "mongo_unavailable"}
