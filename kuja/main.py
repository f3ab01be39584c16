from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import logging

from kuja.config import settings
from kuja.database import Base, engine
from kuja.errors import KujaError
from kuja.presentation import status_table, PRE_BOOKING_WINDOW_DAYS
from kuja.auth import router as auth_router
from kuja.catalog import router as catalog_router
from kuja.bookings import router as bookings_router
from kuja.payments import router as payments_router
from kuja.reviews import router as reviews_router
from kuja.admin import router as admin_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger("kuja")

UNEXPECTED_ERROR = "An unexpected error occurred. Please try again."

@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title=settings.PROJECT_NAME,
    version="1.0.0",
    description="Kuja Twende Adventures booking API",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Error bodies carry the message the UI shows in its toast
def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})

@app.exception_handler(KujaError)
async def kuja_error_handler(request: Request, exc: KujaError):
    return _error(exc.status_code, exc.message)

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    response = _error(exc.status_code, message)
    if exc.headers:
        response.headers.update(exc.headers)
    return response

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        text = str(first.get("msg", "")).replace("Value error, ", "")
        message = f"{field}: {text}" if field else text
    return _error(422, message, details=jsonable_encoder(errors, custom_encoder={Exception: str}))

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, UNEXPECTED_ERROR)

# Include routers
api = settings.API_PREFIX

app.include_router(auth_router.router, prefix=f"{api}/auth", tags=["Authentication"])
app.include_router(catalog_router.destinations_router, prefix=f"{api}/destinations", tags=["Destinations"])
app.include_router(catalog_router.packages_router, prefix=f"{api}/packages", tags=["Packages"])
app.include_router(bookings_router.router, prefix=f"{api}/bookings", tags=["Bookings"])
app.include_router(bookings_router.user_router, prefix=f"{api}/user", tags=["Traveller"])
app.include_router(payments_router.router, prefix=f"{api}/payments", tags=["Payments"])
app.include_router(reviews_router.router, prefix=f"{api}/reviews", tags=["Reviews"])
app.include_router(reviews_router.destination_router, prefix=f"{api}/user/destination-reviews", tags=["Reviews"])
app.include_router(admin_router.router, prefix=f"{api}/admin", tags=["Admin"])
app.include_router(
    catalog_router.admin_destinations_router, prefix=f"{api}/admin/destinations", tags=["Admin"]
)
app.include_router(payments_router.admin_router, prefix=f"{api}/admin/payments", tags=["Admin"])

@app.get(f"{api}/meta/statuses")
def get_status_display_table():
    """Label, colour and icon for every booking, payment and package status"""
    return {"statuses": status_table(), "preBookingWindowDays": PRE_BOOKING_WINDOW_DAYS}

@app.get("/")
def root():
    """Root endpoint"""
    return {
        "message": "Kuja Twende Adventures API",
        "version": "1.0.0",
        "docs": "/docs"
    }

@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
