"""FastAPI application exposing registration, login, bookings and admin endpoints."""

from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import List, Optional

import logging
import time
from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import Counter, make_asgi_app
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import (
    TOKEN_COOKIE,
    get_password_hasher,
    get_token_manager,
    require_roles,
)
from .config import settings
from .database import SessionLocal, engine, get_db, init_db
from .exceptions import HotelError
from .models import Role, User
from .security import PasswordHasher, TokenManager
from .services import AccountService, BookingService, BookingStore, UserStore


logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()

# Prometheus counter to track API requests by method, endpoint and status code
REQUEST_COUNTER = Counter(
    "api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)


def seed_default_admin() -> None:
    """Create or reset the configured administrator account."""
    db = SessionLocal()
    try:
        AccountService(UserStore(db), get_password_hasher()).seed_admin(
            settings.admin_email, settings.admin_password
        )
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    failure = await run_in_threadpool(init_db, seed=seed_default_admin)
    if failure is not None:
        logger.critical("%s; exiting", failure.message)
        raise SystemExit(1)
    logger.info("default admin: %s", settings.admin_email)
    yield
    logger.info("shutting down, closing database pool")
    engine.dispose()


app = FastAPI(title=settings.api_title, lifespan=lifespan)
app.mount("/metrics", make_asgi_app())


def _endpoint_label(request: Request) -> str:
    """Route template such as ``/bookings/{booking_id}``, never the raw path."""
    route = request.scope.get("route")
    return getattr(route, "path", "unmatched")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log incoming requests and their outcomes while updating metrics."""
    logger.info("request %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=_endpoint_label(request),
            status=str(response.status_code),
        ).inc()
        logger.info(
            "response %s %s status %s",
            request.method,
            request.url.path,
            response.status_code,
        )
        return response
    except Exception:
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=_endpoint_label(request),
            status="500",
        ).inc()
        logger.exception(
            "error handling %s %s", request.method, request.url.path
        )
        raise


@app.exception_handler(HotelError)
async def hotel_error_handler(request: Request, exc: HotelError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s", exc.message, request.method, request.url.path)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error", exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


class Credentials(BaseModel):
    """Request body for registration and login."""

    email: Optional[str] = None
    password: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


class LoginResponse(BaseModel):
    id: int
    email: str
    role: Role


class BookingRequest(BaseModel):
    """Request body for creating a booking; fields are validated by the service."""

    name: Optional[str] = None
    email: Optional[str] = None
    check_in: Optional[str] = None
    check_out: Optional[str] = None
    room_type: Optional[str] = None


class BookingCreatedResponse(BaseModel):
    id: int
    message: str


class BookingResponse(BaseModel):
    """Serialized booking."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    name: str
    email: str
    check_in: date
    check_out: date
    room_type: str
    created_at: datetime


class UserResponse(BaseModel):
    """Serialized user without credentials."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    role: Role
    created_at: datetime


class RoomStat(BaseModel):
    room_type: str
    count: int


class StatsResponse(BaseModel):
    totalUsers: int
    totalBookings: int
    roomStats: List[RoomStat]


def get_account_service(
    db: Session = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
) -> AccountService:
    return AccountService(UserStore(db), hasher)


def get_booking_service(db: Session = Depends(get_db)) -> BookingService:
    return BookingService(BookingStore(db), UserStore(db))


router = APIRouter()


@router.post("/register", status_code=201, response_model=MessageResponse)
def register(
    payload: Credentials, accounts: AccountService = Depends(get_account_service)
):
    accounts.register(payload.email, payload.password)
    return MessageResponse(message="Registration successful")


@router.post("/login", response_model=LoginResponse)
def login(
    payload: Credentials,
    response: Response,
    accounts: AccountService = Depends(get_account_service),
    tokens: TokenManager = Depends(get_token_manager),
):
    """Check credentials and set the session cookie."""
    user = accounts.authenticate(payload.email, payload.password)
    token = tokens.issue(user.id, Role(user.role))
    # no cookie domain: the browser scopes it to the request host
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        max_age=int(tokens.lifetime.total_seconds()),
        path="/",
        secure=settings.cookie_secure,
        httponly=True,
        samesite="lax",
    )
    return LoginResponse(id=user.id, email=user.email, role=Role(user.role))


@router.post("/logout", response_model=MessageResponse)
def logout(response: Response):
    response.delete_cookie(TOKEN_COOKIE, path="/")
    return MessageResponse(message="Logged out successfully")


@router.get("/bookings", response_model=List[BookingResponse])
def list_bookings(
    current_user: User = Depends(require_roles(Role.USER, Role.ADMIN)),
    bookings: BookingService = Depends(get_booking_service),
):
    """Return all bookings for admins, otherwise only the caller's own."""
    return bookings.list_bookings(current_user)


@router.post("/bookings", status_code=201, response_model=BookingCreatedResponse)
def create_booking(
    payload: BookingRequest,
    current_user: User = Depends(require_roles(Role.USER)),
    bookings: BookingService = Depends(get_booking_service),
):
    booking = bookings.create_booking(
        current_user,
        name=payload.name,
        email=payload.email,
        check_in=payload.check_in,
        check_out=payload.check_out,
        room_type=payload.room_type,
    )
    return BookingCreatedResponse(id=booking.id, message="Booking confirmed")


@router.delete("/bookings/{booking_id}", status_code=204)
def delete_booking(
    booking_id: int,
    current_user: User = Depends(require_roles(Role.USER, Role.ADMIN)),
    bookings: BookingService = Depends(get_booking_service),
):
    """Cancel a booking; users may only cancel their own."""
    bookings.delete_booking(current_user, booking_id)
    return Response(status_code=204)


@router.get("/admin/users", response_model=List[UserResponse])
def list_users(
    current_user: User = Depends(require_roles(Role.ADMIN)),
    db: Session = Depends(get_db),
):
    return UserStore(db).list_all()


@router.get("/admin/stats", response_model=StatsResponse)
def get_stats(
    current_user: User = Depends(require_roles(Role.ADMIN)),
    bookings: BookingService = Depends(get_booking_service),
):
    return bookings.stats()


app.include_router(router)
app.include_router(router, prefix="/api", include_in_schema=False)


@app.get("/health")
def health():
    """Liveness probe."""
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": time.monotonic() - STARTED_AT,
    }
