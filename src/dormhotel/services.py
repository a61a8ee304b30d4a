"""Service layer: credential and booking stores plus the booking rules."""

import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Dict, Iterator, List, Optional, Tuple, Union

from prometheus_client import Counter
from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .exceptions import (
    DuplicateEmail,
    Forbidden,
    NotFound,
    StoreUnavailable,
    Unauthenticated,
    ValidationError,
)
from .models import Booking, Role, RoomType, User
from .security import PasswordHasher


logger = logging.getLogger(__name__)

USER_REGISTERED_COUNTER = Counter(
    "users_registered_total", "Total user accounts registered"
)
BOOKING_CREATED_COUNTER = Counter(
    "bookings_created_total", "Total bookings created", ["room_type"]
)
BOOKING_DELETED_COUNTER = Counter(
    "bookings_deleted_total", "Total bookings deleted", ["role"]
)

DateInput = Union[str, date, None]

# largest value a signed 64-bit INTEGER primary key can hold
MAX_ROW_ID = 2**63 - 1


@contextmanager
def _store_errors(session: Session) -> Iterator[None]:
    """Rollback and surface database failures as :class:`StoreUnavailable`."""
    try:
        yield
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("database error")
        raise StoreUnavailable() from exc


class UserStore:
    """Persistence for user credentials."""

    def __init__(self, session: Session):
        self.session = session

    def find_by_email(self, email: str) -> Optional[User]:
        with _store_errors(self.session):
            return self.session.query(User).filter(User.email == email).first()

    def find_by_id(self, user_id: int) -> Optional[User]:
        with _store_errors(self.session):
            return self.session.get(User, user_id)

    def insert(self, email: str, password_hash: str) -> User:
        """Create a regular user, raising :class:`DuplicateEmail` if taken."""
        if self.find_by_email(email) is not None:
            raise DuplicateEmail()
        user = User(email=email, password_hash=password_hash, role=Role.USER.value)
        with _store_errors(self.session):
            try:
                self.session.add(user)
                self.session.commit()
            except IntegrityError as exc:
                # lost a race against a concurrent registration
                self.session.rollback()
                raise DuplicateEmail() from exc
            self.session.refresh(user)
        return user

    def upsert_admin(self, email: str, password_hash: str) -> User:
        """Create the admin account or reset its hash and role."""
        with _store_errors(self.session):
            user = self.session.query(User).filter(User.email == email).first()
            if user is None:
                user = User(email=email, password_hash=password_hash, role=Role.ADMIN.value)
                self.session.add(user)
            else:
                user.password_hash = password_hash
                user.role = Role.ADMIN.value
            self.session.commit()
            self.session.refresh(user)
        return user

    def list_all(self) -> List[User]:
        with _store_errors(self.session):
            return (
                self.session.query(User)
                .order_by(User.created_at.desc(), User.id.desc())
                .all()
            )

    def count(self) -> int:
        with _store_errors(self.session):
            return self.session.query(func.count(User.id)).scalar() or 0


class BookingStore:
    """Persistence for bookings, newest first."""

    def __init__(self, session: Session):
        self.session = session

    def _ordered(self):
        return self.session.query(Booking).order_by(
            Booking.created_at.desc(), Booking.id.desc()
        )

    def list_all(self) -> List[Booking]:
        with _store_errors(self.session):
            return self._ordered().all()

    def list_by_owner(self, user_id: int) -> List[Booking]:
        with _store_errors(self.session):
            return self._ordered().filter(Booking.user_id == user_id).all()

    def insert(
        self,
        owner_id: int,
        name: str,
        email: str,
        check_in: date,
        check_out: date,
        room_type: RoomType,
    ) -> Booking:
        booking = Booking(
            user_id=owner_id,
            name=name,
            email=email,
            check_in=check_in,
            check_out=check_out,
            room_type=RoomType(room_type).value,
        )
        with _store_errors(self.session):
            self.session.add(booking)
            self.session.commit()
            self.session.refresh(booking)
        return booking

    def find_by_id(self, booking_id: int) -> Optional[Booking]:
        with _store_errors(self.session):
            return self.session.get(Booking, booking_id)

    def delete_by_id(self, booking_id: int) -> bool:
        """Delete in a single statement; ``True`` if a row was removed."""
        with _store_errors(self.session):
            result = self.session.execute(delete(Booking).where(Booking.id == booking_id))
            self.session.commit()
        return result.rowcount > 0

    def count(self) -> int:
        with _store_errors(self.session):
            return self.session.query(func.count(Booking.id)).scalar() or 0

    def count_by_room_type(self) -> List[Tuple[str, int]]:
        with _store_errors(self.session):
            rows = (
                self.session.query(Booking.room_type, func.count(Booking.id))
                .group_by(Booking.room_type)
                .order_by(Booking.room_type)
                .all()
            )
        return [(room_type, count) for room_type, count in rows]


class AccountService:
    """Registration, login and admin seeding."""

    def __init__(self, users: UserStore, hasher: PasswordHasher):
        self.users = users
        self.hasher = hasher

    def register(self, email: Optional[str], password: Optional[str]) -> User:
        if not email or not password:
            raise ValidationError("Email and password required")
        user = self.users.insert(email, self.hasher.hash(password))
        USER_REGISTERED_COUNTER.inc()
        logger.info("registered user id=%s email=%s", user.id, user.email)
        return user

    def authenticate(self, email: Optional[str], password: Optional[str]) -> User:
        """Return the user for valid credentials, else raise :class:`Unauthenticated`."""
        user = self.users.find_by_email(email) if email else None
        if user is None or not password or not self.hasher.verify(password, user.password_hash):
            logger.info("failed login for email=%s", email)
            raise Unauthenticated("Invalid credentials")
        logger.info("login user id=%s role=%s", user.id, user.role)
        return user

    def seed_admin(self, email: str, password: str) -> User:
        user = self.users.upsert_admin(email, self.hasher.hash(password))
        logger.info("default admin ready email=%s", user.email)
        return user


def _parse_date(value: DateInput, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        pass
    try:
        return datetime.fromisoformat(value).date()
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid {field} date") from exc


def _is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class BookingService:
    """Validation and ownership rules for bookings."""

    def __init__(self, bookings: BookingStore, users: UserStore):
        self.bookings = bookings
        self.users = users

    def create_booking(
        self,
        acting_user: User,
        name: Optional[str],
        email: Optional[str],
        check_in: DateInput,
        check_out: DateInput,
        room_type: Optional[str],
        today: Optional[date] = None,
    ) -> Booking:
        """Validate the request and store a booking owned by ``acting_user``.

        Checks run in order and the first failure is raised: required
        fields, check-in parses and is not in the past, check-out parses and
        is after check-in, known room type.
        """
        if any(_is_blank(v) for v in (name, email, check_in, check_out, room_type)):
            raise ValidationError("All fields are required")

        check_in_date = _parse_date(check_in, "check-in")
        today = today or date.today()
        if check_in_date < today:
            raise ValidationError("Check-in date cannot be in the past")

        check_out_date = _parse_date(check_out, "check-out")
        if check_out_date <= check_in_date:
            raise ValidationError("Check-out date must be after check-in date")
        try:
            room = RoomType(room_type)
        except ValueError as exc:
            raise ValidationError("Room type must be one of single, double, suite") from exc

        booking = self.bookings.insert(
            acting_user.id, name, email, check_in_date, check_out_date, room
        )
        BOOKING_CREATED_COUNTER.labels(room_type=room.value).inc()
        logger.info(
            "created booking id=%s user=%s room=%s %s..%s",
            booking.id,
            acting_user.id,
            room.value,
            check_in_date,
            check_out_date,
        )
        return booking

    def delete_booking(self, acting_user: User, booking_id: int) -> None:
        if not 1 <= booking_id <= MAX_ROW_ID:
            raise NotFound("Booking not found")
        booking = self.bookings.find_by_id(booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        if not acting_user.is_admin and booking.user_id != acting_user.id:
            raise Forbidden("You can only delete your own bookings")
        if not self.bookings.delete_by_id(booking_id):
            raise NotFound("Booking not found")
        BOOKING_DELETED_COUNTER.labels(role=acting_user.role).inc()
        logger.info(
            "booking %s deleted by %s (%s)", booking_id, acting_user.role, acting_user.email
        )

    def list_bookings(self, acting_user: User) -> List[Booking]:
        if acting_user.is_admin:
            return self.bookings.list_all()
        return self.bookings.list_by_owner(acting_user.id)

    def stats(self) -> Dict[str, object]:
        """Summarize user and booking counts for the admin dashboard."""
        return {
            "totalUsers": self.users.count(),
            "totalBookings": self.bookings.count(),
            "roomStats": [
                {"room_type": room_type, "count": count}
                for room_type, count in self.bookings.count_by_room_type()
            ],
        }
