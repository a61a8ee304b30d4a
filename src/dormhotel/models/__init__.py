from .booking import Booking, RoomType
from .user import Role, User

__all__ = ["Booking", "Role", "RoomType", "User"]
