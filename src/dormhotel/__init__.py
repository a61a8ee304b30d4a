"""DormHotel room booking API."""

from .api import app

__all__ = ["app"]
