"""Booking records (users, services, offers) consumed by payments."""

from partyrent.modules.booking.models import Offer, OfferStatus, Service, User, UserRole
from partyrent.modules.booking.repository import BookingRepository

__all__ = ["Offer", "OfferStatus", "Service", "User", "UserRole", "BookingRepository"]
