from .enums import (
    BookingHoldStatus,
    BookingHoldType,
    CardCaptureStatus,
    ChargeRequestType,
    ChargeStatus,
    EventBookingStatus,
    EventPaymentMode,
    GuestTokenAction,
    ManagerDecision,
    PaymentChargeType,
    PaymentStatus,
    TableBookingStatus,
    TableBookingType,
    WaitlistEntryStatus,
    WaitlistOfferStatus,
)
from .customer import Customer
from .table_booking import TableBooking
from .card_capture import CardCapture
from .charge_request import ChargeRequest
from .payment import Payment
from .event import Event, EventBooking
from .waitlist import WaitlistEntry, WaitlistOffer
from .booking_hold import BookingHold
from .guest_token import GuestToken
from .sunday_menu import SundayMenuItem, TableBookingItem
from .guest_token_throttle import GuestTokenThrottle
from .idempotency_key import IdempotencyKey

__all__ = [
    "BookingHoldStatus",
    "BookingHoldType",
    "CardCaptureStatus",
    "ChargeRequestType",
    "ChargeStatus",
    "EventBookingStatus",
    "EventPaymentMode",
    "GuestTokenAction",
    "ManagerDecision",
    "PaymentChargeType",
    "PaymentStatus",
    "TableBookingStatus",
    "TableBookingType",
    "WaitlistEntryStatus",
    "WaitlistOfferStatus",
    "Customer",
    "TableBooking",
    "CardCapture",
    "ChargeRequest",
    "Payment",
    "Event",
    "EventBooking",
    "WaitlistEntry",
    "WaitlistOffer",
    "BookingHold",
    "GuestToken",
    "SundayMenuItem",
    "TableBookingItem",
    "GuestTokenThrottle",
    "IdempotencyKey",
]
