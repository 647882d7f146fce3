import enum


class GuestTokenAction(str, enum.Enum):
    CHARGE_APPROVAL = "charge_approval"
    PAYMENT = "payment"
    CARD_CAPTURE = "card_capture"
    WAITLIST_OFFER = "waitlist_offer"
    SUNDAY_PREORDER = "sunday_preorder"


class TableBookingStatus(str, enum.Enum):
    PENDING_PAYMENT = "pending_payment"
    PENDING_CARD_CAPTURE = "pending_card_capture"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    COMPLETED = "completed"


class TableBookingType(str, enum.Enum):
    REGULAR = "regular"
    SUNDAY_LUNCH = "sunday_lunch"


class ChargeRequestType(str, enum.Enum):
    LATE_CANCEL = "late_cancel"
    NO_SHOW = "no_show"
    REDUCTION_FEE = "reduction_fee"
    WALKOUT = "walkout"


class ManagerDecision(str, enum.Enum):
    APPROVED = "approved"
    WAIVED = "waived"


class ChargeStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    WAIVED = "waived"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentChargeType(str, enum.Enum):
    TABLE_DEPOSIT = "table_deposit"
    APPROVED_FEE = "approved_fee"
    WALKOUT = "walkout"


class CardCaptureStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"


class EventPaymentMode(str, enum.Enum):
    FREE = "free"
    PREPAID = "prepaid"


class EventBookingStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    PENDING_PAYMENT = "pending_payment"
    CANCELLED = "cancelled"


class WaitlistEntryStatus(str, enum.Enum):
    QUEUED = "queued"
    OFFERED = "offered"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class WaitlistOfferStatus(str, enum.Enum):
    SENT = "sent"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class BookingHoldType(str, enum.Enum):
    WAITLIST_HOLD = "waitlist_hold"
    PAYMENT_HOLD = "payment_hold"


class BookingHoldStatus(str, enum.Enum):
    ACTIVE = "active"
    CONSUMED = "consumed"
    EXPIRED = "expired"
