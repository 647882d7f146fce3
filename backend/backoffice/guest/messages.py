BLOCKED_MESSAGES = {
    "invalid_token": "This link is not valid.",
    "token_expired": "This link has expired.",
    "token_used": "This link has already been used.",
    "rate_limited": "Too many attempts were made with this link. Please wait a few minutes and try again.",
    "token_customer_mismatch": "This link does not match the booking.",
    "charge_request_not_found": "This charge request no longer exists.",
    "booking_not_found": "We could not find this booking.",
    "booking_not_pending_payment": "This booking is no longer waiting for payment.",
    "booking_not_pending_card_capture": "This booking no longer needs card details.",
    "booking_not_active": "This booking is no longer active.",
    "hold_expired": "The time to pay for this booking has run out.",
    "not_sunday_lunch": "This booking is not a Sunday lunch booking.",
    "submit_cutoff_passed": "The pre-order deadline for this booking has passed.",
    "offer_not_found": "This waitlist offer no longer exists.",
    "offer_unavailable": "This waitlist offer is no longer available.",
    "offer_expired": "This waitlist offer has expired.",
    "event_not_found": "We could not find this event.",
    "event_started": "This event has already started.",
    "booking_closed": "Bookings for this event are closed.",
    "not_bookable": "This event cannot be booked.",
    "capacity_unavailable": "Sorry, there are no longer enough seats available.",
    "payment_unavailable": "Online payment is not available right now. Please contact us.",
    "invalid_decision": "Please choose approve or waive.",
    "invalid_amount": "Please enter a valid amount.",
    "amount_over_limit": "That amount is above the limit for a single charge.",
    "amount_confirmation_mismatch": "The re-entered amount did not match the approved amount.",
    "threshold_confirmation_required": "Please confirm you have reviewed the high-value warning.",
    "empty_preorder": "Please choose at least one dish.",
    "invalid_menu_item": "One of the chosen dishes is no longer on the menu.",
    "invalid_quantity": "Please choose a smaller quantity.",
    "internal_error": "Something went wrong. Please try again later.",
}

DEFAULT_BLOCKED_MESSAGE = "This page is unavailable."

STATUS_BANNERS = {
    "saved": "Your pre-order has been saved.",
    "checkout_complete": "Thanks. We are confirming your booking now.",
    "cutoff": "The pre-order deadline has passed, so changes could not be saved.",
    "error": "We could not process that action. Please try again.",
    "rate_limited": BLOCKED_MESSAGES["rate_limited"],
    "approved_succeeded": "Charge approved and payment succeeded.",
    "approved_pending": "Charge approved. Payment is still processing.",
    "approved_failed": "Charge approved but payment failed.",
    "waived": "Charge request waived.",
    "confirmed": "Your seats are confirmed.",
    "payment_required": "Your seats are held. Please complete payment to confirm them.",
    "already_decided": "This request has already been decided.",
    "amount_confirmation_mismatch": BLOCKED_MESSAGES["amount_confirmation_mismatch"],
    "threshold_confirmation_required": BLOCKED_MESSAGES["threshold_confirmation_required"],
    "invalid_amount": BLOCKED_MESSAGES["invalid_amount"],
    "amount_over_limit": BLOCKED_MESSAGES["amount_over_limit"],
    "empty_preorder": BLOCKED_MESSAGES["empty_preorder"],
    "invalid_menu_item": BLOCKED_MESSAGES["invalid_menu_item"],
    "invalid_quantity": BLOCKED_MESSAGES["invalid_quantity"],
}

PAGE_MESSAGES = {
    "charge-request": {
        "ready": "Review this charge request.",
        "already_decided": "This charge request has already been decided.",
    },
    "table-payment": {
        "ready": "Pay your deposit to confirm the booking.",
        "already_decided": "Your booking is confirmed.",
    },
    "card-capture": {
        "ready": "Add a card to hold your booking.",
        "already_decided": "Your booking is confirmed.",
    },
    "waitlist-offer": {
        "ready": "Seats have opened up for you.",
        "already_decided": "You have already accepted this offer.",
    },
    "sunday-preorder": {
        "ready": "Choose your Sunday lunch.",
    },
}


def blocked_message(reason: str | None) -> str:
    return BLOCKED_MESSAGES.get(reason or "", DEFAULT_BLOCKED_MESSAGE)


def status_banner(status: str | None) -> str | None:
    if not status:
        return None
    return STATUS_BANNERS.get(status)


def page_message(page: str, state: str) -> str:
    return PAGE_MESSAGES.get(page, {}).get(state, "")
