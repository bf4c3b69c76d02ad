class GlobalMessages:
    # Auth Messages
    INVALID_CREDENTIALS = "Could not validate credentials. Please log in again."
    ROLE_NOT_ALLOWED = "Your role does not have access to this screen."

    # Queue Messages
    NOBODY_WAITING = "No one is waiting."
    TICKET_ISSUED = "Ticket #{number} issued."
    TICKET_CALLED = "Ticket #{number} called."
    TICKET_DONE = "Ticket #{number} done."
    TICKET_ALREADY_DONE = "Ticket #{number} already done."

    # Service Messages
    SERVICE_BOOKED = "Service booked successfully."
    SERVICE_STARTED = "Service started."
    SERVICE_COMPLETED = "Service completed."
    SERVICE_CANCELLED = "Service cancelled."
    ITEM_ADDED = "Item added."
    ITEM_REMOVED = "Item removed."
    ITEM_FINALIZED = "Item finalized."
    PAYMENT_RECORDED = "Payment recorded."
    PAYMENT_STATUS_UPDATED = "Payment status updated."
