class TicketingError(Exception):
    status_code = 500

    def __init__(self, message: str = "", **context):
        super().__init__(message)
        self.message = message
        self.context = context


class WebhookVerificationError(TicketingError):
    status_code = 400


class InvalidPayload(TicketingError):
    status_code = 400


class NotFoundError(TicketingError):
    status_code = 404


class AlreadyUsedError(TicketingError):
    status_code = 409

    def __init__(self, message: str = "Ticket already used", *,
                 used_date=None, **context):
        super().__init__(message, **context)
        self.used_date = used_date


class DuplicateSession(TicketingError):
    """A ticket batch for this payment session was already committed."""
    status_code = 409


class PersistenceError(TicketingError):
    status_code = 500


class EncodingError(TicketingError):
    status_code = 500


class DispatchError(TicketingError):
    status_code = 502
