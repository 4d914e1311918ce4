class MessagingError(Exception):
    """
    Base class for every failure raised by the messaging services.
    """

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(MessagingError):
    """Malformed or contradictory input."""


class NotFoundError(MessagingError):
    """Referenced entity does not exist."""


class ForbiddenError(MessagingError):
    """Authenticated, but not allowed to perform this action."""


class ConflictError(MessagingError):
    """Concurrent write collided with a unique constraint."""
