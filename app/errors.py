"""Error taxonomy shared by the conversation handlers and the dispatcher."""


class ReminderError(Exception):
    """Base class for errors raised by the reminder core."""


class ValidationError(ReminderError):
    """User input or a requested record is malformed.

    The message is user-facing: handlers send it back as a corrective prompt.
    """


class PersistenceError(ReminderError):
    """The record store is unavailable or a transaction failed."""


class CollaboratorFailure(ReminderError):
    """An external service (SMS, intent resolution, weather) failed."""


class NotFoundError(ReminderError):
    """A cancel target does not exist or belongs to another user."""
