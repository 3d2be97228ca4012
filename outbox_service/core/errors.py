class OutboxError(Exception):
    """Base class for outbox failures."""


class PersistenceError(OutboxError):
    """
    The store rejected an outbox write (constraint violation, lost connection).

    Raised inside the producer's transaction so the aggregate mutation and the
    event insert fail together.
    """


class PublishError(OutboxError):
    """The broker did not accept a message."""


class TransientPublishError(PublishError):
    """Broker unreachable, timed out or throttled. Worth retrying."""


class PermanentPublishError(PublishError):
    """Malformed message or unknown topic. Retrying will not help."""


class NotFoundError(ValueError):
    pass
