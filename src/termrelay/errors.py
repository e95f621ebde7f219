"""
Error taxonomy shared by the session core.

Each error maps to a user-visible ``error`` notification; none of them close
the client connection.
"""


class RelayError(Exception):
    """Base class for errors reported back to a client."""

    pass


class ConfigurationError(RelayError):
    """A required credential or setting is missing. The session may be retried."""

    pass


class CapacityError(RelayError):
    """The owner already holds the maximum number of active sessions."""

    pass


class UsageError(RelayError):
    """An operation was called in the wrong state (double start, write to a stopped process)."""

    pass


class TransportError(RelayError):
    """The client transport is closed. Sends are best effort and callers swallow this."""

    pass


class ProcessSpawnError(RelayError):
    """The child process could not be spawned."""

    pass


class MalformedInputError(RelayError):
    """An inbound frame was not valid JSON or did not match the intent schema."""

    pass
