"""Exception types raised inside drawat."""


class DrawatError(Exception):
    """Base class for drawat errors."""


class StoreError(DrawatError):
    """A remote record backend failed to answer a request."""

    def __init__(self, backend: str, message: str, status_code: int | None = None):
        super().__init__(f"{backend}: {message}")
        self.backend = backend
        self.status_code = status_code


class SessionError(DrawatError):
    """The session layer could not complete an authorization step."""
