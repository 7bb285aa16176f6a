class TransportError(Exception):
    """Error surfaced by the HTTP transport through its error callback.

    The message is ``"<context>: <cause>"`` so that handlers which only log
    ``str(error)`` still see where the failure happened.

    Attributes:
        context: short description of the operation that failed
        cause: the underlying exception, if any (also set as ``__cause__``)
    """

    def __init__(self, context: str, cause: BaseException | None = None):
        super().__init__(f"{context}: {cause}" if cause is not None else context)
        self.context = context
        self.cause = cause
        self.__cause__ = cause


class MessageParseError(TransportError):
    """An inbound HTTP body could not be decoded as JSON."""


class InvalidMessageError(TransportError):
    """A payload does not have the shape of a JSON-RPC request, notification or response."""


class SessionWriteError(TransportError):
    """Writing to a session's stream failed and the session was dropped."""

    def __init__(self, session_id: str, context: str, cause: BaseException | None = None):
        super().__init__(context, cause)
        self.session_id = session_id
