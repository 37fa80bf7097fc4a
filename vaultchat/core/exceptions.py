class ChatError(Exception):
    """Base error for the chat core. `status_code` is what the HTTP layer answers with."""

    status_code = 500

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__ or self.__class__.__name__
        super().__init__(self.message)


class NotAuthenticated(ChatError):
    """No authenticated session."""

    status_code = 401


class InvalidArgument(ChatError):
    """Invalid argument."""

    status_code = 400


class NotFound(ChatError):
    """Record not found."""

    status_code = 404


class StoreError(ChatError):
    """The document store rejected the request."""

    status_code = 500


class BackendUnavailable(StoreError):
    """The document store could not be reached."""

    status_code = 503


class PartialWriteFailure(ChatError):
    """The operation failed after some of its writes were committed."""

    status_code = 500
