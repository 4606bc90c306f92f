import typing as t


class BridgeError(Exception):
    """
    Base class for errors raised by the Nacos bridge.
    """


class InvalidEndpoint(BridgeError):  # noqa: N818
    """
    Raised when a URL cannot be turned into a host and port.
    """

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"invalid endpoint '{url}': {reason}")


class UnknownOption(BridgeError, ValueError):  # noqa: N818
    """
    Raised when an option is given that the options record does not recognise.
    """

    def __init__(self, names: t.Iterable[str]):
        self.names = sorted(names)
        super().__init__(f"unknown option(s): {', '.join(self.names)}")


class InvalidOption(BridgeError, ValueError):  # noqa: N818
    """
    Raised when an option has a value that does not validate.
    """


class OperationError(BridgeError):
    """
    Base class for errors that wrap a failed call to Nacos.
    """

    #: The operation that failed
    operation: str = "request"

    def __init__(self, subject: str, cause: t.Optional[BaseException] = None):
        self.subject = subject
        self.cause = cause
        message = f"{self.operation} failed for '{subject}'"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ClientInitError(OperationError):
    """
    Raised when a Nacos client cannot be constructed.
    """

    operation = "client initialisation"


class ConfigFetchError(OperationError):
    """
    Raised when a configuration document cannot be fetched.
    """

    operation = "config fetch"


class SubscribeError(OperationError):
    """
    Raised when a subscription is not accepted by Nacos.
    """

    operation = "subscribe"


class UnsubscribeError(OperationError):
    """
    Raised when cancelling a subscription fails.
    """

    operation = "unsubscribe"


class RegisterError(OperationError):
    """
    Raised when registering an endpoint fails.

    The subject is the endpoint that failed. Endpoints registered before the failing
    one are left registered.
    """

    operation = "register"


class DeregisterError(OperationError):
    """
    Raised when deregistering an endpoint fails.
    """

    operation = "deregister"


class DiscoveryError(OperationError):
    """
    Raised when the instances of a service cannot be fetched.
    """

    operation = "get service"


class WatcherCancelled(BridgeError):  # noqa: N818
    """
    Raised by a service watcher once it has been stopped or its parent cancelled.
    """

    def __init__(self, subject: str):
        self.subject = subject
        super().__init__(f"watcher for '{subject}' has been cancelled")
