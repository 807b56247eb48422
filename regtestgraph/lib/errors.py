"""
Exceptions raised by the regtest components.

Where an error has a natural builtin counterpart, it inherits from it, so
callers catching e.g. FileNotFoundError or ValueError keep working.
"""


class RegtestError(Exception):
    """Base class of all errors raised by regtestgraph."""


class ExecutableNotFound(RegtestError, FileNotFoundError):
    pass


class DaemonStartTimeout(RegtestError, TimeoutError):
    pass


class WalletSetupFailed(RegtestError):
    pass


class RpcError(RegtestError):
    """
    Wraps a failed call to one of the RPC surfaces.

    :param operation: str: rpc method that failed
    :param message: str: message of the underlying error
    :param code: int: rpc error code, if the daemon returned one
    """
    def __init__(self, operation, message, code=None):
        self.operation = operation
        self.message = message
        self.code = code
        super().__init__(f"{operation}: {message}")


class RpcConnectionError(RpcError):
    """The daemon could not be reached at all."""


class DuplicateLabel(RpcError):
    pass


class InvalidAddress(RegtestError, ValueError):
    pass


class InvalidAmount(RegtestError, ValueError):
    pass


class InvalidPeerId(RegtestError, ValueError):
    pass


class NotConnected(RegtestError):
    pass


class NoAddressReturned(RegtestError):
    pass


class MissingField(RegtestError, KeyError):
    def __str__(self):
        return str(self.args[0]) if self.args else ''
