"""
Error kinds raised inside the bridge.

Every error is local to one call session except ConfigError, which is raised
before the server accepts any connection.
"""


class BridgeError(Exception):
    """Base class for all bridge errors."""


class ConfigError(BridgeError):
    """A required setting is missing or invalid. Fatal at startup."""


class AuthError(BridgeError):
    """The telephony start event carried a wrong shared secret."""


class TransportError(BridgeError):
    """One of the two sockets failed or closed."""


class CodecError(BridgeError):
    """An audio payload could not be decoded or converted."""


class BackendError(BridgeError):
    """The tool backend call failed. Surfaced to the model as a soft error."""


class ProtocolError(BridgeError):
    """A message was malformed or arrived in the wrong state."""
