class DetachError(Exception):
    """ Base class for errors raised by this library """


class ParseError(DetachError):
    """ A frame could not be decoded into a command or response.

    Raised when a discriminator is unrecognized, a length field can not be
    parsed, a required separator is missing or a frame violates the length
    declared by its value field.
    """


class TransportError(DetachError):
    """ An I/O failure occurred on the underlying socket. """


class ResourceError(DetachError):
    """ The rendezvous socket could not be created (e.g. it is in use). """
