import logging
import signal

from detach.stream.endpoint import StreamServer
from signal import SIGTERM, SIGINT
from typing import Callable, Optional


logger = logging.getLogger(__name__)


class ShutdownRequested(BaseException):
    """ Raised from a signal handler to unwind a blocking server loop.

    It derives from BaseException, like KeyboardInterrupt, so it passes
    through the ``except Exception`` blocks guarding user callbacks.
    """


def run(server: StreamServer, *, finalize: Optional[Callable[[], None]] = None):
    """ Configure the process to react to signals then run a server until it
    stops.

    This function provides some of the common boilerplate typically needed
    when running a worker in the foreground. It registers signal handlers
    that listen for SIGINT and SIGTERM. When one is received the handler
    raises an exception that unwinds the blocking accept call, so the
    server's context manager still closes the listener and removes the
    socket file.

    :param server: A server endpoint. It is started if not already running
      and is always stopped before this function returns.

    :param finalize: An optional callable taking no arguments to run when
      shutting down. Use this to perform any graceful cleanup activities
      such as flushing log files.

    :returns: True if the server stopped on its own (e.g. a quit command)
      and False if it was stopped by a signal.
    """
    logger.debug("Application runner starting")

    if not isinstance(server, StreamServer):
        raise Exception(f"server must be a StreamServer, got {server}")

    if finalize is not None and not callable(finalize):
        raise Exception(
            f"finalize must be a callable that takes no arguments, got {finalize}"
        )

    def signal_handler(signum, frame):
        sig = signal.Signals(signum)
        logger.info(f"Caught {sig.name}, stopping.")
        raise ShutdownRequested(sig.name)

    previous = {
        SIGINT: signal.signal(SIGINT, signal_handler),
        SIGTERM: signal.signal(SIGTERM, signal_handler),
    }

    completed = False
    try:
        with server:
            server.serve_forever()
        completed = True
    except ShutdownRequested:
        pass
    finally:
        logger.debug("Application shutdown sequence starting")

        for sig, handler in previous.items():
            signal.signal(sig, handler)

        if finalize:
            finalize()

        logger.debug("Application runner stopped")

    return completed
