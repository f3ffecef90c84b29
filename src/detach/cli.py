import argparse
import logging
import os
import sys

from detach import __version__, client, serialization
from detach.errors import DetachError
from detach.runner import run
from detach.store import Store
from detach.stream.endpoint import DEFAULT_SOCKET_PATH
from detach.wire import Err, Ok, Value, WrappedValue
from detach.worker import Worker
from typing import List, Optional


logger = logging.getLogger(__name__)


SOCKET_ENV_VAR = "DETACH_SOCKET"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="detach", description="A key-value store held by a background worker"
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--socket",
        metavar="<path>",
        type=str,
        default=os.environ.get(SOCKET_ENV_VAR, DEFAULT_SOCKET_PATH),
        help=f"The worker's socket path. Default is ${SOCKET_ENV_VAR} or {DEFAULT_SOCKET_PATH}",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "error"],
        default="error",
        help="Logging level. Default is 'error'.",
    )

    subparsers = parser.add_subparsers(dest="action", metavar="<command>")
    subparsers.required = True

    worker_parser = subparsers.add_parser(
        "worker", help="Run a worker in the foreground."
    )
    worker_parser.add_argument(
        "--dump-format",
        type=str,
        choices=sorted(serialization.registry.serializers),
        default=serialization.registry.default,
        help="How the dump command renders the store. Default is 'text'.",
    )

    get_parser = subparsers.add_parser(
        "get", help="Retrieve the value for a key (if any)."
    )
    get_parser.add_argument("key", type=str)

    set_parser = subparsers.add_parser(
        "set", help="Set the value for a key (overwriting any already set)."
    )
    set_parser.add_argument("key", type=str)
    set_parser.add_argument("value", type=str)

    del_parser = subparsers.add_parser("del", help="Remove a key (if present).")
    del_parser.add_argument("key", type=str)

    subparsers.add_parser("dump", help="Dump the background worker's state.")
    subparsers.add_parser("quit", help="Close the background worker (if one is open).")

    return parser


def configure_logging(log_level: str):
    try:
        numeric_level = getattr(logging, log_level.upper())
    except AttributeError:
        raise Exception(f"Invalid log-level: {log_level}") from None

    logging.basicConfig(
        format="%(asctime)s.%(msecs)03.0f [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        level=numeric_level,
    )


def worker_command(args) -> int:
    def on_started(server):
        print(f"started background worker on {server.path}", flush=True)

    worker = Worker(
        args.socket, store=Store(dump_format=args.dump_format), on_started=on_started
    )
    run(worker)
    return 0


def write_value(value: WrappedValue):
    """ Write a value's bytes to stdout unchanged, followed by a newline """
    sys.stdout.flush()
    sys.stdout.buffer.write(value.payload + b"\n")
    sys.stdout.buffer.flush()


def client_command(args) -> int:
    if args.action == "get":
        response = client.get(args.key, args.socket)
    elif args.action == "set":
        response = client.set(args.key, args.value, args.socket)
    elif args.action == "del":
        response = client.delete(args.key, args.socket)
    elif args.action == "dump":
        response = client.dump(args.socket)
    else:
        response = client.quit(args.socket)

    if isinstance(response, Err):
        print(f"ERR {response.message}", file=sys.stderr)
        return 1

    if isinstance(response, Value):
        write_value(response.value)
    elif isinstance(response, Ok):
        print("OK")

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        if args.action == "worker":
            return worker_command(args)
        return client_command(args)
    except DetachError as exc:
        print(exc, file=sys.stderr)
        return 1
