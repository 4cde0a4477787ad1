"""
Command line interface for the gasless relay.

    gasless-relay serve [--host HOST] [--port PORT] [--network NAME] [--in-memory]
    gasless-relay nonce ADDRESS [--network NAME]
    gasless-relay recover PAYLOAD.json [--network NAME]
"""
import argparse
import json
import logging
import sys
from typing import List, Optional

from pydantic import ValidationError

from .codec import recover_signer
from .config import RelayConfig
from .exceptions import SignatureRecoveryError
from .forwarder import ForwarderError, Web3Forwarder, create_forwarder
from .models import RelayPayload, describe_validation_error
from .relay import RelayService
from .version import __version__

logger = logging.getLogger(__name__)


def _add_global_options(parser: argparse.ArgumentParser, default=None) -> None:
    parser.add_argument("--network", default=default,
                        help="Network preset (default: RELAY_NETWORK or anvil)")
    parser.add_argument("--debug", action="store_true", default=default or False,
                        help="Enable debug output")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gasless-relay",
        description="Relay signed forward requests and pay their fees.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    _add_global_options(parser)

    # Accepted after the subcommand too; SUPPRESS keeps a value given before it
    common = argparse.ArgumentParser(add_help=False)
    _add_global_options(common, default=argparse.SUPPRESS)

    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", parents=[common], help="Run the relay HTTP server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--in-memory", action="store_true",
                       help="Use an in-process forwarder ledger instead of a node")

    nonce = sub.add_parser("nonce", parents=[common], help="Print the forwarder nonce of an account")
    nonce.add_argument("address")

    recover = sub.add_parser("recover", parents=[common], help="Recover the signer of a relay payload")
    recover.add_argument("payload", help="JSON file with {request, signature}, or - for stdin")

    return parser


def _serve(args, config: RelayConfig) -> int:
    import uvicorn
    from .server import create_app

    forwarder = create_forwarder(config, in_memory=args.in_memory)
    if isinstance(forwarder, Web3Forwarder):
        try:
            forwarder.check_chain_id()
        except ForwarderError as e:
            print(f"error: {e}", file=sys.stderr)
            return 1

    service = RelayService(forwarder, config.domain)
    app = create_app(service)
    uvicorn.run(app, host=args.host, port=args.port,
                log_level="debug" if args.debug else "info")
    return 0


def _nonce(args, config: RelayConfig) -> int:
    forwarder = create_forwarder(config)
    try:
        print(forwarder.read_nonce(args.address))
    except (ForwarderError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


def _recover(args, config: RelayConfig) -> int:
    try:
        if args.payload == "-":
            body = json.load(sys.stdin)
        else:
            with open(args.payload, "r", encoding="utf-8") as f:
                body = json.load(f)
        payload = RelayPayload.model_validate(body)
    except (OSError, ValueError) as e:
        detail = describe_validation_error(e) if isinstance(e, ValidationError) else str(e)
        print(f"error: {detail}", file=sys.stderr)
        return 1

    claimed = payload.request.from_address
    try:
        recovered = recover_signer(config.domain, payload.request, payload.signature)
    except SignatureRecoveryError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    print(f"claimed:   {claimed}")
    print(f"recovered: {recovered}")
    if recovered != claimed:
        print("MISMATCH: signature does not match the request under this domain")
        return 1
    print("OK")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = RelayConfig.from_env(args.network)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    handlers = {"serve": _serve, "nonce": _nonce, "recover": _recover}
    return handlers[args.command](args, config)


if __name__ == "__main__":
    sys.exit(main())
