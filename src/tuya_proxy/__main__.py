"""CLI entry point for the Tuya signing proxy.

Usage::

    python -m tuya_proxy serve [--host 127.0.0.1] [--port 8000]
    python -m tuya_proxy call  PATH [--method GET] [--body JSON]
    python -m tuya_proxy sign  PATH [--method GET] [--body JSON] [--token TOKEN] [--t MILLIS]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from tuya_proxy.auth import Signer, serialize_body
from tuya_proxy.config import TuyaConfig, load_config
from tuya_proxy.errors import ConfigError
from tuya_proxy.handler import invoke


def main() -> None:
    """Parse arguments and dispatch to the appropriate subcommand."""
    parser = argparse.ArgumentParser(
        prog="tuya_proxy",
        description="Request-signing proxy for the Tuya Cloud API",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Log signing details at DEBUG level",
    )
    sub = parser.add_subparsers(dest="command")

    # -- serve ---------------------------------------------------------------
    serve_p = sub.add_parser("serve", help="Run the proxy as an HTTP server")
    serve_p.add_argument(
        "--host", type=str, default="127.0.0.1",
        help="Bind address (default: 127.0.0.1)",
    )
    serve_p.add_argument(
        "--port", type=int, default=8000,
        help="Port (default: 8000)",
    )

    # -- call ----------------------------------------------------------------
    call_p = sub.add_parser("call", help="Proxy a single Tuya API call")
    call_p.add_argument("path", help="API path including query string")
    call_p.add_argument("--method", default="GET", help="HTTP method (default: GET)")
    call_p.add_argument("--body", type=json.loads, default=None, help="JSON request body")

    # -- sign ----------------------------------------------------------------
    sign_p = sub.add_parser("sign", help="Print the signed headers for a request")
    sign_p.add_argument("path", help="API path including query string")
    sign_p.add_argument("--method", default="GET", help="HTTP method (default: GET)")
    sign_p.add_argument("--body", type=json.loads, default=None, help="JSON request body")
    sign_p.add_argument("--token", default="", help="Access token (omit for token requests)")
    sign_p.add_argument("--t", default=None, help="Timestamp in epoch milliseconds")

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    try:
        config = load_config()
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    if args.command == "serve":
        _run_serve(config, args)
    elif args.command == "call":
        asyncio.run(_run_call(config, args))
    elif args.command == "sign":
        _run_sign(config, args)


def _run_serve(config: TuyaConfig, args: argparse.Namespace) -> None:
    import uvicorn

    from tuya_proxy.server import create_app

    app = create_app(config)
    uvicorn.run(app, host=args.host, port=args.port)


async def _run_call(config: TuyaConfig, args: argparse.Namespace) -> None:
    payload: dict[str, object] = {"path": args.path, "method": args.method}
    if args.body is not None:
        payload["body"] = args.body
    result = await invoke(config, {"httpMethod": "POST", "body": json.dumps(payload)})
    print(f"Status: {result['statusCode']}")
    print(result["body"])
    if result["statusCode"] >= 400:
        sys.exit(1)


def _run_sign(config: TuyaConfig, args: argparse.Namespace) -> None:
    signer = Signer.from_config(config)
    headers = signer.headers(
        args.method,
        args.path,
        body=serialize_body(args.body),
        access_token=args.token,
        t=args.t,
    )
    for name, value in headers.items():
        print(f"{name}: {value}")


if __name__ == "__main__":
    main()
