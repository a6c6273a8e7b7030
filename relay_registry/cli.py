"""Command line entry point for the registry, the relay agent and the client flow."""

import argparse
import os
import sys

from . import api
from .agent import HEARTBEAT_INTERVAL_S, RelayAgent, generate_keypair
from .client import REGISTRY_URL, RegistryClient, RegistryClientError, connect
from .errors import AlreadyInitialized, StoreUnavailable
from .storage import DB_FILE, JsonFileStore


def _cmd_init(args) -> int:
    try:
        JsonFileStore(args.db_file).initialize(force=args.force)
    except AlreadyInitialized as e:
        print(f"Error: {e}. Use --force to overwrite it.")
        return 1
    except StoreUnavailable as e:
        print(f"Error: {e}")
        return 1
    print(f"Registry initialized at {args.db_file}")
    return 0


def _cmd_serve(args) -> int:
    import uvicorn

    api.reset_state(JsonFileStore(args.db_file))
    uvicorn.run(api.app, host=args.host, port=args.port, log_level="info")
    return 0


def _cmd_agent(args) -> int:
    if not args.identity:
        print("Error: an identity is required (--identity or RELAY_IDENTITY).")
        return 1
    public_key = args.public_key
    if not public_key:
        private_key, public_key = generate_keypair()
        print(f"Generated relay key pair. Private key: {private_key}")
        print(f"Public key: {public_key}")

    client = RegistryClient(args.url, identity=args.identity)
    agent = RelayAgent(client, args.name, public_key, args.address, interval=args.interval)
    try:
        agent.register()
        client_key = agent.run()
    except RegistryClientError as e:
        print(f"Error: {e}")
        return 1
    finally:
        client.close()
    print(f"Assigned client public key: {client_key}")
    return 0


def _cmd_connect(args) -> int:
    client = RegistryClient(args.url)
    try:
        relay = connect(client, args.public_key, name=args.name)
    except RegistryClientError as e:
        print(f"Error: {e}")
        return 1
    finally:
        client.close()
    print(f"Relay {relay.name}: public key {relay.public_key}, endpoint {relay.address}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rendezvous and liveness registry for relay nodes.")
    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", help="Create an empty registry snapshot.")
    init.add_argument("--db-file", default=DB_FILE, help="Path to the registry snapshot.")
    init.add_argument("--force", action="store_true", help="Overwrite an existing snapshot.")
    init.set_defaults(func=_cmd_init)

    serve = sub.add_parser("serve", help="Run the registry HTTP service.")
    serve.add_argument("--db-file", default=DB_FILE, help="Path to the registry snapshot.")
    serve.add_argument("--host", default=api.HOST)
    serve.add_argument("--port", type=int, default=api.PORT)
    serve.set_defaults(func=_cmd_serve)

    agent = sub.add_parser("agent", help="Register a relay node and heartbeat until a client is assigned.")
    agent.add_argument("--url", default=REGISTRY_URL, help="Registry base URL.")
    agent.add_argument("--identity", default=os.getenv("RELAY_IDENTITY"), help="Caller identity of this node.")
    agent.add_argument("--name", required=True, help="Server name clients select by.")
    agent.add_argument("--address", required=True, help="Address clients connect to.")
    agent.add_argument("--public-key", help="Relay public key; generated when omitted.")
    agent.add_argument("--interval", type=float, default=HEARTBEAT_INTERVAL_S, help="Heartbeat interval in seconds.")
    agent.set_defaults(func=_cmd_agent)

    conn = sub.add_parser("connect", help="Select an active relay for a client key.")
    conn.add_argument("--url", default=REGISTRY_URL, help="Registry base URL.")
    conn.add_argument("--public-key", required=True, help="Client public key to hand to the relay.")
    conn.add_argument("--name", help="Relay name; the highest reputation relay when omitted.")
    conn.set_defaults(func=_cmd_connect)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
