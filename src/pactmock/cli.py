"""
pactmock CLI

Command-line interface for running a contract mock server and checking
requests against a contract offline.

Commands:
    start       - Serve a contract until interrupted, then print the match report
    check       - Match a single recorded request against a contract
    validate    - Parse a contract and summarise its interactions

Examples:
    # Serve a contract on port 1234
    pactmock start consumer-provider.json --port 1234

    # Check a request captured in a JSON file
    pactmock check consumer-provider.json request.json
"""

import argparse
import json
import logging
import sys
import time
from typing import List, Optional

from .common.utils import ContractLoader
from .config import MockServerConfig, LOG_LEVELS
from .contract import Contract, RequestSpec, parse_contract
from .errors import ContractParseError
from .ffi import create_mock_server, cleanup_mock_server, write_pact_file
from .matching.matcher import RequestMatcher
from .registry import get_registry


def _load_contract(path: str) -> Contract:
    try:
        return parse_contract(ContractLoader(path).load_text())
    except (OSError, ContractParseError) as e:
        print(f"❌ Failed to load contract {path}: {e}")
        sys.exit(2)


def _build_config(args) -> MockServerConfig:
    config = MockServerConfig.load(args.config)

    overrides = config.to_dict()
    if args.host is not None:
        overrides['host'] = args.host
    if args.port is not None:
        overrides['port'] = args.port
    if args.cors:
        overrides['cors_preflight'] = True
    if args.log_level is not None:
        overrides['log_level'] = args.log_level
    if args.ssl_certfile is not None:
        overrides['ssl_certfile'] = args.ssl_certfile
    if args.ssl_keyfile is not None:
        overrides['ssl_keyfile'] = args.ssl_keyfile
    return MockServerConfig.from_dict(overrides)


def cmd_start(args) -> int:
    """
    Serve a contract until interrupted.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code: 0 when every interaction matched, 1 otherwise
    """
    try:
        config = _build_config(args)
    except (OSError, ValueError) as e:
        print(f"❌ Invalid configuration: {e}")
        return 2

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    contract = _load_contract(args.contract)
    print("🎭 pactmock Mock Server")
    print(f"   Contract: {args.contract}")
    print(f"   {contract.consumer.name} -> {contract.provider.name}, {len(contract.interactions)} interaction(s)")

    port = create_mock_server(ContractLoader(args.contract).load_text(), config.bind_address, config)
    if port < 0:
        print(f"❌ Failed to start mock server (error {port})")
        return 2

    server = get_registry().get(port)
    print(f"   Listening on {server.url}")
    print("   Press Ctrl+C to stop")

    try:
        while True:
            time.sleep(0.5)
    except KeyboardInterrupt:
        print()

    matched = server.matched()
    print(server.report())

    if args.pact_dir:
        result = write_pact_file(port, args.pact_dir, overwrite=args.overwrite)
        if result != 0:
            print(f"⚠️  Could not write pact file to {args.pact_dir} (error {result})")

    cleanup_mock_server(port)
    print("👋 Mock server stopped")
    return 0 if matched else 1


def cmd_check(args) -> int:
    """
    Match one request (a JSON file in contract request form) against a contract.

    Returns:
        Exit code: 0 on a match, 1 otherwise
    """
    contract = _load_contract(args.contract)

    try:
        with open(args.request, 'r', encoding='utf-8') as f:
            actual = RequestSpec.from_dict(json.load(f), 'request')
    except (OSError, ValueError, ContractParseError) as e:
        print(f"❌ Failed to load request {args.request}: {e}")
        return 2

    result = RequestMatcher(contract.interactions).find_match(actual)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    elif result.matched:
        print(f"✅ {actual.summary()} matches '{result.interaction.description}'")
    else:
        print(f"❌ {actual.summary()}: {result.reason}")
        for mismatch in result.mismatches:
            print(f"   • {mismatch.path}: {mismatch.description}")

    return 0 if result.matched else 1


def cmd_validate(args) -> int:
    """Parse a contract and list its interactions."""
    contract = _load_contract(args.contract)

    print(f"✓ {contract.consumer.name} -> {contract.provider.name}")
    if contract.spec_version:
        print(f"   Pact specification: {contract.spec_version}")
    print(f"   Interactions: {len(contract.interactions)}")
    for interaction in contract.interactions:
        state = f" [given {interaction.provider_state}]" if interaction.provider_state else ""
        print(f"   • {interaction.description}{state}: {interaction.request.summary()} -> {interaction.response.status}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='pactmock',
        description="pactmock - Consumer contract mock server with rule-based request matching",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve a contract on a fixed port and write the pact on exit
  %(prog)s start consumer-provider.json --port 1234 --pact-dir pacts/

  # Check a captured request offline
  %(prog)s check consumer-provider.json request.json

  # Validate a contract
  %(prog)s validate consumer-provider.json
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # --- START command ---
    start_parser = subparsers.add_parser('start', help='Serve a contract until interrupted')
    start_parser.add_argument('contract', help='Pact contract JSON file')
    start_parser.add_argument('--host', help='Host to bind (default: 127.0.0.1)')
    start_parser.add_argument('-p', '--port', type=int, help='Port to bind (default: 0, any free port)')
    start_parser.add_argument('-c', '--config', help='YAML configuration file (overrides PACTMOCK_* variables)')
    start_parser.add_argument('--cors', action='store_true', help='Answer CORS pre-flight requests')
    start_parser.add_argument('--log-level', choices=LOG_LEVELS, help='Log level (default: info)')
    start_parser.add_argument('--ssl-certfile', help='PEM certificate; serve HTTPS')
    start_parser.add_argument('--ssl-keyfile', help='PEM private key for --ssl-certfile')
    start_parser.add_argument('--pact-dir', help='Write the contract to this directory on exit')
    start_parser.add_argument('--overwrite', action='store_true', help='Overwrite instead of merging an existing pact file')

    # --- CHECK command ---
    check_parser = subparsers.add_parser('check', help='Match a request against a contract')
    check_parser.add_argument('contract', help='Pact contract JSON file')
    check_parser.add_argument('request', help='JSON file with method, path, query, headers and body')
    check_parser.add_argument('--json', action='store_true', help='Print the match result as JSON')

    # --- VALIDATE command ---
    validate_parser = subparsers.add_parser('validate', help='Parse a contract and list its interactions')
    validate_parser.add_argument('contract', help='Pact contract JSON file')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == 'start':
        return cmd_start(args)
    elif args.command == 'check':
        return cmd_check(args)
    elif args.command == 'validate':
        return cmd_validate(args)

    parser.print_help()
    return 1


if __name__ == '__main__':
    sys.exit(main())
