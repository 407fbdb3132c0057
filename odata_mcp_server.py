#!/usr/bin/env python3
"""
OData to MCP bridge server.

Reads the $metadata of an OData v2/v4 service, generates one MCP tool per
entity set operation and function import, and serves them over stdio.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from odata_mcp_bridge import BridgeConfig, ODataBridgeError, ODataMCPBridge
from odata_mcp_bridge.constants import DEFAULT_MAX_ITEMS, DEFAULT_MAX_RESPONSE_SIZE

logger = logging.getLogger("odata_mcp_server")


def load_cookies_from_file(cookie_file: str) -> Optional[Dict[str, str]]:
    """Load cookies from a Netscape format cookie file (or simple key=value lines)."""
    cookies = {}

    try:
        with open(cookie_file, 'r') as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith('#'):
                    continue

                # Netscape format: domain, flag, path, secure, expiration, name, value
                parts = line.split('\t')
                if len(parts) >= 7:
                    cookies[parts[5]] = parts[6]
                elif '=' in line:
                    key, value = line.split('=', 1)
                    cookies[key.strip()] = value.strip()

    except OSError as e:
        logger.error(f"Failed to read cookie file {cookie_file}: {e}")
        return None

    return cookies


def parse_cookie_string(cookie_string: str) -> Dict[str, str]:
    """Parse cookie string like 'key1=val1; key2=val2'."""
    cookies = {}
    for cookie in cookie_string.split(';'):
        cookie = cookie.strip()
        if '=' in cookie:
            key, value = cookie.split('=', 1)
            cookies[key.strip()] = value.strip()
    return cookies


def split_names(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    names = [name.strip() for name in value.split(',') if name.strip()]
    return names or None


def configure_logging(verbose: bool):
    """Log to stderr only; stdout carries the MCP stream."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("[%(asctime)s %(name)s %(levelname)s] %(message)s"))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    # urllib3 is chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.INFO if verbose else logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="OData to MCP Bridge")

    parser.add_argument("--service", dest="service_via_flag",
                        help="URL of the OData service (overrides positional argument and ODATA_URL env var)")
    parser.add_argument("service_url_pos", nargs='?',
                        help="URL of the OData service (alternative to --service flag or env var)")

    auth_group = parser.add_mutually_exclusive_group()
    auth_group.add_argument("-u", "--user", help="Username for basic authentication (overrides ODATA_USER env var)")
    auth_group.add_argument("--cookie-file", help="Path to cookie file in Netscape format")
    auth_group.add_argument("--cookie-string", help="Cookie string (key1=val1; key2=val2)")
    parser.add_argument("-p", "--password", help="Password for basic authentication (overrides ODATA_PASS env var)")

    parser.add_argument("--entities",
                        help="Comma-separated list of entity sets to generate tools for. Supports wildcards: 'Product*'")
    parser.add_argument("--functions",
                        help="Comma-separated list of function imports to generate tools for. Supports wildcards: 'Get*'")

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument("--read-only", action="store_true",
                            help="Hide create, update, delete and function tools")
    mode_group.add_argument("--read-only-but-functions", action="store_true",
                            help="Hide create, update and delete tools but keep function tools")

    ops_group = parser.add_mutually_exclusive_group()
    ops_group.add_argument("--enable", dest="enable_ops",
                           help="Only enable these operation types: C,S,F,G,U,D,A (R expands to S,F,G)")
    ops_group.add_argument("--disable", dest="disable_ops",
                           help="Disable these operation types: C,S,F,G,U,D,A (R expands to S,F,G)")

    parser.add_argument("--tool-shrink", action="store_true", help="Use shortened entity names in tool names")
    parser.add_argument("--tool-prefix", help="Custom prefix for tool names")
    parser.add_argument("--tool-postfix", help="Custom postfix for tool names (default: _for_<service_id>)")
    parser.add_argument("--no-postfix", action="store_true", help="Do not append a postfix to tool names")
    parser.add_argument("-c", "--claude-code-friendly", action="store_true",
                        help="Advertise query options without the '$' prefix")

    parser.add_argument("--max-items", type=int, default=DEFAULT_MAX_ITEMS,
                        help=f"Maximum items in response (default: {DEFAULT_MAX_ITEMS})")
    parser.add_argument("--max-response-size", type=int, default=DEFAULT_MAX_RESPONSE_SIZE,
                        help="Maximum response size in bytes (default: 5MB)")
    parser.add_argument("--no-legacy-dates", dest="legacy_dates", action="store_false",
                        help="Disable legacy /Date(ms)/ conversion")
    parser.add_argument("--response-metadata", action="store_true", help="Include __metadata blocks in responses")
    parser.add_argument("--verbose-errors", action="store_true", help="Include detailed error messages in responses")
    parser.add_argument("--no-sort-tools", dest="sort_tools", action="store_false",
                        help="Disable alphabetical sorting of tools")

    parser.add_argument("--trace", action="store_true",
                        help="Initialize the bridge, print all tools and their parameters, then exit")
    parser.add_argument("-v", "--verbose", "--debug", dest="verbose", action="store_true",
                        help="Enable verbose output to stderr")
    return parser


def resolve_auth(args: argparse.Namespace):
    """Return (username, password, cookies). Cookies win over basic auth; flags win over env vars."""
    cookie_file = args.cookie_file
    cookie_string = args.cookie_string
    if not cookie_file and not cookie_string and not args.user:
        cookie_file = os.getenv("ODATA_COOKIE_FILE")
        cookie_string = os.getenv("ODATA_COOKIE_STRING")

    if cookie_file:
        if not Path(cookie_file).exists():
            raise ValueError(f"Cookie file not found: {cookie_file}")
        cookies = load_cookies_from_file(cookie_file)
        if not cookies:
            raise ValueError("Failed to load cookies from file")
        logger.debug(f"Loaded {len(cookies)} cookies from file: {cookie_file}")
        return None, None, cookies

    if cookie_string:
        cookies = parse_cookie_string(cookie_string)
        if not cookies:
            raise ValueError("Failed to parse cookie string")
        logger.debug(f"Parsed {len(cookies)} cookies from string")
        return None, None, cookies

    user = args.user if args.user is not None else (os.getenv("ODATA_USER") or os.getenv("ODATA_USERNAME"))
    password = args.password if args.password is not None else (
        os.getenv("ODATA_PASS") or os.getenv("ODATA_PASSWORD"))
    if not (user and password):
        logger.debug("No authentication provided or configured. Attempting anonymous access.")
    return user, password, None


def build_config(args: argparse.Namespace) -> BridgeConfig:
    # Priority: --service flag > positional argument > environment (.env included)
    service_url = args.service_via_flag or args.service_url_pos or \
        os.getenv("ODATA_URL") or os.getenv("ODATA_SERVICE_URL")
    if not service_url:
        raise ValueError("OData service URL not provided. Provide it via the --service flag, "
                         "as a positional argument, or the ODATA_URL environment variable.")

    username, password, cookies = resolve_auth(args)
    return BridgeConfig(
        service_url=service_url,
        username=username,
        password=password,
        cookies=cookies,
        allowed_entities=split_names(args.entities),
        allowed_functions=split_names(args.functions),
        read_only=args.read_only,
        read_only_but_functions=args.read_only_but_functions,
        enable_ops=args.enable_ops,
        disable_ops=args.disable_ops,
        tool_shrink=args.tool_shrink,
        tool_prefix=args.tool_prefix,
        tool_postfix="" if args.no_postfix else args.tool_postfix,
        sort_tools=args.sort_tools,
        claude_code_friendly=args.claude_code_friendly,
        max_items=args.max_items,
        max_response_size=args.max_response_size,
        legacy_dates=args.legacy_dates,
        response_metadata=args.response_metadata,
        verbose_errors=args.verbose_errors,
        verbose=args.verbose,
    )


def print_trace_info(bridge: ODataMCPBridge):
    """Print the service summary and every generated tool with its parameters."""
    config = bridge.config
    metadata = bridge.metadata
    print("=" * 80)
    print("OData MCP Bridge Trace Information")
    print("=" * 80)
    print(f"\nService URL: {config.service_url}")
    print(f"OData Version: {metadata.odata_version} (parsed with '{metadata.parse_strategy}' strategy)")
    print(f"Service Description: {metadata.service_description or 'Not provided'}")
    print(f"Entity Types: {len(metadata.entity_types)}")
    print(f"Entity Sets: {len(metadata.entity_sets)}")
    print(f"Function Imports: {len(metadata.function_imports)}")
    print(f"Enabled Operations: {''.join(sorted(config.enabled_operations)) or 'none'}")
    print(f"Entity Filter: {', '.join(config.allowed_entities) if config.allowed_entities else 'None (all entities)'}")
    print(f"Function Filter: "
          f"{', '.join(config.allowed_functions) if config.allowed_functions else 'None (all functions)'}")

    operations = bridge.operations
    print(f"\nRegistered MCP Tools ({len(operations)} total):")
    for operation in operations:
        print(f"\n  {operation.name} [{operation.kind.value}{': ' + operation.target if operation.target else ''}]")
        print(f"    {operation.description.splitlines()[0] if operation.description else ''}")
        for param in operation.params:
            required = "required" if param.required else "optional"
            print(f"    - {param.name}: {param.json_type} ({required})")
    print("\n" + "=" * 80)


def main(argv: Optional[List[str]] = None) -> int:
    # Load environment variables from .env file
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = build_config(args)
    except (ValueError, ValidationError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    bridge = ODataMCPBridge(config)
    try:
        asyncio.run(serve(bridge, trace=args.trace))
    except ODataBridgeError as e:
        print(f"ERROR: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted, shutting down server...", file=sys.stderr)
    return 0


async def serve(bridge: ODataMCPBridge, trace: bool = False):
    try:
        await bridge.initialize()
        if trace:
            print_trace_info(bridge)
            return
        await bridge.run()
    finally:
        await bridge.close()


if __name__ == "__main__":
    sys.exit(main())
