from __future__ import annotations

import argparse
import asyncio
import json
import sys

from dotenv import load_dotenv

from .catalog import load_catalog
from .config import configure_logging, ensure_output_directory, load_config
from .dispatcher import Dispatcher
from .errors import CatalogError
from .mcp_server import main as mcp_main


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="visiontools",
        description="MCP server exposing the vision tools API as callable tools.",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser(
        "mcp",
        help=(
            "Run the MCP (Model Context Protocol) server over stdio (default). "
            "Hook this up to any MCP client."
        ),
    )

    tools_parser = subparsers.add_parser("tools", help="List the tools in the catalog")
    tools_parser.set_defaults(func=tools_command)

    call_parser = subparsers.add_parser("call", help="Invoke a single tool and print the result")
    call_parser.add_argument("tool", help="Tool name, e.g. owlv2")
    call_parser.add_argument(
        "--args",
        default="{}",
        help='Tool arguments as a JSON object, e.g. \'{"requestBody": {"image": "/abs/cat.png"}}\'',
    )
    call_parser.set_defaults(func=call_command)

    return parser


def _first_line(text: str) -> str:
    return text.strip().splitlines()[0] if text.strip() else ""


def tools_command(args: argparse.Namespace) -> int:
    config = load_config()
    try:
        catalog = load_catalog(config.catalog_path)
    except CatalogError as exc:
        print(exc, file=sys.stderr)
        return 1
    width = max((len(name) for name in catalog.names()), default=0)
    for descriptor in catalog:
        body = descriptor.body_content_type.value if descriptor.body_content_type else "-"
        print(f"{descriptor.name.ljust(width)}  {body:<34} {_first_line(descriptor.description)}")
    return 0


def call_command(args: argparse.Namespace) -> int:
    try:
        arguments = json.loads(args.args)
    except json.JSONDecodeError as exc:
        print(f"--args is not valid JSON: {exc}", file=sys.stderr)
        return 2
    if not isinstance(arguments, dict):
        print("--args must be a JSON object", file=sys.stderr)
        return 2
    config = ensure_output_directory(load_config())
    try:
        catalog = load_catalog(config.catalog_path)
    except CatalogError as exc:
        print(exc, file=sys.stderr)
        return 1
    blocks = asyncio.run(Dispatcher(catalog, config).invoke(args.tool, arguments))
    for block in blocks:
        if block.get("type") == "image":
            print(f"[image {block.get('mimeType')} {len(block.get('data', ''))} base64 chars]")
        else:
            print(block.get("text", ""))
    return 0


def main() -> None:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args()
    if not args.command or args.command == "mcp":
        mcp_main()
        return
    configure_logging(load_config().log_level)
    if hasattr(args, "func"):
        sys.exit(args.func(args))
    parser.print_help()
    sys.exit(2)


if __name__ == "__main__":
    main()
