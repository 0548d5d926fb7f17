#!/usr/bin/env python3
"""
daopath CLI

Offline tooling around callscripts, gas sizing and configuration.

Usage:
    daopath <command> <subcommand> [options]

Commands:
    script      Encode, decode and wrap callscripts
    gas         Gas limit recommendation
    config      Configuration management

Examples:
    daopath script encode --segment 0xcafe...:0x1234 --segment 0xbeef...:0x
    daopath script decode 0x00000001cafe...
    daopath gas recommend --estimated 120000 --block-gas-limit 8000000
    daopath --config daopath.yaml config validate

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from typing import Any, List, Optional

import yaml

from daopath import __version__
from daopath.abi import to_hex
from daopath.callscript import Segment, decode, encode, encode_forward_call
from daopath.config import DaoPathConfig
from daopath.errors import PathError
from daopath.observability import configure_logging
from daopath.transactions import recommend_gas_limit


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.YAML:
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    return json.dumps(data, indent=2, default=str)


def _parse_segment(value: str) -> Segment:
    to, sep, data = value.partition(":")
    if not sep:
        raise argparse.ArgumentTypeError(f"expected TO:DATA, got {value!r}")
    try:
        return Segment(to=to, data=data or "0x")
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


class DaoPathCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="daopath",
            description="Permissioned transaction path tooling",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"daopath {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="YAML configuration file",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_script_commands()
        self._register_gas_commands()
        self._register_config_commands()

    def _register_script_commands(self) -> None:
        script = self.subparsers.add_parser("script", help="Callscript operations")
        script_sub = script.add_subparsers(dest="subcommand")

        encode_cmd = script_sub.add_parser("encode", help="Encode segments into a callscript")
        encode_cmd.add_argument(
            "--segment", "-s",
            action="append",
            type=_parse_segment,
            default=[],
            metavar="TO:DATA",
            help="Call to include (repeatable, in order)",
        )

        decode_cmd = script_sub.add_parser("decode", help="Decode a callscript")
        decode_cmd.add_argument("script", help="Hex-encoded callscript")

        forward = script_sub.add_parser("forward", help="Wrap a callscript in forward(bytes)")
        forward.add_argument("script", help="Hex-encoded callscript")

    def _register_gas_commands(self) -> None:
        gas = self.subparsers.add_parser("gas", help="Gas sizing")
        gas_sub = gas.add_subparsers(dest="subcommand")

        recommend = gas_sub.add_parser("recommend", help="Recommended gas limit")
        recommend.add_argument("--estimated", "-e", type=int, required=True, help="Estimated gas")
        recommend.add_argument(
            "--block-gas-limit", "-b", type=int, required=True, help="Latest block gas limit"
        )

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Config path (e.g., resolver.max_depth)")

        config_sub.add_parser("show", help="Show effective configuration")
        config_sub.add_parser("validate", help="Validate configuration")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            self.config = self._load_config(parsed)
            configure_logging(self.config.observability)
            result = self._dispatch(parsed)
            if result is not None:
                print(format_output(result, OutputFormat(parsed.format)))
            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except (PathError, ValueError) as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _load_config(self, args: argparse.Namespace) -> DaoPathConfig:
        if args.config:
            return DaoPathConfig.from_file(args.config)
        return DaoPathConfig()

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}".strip(), exit_code=2)

        return handler(args)

    # Script handlers
    def _handle_script_encode(self, args: argparse.Namespace) -> Any:
        script = encode(args.segment)
        return {"script": to_hex(script), "segments": len(args.segment)}

    def _handle_script_decode(self, args: argparse.Namespace) -> Any:
        return {"segments": [s.to_dict() for s in decode(args.script)]}

    def _handle_script_forward(self, args: argparse.Namespace) -> Any:
        decode(args.script)
        return {"data": to_hex(encode_forward_call(args.script))}

    # Gas handlers
    def _handle_gas_recommend(self, args: argparse.Namespace) -> Any:
        tx_config = self.config.transactions
        recommended = recommend_gas_limit(
            args.estimated,
            args.block_gas_limit,
            gas_fuzz_factor=tx_config.gas_fuzz_factor.get(),
            block_gas_limit_factor=tx_config.block_gas_limit_factor.get(),
        )
        return {
            "estimated": args.estimated,
            "blockGasLimit": args.block_gas_limit,
            "recommended": recommended,
        }

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        return {"path": args.path, "value": self.config.get(args.path)}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        return self.config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        errors = self.config.validate()
        if errors:
            raise CLIError("; ".join(errors), exit_code=3)
        return {"valid": True, "errors": []}


def main() -> int:
    """CLI entry point."""
    cli = DaoPathCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
