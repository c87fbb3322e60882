#!/usr/bin/env python3
"""JSON Web Key tool.

Generates ephemeral keys and prints the published (well-known) form of
existing keys.

Usage:
    webjose-jwk generate --alg ES256 --kid signing-1
    webjose-jwk generate --enc A256GCM --format jwks
    webjose-jwk generate --alg RSA-OAEP-256 --format pem --output key.pem
    webjose-jwk inspect key.pem

Exit Codes:
    0 - Success
    1 - Key could not be generated or read
    2 - File not found or already exists
    3 - Invalid arguments
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from webjose.core.algorithms import Algorithm, Encryption, KeyOperation, KeyUse
from webjose.core.errors import JOSEError
from webjose.core.web_key import WebKey, parse_jwks, write_jwks


class OutputFormat:
    """Supported output formats."""

    JWK = "jwk"
    JWKS = "jwks"
    PEM = "pem"

    CHOICES = (JWK, JWKS, PEM)


def render(key: WebKey, output_format: str, public: bool) -> str:
    """Serialize a key in the requested format."""
    if public:
        key = key.well_known()
    if output_format == OutputFormat.JWKS:
        return json.dumps(json.loads(write_jwks([key], well_known=public)), indent=2) + "\n"
    if output_format == OutputFormat.PEM:
        return key.to_pem()
    return json.dumps(key.to_dict(), indent=2) + "\n"


def write_output(text: str, output: str | None, force: bool) -> int:
    if output is None:
        sys.stdout.write(text)
        return 0
    path = Path(output)
    if path.exists() and not force:
        print(f"Refusing to overwrite {path}; pass --force", file=sys.stderr)
        return 2
    path.write_text(text)
    return 0


# =============================================================================
# Command: generate
# =============================================================================


def cmd_generate(args) -> int:
    """Generate an ephemeral key."""
    try:
        spec = Algorithm.lookup(args.alg) if args.alg else Encryption.lookup(args.enc)
        key = WebKey.ephemeral(spec)
        if args.kid or args.use or args.ops:
            builder = WebKey.builder(key.type)
            if key.raw_key is not None:
                builder.raw_key(key.raw_key)
            else:
                builder.key_pair(key.private_key)
            if key.algorithm is not None:
                builder.algorithm(key.algorithm)
            if args.kid:
                builder.key_id(args.kid)
            if args.use:
                builder.use(KeyUse(args.use))
            if args.ops:
                builder.ops(*(KeyOperation(op) for op in args.ops.split(",")))
            key = builder.build()
        text = render(key, args.format, args.public)
    except (JOSEError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return write_output(text, args.output, args.force)


# =============================================================================
# Command: inspect
# =============================================================================


def load_keys(text: str) -> list[WebKey]:
    """Read a JWK, a JWKS or PEM text."""
    stripped = text.lstrip()
    if stripped.startswith("{"):
        data = json.loads(stripped)
        if "keys" in data:
            return list(parse_jwks(stripped))
        return [WebKey.from_dict(data)]
    return [WebKey.builder().pem(text).build()]


def cmd_inspect(args) -> int:
    """Print the well-known form of the keys in a file."""
    path = Path(args.file)
    if not path.exists():
        print(f"File not found: {path}", file=sys.stderr)
        return 2
    try:
        keys = load_keys(path.read_text())
    except (JOSEError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.format == OutputFormat.JWKS or len(keys) > 1:
        text = json.dumps(json.loads(write_jwks(keys)), indent=2) + "\n"
    else:
        try:
            text = render(keys[0], args.format, public=True)
        except JOSEError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    for key in keys:
        logging.getLogger(__name__).debug("Key %s thumbprint %s", key.id, key.well_known().thumbprint())
    sys.stdout.write(text)
    return 0


# =============================================================================
# Main
# =============================================================================


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="webjose-jwk",
        description="JSON Web Key tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # EC signing key with an id
  webjose-jwk generate --alg ES256 --kid signing-1

  # Publishable key set for an RSA encryption key
  webjose-jwk generate --alg RSA-OAEP-256 --format jwks --public

  # Well-known form of a PEM key and certificate chain
  webjose-jwk inspect server.pem
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    generate_parser = subparsers.add_parser("generate", help="Generate an ephemeral key")
    spec = generate_parser.add_mutually_exclusive_group(required=True)
    spec.add_argument("--alg", help="Algorithm the key is for (e.g. ES256, A128KW)")
    spec.add_argument("--enc", help="Content encryption the key is for (e.g. A256GCM)")
    generate_parser.add_argument("--kid", help="Key ID")
    generate_parser.add_argument("--use", choices=[u.value for u in KeyUse], help="Public key use")
    generate_parser.add_argument("--ops", help="Key operations (comma-separated)")
    generate_parser.add_argument("--format", "-f", choices=OutputFormat.CHOICES, default=OutputFormat.JWK)
    generate_parser.add_argument("--public", action="store_true", help="Print public material only")
    generate_parser.add_argument("--output", "-o", help="Write to a file instead of stdout")
    generate_parser.add_argument("--force", action="store_true", help="Overwrite an existing output file")

    inspect_parser = subparsers.add_parser("inspect", help="Print the well-known form of keys in a file")
    inspect_parser.add_argument("file", help="JWK, JWKS or PEM file")
    inspect_parser.add_argument("--format", "-f", choices=OutputFormat.CHOICES, default=OutputFormat.JWK)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return 0 if e.code == 0 else 3

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    # Dispatch to command handler
    if args.command == "generate":
        return cmd_generate(args)
    elif args.command == "inspect":
        return cmd_inspect(args)
    else:
        parser.print_help()
        return 3


if __name__ == "__main__":
    sys.exit(main())
