"""
Command line front-end for jwt_codec.

    jwt-codec sign   --payload '{"sub":"user123"}' [--key K] [--algorithm HS384]
    jwt-codec verify --token eyJ... [--key K] [--no-verify]
    jwt-codec peek   --token eyJ...

Defaults for the key, algorithm and log level come from the environment
(or a .env file): JWT_SECRET_KEY, JWT_ALGORITHM, JWT_LOG_LEVEL.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from jwt_codec import (
    ALGORITHMS,
    Algorithm,
    JsonDecodeError,
    JWTError,
    UnsupportedAlgorithmError,
    decode,
    encode,
    get_unverified_header,
    json_decode,
)

logger = logging.getLogger("jwt_codec.cli")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    """CLI defaults loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    jwt_secret_key: Optional[str] = Field(None, alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    log_level: str = Field("WARNING", alias="JWT_LOG_LEVEL")

    @field_validator("jwt_algorithm")
    @classmethod
    def _known_algorithm(cls, value: str) -> str:
        try:
            return Algorithm.resolve(value).value
        except UnsupportedAlgorithmError as exc:
            raise ValueError(str(exc)) from exc

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        if value.upper() not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {value!r}")
        return value.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings()


def setup_logging(level: str) -> None:
    level = level.upper()
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s"
        )
    logging.getLogger("jwt_codec").setLevel(level)


def _parse_payload(payload_str: str) -> Any:
    """Parse a JSON payload string or comma-separated key=value pairs."""
    if payload_str.lstrip().startswith(('{', '[')):
        return json_decode(payload_str)

    payload: Dict[str, Any] = {}
    for pair in payload_str.split(','):
        if '=' not in pair:
            continue
        name, value = pair.split('=', 1)
        value = value.strip()
        # JSON scalars ("42", "true") keep their type, anything else is a string
        try:
            payload[name.strip()] = json_decode(value)
        except JsonDecodeError:
            payload[name.strip()] = value
    return payload


def _dump(obj: Dict[str, Any], pretty: bool) -> str:
    return json.dumps(obj, indent=2 if pretty else None)


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='jwt-codec',
        description='HMAC JWT signer and verifier',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sign a token
  %(prog)s sign --key "secret" --payload '{"sub":"user123","role":"admin"}'

  # Sign with key=value claims and HS512
  %(prog)s sign --key "secret" --payload sub=user123,admin=true -a HS512

  # Verify a token
  %(prog)s verify --key "secret" --token "eyJ..."

  # Peek at token (no verification)
  %(prog)s peek --token "eyJ..."
        """
    )
    parser.add_argument('--log-level', default=settings.log_level,
                        type=str.upper, choices=LOG_LEVELS,
                        help='Logging level (default: $JWT_LOG_LEVEL or WARNING)')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute', required=True)

    sign_parser = subparsers.add_parser('sign', help='Sign a token')
    sign_parser.add_argument('--key', '-k', default=settings.jwt_secret_key,
                             help='HMAC secret key (default: $JWT_SECRET_KEY)')
    sign_parser.add_argument('--payload', '-p', required=True,
                             help='Payload as JSON or key=value pairs (comma-separated)')
    sign_parser.add_argument('--algorithm', '-a', default=settings.jwt_algorithm,
                             choices=list(ALGORITHMS),
                             help='Signing algorithm (default: $JWT_ALGORITHM or HS256)')
    sign_parser.add_argument('--kid', help='Key ID header')

    verify_parser = subparsers.add_parser('verify', help='Decode and verify a token')
    verify_parser.add_argument('--key', '-k', default=settings.jwt_secret_key,
                               help='HMAC secret key (default: $JWT_SECRET_KEY)')
    verify_parser.add_argument('--token', '-t', required=True, help='Token to verify')
    verify_parser.add_argument('--no-verify', action='store_true',
                               help='Skip signature verification (not recommended)')
    verify_parser.add_argument('--pretty', action='store_true',
                               help='Pretty-print JSON output')

    peek_parser = subparsers.add_parser('peek', help='Decode token without verification')
    peek_parser.add_argument('--token', '-t', required=True, help='Token to peek at')
    peek_parser.add_argument('--pretty', action='store_true',
                             help='Pretty-print JSON output')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point. Returns the process exit status."""
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 2
    parser = build_parser(settings)
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    needs_key = args.command == 'sign' or (args.command == 'verify' and not args.no_verify)
    if needs_key and not args.key:
        parser.error('a key is required (use --key or set JWT_SECRET_KEY)')

    try:
        if args.command == 'sign':
            payload = _parse_payload(args.payload)
            headers = {'kid': args.kid} if args.kid else None
            print(encode(payload, args.key, args.algorithm, headers=headers))

        elif args.command == 'verify':
            verified = not args.no_verify
            payload = decode(args.token, args.key, verify=verified)
            output = {
                'header': get_unverified_header(args.token),
                'payload': payload,
                'verified': verified,
            }
            print(_dump(output, args.pretty))

        elif args.command == 'peek':
            output = {
                'header': get_unverified_header(args.token),
                'payload': decode(args.token, verify=False),
                'warning': 'Token not verified - do not trust these claims',
            }
            print(_dump(output, args.pretty))

    except JWTError as e:
        logger.info("%s failed: %s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
