#!/usr/bin/env python3
"""
PM Connect -- operator CLI for the credential vault.

Usage:
  python main.py keygen
  python main.py check
  python main.py seal '{"botToken": "xoxb-...", "teamName": "Acme"}'
  echo '{"accessToken": "gho_..."}' | python main.py seal
  python main.py unseal <blob>
  python main.py unseal <blob> --show-secrets

Environment variables:
  TOKEN_ENCRYPTION_KEY  64 hex chars. Required by check, seal and unseal.
                        Generate one with `python main.py keygen`.
"""

import argparse
import json
import sys
from typing import Any, Optional

from pydantic import ValidationError

from core.config import Settings, get_settings
from core.errors import ConfigurationError, DecryptionError
from core.models import GITHUB, GOOGLE, JIRA, SLACK
from providers.registry import PROVIDER_REGISTRY
from vault.cipher import generate_key, load_cipher

_REDACTED = "<redacted>"


def static_fallback_available(provider: str, settings: Settings) -> bool:
    """True when the environment holds a complete static credential for provider."""
    if provider == JIRA:
        return bool(settings.jira_email and settings.jira_api_token and settings.jira_domain)
    if provider == SLACK:
        return bool(settings.slack_bot_token)
    if provider == GOOGLE:
        return bool(settings.google_client_id and settings.google_client_secret and settings.google_refresh_token)
    if provider == GITHUB:
        return bool(settings.github_token)
    return False


def redact(record: dict[str, Any]) -> dict[str, Any]:
    """Mask every value whose key names a token."""
    return {k: (_REDACTED if "token" in k.lower() else v) for k, v in record.items()}


def _read_payload(arg: Optional[str]) -> str:
    return arg if arg is not None else sys.stdin.read()


def cmd_keygen(args: argparse.Namespace) -> int:
    print(generate_key())
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"  [!] Configuration invalid:\n{e}")
        return 1

    ok = True
    print("\nPM Connect -- configuration check")
    print("-" * 40)
    try:
        load_cipher()
        print("  TOKEN_ENCRYPTION_KEY   ok")
    except ConfigurationError as e:
        print(f"  TOKEN_ENCRYPTION_KEY   [!] {e}")
        ok = False

    print(f"  APP_URL                {settings.app_base_url}")
    print(f"  SECURE_COOKIES         {settings.secure_cookies}")
    print()
    print(f"  {'provider':<10}{'oauth':<8}{'static':<8}")
    for name, impl in PROVIDER_REGISTRY.items():
        oauth = "yes" if impl.is_configured(settings) else "no"
        static = "yes" if static_fallback_available(name, settings) else "no"
        print(f"  {name:<10}{oauth:<8}{static:<8}")
    print()
    return 0 if ok else 1


def cmd_seal(args: argparse.Namespace) -> int:
    try:
        record = json.loads(_read_payload(args.payload))
    except ValueError as e:
        print(f"  [!] Payload is not valid JSON: {e}", file=sys.stderr)
        return 1
    if not isinstance(record, dict):
        print("  [!] Payload must be a JSON object.", file=sys.stderr)
        return 1
    try:
        print(load_cipher().encrypt_json(record))
    except ConfigurationError as e:
        print(f"  [!] {e}", file=sys.stderr)
        return 1
    return 0


def cmd_unseal(args: argparse.Namespace) -> int:
    blob = _read_payload(args.blob).strip()
    try:
        record = load_cipher().decrypt_json(blob)
    except ConfigurationError as e:
        print(f"  [!] {e}", file=sys.stderr)
        return 1
    except DecryptionError as e:
        print(f"  [!] Blob could not be decrypted ({e}). Wrong key or corrupted value.", file=sys.stderr)
        return 1
    print(json.dumps(record if args.show_secrets else redact(record), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pm-connect",
        description="Operator tools for the PM Connect credential vault.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py keygen >> .env.key
  python main.py check
  python main.py unseal "$(cat jira_tokens.txt)"
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("keygen", help="Print a new random TOKEN_ENCRYPTION_KEY")
    p.set_defaults(func=cmd_keygen)

    p = sub.add_parser("check", help="Validate configuration and list provider availability")
    p.set_defaults(func=cmd_check)

    p = sub.add_parser("seal", help="Encrypt a JSON credential record into a cookie value")
    p.add_argument("payload", nargs="?", help="JSON object (read from stdin when omitted)")
    p.set_defaults(func=cmd_seal)

    p = sub.add_parser("unseal", help="Decrypt a cookie value; token fields are masked by default")
    p.add_argument("blob", nargs="?", help="Encrypted value (read from stdin when omitted)")
    p.add_argument(
        "--show-secrets",
        action="store_true",
        help="Print token fields in clear text",
    )
    p.set_defaults(func=cmd_unseal)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
