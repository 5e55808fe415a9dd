#!/usr/bin/env python3
"""
Create a service API key for the Entitlements API.

The plaintext key is printed once and never stored.

Usage:
    # Read-only key for a web frontend
    python3 scripts/create_api_key.py --name "Web frontend" --created-by ops@example.com

    # Key that may also record downloads, expiring in 90 days
    python3 scripts/create_api_key.py --name "Download worker" --created-by ops@example.com \
        --permission entitlements:read --permission downloads:write --expires-in-days 90
"""

import argparse
import asyncio
import sys

from entitlements.db.session import close_engines, get_write_session
from entitlements.services.api_key import (
    KNOWN_PERMISSIONS,
    PERMISSION_ENTITLEMENTS_READ,
    APIKeyService,
    GeneratedAPIKey,
)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create an Entitlements API key")
    parser.add_argument("--name", required=True, help="Human-readable key name")
    parser.add_argument("--created-by", required=True, help="Operator creating the key")
    parser.add_argument("--description", default=None)
    parser.add_argument("--environment", choices=("test", "live"), default="live")
    parser.add_argument(
        "--permission",
        dest="permissions",
        action="append",
        choices=sorted(KNOWN_PERMISSIONS),
        help=f"Repeatable; defaults to {PERMISSION_ENTITLEMENTS_READ}",
    )
    parser.add_argument("--expires-in-days", type=int, default=None)
    return parser.parse_args(argv)


async def create_key(args: argparse.Namespace) -> GeneratedAPIKey:
    try:
        async with get_write_session() as session:
            return await APIKeyService(session).create_api_key(
                name=args.name,
                created_by=args.created_by,
                environment=args.environment,
                description=args.description,
                permissions=args.permissions,
                expires_in_days=args.expires_in_days,
            )
    finally:
        await close_engines()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    generated = asyncio.run(create_key(args))

    print(f"Key ID:      {generated.key_id}")
    print(f"Name:        {generated.name}")
    print(f"Environment: {generated.environment}")
    print(f"Permissions: {', '.join(generated.permissions)}")
    print(f"Expires:     {generated.expires_at.isoformat() if generated.expires_at else 'never'}")
    print()
    print("API key (shown once, store it now):")
    print(generated.plaintext_key)
    return 0


if __name__ == "__main__":
    sys.exit(main())
