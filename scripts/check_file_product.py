#!/usr/bin/env python3
"""
Check that attachments can be wrapped in a new FileProduct.

Run before creating file products: an attachment may be sold as at most one
FileProduct. Exits 1 when any attachment is already wrapped.

Usage:
    python3 scripts/check_file_product.py 6f1c0a52-0d7e-4b6e-9f57-2d0c1e3a9b11
"""

import argparse
import asyncio
import sys
from uuid import UUID

from entitlements.db.session import close_engines, get_write_session
from entitlements.exceptions import DataIntegrityError
from entitlements.services.catalog import SqlCatalogReader, ensure_attachment_unwrapped


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Check attachments are not yet sold as files")
    parser.add_argument("attachment_ids", nargs="+", type=UUID, metavar="ATTACHMENT_ID")
    return parser.parse_args(argv)


async def find_conflicts(attachment_ids: list[UUID]) -> list[str]:
    conflicts = []
    try:
        async with get_write_session() as session:
            catalog = SqlCatalogReader(session)
            for attachment_id in attachment_ids:
                try:
                    await ensure_attachment_unwrapped(catalog, attachment_id)
                except DataIntegrityError as exc:
                    conflicts.append(exc.message)
    finally:
        await close_engines()
    return conflicts


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    conflicts = asyncio.run(find_conflicts(args.attachment_ids))

    for message in conflicts:
        print(message, file=sys.stderr)
    if conflicts:
        return 1

    print(f"{len(args.attachment_ids)} attachment(s) free to wrap")
    return 0


if __name__ == "__main__":
    sys.exit(main())
