#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser

from catalog.tags import TagRegistry
from db.session import get_storage


def main() -> None:
    parser = ArgumentParser(description="Recompute tag usage counts from content associations")
    parser.add_argument("--list", action="store_true", help="Print every tag after the recount")
    args = parser.parse_args()

    registry = TagRegistry(get_storage())
    fixed = registry.recount()
    print(f"[tags] corrected {fixed} usage count(s)")
    if args.list:
        for tag in registry.list():
            print(f"[tags] {tag.slug} usage={tag.usage_count} color={tag.color}")


if __name__ == "__main__":
    main()
