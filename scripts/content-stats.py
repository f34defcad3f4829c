#!/usr/bin/env python3
from __future__ import annotations

from argparse import ArgumentParser

from catalog.repository import ContentRepository
from db.session import get_storage


def main() -> None:
    parser = ArgumentParser(description="Show content statistics for one owner")
    parser.add_argument("owner_id")
    args = parser.parse_args()

    stats = ContentRepository(get_storage()).get_user_stats(args.owner_id)
    print(
        f"[stats] owner={args.owner_id} videos={stats['total_videos']} "
        f"bytes={stats['total_size_bytes']} seconds={stats['total_duration_s']}"
    )
    for status, count in sorted(stats["by_status"].items()):
        print(f"[stats] status {status}: {count}")
    for visibility, count in sorted(stats["by_visibility"].items()):
        print(f"[stats] visibility {visibility}: {count}")
    print(f"[stats] views={stats['total_views']} tags_used={stats['tags_used']}")


if __name__ == "__main__":
    main()
