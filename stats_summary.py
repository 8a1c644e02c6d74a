"""stats_summary.py

Compute chat statistics for one character (or all of them) and print a
summary report.  Chats come from the host's chats directory by default,
or from a running host with ``--url``.

    python stats_summary.py --subject Seraphina --start 2024-01-01
    python stats_summary.py --all --url http://127.0.0.1:8000 --charts
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
import os
import sys
from pathlib import Path

from analyzer import (
    Chat,
    DateRange,
    DateBounds,
    InvalidDateRangeError,
    StatisticsSnapshot,
    build_snapshot,
    top_days,
    validate_date_range,
)
from chat_loader import load_all_chats, load_character_chats
from config import ALL_SUBJECTS, DEFAULT_CACHE_FILE, TAVERN_CHATS_DIR
from stats_cache import CacheEntry, StatsCache, make_cache_key
from tavern_client import CancelToken, FetchCancelled, TavernAPIError, TavernClient

logger = logging.getLogger(__name__)


def load_chats(
    subject_id: str,
    chats_dir: str | Path | None = None,
    url: str | None = None,
    cancel: CancelToken | None = None,
) -> list[Chat]:
    """Load chats for *subject_id* from a running host or the chats directory."""
    if url:
        client = TavernClient(base_url=url)
        if subject_id == ALL_SUBJECTS:
            return client.fetch_all_chats(on_progress=_print_progress, cancel=cancel)
        return client.fetch_character_chats(subject_id, on_progress=_print_progress, cancel=cancel)

    chats_dir = chats_dir or TAVERN_CHATS_DIR
    if subject_id == ALL_SUBJECTS:
        return load_all_chats(chats_dir, cancel)
    return load_character_chats(chats_dir, subject_id, cancel)


def _print_progress(current: int, total: int) -> None:
    if total > 5:
        print(f"\rReading: {round(current / total * 100)}% ({current} / {total})",
              end="", file=sys.stderr, flush=True)
        if current >= total:
            print(file=sys.stderr)


def save_stats_files(snapshot: StatisticsSnapshot, output_dir: str = "chat_stats") -> None:
    """Write the snapshot to *output_dir* as JSON plus a daily CSV.

    Creates the directory if needed and writes ``stats.json`` and
    ``daily_stats.csv`` (date, messages, chats, duration_minutes).
    """
    os.makedirs(output_dir, exist_ok=True)

    with open(f"{output_dir}/stats.json", "w", encoding="utf-8") as f:
        json.dump(snapshot.to_dict(), f, ensure_ascii=False, indent=2)

    days = sorted(set(snapshot.daily_activity) | set(snapshot.daily_duration))
    with open(f"{output_dir}/daily_stats.csv", "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=["date", "messages", "chats", "duration_minutes"])
        writer.writeheader()
        for day in days:
            writer.writerow({
                "date": day,
                "messages": snapshot.daily_activity.get(day, 0),
                "chats": snapshot.daily_file_counts.get(day, 0),
                "duration_minutes": snapshot.daily_duration.get(day, 0),
            })


def print_summary_report(snapshot: StatisticsSnapshot, title: str) -> None:
    """Print a human-readable summary of *snapshot* to stdout."""
    print(f"\n{'=' * 60}")
    print(f"Chat Statistics: {title}")
    print(f"{'=' * 60}")
    print(f"Total Messages: {snapshot.total_messages:,}")
    print(f"  User: {snapshot.user_messages:,} ({snapshot.user_char_count:,} chars, "
          f"~{snapshot.user_tokens:,} tokens)")
    print(f"  AI:   {snapshot.ai_messages:,} ({snapshot.ai_char_count:,} chars, "
          f"~{snapshot.ai_tokens:,} tokens)")
    print(f"Total Chats: {snapshot.total_chats:,}")
    print(f"Avg Messages per Chat: {snapshot.avg_messages_per_chat:,}")
    print(f"Max Messages in One Chat: {snapshot.max_messages_in_one_chat:,}")
    print(f"AI:User Ratio: {snapshot.ratio:.2f}")

    if snapshot.first_date and snapshot.last_date:
        print(f"First Active: {snapshot.first_date}")
        print(f"Last Active: {snapshot.last_date}")
        print(f"Days Spanned: {snapshot.days_active:,}")
    hours, minutes = divmod(snapshot.total_duration_minutes, 60)
    print(f"Estimated Time: {hours}h {minutes}m")

    if snapshot.daily_activity:
        print("\nTop 5 Days by Messages:")
        for day, count in top_days(snapshot, "daily_activity"):
            print(f"  {day}: {count:,} messages")

    if snapshot.models:
        print("\nModels:")
        for model, count in sorted(snapshot.models.items(), key=lambda kv: kv[1], reverse=True):
            print(f"  {model}: {count:,}")

    if len(snapshot.character_stats) > 1:
        print("\nCharacters:")
        for name, count in sorted(snapshot.character_stats.items(), key=lambda kv: kv[1], reverse=True):
            print(f"  {name}: {count:,}")

    peak_hour = max(range(24), key=lambda h: snapshot.hourly_activity[h])
    if snapshot.hourly_activity[peak_hour]:
        print(f"\nBusiest Hour: {peak_hour:02d}:00 ({snapshot.hourly_activity[peak_hour]:,} messages)")
    print(f"{'=' * 60}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Summarize tavern chat statistics")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--subject", "-s", help="Character to analyze (directory name or avatar id)")
    target.add_argument("--all", "-a", dest="all_subjects", action="store_true",
                        help="Analyze every character")
    parser.add_argument("--chats-dir", help=f"Host chats directory (default: {TAVERN_CHATS_DIR})")
    parser.add_argument("--url", help="Fetch from a running host instead of the chats directory")
    parser.add_argument("--start", help="First day to include (YYYY-MM-DD)")
    parser.add_argument("--end", help="Last day to include (YYYY-MM-DD)")
    parser.add_argument("--output-dir", "-o", help="Write stats.json and daily_stats.csv here")
    parser.add_argument("--charts", action="store_true", help="Also render PNG charts into --output-dir")
    parser.add_argument("--cache-file", default=str(DEFAULT_CACHE_FILE),
                        help=f"Snapshot cache file (default: {DEFAULT_CACHE_FILE})")
    parser.add_argument("--no-cache", action="store_true", help="Neither read nor write the cache file")
    parser.add_argument("--refresh", "-r", action="store_true", help="Ignore cached snapshots")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    subject_id = ALL_SUBJECTS if args.all_subjects else args.subject
    date_range = DateRange(start=args.start, end=args.end)
    try:
        validate_date_range(date_range)
    except InvalidDateRangeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    active_range = date_range if date_range.is_active else None

    cache = StatsCache()
    if not args.no_cache:
        try:
            cache = StatsCache.load(args.cache_file)
        except json.JSONDecodeError as exc:
            logger.warning("Ignoring corrupt cache file %s: %s", args.cache_file, exc)
        logger.debug("Cached keys in %s: %s", args.cache_file, cache.keys())
    key = make_cache_key(subject_id, active_range)
    entry = None if args.refresh else cache.get(key)

    if entry is not None:
        logger.info("Using cached stats for %s", key)
        snapshot = entry.snapshot
    else:
        try:
            chats = load_chats(subject_id, args.chats_dir, args.url)
        except FileNotFoundError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            sys.exit(1)
        except TavernAPIError as exc:
            print(f"Error: could not fetch chats: {exc}", file=sys.stderr)
            sys.exit(1)
        except (FetchCancelled, KeyboardInterrupt):
            print("\nCancelled.", file=sys.stderr)
            sys.exit(130)

        if not chats:
            logger.warning("No chat files found for %s", subject_id)

        snapshot = build_snapshot(chats, active_range)
        bounds = DateBounds(**snapshot.meta["date_bounds"])
        if args.refresh and active_range is None:
            cache.invalidate(subject_id)
        cache.put(key, CacheEntry(snapshot=snapshot, date_range=active_range, date_bounds=bounds))
        if not args.no_cache:
            cache.save(args.cache_file)

    title = "All Characters" if subject_id == ALL_SUBJECTS else subject_id
    print_summary_report(snapshot, title)

    if args.output_dir:
        save_stats_files(snapshot, args.output_dir)
        if args.charts:
            from stats_viz import save_charts

            save_charts(snapshot, args.output_dir)
        print(f"\nStatistics have been saved to the '{args.output_dir}' directory.")


if __name__ == "__main__":
    main()
