"""CLI: grounded-agent init, config validate, crawl, summarize, quota, history, profile."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import yaml

from ..config import config_to_dict, load_config, validate_config
from ..core.cache import build_caches
from ..core.crawler import BoundedCrawler, combine_content
from ..core.fetcher import PageFetcher
from ..core.quota import QuotaLedger
from ..core.summarizer import GroundedSummarizer
from ..storage.sqlite import SQLiteMemoryStore
from ..types import AgentConfig, MemoryScope


def _load(args) -> AgentConfig:
    try:
        return load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)


def _get_store(config: AgentConfig) -> SQLiteMemoryStore:
    return SQLiteMemoryStore(db_path=config.storage.sqlite_path)


def cmd_init(args):
    """Write a config file with every default spelled out."""
    output = Path.cwd() / "grounded-agent.yaml"
    if output.exists() and not args.force:
        print(f"Config file already exists: {output}", file=sys.stderr)
        print("Use --force to overwrite.", file=sys.stderr)
        sys.exit(1)

    output.write_text(yaml.safe_dump(config_to_dict(AgentConfig()), sort_keys=False, allow_unicode=True))
    print(f"Created {output}")
    print()
    print("Next steps:")
    print("  1. Export secrets:    OPENAI_API_KEY, GOOGLE_API_KEY, GOOGLE_CSE_ID")
    print("  2. Install browser:   playwright install chromium")
    print("  3. Validate config:   grounded-agent config validate")


def cmd_config_validate(args):
    """Validate config file."""
    config = _load(args)
    errors = validate_config(config)
    if errors:
        print("Config validation errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)

    standard = config.crawl.profiles["standard"]
    elevated = config.crawl.profiles["elevated"]
    print("Config is valid.")
    print(
        f"  Crawl (standard): depth {standard.max_depth}, links {standard.max_links_per_page}, "
        f"calls {standard.max_calls_per_request}/request, {standard.max_calls_per_day}/day"
    )
    print(
        f"  Crawl (elevated): depth {elevated.max_depth}, links {elevated.max_links_per_page}, "
        f"calls {elevated.max_calls_per_request}/request, {elevated.max_calls_per_day}/day"
    )
    print(f"  Context budget: {config.assembly.budget_chars:,} ({config.assembly.length_counter})")
    print(f"  Pinned: {', '.join(config.assembly.pinned_categories) or '(none)'}")
    print(f"  Completion: {config.completion.model} @ {config.completion.base_url}")
    print(f"  Storage: {config.storage.backend} ({config.storage.sqlite_path})")


async def _crawl(config: AgentConfig, url: str, identity: str, elevated: bool):
    store = _get_store(config)
    try:
        quota = QuotaLedger(tz=config.quota.timezone)
        record = store.get_quota_record(identity)
        if record is not None:
            quota.load_record(record)
        crawler = BoundedCrawler(PageFetcher(config.fetch), quota, build_caches(config).crawl)
        nodes = await crawler.crawl(url, identity, config.crawl.budget_for(identity, elevated))
        record = quota.get_record(identity)
        if record is not None:
            store.save_quota_record(record)
        return nodes
    finally:
        store.close()


def cmd_crawl(args):
    """Crawl from a seed URL and list the pages fetched."""
    config = _load(args)
    nodes = asyncio.run(_crawl(config, args.url, args.identity, args.elevated))
    if not nodes:
        print("No content retrieved (unreachable seed or quota exhausted).")
        sys.exit(1)
    for node in nodes:
        indent = "  " * node.depth
        print(f"{indent}{node.url}  [{len(node.content)} chars, {len(node.outbound_links)} links]")
    if args.show_text:
        print()
        print(combine_content(nodes))


async def _summarize(config: AgentConfig, url: str, instructions: str):
    from ..providers import create_completion_provider

    fetcher = PageFetcher(config.fetch)
    text = await fetcher.fetch(url)
    summarizer = GroundedSummarizer(
        create_completion_provider(config.completion),
        config.summarizer,
        min_content_chars=config.fetch.min_content_chars,
    )
    return await summarizer.summarize(text, instructions)


def cmd_summarize(args):
    """Fetch one page and summarize it under grounding."""
    config = _load(args)
    result = asyncio.run(_summarize(config, args.url, args.instructions))
    print(result.summary)
    if not result.grounded:
        sys.exit(2)


def cmd_quota(args):
    """Show today's crawl usage for an identity."""
    config = _load(args)
    store = _get_store(config)
    try:
        record = store.get_quota_record(args.identity)
    finally:
        store.close()
    quota = QuotaLedger(tz=config.quota.timezone)
    if record is not None:
        quota.load_record(record)
    budget = config.crawl.budget_for(args.identity, args.elevated)
    used = quota.used(args.identity)
    print(f"Identity:  {args.identity}")
    print(f"Day:       {quota.today().isoformat()} ({config.quota.timezone})")
    print(f"Used:      {used}/{budget.max_calls_per_day}")
    print(f"Remaining: {quota.remaining(args.identity, budget.max_calls_per_day)}")


def cmd_history(args):
    """Print stored turns and the rolling summary for a thread."""
    config = _load(args)
    store = _get_store(config)
    scope = MemoryScope.thread(args.identity, args.thread)
    try:
        summary = store.get_summary(scope)
        turns = store.get_turns(scope, args.limit)
    finally:
        store.close()

    if summary is not None:
        print(f"Summary (covers {summary.covers_turns} turns):")
        print(f"  {summary.summary}")
        print()
    if not turns:
        print("No turns stored for this thread.")
        return
    for turn in turns:
        print(f"[{turn.timestamp:%Y-%m-%d %H:%M}] {turn.role}: {turn.text}")


def cmd_profile(args):
    """Show what has been learned about a user."""
    config = _load(args)
    store = _get_store(config)
    try:
        profile = store.get_profile(args.identity, args.group)
    finally:
        store.close()
    if profile is None:
        print("No profile stored for this user.")
        return
    print(f"Identity:     {profile.identity}")
    print(f"Group:        {profile.group_id or '-'}")
    print(f"Summary:      {profile.profile_summary or '(none yet)'}")
    for key, value in sorted(profile.preferences.items()):
        print(f"Preference:   {key}: {value}")
    print(f"Affinity:     {profile.affinity:+.1f} ({profile.relationship})")
    print(f"Exchanges:    {profile.exchanges}")


def main():
    parser = argparse.ArgumentParser(
        prog="grounded-agent",
        description="Grounded web answers and bounded conversational memory",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument(
        "--log-level", default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    subparsers = parser.add_subparsers(dest="command")

    # init
    init_parser = subparsers.add_parser("init", help="Write a default config file")
    init_parser.add_argument("--force", action="store_true", help="Overwrite existing config")

    # config validate
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    # crawl
    crawl_parser = subparsers.add_parser("crawl", help="Crawl from a seed URL")
    crawl_parser.add_argument("url", help="Seed URL")
    crawl_parser.add_argument("--identity", "-u", default="cli", help="Identity charged for the crawl")
    crawl_parser.add_argument("--elevated", action="store_true", help="Use the elevated budget profile")
    crawl_parser.add_argument("--show-text", action="store_true", help="Print the combined page text")

    # summarize
    summarize_parser = subparsers.add_parser("summarize", help="Summarize one page under grounding")
    summarize_parser.add_argument("url", help="Page URL")
    summarize_parser.add_argument(
        "--instructions", "-i",
        default="Summarize the main points of this page.",
        help="What to extract from the page",
    )

    # quota
    quota_parser = subparsers.add_parser("quota", help="Show crawl quota for an identity")
    quota_parser.add_argument("identity", help="Identity")
    quota_parser.add_argument("--elevated", action="store_true", help="Report against the elevated profile")

    # history
    history_parser = subparsers.add_parser("history", help="Show stored conversation turns")
    history_parser.add_argument("identity", help="Identity")
    history_parser.add_argument("thread", help="Thread ID")
    history_parser.add_argument("--limit", "-n", type=int, default=None, help="Most recent N turns")

    # profile
    profile_parser = subparsers.add_parser("profile", help="Show a stored user profile")
    profile_parser.add_argument("identity", help="Identity")
    profile_parser.add_argument("--group", "-g", default=None, help="Group ID")

    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "init":
        cmd_init(args)
    elif args.command == "crawl":
        cmd_crawl(args)
    elif args.command == "summarize":
        cmd_summarize(args)
    elif args.command == "quota":
        cmd_quota(args)
    elif args.command == "history":
        cmd_history(args)
    elif args.command == "profile":
        cmd_profile(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: grounded-agent config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()
