"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
import os
from dataclasses import asdict
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from .types import (
    DEFAULT_PINNED_CATEGORIES,
    AgentConfig,
    AssemblyConfig,
    ConfigError,
    CrawlBudget,
    CrawlConfig,
    FetchConfig,
    InterventionConfig,
    LimitsConfig,
    MemoryConfig,
    ProviderConfig,
    QuotaConfig,
    SearchConfig,
    StorageConfig,
    SummarizerConfig,
)

CONFIG_FILENAMES = [
    "grounded-agent.yaml",
    "grounded-agent.yml",
    "grounded-agent.json",
]

KNOWN_CATEGORIES = {"long_term_summary", "profile", "group_summary", "recall", "short_term", *DEFAULT_PINNED_CATEGORIES}


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _parse_budget(raw: dict[str, Any], default: CrawlBudget) -> CrawlBudget:
    return CrawlBudget(
        max_depth=raw.get("max_depth", default.max_depth),
        max_links_per_page=raw.get("max_links_per_page", default.max_links_per_page),
        max_calls_per_request=raw.get("max_calls_per_request", default.max_calls_per_request),
        max_calls_per_day=raw.get("max_calls_per_day", default.max_calls_per_day),
    )


def _parse_provider(raw: dict[str, Any], default: ProviderConfig) -> ProviderConfig:
    return ProviderConfig(
        type=raw.get("type", default.type),
        base_url=raw.get("base_url", default.base_url),
        model=raw.get("model", default.model),
        api_key_env=raw.get("api_key_env", default.api_key_env),
        timeout_seconds=raw.get("timeout_seconds", default.timeout_seconds),
    )


def _build_config(raw: dict[str, Any]) -> AgentConfig:
    """Build an AgentConfig from a raw dict."""
    defaults = AgentConfig()

    # Crawl
    crawl_raw = raw.get("crawl", {})
    profiles_raw = crawl_raw.get("profiles", {})
    profiles = {
        name: _parse_budget(profiles_raw.get(name, {}), budget)
        for name, budget in defaults.crawl.profiles.items()
    }
    crawl = CrawlConfig(
        profiles=profiles,
        elevated_identities=[str(i) for i in crawl_raw.get("elevated_identities", [])],
        cache_ttl_minutes=crawl_raw.get("cache_ttl_minutes", 10.0),
        cache_max_entries=crawl_raw.get("cache_max_entries", 256),
    )

    fetch_raw = raw.get("fetch", {})
    fetch = FetchConfig(
        timeout_seconds=fetch_raw.get("timeout_seconds", 10.0),
        render_timeout_seconds=fetch_raw.get("render_timeout_seconds", 20.0),
        min_content_chars=fetch_raw.get("min_content_chars", 100),
        render_enabled=fetch_raw.get("render_enabled", True),
        user_agent=fetch_raw.get("user_agent", defaults.fetch.user_agent),
    )

    quota = QuotaConfig(timezone=raw.get("quota", {}).get("timezone", "Asia/Tokyo"))

    summ_raw = raw.get("summarizer", {})
    summarizer = SummarizerConfig(
        max_input_chars=summ_raw.get("max_input_chars", 6000),
        chunk_chars=summ_raw.get("chunk_chars", 500),
        temperature=summ_raw.get("temperature", 0.0),
        top_p=summ_raw.get("top_p", 0.1),
        max_tokens=summ_raw.get("max_tokens", 800),
        sentinel=summ_raw.get("sentinel", defaults.summarizer.sentinel),
        cache_ttl_minutes=summ_raw.get("cache_ttl_minutes", 10.0),
        cache_max_entries=summ_raw.get("cache_max_entries", 256),
    )

    # Assembly
    assembly_raw = raw.get("assembly", {})
    assembly = AssemblyConfig(
        budget_chars=assembly_raw.get("budget_chars", 5000),
        min_segments=assembly_raw.get("min_segments", 1),
        short_term_turns=assembly_raw.get("short_term_turns", 8),
        recall_limit=assembly_raw.get("recall_limit", 2),
        recall_threshold=assembly_raw.get("recall_threshold", 0.75),
        pinned_categories=list(assembly_raw.get("pinned_categories", DEFAULT_PINNED_CATEGORIES)),
        analysis_enabled=assembly_raw.get("analysis_enabled", True),
        length_counter=assembly_raw.get("length_counter", "chars"),
    )

    memory_raw = raw.get("memory", {})
    memory = MemoryConfig(
        summary_trigger_turns=memory_raw.get("summary_trigger_turns", 40),
        summary_keep_turns=memory_raw.get("summary_keep_turns", 10),
        summary_max_tokens=memory_raw.get("summary_max_tokens", 400),
        cache_ttl_minutes=memory_raw.get("cache_ttl_minutes", 10.0),
        cache_max_entries=memory_raw.get("cache_max_entries", 256),
        profile_enabled=memory_raw.get("profile_enabled", True),
        profile_refresh_exchanges=memory_raw.get("profile_refresh_exchanges", 10),
        profile_history_turns=memory_raw.get("profile_history_turns", 20),
        profile_max_tokens=memory_raw.get("profile_max_tokens", 200),
        affinity_enabled=memory_raw.get("affinity_enabled", True),
        affinity_step=memory_raw.get("affinity_step", 0.2),
    )

    interv_raw = raw.get("intervention", {})
    intervention = InterventionConfig(
        level=interv_raw.get("level", 2),
        trigger_patterns=list(interv_raw.get("trigger_patterns", defaults.intervention.trigger_patterns)),
        model_judge=interv_raw.get("model_judge", True),
        history_turns=interv_raw.get("history_turns", 10),
    )

    limits_raw = raw.get("limits", {})
    limits = LimitsConfig(
        bot_max_turns=limits_raw.get("bot_max_turns", 2),
        bot_max_daily=limits_raw.get("bot_max_daily", 10),
        cooldown_seconds=limits_raw.get("cooldown_seconds", 3600.0),
    )

    storage_raw = raw.get("storage", {})
    storage = StorageConfig(
        backend=storage_raw.get("backend", "sqlite"),
        sqlite_path=storage_raw.get("sqlite_path", defaults.storage.sqlite_path),
    )

    providers_raw = raw.get("providers", {})
    completion = _parse_provider(providers_raw.get("completion", {}), defaults.completion)
    embedding = _parse_provider(providers_raw.get("embedding", {}), defaults.embedding)

    search_raw = raw.get("search", {})
    search = SearchConfig(
        provider=search_raw.get("provider", "google"),
        api_key_env=search_raw.get("api_key_env", "GOOGLE_API_KEY"),
        cse_id_env=search_raw.get("cse_id_env", "GOOGLE_CSE_ID"),
        max_results=search_raw.get("max_results", 3),
        language=search_raw.get("language", ""),
        excluded_domains=list(search_raw.get("excluded_domains", defaults.search.excluded_domains)),
        priority_domains=list(search_raw.get("priority_domains", defaults.search.priority_domains)),
    )

    return AgentConfig(
        version=str(raw.get("version", "1.0")),
        agent_name=raw.get("agent_name", "grounded-agent"),
        crawl=crawl,
        fetch=fetch,
        quota=quota,
        summarizer=summarizer,
        assembly=assembly,
        memory=memory,
        intervention=intervention,
        limits=limits,
        storage=storage,
        completion=completion,
        embedding=embedding,
        search=search,
    )


def validate_config(config: AgentConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    for name in ("standard", "elevated"):
        budget = config.crawl.profiles.get(name)
        if budget is None:
            errors.append(f"Missing crawl profile '{name}'")
            continue
        if budget.max_depth < 0:
            errors.append(f"crawl.profiles.{name}.max_depth must be >= 0")
        for attr in ("max_links_per_page", "max_calls_per_request", "max_calls_per_day"):
            if getattr(budget, attr) < 1:
                errors.append(f"crawl.profiles.{name}.{attr} must be >= 1")

    try:
        ZoneInfo(config.quota.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"Unknown time zone: {config.quota.timezone}")

    if config.fetch.min_content_chars < 0:
        errors.append("fetch.min_content_chars must be >= 0")

    if config.summarizer.max_input_chars <= config.fetch.min_content_chars:
        errors.append(
            f"summarizer.max_input_chars ({config.summarizer.max_input_chars}) must be > "
            f"fetch.min_content_chars ({config.fetch.min_content_chars})"
        )

    if config.assembly.budget_chars < 1:
        errors.append("assembly.budget_chars must be >= 1")

    if config.assembly.min_segments < 0:
        errors.append("assembly.min_segments must be >= 0")

    unknown = sorted(set(config.assembly.pinned_categories) - KNOWN_CATEGORIES)
    if unknown:
        errors.append(f"Unknown pinned categories: {', '.join(unknown)}")

    if config.assembly.length_counter not in ("chars", "estimate", "tiktoken"):
        errors.append(f"Unknown length counter: {config.assembly.length_counter}")

    if config.memory.summary_keep_turns >= config.memory.summary_trigger_turns:
        errors.append(
            f"memory.summary_keep_turns ({config.memory.summary_keep_turns}) must be < "
            f"memory.summary_trigger_turns ({config.memory.summary_trigger_turns})"
        )

    if config.memory.profile_refresh_exchanges < 1:
        errors.append("memory.profile_refresh_exchanges must be >= 1")

    if not 0 <= config.memory.affinity_step <= 1:
        errors.append("memory.affinity_step must be between 0 and 1")

    if not 0 <= config.intervention.level <= 10:
        errors.append("intervention.level must be between 0 and 10")

    if config.storage.backend != "sqlite":
        errors.append(f"Unsupported storage backend: {config.storage.backend}")

    if config.embedding.type not in ("openai", "sentence-transformers"):
        errors.append(f"Unsupported embedding provider type: {config.embedding.type}")

    if config.search.provider != "google":
        errors.append(f"Unsupported search provider: {config.search.provider}")

    return errors


def resolve_secret(env_name: str) -> str | None:
    """Read a secret from the environment variable named in config."""
    if not env_name:
        return None
    return os.environ.get(env_name) or None


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> AgentConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    if not isinstance(raw, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")

    return _build_config(raw)


def config_to_dict(config: AgentConfig) -> dict[str, Any]:
    """Inverse of ``_build_config``: the raw dict shape a config file uses."""
    raw = asdict(config)
    raw["providers"] = {
        "completion": raw.pop("completion"),
        "embedding": raw.pop("embedding"),
    }
    return raw
