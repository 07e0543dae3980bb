"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from .types import (
    DEFAULT_BUFFER_POLICY,
    AccountantConfig,
    CompactorConfig,
    CompressorConfig,
    DedupConfig,
    FileEventConfig,
    KeepPolicy,
    RelevanceConfig,
    StorageConfig,
    TruncationConfig,
    ValidatorConfig,
)

CONFIG_FILENAMES = [
    "context-compactor.yaml",
    "context-compactor.yml",
    "context-compactor.json",
]

STORAGE_BACKENDS = ("filesystem", "sqlite", "none")


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


def _parse_buffer_policy(raw: dict[Any, Any] | None) -> dict[int, int]:
    if not raw:
        return dict(DEFAULT_BUFFER_POLICY)
    # YAML keys may arrive as strings ("128000") or with underscores
    return {int(str(k).replace("_", "")): int(v) for k, v in raw.items()}


def _build_config(raw: dict[str, Any]) -> CompactorConfig:
    """Build a CompactorConfig from a raw dict."""
    defaults = CompactorConfig()

    acc_raw = raw.get("accountant", {})
    accountant = AccountantConfig(
        buffer_policy=_parse_buffer_policy(raw.get("buffer_policy", acc_raw.get("buffer_policy"))),
        default_min_buffer=acc_raw.get("default_min_buffer", 40_000),
        default_buffer_ratio=acc_raw.get("default_buffer_ratio", 0.20),
    )

    dedup_raw = raw.get("dedup", {})
    dedup = DedupConfig()
    if "read_tools" in dedup_raw:
        dedup.read_tools = list(dedup_raw["read_tools"])
    if "write_tools" in dedup_raw:
        dedup.write_tools = list(dedup_raw["write_tools"])

    comp_raw = raw.get("compressor", {})
    compressor = CompressorConfig(
        min_compression_ratio=comp_raw.get("min_compression_ratio", 0.60),
        max_importance=comp_raw.get("max_importance", 0.80),
        min_block_chars=comp_raw.get("min_block_chars", 400),
        max_error_lines=comp_raw.get("max_error_lines", 3),
    )
    if "command_tools" in comp_raw:
        compressor.command_tools = list(comp_raw["command_tools"])

    rel_raw = raw.get("relevance", {})
    relevance = RelevanceConfig(
        decay_hours=rel_raw.get("decay_hours", 8.0),
        removal_threshold=rel_raw.get("removal_threshold", 0.30),
        fallback_hours_per_message=rel_raw.get("fallback_hours_per_message", 0.25),
        min_message_chars=rel_raw.get("min_message_chars", 300),
        min_savings_chars=rel_raw.get("min_savings_chars", 100),
        back_reference_lookback=rel_raw.get("back_reference_lookback", 10),
    )
    relevance.weights.update(rel_raw.get("weights", {}))

    val_raw = raw.get("validator", {})
    thresholds = raw.get("risk_thresholds", {})
    validator = ValidatorConfig(
        reject_threshold=thresholds.get("reject", val_raw.get("reject_threshold", 0.70)),
        modify_threshold=thresholds.get("modify", val_raw.get("modify_threshold", 0.40)),
        chain_window=val_raw.get("chain_window", 6),
        max_bridge_lines=val_raw.get("max_bridge_lines", 3),
    )
    validator.weights.update(val_raw.get("weights", {}))

    trunc_raw = raw.get("truncation", {})
    truncation = TruncationConfig(
        keep=raw.get("keep", trunc_raw.get("keep", "auto")),
        savings_threshold=raw.get("savings_threshold", trunc_raw.get("savings_threshold", 0.30)),
    )

    events_raw = raw.get("file_events", {})
    file_events = FileEventConfig(
        debounce_ms=events_raw.get("debounce_ms", 200),
        max_events=events_raw.get("max_events", 256),
    )

    storage_raw = raw.get("storage", {})
    storage = StorageConfig(
        backend=storage_raw.get("backend", "filesystem"),
        root=storage_raw.get("root", ".context-compactor/ledger"),
        sqlite_path=storage_raw.get("sqlite_path", ".context-compactor/ledger.db"),
    )

    return CompactorConfig(
        version=str(raw.get("version", "0.1")),
        context_window=raw.get("context_window", 200_000),
        token_counter=raw.get("token_counter", "estimate"),
        recent_window_pairs=raw.get("recent_window_pairs", 3),
        accountant=accountant,
        dedup=dedup,
        compressor=compressor,
        relevance=relevance,
        validator=validator,
        truncation=truncation,
        file_events=file_events,
        storage=storage,
        session_id=raw.get("session_id", defaults.session_id),
    )


def validate_config(config: CompactorConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    if config.context_window <= 0:
        errors.append("context_window must be > 0")

    for window, buffer in config.accountant.buffer_policy.items():
        if buffer >= window:
            errors.append(f"buffer_policy: buffer {buffer} must be < window {window}")

    v = config.validator
    if not 0 <= v.modify_threshold <= v.reject_threshold <= 1:
        errors.append(
            f"risk thresholds must satisfy 0 <= modify ({v.modify_threshold}) "
            f"<= reject ({v.reject_threshold}) <= 1"
        )
    for name in ("critical_path", "discourse_marker", "coherence", "referential"):
        if name not in v.weights:
            errors.append(f"validator.weights is missing '{name}'")

    for name in ("temporal", "semantic", "dependency", "phase", "obsolescence"):
        if name not in config.relevance.weights:
            errors.append(f"relevance.weights is missing '{name}'")
    if config.relevance.decay_hours <= 0:
        errors.append("relevance.decay_hours must be > 0")

    if not 0 <= config.compressor.min_compression_ratio < 1:
        errors.append("compressor.min_compression_ratio must be in [0, 1)")

    keep = config.truncation.keep
    if keep != "auto" and keep not in {k.value for k in KeepPolicy}:
        errors.append(f"Unknown keep policy '{keep}'")
    if not 0 <= config.truncation.savings_threshold <= 1:
        errors.append("savings_threshold must be in [0, 1]")

    if config.recent_window_pairs < 1:
        errors.append("recent_window_pairs must be >= 1")

    if config.storage.backend not in STORAGE_BACKENDS:
        errors.append(f"Unknown storage backend '{config.storage.backend}'")

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> CompactorConfig:
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

    return _build_config(raw)
