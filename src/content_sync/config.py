"""Runtime configuration for content_sync.

Reads settings from CLI args, environment variables, .env files and the
YAML config files.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    CONTENT_SYNC_STATE_DIR: Directory for sync state and the conflict log
        (default: .content_sync)
    CONTENT_SYNC_DEFAULT_STRATEGY: Fallback resolution strategy
        (default: manual_merge)
    CONTENT_SYNC_STALE_AFTER: Seconds before a 'syncing' record counts as
        interrupted (default: 900)
    CONTENT_SYNC_MAX_PARALLEL: Max concurrent blocking operations (default: 5)
    CONTENT_SYNC_DEBUG: Enable debug logging (default: false)
"""

import logging
import os
from dataclasses import dataclass
from datetime import timedelta

from .config_schema import BUILTIN_STRATEGIES, UnifiedConfig, to_runtime_config

logger = logging.getLogger(__name__)


@dataclass
class Config:
    state_dir: str = ".content_sync"
    default_strategy: str = "manual_merge"
    stale_after_seconds: int = 900
    max_parallel_operations: int = 5
    debug: bool = False
    log_file: str | None = None

    @property
    def stale_after(self) -> timedelta:
        return timedelta(seconds=self.stale_after_seconds)


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Raises:
        ValueError: If the state dir is empty, the strategy is unknown or a
            numeric setting is out of range.
    """
    config.state_dir = config.state_dir.strip()
    if not config.state_dir:
        raise ValueError(
            "State directory cannot be empty. Set CONTENT_SYNC_STATE_DIR or "
            "sync.state_dir in config.yml."
        )

    if config.default_strategy not in BUILTIN_STRATEGIES:
        raise ValueError(
            f"Unknown default strategy '{config.default_strategy}'. "
            f"Valid strategies: {sorted(BUILTIN_STRATEGIES)}"
        )

    if config.stale_after_seconds < 0:
        raise ValueError(
            f"Invalid stale_after_seconds {config.stale_after_seconds}: must be >= 0"
        )

    if not (1 <= config.max_parallel_operations <= 100):
        raise ValueError(
            f"Invalid max_parallel_operations {config.max_parallel_operations}: "
            "must be a number between 1 and 100"
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_int_env(key: str, low: int, high: int | None = None) -> int | None:
    """Return an int from env var, or None if unset.

    Raises:
        ValueError: If the value is not an integer in range.
    """
    raw = os.getenv(key)
    if raw is None:
        return None
    bounds = f"between {low} and {high}" if high is not None else f">= {low}"
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"Invalid {key} '{raw}': must be a number {bounds}") from None
    if value < low or (high is not None and value > high):
        raise ValueError(f"Invalid {key} '{raw}': must be a number {bounds}")
    return value


def load_config(
    state_dir: str | None = None,
    default_strategy: str | None = None,
    debug: bool = False,
    log_file: str | None = None,
    unified: UnifiedConfig | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > YAML (``unified``) > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        state_dir: Override state directory.
        default_strategy: Override fallback resolution strategy.
        debug: Enable debug logging (CLI flag).
        log_file: Log file path (CLI flag).
        unified: Parsed YAML config.  ``None`` means defaults only.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If any resolved value is invalid.
    """
    base = to_runtime_config(unified or UnifiedConfig())

    final_state_dir = state_dir or os.getenv("CONTENT_SYNC_STATE_DIR") or base.state_dir
    final_strategy = (
        default_strategy
        or os.getenv("CONTENT_SYNC_DEFAULT_STRATEGY")
        or base.default_strategy
    )

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("CONTENT_SYNC_DEBUG")
        final_debug = env_debug if env_debug is not None else base.debug

    stale_after = _get_int_env("CONTENT_SYNC_STALE_AFTER", 0)
    max_parallel = _get_int_env("CONTENT_SYNC_MAX_PARALLEL", 1, 100)

    config = Config(
        state_dir=final_state_dir,
        default_strategy=final_strategy.strip(),
        stale_after_seconds=(
            stale_after if stale_after is not None else base.stale_after_seconds
        ),
        max_parallel_operations=(
            max_parallel if max_parallel is not None else base.max_parallel_operations
        ),
        debug=final_debug,
        log_file=log_file or base.log_file,
    )

    validate_config(config)

    return config
