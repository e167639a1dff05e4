from pydantic import BaseModel

from shared.helper.HelperConfig import HelperConfig


class EnvConfig(BaseModel):
    """
    Represents a single configuration parameter required for a env setting.

    Attributes:
        env_key (str): The key/name of the environment variable to read.
        val_type (str): The expected type of the environment variable's value. Supported types are "string", "number", "bool", and "list".
        default (str | int | float | bool | list | None): An optional default value if the environment variable is not set. If None, the variable is required and an error will be raised if it is not set.
    """

    env_key: str
    val_type: str
    default: str | int | float | bool | list | None = None


class SyncSettings(BaseModel):
    """
    Tunables of the vector sync engine, resolved once from the environment.

    Attributes:
        state_path (str): Location of the persisted change tracker document.
        embed_batch_size (int): Texts per embedding provider call.
        index_batch_size (int): Documents / ids per vector index call.
        concurrency (int): Max work batches processed in parallel within one cycle.
        max_attempts (int): Attempts per index batch before it is given up.
        retry_base_delay (float): Backoff base in seconds, doubled per attempt.
        inter_batch_delay (float): Pause between successive index calls, in seconds.
        batch_timeout (float): Upper bound for a single external batch call, in seconds.
        cycle_timeout (float): Upper bound for a whole sync cycle, in seconds.
        history_limit (int): Number of run statistics kept in the tracker.
        min_change_ratio (float): Skip incremental cycles below this share of changed records (0 disables).
        min_change_count (int): Skip incremental cycles below this many changed records (0 disables).
        clear_index_on_rebuild (bool): Wipe the whole index before a full rebuild.
        max_text_chars (int): Search texts are truncated above this length before embedding.
    """

    state_path: str = "data/vector-sync-state.json"
    embed_batch_size: int = 10
    index_batch_size: int = 100
    concurrency: int = 2
    max_attempts: int = 3
    retry_base_delay: float = 1.0
    inter_batch_delay: float = 0.5
    batch_timeout: float = 60.0
    cycle_timeout: float = 1800.0
    history_limit: int = 50
    min_change_ratio: float = 0.0
    min_change_count: int = 0
    clear_index_on_rebuild: bool = False
    max_text_chars: int = 32000

    @classmethod
    def from_config(cls, helper_config: HelperConfig) -> "SyncSettings":
        """Build the settings from SYNC_* environment variables, falling back to the defaults above."""
        defaults = cls()
        return cls(
            state_path=helper_config.get_string_val("SYNC_STATE_PATH", default=defaults.state_path),
            embed_batch_size=int(helper_config.get_number_val("SYNC_EMBED_BATCH_SIZE", default=defaults.embed_batch_size)),
            index_batch_size=int(helper_config.get_number_val("SYNC_INDEX_BATCH_SIZE", default=defaults.index_batch_size)),
            concurrency=int(helper_config.get_number_val("SYNC_CONCURRENCY", default=defaults.concurrency)),
            max_attempts=int(helper_config.get_number_val("SYNC_MAX_ATTEMPTS", default=defaults.max_attempts)),
            retry_base_delay=float(helper_config.get_number_val("SYNC_RETRY_BASE_DELAY", default=defaults.retry_base_delay)),
            inter_batch_delay=float(helper_config.get_number_val("SYNC_INTER_BATCH_DELAY", default=defaults.inter_batch_delay)),
            batch_timeout=float(helper_config.get_number_val("SYNC_BATCH_TIMEOUT", default=defaults.batch_timeout)),
            cycle_timeout=float(helper_config.get_number_val("SYNC_CYCLE_TIMEOUT", default=defaults.cycle_timeout)),
            history_limit=int(helper_config.get_number_val("SYNC_HISTORY_LIMIT", default=defaults.history_limit)),
            min_change_ratio=float(helper_config.get_number_val("SYNC_MIN_CHANGE_RATIO", default=defaults.min_change_ratio)),
            min_change_count=int(helper_config.get_number_val("SYNC_MIN_CHANGE_COUNT", default=defaults.min_change_count)),
            clear_index_on_rebuild=helper_config.get_bool_val("SYNC_CLEAR_INDEX_ON_REBUILD", default=defaults.clear_index_on_rebuild),
            max_text_chars=int(helper_config.get_number_val("SYNC_MAX_TEXT_CHARS", default=defaults.max_text_chars)),
        )
