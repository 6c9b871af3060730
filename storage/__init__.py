from .schema import DTYPES, ChunkRecord, HistoryRecord, PracticeState, RatingRow
from .store import (
    StateFileError,
    RatingChange,
    state_path,
    hash_file,
    read_state,
    reconcile_chunks,
    merge_chunks,
    load_state,
    save_state,
    reset_state,
    record_session,
    rate_chunks,
)
from .history import (
    init_history,
    rating_rows,
    validate_rows,
    append_rating_history,
    load_history,
    query_chunk,
    export_ndjson,
)

__all__ = [
    "DTYPES",
    "ChunkRecord",
    "HistoryRecord",
    "PracticeState",
    "RatingRow",
    "StateFileError",
    "RatingChange",
    "state_path",
    "hash_file",
    "read_state",
    "reconcile_chunks",
    "merge_chunks",
    "load_state",
    "save_state",
    "reset_state",
    "record_session",
    "rate_chunks",
    "init_history",
    "rating_rows",
    "validate_rows",
    "append_rating_history",
    "load_history",
    "query_chunk",
    "export_ndjson",
]
