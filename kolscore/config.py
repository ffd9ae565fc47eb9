"""Runtime settings read from the environment."""
from __future__ import annotations

import os
from pathlib import Path

DATA_DIR = Path(os.environ.get("KOLSCORE_DATA_DIR", Path(__file__).parent / "data"))


def _int_env(key: str, default: int) -> int:
    raw = os.environ.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


def database_url() -> str:
    """SQLAlchemy URL for the score store; SQLite file under DATA_DIR by default."""
    return os.environ.get("KOLSCORE_DATABASE_URL") or f"sqlite:///{DATA_DIR / 'kolscore.db'}"


# Suggestions scoring at or above this are confirmed by bulk auto-match.
AUTO_MATCH_THRESHOLD = _int_env("KOLSCORE_AUTO_MATCH_THRESHOLD", 95)
# Manual matches below this confidence go to the review lane.
REVIEW_THRESHOLD = _int_env("KOLSCORE_REVIEW_THRESHOLD", 70)
SUGGESTION_LIMIT = _int_env("KOLSCORE_SUGGESTION_LIMIT", 10)
CANDIDATE_POOL_LIMIT = _int_env("KOLSCORE_CANDIDATE_POOL_LIMIT", 50)
