from datetime import datetime, timezone


def utc_now() -> datetime:
    """Timezone-aware UTC now, used for every created_at / updated_at column."""
    return datetime.now(timezone.utc)
