"""
Request clock.

Routes take the evaluation time as a FastAPI dependency so every engine call
in one request sees the same instant, and tests can pin it:

    app.dependency_overrides[get_now] = lambda: datetime(2024, 1, 15, 18, 0, tzinfo=timezone.utc)
"""

from datetime import datetime, timezone


def get_now() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(timezone.utc)
