"""
Redis channel names for realtime pushes.
"""

from __future__ import annotations


def channel_user(user_id: int) -> str:
    """Per-user channel; the parent and staff apps subscribe to their own."""
    if not isinstance(user_id, int) or user_id <= 0:
        raise ValueError(f"user_id must be a positive integer, got {user_id!r}")
    return f"user:{user_id}"
