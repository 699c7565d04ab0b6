"""Utility helpers for groupbot."""

from groupbot.utils.helpers import atomic_write_text, ensure_dir, now_ms, slice_message

__all__ = ["atomic_write_text", "ensure_dir", "now_ms", "slice_message"]
