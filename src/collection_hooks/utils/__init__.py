"""Utility functions for collection hooks."""

from collection_hooks.utils.id_generator import generate_short_id, next_sequence, to_base36
from collection_hooks.utils.options import split_hook_options

__all__ = [
    "generate_short_id",
    "next_sequence",
    "split_hook_options",
    "to_base36",
]
