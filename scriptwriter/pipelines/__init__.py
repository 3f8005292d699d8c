"""Pipeline modules (outline batches, resumable fill, commands)."""

from .command import run_command
from .outline_batch import generate_initial, generate_outline_batch
from .outline_fill import fill_outline_next, fill_until_complete

__all__ = [
    "run_command",
    "generate_initial",
    "generate_outline_batch",
    "fill_outline_next",
    "fill_until_complete",
]
