"""Enums for the batch runner."""

from enum import StrEnum


class BatchAction(StrEnum):
    """What the runner should do after one item."""

    CONTINUE = "continue"
    BREAK = "break"
