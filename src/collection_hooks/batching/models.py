"""Data models for the batch runner."""

from pydantic import BaseModel, ConfigDict

from .enums import BatchAction


class BatchItemResult(BaseModel):
    """Outcome of one item, as reported by the per-item function.

    The runner only looks at ``action`` and ``error``; aggregating the
    operation's own results is left to the per-item function.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    action: BatchAction = BatchAction.CONTINUE
    error: BaseException | None = None

    @classmethod
    def failed(cls, error: BaseException, ordered: bool) -> "BatchItemResult":
        """Result for an item whose function raised: stop ordered runs, continue unordered ones."""
        return cls(action=BatchAction.BREAK if ordered else BatchAction.CONTINUE, error=error)
