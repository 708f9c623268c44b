"""Splitting operation options into hook options and store options."""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict

from collection_hooks.cancellation import CancellationToken
from collection_hooks.event_bus.core import InvokeOptions

INVOKE_OPTION_KEYS = ("include_tags", "exclude_tags", "include_hook")


class CallOptions(BaseModel):
    """Hook-only options of one operation call; never forwarded to the store."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    invoke: InvokeOptions | None = None
    signal: CancellationToken | None = None
    hook_batch_size: int | None = None


def split_hook_options(options: Mapping[str, Any] | None) -> tuple[CallOptions, dict[str, Any]]:
    """Separate hook options from the options passed through to the store.

    Example:
        ```python
        call, store_options = split_hook_options({"upsert": True, "include_tags": ["audit"]})
        # call.invoke.include_tags == frozenset({"audit"}); store_options == {"upsert": True}
        ```
    """
    store_options = dict(options or {})
    invoke_fields = {key: store_options.pop(key) for key in INVOKE_OPTION_KEYS if key in store_options}
    call = CallOptions(
        invoke=InvokeOptions(**invoke_fields) if invoke_fields else None,
        signal=store_options.pop("signal", None),
        hook_batch_size=store_options.pop("hook_batch_size", None),
    )
    return call, store_options
