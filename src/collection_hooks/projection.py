"""Projection merging.

Several listeners may each declare the part of a record they need. Before a
single fetch is issued those partial projections are combined into one
projection that returns at least every field any of them asked for.

A projection is a mapping of field name to either a leaf (``1`` include,
``0`` exclude; booleans are accepted and normalized) or a nested projection.
Within one mapping the leaves are either all inclusions or all exclusions,
except that the top-level identifier field may be excluded from an inclusion
projection.

## Merge rules

- Two equal leaves merge to that leaf.
- An exclusion merged with an inclusion (or with an absent key under an
  inclusion parent) becomes unrestricted: a field cannot stay excluded when
  someone needs it.
- An inclusion merged with an absent key under an exclusion parent is
  dropped, as unlisted keys are already returned by an exclusion projection.
- Two nested mappings merge key by key. At the top level the identifier is
  only excluded when both sides exclude it.
- When inclusion-style and exclusion-style children meet under the same key
  the whole subtree widens to ``1``. This can over-fetch.

```python
union_of_projections([{"a": {"b": 1}}, {"a": {"c": 1}}])
# {"a": {"b": 1, "c": 1}}
union_of_projections([{"a": 0}, {"b": 0}])
# 1 (everything)
```
"""

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel

Projection = dict[str, Any]
ProjectionValue = Projection | int | None

ID_FIELD = "_id"


class ProjectionMergeResult(BaseModel):
    """Result of combining two projection values."""

    is_exclusion: bool
    projection: Any
    has_nested_keys: bool


def _normalize(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    return value


def _is_leaf(value: Any, leaf: int) -> bool:
    return value is not None and not isinstance(value, Mapping) and _normalize(value) == leaf


def is_projection_exclusion(projection: Mapping[str, Any], is_top: bool = False) -> bool:
    """Return whether a projection mapping is exclusion-style.

    The style is decided by the first leaf; a nested first value means
    inclusion. At the top level the identifier field is ignored since it may
    be excluded from either style.
    """
    first = None
    for key, value in projection.items():
        if is_top and key == ID_FIELD:
            continue
        first = value
        break
    if first is None or isinstance(first, Mapping):
        return False
    return not _normalize(first)


def combine_projections(
    left: ProjectionValue,
    right: ProjectionValue,
    left_parent_is_exclusion: bool,
    right_parent_is_exclusion: bool,
    depth: int = 0,
) -> ProjectionMergeResult:
    """Combine two projection values into one.

    Args:
        left: Leaf, nested projection or None when the key is absent
        right: Leaf, nested projection or None when the key is absent
        left_parent_is_exclusion: Whether the mapping holding ``left`` is exclusion-style
        right_parent_is_exclusion: Whether the mapping holding ``right`` is exclusion-style
        depth: Nesting depth, 0 for the top-level projection

    Returns:
        ProjectionMergeResult: ``projection`` is the merged value, ``None`` when
            the key should be dropped, or ``{}`` when it should be unrestricted.
    """
    left = _normalize(left)
    right = _normalize(right)

    if _is_leaf(left, 0) and _is_leaf(right, 0):
        return ProjectionMergeResult(is_exclusion=True, projection=0, has_nested_keys=False)
    if _is_leaf(left, 1) and _is_leaf(right, 1):
        return ProjectionMergeResult(is_exclusion=False, projection=1, has_nested_keys=False)

    if _is_leaf(left, 0) or _is_leaf(right, 0):
        other, other_parent_is_exclusion = (
            (right, right_parent_is_exclusion) if _is_leaf(left, 0) else (left, left_parent_is_exclusion)
        )
        if isinstance(other, Mapping):
            other_is_exclusion = is_projection_exclusion(other)
            return ProjectionMergeResult(
                is_exclusion=not other_is_exclusion,
                projection=dict(other) if other_is_exclusion else {},
                has_nested_keys=other_is_exclusion,
            )
        # Excluded here, but the other side needs it or already gets it implicitly
        if _is_leaf(other, 1) or (other is None and other_parent_is_exclusion):
            return ProjectionMergeResult(is_exclusion=False, projection={}, has_nested_keys=False)
        return ProjectionMergeResult(is_exclusion=True, projection=0, has_nested_keys=False)

    if _is_leaf(left, 1) or _is_leaf(right, 1):
        other, other_parent_is_exclusion = (
            (right, right_parent_is_exclusion) if _is_leaf(left, 1) else (left, left_parent_is_exclusion)
        )
        if other is None and other_parent_is_exclusion:
            return ProjectionMergeResult(is_exclusion=False, projection=None, has_nested_keys=False)
        return ProjectionMergeResult(is_exclusion=False, projection=1, has_nested_keys=False)

    # Both sides are mappings (or absent)
    left_map: Mapping[str, Any] = left or {}
    right_map: Mapping[str, Any] = right or {}
    is_top = depth == 0
    left_is_exclusion = is_projection_exclusion(left_map, is_top) if isinstance(left, Mapping) else left_parent_is_exclusion
    right_is_exclusion = is_projection_exclusion(right_map, is_top) if isinstance(right, Mapping) else right_parent_is_exclusion

    result: Projection | int = {}
    exclusion_keys: set[str] = set()
    is_exclusion = False
    has_keys = True

    for key in dict.fromkeys([*left_map.keys(), *right_map.keys()]):
        left_value = left_map.get(key)
        right_value = right_map.get(key)
        if is_top and key == ID_FIELD:
            if _is_leaf(left_value, 0) and _is_leaf(right_value, 0):
                result[ID_FIELD] = 0
            continue

        partial = combine_projections(left_value, right_value, left_is_exclusion, right_is_exclusion, depth + 1)
        if partial.is_exclusion:
            is_exclusion = True
            exclusion_keys.add(key)
        if partial.projection is None:
            continue
        if isinstance(partial.projection, Mapping) and not partial.has_nested_keys:
            # inclusion and exclusion met under this key
            result = 1
            has_keys = False
            break
        result[key] = partial.projection

    if is_exclusion and isinstance(result, dict):
        result = {key: value for key, value in result.items() if key in exclusion_keys}

    return ProjectionMergeResult(is_exclusion=False, projection=result, has_nested_keys=has_keys)


def union_of_projections(projections: Iterable[Projection | None]) -> Projection | int:
    """Fold ``combine_projections`` across a sequence of projections.

    An empty sequence yields ``{}`` (no restriction). ``None`` entries are
    treated as "no projection requested" and skipped.

    Args:
        projections: Projections declared by the participating listeners

    Returns:
        The merged projection, or ``1`` when the merge widened to the whole record
    """
    declared = [projection for projection in projections if projection is not None]
    if not declared:
        return {}

    result: Any = declared[0]
    for projection in declared[1:]:
        result = combine_projections(result, projection, False, False).projection
    return result


def as_store_projection(projection: Projection | int | None) -> Projection | None:
    """Translate a merged projection into what the store expects.

    ``1`` and ``{}`` both mean "the whole record", which the store
    expresses as no projection at all.
    """
    if projection is None or projection == 1 or projection == {}:
        return None
    return projection


__all__ = [
    "ProjectionMergeResult",
    "as_store_projection",
    "combine_projections",
    "is_projection_exclusion",
    "union_of_projections",
]
