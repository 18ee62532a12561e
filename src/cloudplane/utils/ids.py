"""Composite resource identifier helpers."""

from typing import List, Sequence

from cloudplane.utils.errors import ValidationError

ID_SEPARATOR = ','


def flatten_resource_id(parts: Sequence[str], part_count: int, allow_empty: bool = False) -> str:
    """Join identifier parts into a single resource ID.

    Raises:
        ValidationError: If the number of parts is wrong or a part is empty
    """
    if len(parts) != part_count:
        raise ValidationError(
            f"unexpected number of ID parts ({len(parts)}), expected {part_count}"
        )
    for part in parts:
        if not allow_empty and not part:
            raise ValidationError(f"empty ID part in {list(parts)}")
        if ID_SEPARATOR in part:
            raise ValidationError(f"ID part {part!r} contains the separator {ID_SEPARATOR!r}")
    return ID_SEPARATOR.join(parts)


def expand_resource_id(resource_id: str, part_count: int, allow_empty: bool = False) -> List[str]:
    """Split a resource ID into its parts.

    Raises:
        ValidationError: If the ID does not have exactly part_count non-empty parts
    """
    parts = resource_id.split(ID_SEPARATOR)
    if len(parts) != part_count:
        raise ValidationError(
            f"unexpected format for ID ({resource_id}), expected {part_count} parts "
            f"separated by {ID_SEPARATOR!r}"
        )
    if not allow_empty and any(not part for part in parts):
        raise ValidationError(f"unexpected format for ID ({resource_id}), empty part")
    return parts
