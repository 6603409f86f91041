"""Tag filters used to select a subset of the fleet."""
from dataclasses import dataclass
from typing import FrozenSet, Iterable

from rds_exporter.models import Tag


@dataclass(frozen=True)
class TagFilter:
    """Case-insensitive key/value predicate over a resource's tags."""
    key: str
    value: str

    def matches(self, tags: Iterable[Tag]) -> bool:
        """Return True if any tag has this filter's key and value."""
        key = self.key.casefold()
        value = self.value.casefold()
        return any(
            tag.key.casefold() == key and tag.value.casefold() == value
            for tag in tags
        )


def filter_set(*filters: TagFilter) -> FrozenSet[TagFilter]:
    """Build a hashable filter set usable as a cache key."""
    return frozenset(filters)


def matches_all(filters: Iterable[TagFilter], tags: Iterable[Tag]) -> bool:
    """Conjunction of filters: every filter must match some tag."""
    tags = list(tags)
    return all(f.matches(tags) for f in filters)
