"""List filters for locating existing remote resources.

Azure list calls scoped to a resource group do not filter server side, so
the filter is applied to the listed resources while preserving API order.
Only the most specific criterion takes part in matching: the resource ID,
then the label, then the tags.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .clients import RemoteResource


@dataclass(frozen=True)
class ListFilter:
    """Filter on a remote resource's ID, label or tags (most specific wins)."""

    resource_id: str | None = None
    label: str = ""
    tags: tuple[str, ...] | None = None
    additional: dict[str, str] = field(default_factory=dict)

    def criteria(self) -> dict[str, str]:
        """Return the single active criterion plus any additional filters."""
        result: dict[str, str] = {}
        if self.resource_id is not None:
            result["id"] = self.resource_id
        elif self.label:
            result["label"] = self.label
        elif self.tags:
            result["tags"] = ",".join(self.tags)
        result.update(self.additional)
        return result

    def matches(self, resource: RemoteResource) -> bool:
        criteria = self.criteria()
        if not criteria:
            return True
        for key, value in criteria.items():
            if key == "id":
                # ARM IDs are case-insensitive
                if resource.id.lower() != value.lower():
                    return False
            elif key == "label":
                if resource.label != value:
                    return False
            elif key == "tags":
                if not set(value.split(",")) <= set(resource.tags):
                    return False
            elif resource.tags.get(key) != value:
                return False
        return True

    def apply(self, resources: Iterable[RemoteResource]) -> list[RemoteResource]:
        """Return the matching resources in their original order."""
        return [r for r in resources if self.matches(r)]
