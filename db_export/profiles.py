"""
Named connection profiles with field inheritance.

A profile's effective configuration is computed by walking from its root to
the profile itself: each node's set fields override its ancestors' values and
each node's explicitly unset fields remove the inherited value. The tree never
touches the filesystem; it receives already-deserialised records.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator, Mapping, Optional

from .errors import CycleError, DuplicateIdError, ProfileError, UnknownIdError


class FieldState(Enum):
    INHERITED = "inherited"
    SET = "set"
    UNSET = "unset"


@dataclass(frozen=True)
class ProfileNode:
    """
    A named connection profile as stored in the tree.

    Attributes:
        id: Unique identifier within the tree.
        parent_id: Identifier of the profile to inherit from, if any.
        fields: Field values set (or overridden) by this profile.
        unset_fields: Fields this profile clears, blocking inheritance.
    """

    id: str
    parent_id: Optional[str] = None
    fields: Mapping[str, Any] = field(default_factory=dict)
    unset_fields: frozenset[str] = frozenset()

    def state_of(self: "ProfileNode", name: str) -> FieldState:
        if name in self.unset_fields:
            return FieldState.UNSET
        if name in self.fields:
            return FieldState.SET
        return FieldState.INHERITED


class ProfileTree:
    """
    A forest of profiles; each independent namespace has its own root.

    Parents may be inserted after their children, so records can be loaded in
    any order. A parent that is still missing surfaces as ``UnknownIdError``
    when a descendant is resolved.
    """

    def __init__(self: "ProfileTree"):
        self._nodes: dict[str, ProfileNode] = {}
        self._children: dict[str, list[str]] = {}

    @classmethod
    def from_records(cls, records: Iterable[ProfileNode]) -> "ProfileTree":
        tree = cls()
        for record in records:
            tree.insert(
                record.id, record.parent_id, record.fields, record.unset_fields
            )
        return tree

    def insert(
        self: "ProfileTree",
        profile_id: str,
        parent_id: Optional[str] = None,
        fields: Optional[Mapping[str, Any]] = None,
        unset_fields: Iterable[str] = (),
    ) -> ProfileNode:
        """
        Adds a profile.

        Args:
            profile_id: Identifier of the new profile.
            parent_id: Profile to inherit from.
            fields: Fields set by the profile.
            unset_fields: Fields the profile explicitly clears.

        Returns:
            The stored node.

        Raises:
            DuplicateIdError: If the identifier is already taken.
            CycleError: If the parent chain would lead back to the new profile.
            ProfileError: If a field is both set and unset.
        """
        if profile_id in self._nodes:
            raise DuplicateIdError(
                f"Profile '{profile_id}' is already defined", profile=profile_id
            )

        fields = dict(fields or {})
        unset = frozenset(unset_fields)
        conflicting = sorted(unset.intersection(fields))
        if conflicting:
            raise ProfileError(
                f"Fields {conflicting} are both set and unset", profile=profile_id
            )

        chain = [profile_id]
        ancestor = parent_id
        while ancestor is not None:
            chain.append(ancestor)
            if ancestor == profile_id:
                raise CycleError(
                    f"Parent chain {' -> '.join(chain)} forms a cycle",
                    profile=profile_id,
                )
            node = self._nodes.get(ancestor)
            ancestor = node.parent_id if node else None

        node = ProfileNode(profile_id, parent_id, fields, unset)
        self._nodes[profile_id] = node
        self._children.setdefault(profile_id, [])
        if parent_id is not None:
            self._children.setdefault(parent_id, []).append(profile_id)
        return node

    def get(self: "ProfileTree", profile_id: str) -> ProfileNode:
        try:
            return self._nodes[profile_id]
        except KeyError:
            raise UnknownIdError(
                f"Profile '{profile_id}' not found", profile=profile_id
            ) from None

    def ancestry(self: "ProfileTree", profile_id: str) -> list[ProfileNode]:
        """
        Returns the linear path from the root down to the profile.

        Raises:
            UnknownIdError: If the profile or one of its ancestors is missing.
        """
        path = [self.get(profile_id)]
        while path[-1].parent_id is not None:
            parent_id = path[-1].parent_id
            if parent_id not in self._nodes:
                raise UnknownIdError(
                    f"Profile '{path[-1].id}' inherits from unknown profile '{parent_id}'",
                    profile=profile_id,
                )
            path.append(self._nodes[parent_id])
        path.reverse()
        return path

    def resolve(self: "ProfileTree", profile_id: str) -> dict[str, Any]:
        """
        Computes the effective configuration of a profile.

        Returns:
            A fresh deep copy; no result is cached between calls.
        """
        effective: dict[str, Any] = {}
        for node in self.ancestry(profile_id):
            for name in node.unset_fields:
                effective.pop(name, None)
            effective.update(node.fields)
        return copy.deepcopy(effective)

    def children_of(self: "ProfileTree", profile_id: str) -> tuple[str, ...]:
        self.get(profile_id)
        return tuple(self._children.get(profile_id, ()))

    def roots(self: "ProfileTree") -> tuple[str, ...]:
        """Profiles without a parent, or whose parent is not loaded."""
        return tuple(
            node.id
            for node in self._nodes.values()
            if node.parent_id is None or node.parent_id not in self._nodes
        )

    def walk(self: "ProfileTree") -> Iterator[tuple[int, str]]:
        """
        Yields ``(depth, id)`` pairs in depth-first order, for listings.
        """
        stack = [(0, root) for root in reversed(self.roots())]
        while stack:
            depth, profile_id = stack.pop()
            yield depth, profile_id
            for child in reversed(self._children.get(profile_id, [])):
                stack.append((depth + 1, child))

    def __contains__(self: "ProfileTree", profile_id: object) -> bool:
        return profile_id in self._nodes

    def __len__(self: "ProfileTree") -> int:
        return len(self._nodes)

    def __iter__(self: "ProfileTree") -> Iterator[str]:
        return iter(self._nodes)
