"""Group formation for class projects.

`form_groups` partitions a class roster into named groups, either from a
professor's manual assignment or automatically by spreading students over
groups in order of their aggregate skill score. The module is pure: it
performs no I/O and keeps no state, so services call it before touching the
database and persist whatever it returns.
"""

from __future__ import annotations

import math
import string
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Union

MemberId = Union[int, str]

MODES = ("manual", "automatic")
MIN_GROUP_SIZE = 2
MAX_GROUP_SIZE = 6
DEFAULT_GROUP_SIZE = 3
RATING_MIN = 0
RATING_MAX = 5


class GroupingError(ValueError):
    """Base class for grouping failures; raised before any group is built."""


class InvalidConfiguration(GroupingError):
    pass


class EmptyRoster(GroupingError):
    pass


class NoValidGroups(GroupingError):
    pass


@dataclass(frozen=True)
class SkillProfile:
    """Self-rated strengths of a student, each rating in [0, 5]."""
    research: int = 0
    writing: int = 0
    design: int = 0
    technical: int = 0

    def __post_init__(self):
        for name in ("research", "writing", "design", "technical"):
            value = getattr(self, name)
            if not RATING_MIN <= value <= RATING_MAX:
                raise ValueError(f"{name} rating must be between {RATING_MIN} and {RATING_MAX}")

    @classmethod
    def from_ratings(cls, research=None, writing=None, design=None, technical=None) -> "SkillProfile":
        """Build a profile where missing ratings count as 0."""
        return cls(
            research=research or 0,
            writing=writing or 0,
            design=design or 0,
            technical=technical or 0,
        )

    @property
    def total(self) -> int:
        return self.research + self.writing + self.design + self.technical


@dataclass(frozen=True)
class RosterMember:
    id: MemberId
    display_name: str
    email: str = ""
    skills: SkillProfile = field(default_factory=SkillProfile)


@dataclass(frozen=True)
class ManualGroup:
    name: str
    member_ids: Sequence[MemberId] = ()


@dataclass(frozen=True)
class Group:
    name: str
    members: tuple

    @property
    def member_ids(self) -> List[MemberId]:
        return [m.id for m in self.members]


def group_name(index: int) -> str:
    """Return "Group A".."Group Z" for the first 26 indexes, then "Group 27" onwards."""
    letters = string.ascii_uppercase
    if index < len(letters):
        return f"Group {letters[index]}"
    return f"Group {index + 1}"


def clamp_group_size(value: Optional[int], default: int = DEFAULT_GROUP_SIZE) -> int:
    """Missing or zero sizes fall back to `default`; others are clamped to [2, 6]."""
    if not value:
        return default
    return max(MIN_GROUP_SIZE, min(MAX_GROUP_SIZE, int(value)))


def form_groups(
    roster: Sequence[RosterMember],
    mode: str,
    groups: Optional[Iterable[ManualGroup]] = None,
    group_size: Optional[int] = None,
    default_size: int = DEFAULT_GROUP_SIZE,
) -> List[Group]:
    """Partition `roster` into groups.

    In ``manual`` mode the submitted `groups` are filtered down to ids present
    in the roster; a student listed in several groups stays in all of them.
    In ``automatic`` mode students are ordered by aggregate score (highest
    first, ties keep roster order) and dealt out round-robin over
    ``ceil(len(roster) / group_size)`` groups. A missing or zero
    `group_size` means `default_size`.
    """
    if mode not in MODES:
        raise InvalidConfiguration(f"mode must be one of {', '.join(MODES)}")
    if not roster:
        raise EmptyRoster("no students to group")
    if mode == "manual":
        return _manual_groups(roster, groups or [])
    return _automatic_groups(roster, clamp_group_size(group_size, default=default_size))


def _manual_groups(roster: Sequence[RosterMember], submitted: Iterable[ManualGroup]) -> List[Group]:
    by_id = {m.id: m for m in roster}
    out = []
    for g in submitted:
        if not g.name or not g.name.strip():
            continue
        members = tuple(by_id[mid] for mid in g.member_ids if mid in by_id)
        if not members:
            continue
        out.append(Group(name=g.name, members=members))
    if not out:
        raise NoValidGroups("no valid groups provided")
    return out


def _automatic_groups(roster: Sequence[RosterMember], size: int) -> List[Group]:
    # sorted() is stable, so equal scores keep their roster order
    ranked = sorted(roster, key=lambda m: m.skills.total, reverse=True)
    group_count = max(1, math.ceil(len(ranked) / size))
    buckets: List[List[RosterMember]] = [[] for _ in range(group_count)]
    for idx, member in enumerate(ranked):
        buckets[idx % group_count].append(member)
    return [
        Group(name=group_name(idx), members=tuple(members))
        for idx, members in enumerate(buckets)
        if members
    ]


def shape_groups(groups: Iterable[Group]) -> List[dict]:
    """Render groups as JSON-friendly dicts for API responses."""
    return [
        {
            "name": g.name,
            "members": [
                {"id": m.id, "display_name": m.display_name, "email": m.email}
                for m in g.members
            ],
        }
        for g in groups
    ]
