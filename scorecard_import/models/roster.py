from __future__ import annotations

from dataclasses import dataclass

"""Roster and alias records fetched from the user store."""

__all__ = [
    "RosterUser",
    "Alias",
]


@dataclass(frozen=True)
class RosterUser:
    """A known system user (``profiles`` row) in store/department scope."""
    id: str
    display_name: str


@dataclass(frozen=True)
class Alias:
    """Confirmed historical binding from a report-supplied name to a user.

    Natural key: (store_id, normalized alias_name).
    """
    store_id: str
    alias_name: str
    user_id: str

    @property
    def normalized_name(self) -> str:
        return " ".join(self.alias_name.lower().split())
