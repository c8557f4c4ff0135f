from __future__ import annotations

from typing import Dict, Iterable, List, Protocol, Sequence

from .models import Member
from .utils import slugify


class Roster(Protocol):
    def list_eligible_members(self, channel: str) -> Sequence[Member]: ...


def eligible(members: Iterable[Member], admin_ids: Iterable[str] = ()) -> List[Member]:
    """Drop bot accounts and admins from a member listing."""
    excluded = set(admin_ids)
    return [m for m in members if not m.is_bot and m.id not in excluded]


class LobbyRoster:
    """Players who joined a channel's lobby over HTTP."""

    def __init__(self, max_players: int = 30, admin_ids: Iterable[str] = ()):
        self.max_players = max_players
        self.admin_ids = list(admin_ids)
        self._lobbies: Dict[str, List[Member]] = {}

    def join(self, channel: str, username: str) -> Member:
        username = username.strip()
        if not username:
            raise ValueError("Username must not be empty")

        lobby = self._lobbies.setdefault(channel, [])
        if len(lobby) >= self.max_players:
            raise ValueError(f"Lobby is full ({self.max_players} players max)")

        base = pid = slugify(username)
        taken = {m.id for m in lobby}
        n = 2
        while pid in taken:
            pid = f"{base}-{n}"
            n += 1

        member = Member(id=pid, display_name=username)
        lobby.append(member)
        return member

    def clear(self, channel: str) -> None:
        self._lobbies.pop(channel, None)

    def members(self, channel: str) -> List[Member]:
        return list(self._lobbies.get(channel, []))

    def list_eligible_members(self, channel: str) -> List[Member]:
        return eligible(self._lobbies.get(channel, []), self.admin_ids)
