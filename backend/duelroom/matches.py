"""
Таблица активных матчей и обратный индекс user_id -> match_id.
"""
import uuid
from dataclasses import dataclass, field

from .constants import ROLE_CLIENT, ROLE_HOST, Role
from .errors import DuplicatePlayer, NotFound


@dataclass(frozen=True)
class PlayerRef:
    user_id: str
    display_name: str


@dataclass
class Match:
    id: str
    player_a: PlayerRef  # ждал в очереди, host
    player_b: PlayerRef  # пришёл вторым, client
    created_at: float
    last_heartbeat: dict[str, float] = field(default_factory=dict)

    @property
    def players(self) -> tuple[PlayerRef, PlayerRef]:
        return (self.player_a, self.player_b)

    def has_player(self, user_id: str) -> bool:
        return user_id in (self.player_a.user_id, self.player_b.user_id)

    def opponent_of(self, user_id: str) -> PlayerRef:
        if user_id == self.player_a.user_id:
            return self.player_b
        if user_id == self.player_b.user_id:
            return self.player_a
        raise NotFound(f"user {user_id} is not in match {self.id}")

    def role_of(self, user_id: str) -> Role:
        return ROLE_HOST if user_id == self.player_a.user_id else ROLE_CLIENT


class MatchTable:
    def __init__(self):
        self._matches: dict[str, Match] = {}
        self._match_by_user: dict[str, str] = {}

    def create(self, player_a: PlayerRef, player_b: PlayerRef, now: float) -> Match:
        if player_a.user_id == player_b.user_id:
            raise DuplicatePlayer(f"user {player_a.user_id} cannot play against itself")
        for p in (player_a, player_b):
            if p.user_id in self._match_by_user:
                raise DuplicatePlayer(f"user {p.user_id} already has a match")
        m = Match(
            id=str(uuid.uuid4()),
            player_a=player_a,
            player_b=player_b,
            created_at=now,
            last_heartbeat={player_a.user_id: now, player_b.user_id: now},
        )
        self._matches[m.id] = m
        self._match_by_user[player_a.user_id] = m.id
        self._match_by_user[player_b.user_id] = m.id
        return m

    def get(self, match_id: str) -> Match:
        m = self._matches.get(match_id)
        if m is None:
            raise NotFound(f"match {match_id} not found")
        return m

    def find(self, match_id: str) -> Match | None:
        return self._matches.get(match_id)

    def match_for(self, user_id: str) -> Match:
        match_id = self._match_by_user.get(user_id)
        if match_id is None:
            raise NotFound(f"user {user_id} has no match")
        return self._matches[match_id]

    def has_match(self, user_id: str) -> bool:
        return user_id in self._match_by_user

    def destroy(self, match_id: str) -> Match | None:
        m = self._matches.pop(match_id, None)
        if m is None:
            return None
        for p in m.players:
            if self._match_by_user.get(p.user_id) == match_id:
                del self._match_by_user[p.user_id]
        return m

    def evict_stale(self, max_age: float, now: float) -> list[Match]:
        stale = [m.id for m in self._matches.values() if now - m.created_at >= max_age]
        return [m for m in (self.destroy(match_id) for match_id in stale) if m is not None]

    def __len__(self) -> int:
        return len(self._matches)

    def __contains__(self, match_id: object) -> bool:
        return match_id in self._matches
