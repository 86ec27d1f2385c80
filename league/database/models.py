from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, JSON,
    ForeignKey, Enum as SQLEnum, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List

Base = declarative_base()


def utc_now() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class LobbyStatus(Enum):
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"

class LobbyState(Enum):
    """Derived lifecycle state of a lobby, never stored"""
    EMPTY = "empty"
    WAITING = "waiting"              # 1-3 members
    FULL_UNREADY = "full_unready"    # 4 members, not all ready
    FULL_READY = "full_ready"        # 4 members, all ready, no countdown yet
    STARTING = "starting"            # countdown running
    STARTED = "started"              # match created

class MatchStatus(Enum):
    IN_PROGRESS = "in_progress"
    PENDING_VALIDATION = "pending_validation"
    COMPLETED = "completed"

class ReportStatus(Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"

class ContestStatus(Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    ENDED = "ended"


class Player(Base):
    __tablename__ = 'players'
    
    id = Column(Integer, primary_key=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    display_name = Column(String(100))
    
    # League stats
    elo = Column(Integer, default=1000, nullable=False)
    wins = Column(Integer, default=0, nullable=False)
    losses = Column(Integer, default=0, nullable=False)
    draws = Column(Integer, default=0, nullable=False)
    matches_played = Column(Integer, default=0, nullable=False)
    
    is_admin = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    
    # Metadata
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)
    
    decks = relationship("Deck", back_populates="player", order_by="Deck.created_at.desc()")
    
    @property
    def win_rate(self) -> float:
        if self.matches_played == 0:
            return 0.0
        return (self.wins / self.matches_played) * 100
    
    def __repr__(self):
        return f"<Player(id={self.id}, username='{self.username}', elo={self.elo})>"

class Deck(Base):
    __tablename__ = 'decks'
    
    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    commander_name = Column(String(200), nullable=False)
    decklist_url = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    
    # Per-deck rating
    elo = Column(Integer, default=1000, nullable=False)
    wins = Column(Integer, default=0, nullable=False)
    games_played = Column(Integer, default=0, nullable=False)
    
    created_at = Column(DateTime, default=utc_now)
    
    player = relationship("Player", back_populates="decks")
    
    def __repr__(self):
        return f"<Deck(id={self.id}, commander='{self.commander_name}', elo={self.elo})>"

class Lobby(Base):
    __tablename__ = 'lobbies'
    
    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    code = Column(String(12), unique=True, nullable=False)
    created_by = Column(Integer, ForeignKey('players.id'), nullable=False)
    status = Column(SQLEnum(LobbyStatus), default=LobbyStatus.WAITING, nullable=False, index=True)
    created_at = Column(DateTime, default=utc_now)

    creator = relationship("Player", foreign_keys=[created_by])
    match = relationship("Match", back_populates="lobby", uselist=False)
    memberships = relationship(
        "LobbyMembership",
        back_populates="lobby",
        cascade="all, delete-orphan",
        order_by="LobbyMembership.seat"
    )
    
    @property
    def member_count(self) -> int:
        return len(self.memberships)
    
    @property
    def all_ready(self) -> bool:
        return bool(self.memberships) and all(m.is_ready for m in self.memberships)
    
    def get_membership(self, player_id: int) -> Optional['LobbyMembership']:
        for membership in self.memberships:
            if membership.player_id == player_id:
                return membership
        return None
    
    def __repr__(self):
        return f"<Lobby(id={self.id}, code='{self.code}', status={self.status.value}, members={self.member_count})>"

class LobbyMembership(Base):
    __tablename__ = 'lobby_players'
    
    id = Column(Integer, primary_key=True)
    lobby_id = Column(Integer, ForeignKey('lobbies.id'), nullable=False, index=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False)
    deck_id = Column(Integer, ForeignKey('decks.id'), nullable=False)
    seat = Column(Integer, nullable=False)
    is_ready = Column(Boolean, default=False, nullable=False)
    ready_at = Column(DateTime, nullable=True)
    joined_at = Column(DateTime, default=utc_now)
    
    lobby = relationship("Lobby", back_populates="memberships")
    player = relationship("Player")
    deck = relationship("Deck")
    
    # Seat uniqueness caps the lobby at four rows even under concurrent joins
    __table_args__ = (
        UniqueConstraint('lobby_id', 'player_id', name='unique_player_per_lobby'),
        UniqueConstraint('lobby_id', 'seat', name='unique_seat_per_lobby'),
        CheckConstraint('seat BETWEEN 1 AND 4', name='lobby_seat_range_check'),
    )
    
    def __repr__(self):
        return f"<LobbyMembership(lobby_id={self.lobby_id}, player_id={self.player_id}, seat={self.seat}, ready={self.is_ready})>"

class Match(Base):
    """
    One four-player game started from a lobby.
    
    Placements are entered once by any participant; afterwards each
    participant validates or challenges their own MatchResult row.
    """
    __tablename__ = 'matches'
    
    id = Column(Integer, primary_key=True)
    lobby_id = Column(Integer, ForeignKey('lobbies.id'), nullable=True, unique=True)
    status = Column(SQLEnum(MatchStatus), default=MatchStatus.IN_PROGRESS, nullable=False, index=True)
    winner_id = Column(Integer, ForeignKey('players.id'), nullable=True)
    submitted_by = Column(Integer, ForeignKey('players.id'), nullable=True)
    
    started_at = Column(DateTime, default=utc_now)
    submitted_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    
    lobby = relationship("Lobby", back_populates="match")
    winner = relationship("Player", foreign_keys=[winner_id])
    submitter = relationship("Player", foreign_keys=[submitted_by])
    results = relationship(
        "MatchResult",
        back_populates="match",
        cascade="all, delete-orphan",
        order_by="MatchResult.id"
    )
    
    def get_result(self, player_id: int) -> Optional['MatchResult']:
        for result in self.results:
            if result.player_id == player_id:
                return result
        return None
    
    def get_results_by_placement(self) -> List['MatchResult']:
        """Results ordered 1st to 4th, unplaced rows last"""
        return sorted(self.results, key=lambda r: r.placement or 999)
    
    @property
    def is_fully_responded(self) -> bool:
        return bool(self.results) and all(r.is_responded for r in self.results)
    
    def __repr__(self):
        return f"<Match(id={self.id}, status={self.status.value}, results={len(self.results)})>"

class MatchResult(Base):
    __tablename__ = 'match_results'
    
    id = Column(Integer, primary_key=True)
    match_id = Column(Integer, ForeignKey('matches.id'), nullable=False, index=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    deck_id = Column(Integer, ForeignKey('decks.id'), nullable=False)
    
    placement = Column(Integer, nullable=True)  # Null until submitted
    
    # Snapshots taken when the match starts
    elo_before = Column(Integer, nullable=False)
    games_before = Column(Integer, nullable=False)
    deck_elo_before = Column(Integer, nullable=False)
    deck_games_before = Column(Integer, nullable=False)
    
    # Filled by the rating commit
    elo_change = Column(Integer, nullable=True)
    deck_elo_change = Column(Integer, nullable=True)
    
    validated = Column(Boolean, default=False, nullable=False)
    validated_at = Column(DateTime, nullable=True)
    challenged = Column(Boolean, default=False, nullable=False)
    challenge_reason = Column(String(1000), nullable=True)
    challenged_at = Column(DateTime, nullable=True)
    
    created_at = Column(DateTime, default=utc_now)
    
    match = relationship("Match", back_populates="results")
    player = relationship("Player")
    deck = relationship("Deck")
    
    __table_args__ = (
        CheckConstraint('placement BETWEEN 1 AND 4', name='placement_range_check'),
        UniqueConstraint('match_id', 'player_id', name='unique_player_per_match'),
        UniqueConstraint('match_id', 'placement', name='unique_placement_per_match'),
    )
    
    @property
    def is_responded(self) -> bool:
        return self.validated or self.challenged
    
    def __repr__(self):
        return f"<MatchResult(match_id={self.match_id}, player_id={self.player_id}, placement={self.placement}, elo_change={self.elo_change})>"

class EloHistory(Base):
    __tablename__ = 'elo_history'
    
    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    deck_id = Column(Integer, ForeignKey('decks.id'), nullable=True)
    match_id = Column(Integer, ForeignKey('matches.id'), nullable=False)
    
    old_elo = Column(Integer, nullable=False)
    new_elo = Column(Integer, nullable=False)
    elo_change = Column(Integer, nullable=False)
    k_factor = Column(Integer, nullable=False)
    placement = Column(Integer, nullable=False)
    
    recorded_at = Column(DateTime, default=utc_now)
    
    player = relationship("Player")
    match = relationship("Match")
    
    def __repr__(self):
        return f"<EloHistory(player_id={self.player_id}, change={self.elo_change}, new_elo={self.new_elo})>"

class Report(Base):
    __tablename__ = 'reports'
    
    id = Column(Integer, primary_key=True)
    reporter_id = Column(Integer, ForeignKey('players.id'), nullable=False)
    reported_player_id = Column(Integer, ForeignKey('players.id'), nullable=True)
    match_id = Column(Integer, ForeignKey('matches.id'), nullable=True)
    reason = Column(String(200), nullable=False)
    details = Column(Text, nullable=True)
    status = Column(SQLEnum(ReportStatus), default=ReportStatus.PENDING, nullable=False, index=True)
    
    resolved_by = Column(Integer, ForeignKey('players.id'), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    
    reporter = relationship("Player", foreign_keys=[reporter_id])
    reported_player = relationship("Player", foreign_keys=[reported_player_id])
    resolver = relationship("Player", foreign_keys=[resolved_by])
    match = relationship("Match")
    
    def __repr__(self):
        return f"<Report(id={self.id}, reporter={self.reporter_id}, reported={self.reported_player_id}, status={self.status.value})>"

class Contest(Base):
    __tablename__ = 'contests'
    
    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    theme = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    created_by = Column(Integer, ForeignKey('players.id'), nullable=True)
    created_at = Column(DateTime, default=utc_now)
    
    entries = relationship(
        "ContestEntry",
        back_populates="contest",
        cascade="all, delete-orphan",
        order_by="ContestEntry.created_at.desc()"
    )
    
    __table_args__ = (
        CheckConstraint('start_date < end_date', name='contest_window_check'),
    )
    
    def status_at(self, moment: datetime) -> ContestStatus:
        if moment < self.start_date:
            return ContestStatus.UPCOMING
        if moment > self.end_date:
            return ContestStatus.ENDED
        return ContestStatus.ACTIVE
    
    def __repr__(self):
        return f"<Contest(id={self.id}, name='{self.name}')>"

class ContestEntry(Base):
    __tablename__ = 'contest_entries'
    
    id = Column(Integer, primary_key=True)
    contest_id = Column(Integer, ForeignKey('contests.id'), nullable=False, index=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False)
    decklist_url = Column(String(500), nullable=True)
    decklist_text = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utc_now)
    
    contest = relationship("Contest", back_populates="entries")
    player = relationship("Player")
    
    __table_args__ = (
        UniqueConstraint('contest_id', 'player_id', name='unique_entry_per_player_contest'),
    )
    
    def __repr__(self):
        return f"<ContestEntry(contest_id={self.contest_id}, player_id={self.player_id})>"

class ActivityLog(Base):
    __tablename__ = 'activity_log'
    
    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, ForeignKey('players.id'), nullable=False, index=True)
    action = Column(String(50), nullable=False)
    details = Column(JSON, nullable=True)
    timestamp = Column(DateTime, default=utc_now)
    
    def __repr__(self):
        return f"<ActivityLog(player_id={self.player_id}, action='{self.action}')>"
