from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text,
    ForeignKey, Float, BigInteger, Enum as SQLEnum, Index, CheckConstraint
)
from sqlalchemy.orm import declarative_base, declared_attr, relationship
from sqlalchemy.sql import func

from kzpoints.constants import LeaderboardKind, PointsConstants, RecordStatus

Base = declarative_base()

class Filter(Base):
    """A (course, mode) pairing with independently graded nub/pro leaderboards."""
    __tablename__ = 'filters'

    id = Column(Integer, primary_key=True)
    course_name = Column(String(200), nullable=False)
    mode = Column(String(20), nullable=False)

    # Grading (set by the content-approval process)
    nub_tier = Column(Integer, nullable=False)
    pro_tier = Column(Integer, nullable=False)
    nub_ranked = Column(Boolean, nullable=False, default=True)
    pro_ranked = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=func.now())

    records = relationship("Record", back_populates="filter")

    __table_args__ = (
        CheckConstraint('nub_tier BETWEEN 1 AND 10', name='ck_filters_nub_tier'),
        CheckConstraint('pro_tier BETWEEN 1 AND 10', name='ck_filters_pro_tier'),
    )

    def tier_for(self, kind: LeaderboardKind) -> int:
        return self.pro_tier if kind.is_pro else self.nub_tier

    def is_ranked(self, kind: LeaderboardKind) -> bool:
        return bool(self.pro_ranked if kind.is_pro else self.nub_ranked)

    def __repr__(self):
        return f"<Filter(id={self.id}, course='{self.course_name}', mode='{self.mode}')>"

class Player(Base):
    __tablename__ = 'players'

    id = Column(BigInteger, primary_key=True, autoincrement=False)  # SteamID64
    name = Column(String(255), nullable=False)

    # Cached projection of the player's BestRecord rows
    nub_rating = Column(Float, nullable=False, default=0.0)
    pro_rating = Column(Float, nullable=False, default=0.0)
    ratings_updated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=func.now())

    records = relationship("Record", back_populates="player")

    def __repr__(self):
        return f"<Player(id={self.id}, name='{self.name}', nub={self.nub_rating:.1f}, pro={self.pro_rating:.1f})>"

class Record(Base):
    """Append-only run submission; only `status` changes after insertion."""
    __tablename__ = 'records'

    id = Column(Integer, primary_key=True)
    filter_id = Column(Integer, ForeignKey('filters.id'), nullable=False)
    player_id = Column(BigInteger, ForeignKey('players.id'), nullable=False)
    time = Column(Float, nullable=False)
    teleports = Column(Integer, nullable=False, default=0)
    styles = Column(Integer, nullable=False, default=0)
    submitted_at = Column(DateTime, nullable=False, default=func.now())

    status = Column(SQLEnum(RecordStatus), nullable=False, default=RecordStatus.NORMAL)
    status_changed_at = Column(DateTime, nullable=True)

    filter = relationship("Filter", back_populates="records")
    player = relationship("Player", back_populates="records")

    __table_args__ = (
        CheckConstraint('time > 0', name='ck_records_time_positive'),
        CheckConstraint('teleports >= 0', name='ck_records_teleports'),
        Index('idx_records_filter_player', 'filter_id', 'player_id'),
        Index('idx_records_filter_status_time', 'filter_id', 'status', 'time'),
    )

    def qualifies_for(self, kind: LeaderboardKind) -> bool:
        """Whether this run may appear on the given leaderboard variant."""
        if self.status != RecordStatus.NORMAL:
            return False
        return self.teleports == 0 if kind.is_pro else True

    def __repr__(self):
        return f"<Record(id={self.id}, filter={self.filter_id}, player={self.player_id}, time={self.time}, status={self.status.value})>"

class DistributionParameters(Base):
    """Fitted time distribution for one (filter, leaderboard kind)."""
    __tablename__ = 'distribution_parameters'

    filter_id = Column(Integer, ForeignKey('filters.id', ondelete='CASCADE'), primary_key=True)
    kind = Column(SQLEnum(LeaderboardKind), primary_key=True)

    a = Column(Float, nullable=False)
    b = Column(Float, nullable=False)
    loc = Column(Float, nullable=False)
    scale = Column(Float, nullable=False)
    top_scale = Column(Float, nullable=False)

    # Leaderboard state the fit was computed from
    wr_time = Column(Float, nullable=False)
    leaderboard_size = Column(Integer, nullable=False)
    fitted_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<DistributionParameters(filter={self.filter_id}, kind={self.kind.value}, n={self.leaderboard_size})>"

class BestRecordMixin:
    """Columns shared by the per-variant best-record tables."""

    @declared_attr
    def filter_id(cls):
        return Column(Integer, ForeignKey('filters.id'), primary_key=True)

    @declared_attr
    def player_id(cls):
        return Column(BigInteger, ForeignKey('players.id'), primary_key=True)

    @declared_attr
    def record_id(cls):
        return Column(Integer, ForeignKey('records.id'), nullable=False)

    # Denormalized from the referenced record for fast comparisons
    time = Column(Float, nullable=False)
    points = Column(Float, nullable=False, default=0.0)

    # Set when the row was caught violating an invariant
    quarantined = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    @declared_attr
    def __table_args__(cls):
        return (
            CheckConstraint(
                f'points >= 0 AND points <= {int(PointsConstants.MAX_POINTS)}',
                name=f'ck_{cls.__tablename__}_points'
            ),
            Index(f'idx_{cls.__tablename__}_filter_time', 'filter_id', 'time'),
            Index(f'idx_{cls.__tablename__}_player', 'player_id'),
        )

    def __repr__(self):
        return f"<{type(self).__name__}(filter={self.filter_id}, player={self.player_id}, record={self.record_id}, points={self.points:.1f})>"

class BestNubRecord(BestRecordMixin, Base):
    __tablename__ = 'best_nub_records'
    kind = LeaderboardKind.NUB

class BestProRecord(BestRecordMixin, Base):
    __tablename__ = 'best_pro_records'
    kind = LeaderboardKind.PRO

BEST_RECORD_MODELS = {
    LeaderboardKind.NUB: BestNubRecord,
    LeaderboardKind.PRO: BestProRecord,
}

def best_record_model(kind: LeaderboardKind):
    """Get the best-record table for a leaderboard kind."""
    return BEST_RECORD_MODELS[kind]

class FilterRecordCount(Base):
    """Best-time changes on a filter since its last successful refit."""
    __tablename__ = 'filter_record_counts'

    filter_id = Column(Integer, ForeignKey('filters.id', ondelete='CASCADE'), primary_key=True)
    count = Column(Integer, nullable=False, default=0)

class FilterToRecalculate(Base):
    __tablename__ = 'filters_to_recalculate'

    filter_id = Column(Integer, ForeignKey('filters.id', ondelete='CASCADE'), primary_key=True)
    priority = Column(Integer, nullable=False, default=0)
    enqueued_at = Column(DateTime, nullable=False, default=func.now())

    __table_args__ = (
        Index('idx_filters_to_recalculate_priority', 'priority'),
    )

class PlayerToRecalculate(Base):
    __tablename__ = 'players_to_recalculate'

    player_id = Column(BigInteger, ForeignKey('players.id', ondelete='CASCADE'), primary_key=True)
    priority = Column(Integer, nullable=False, default=0)
    enqueued_at = Column(DateTime, nullable=False, default=func.now())

    __table_args__ = (
        Index('idx_players_to_recalculate_priority', 'priority'),
    )

class Configuration(Base):
    """Runtime configuration overrides (JSON values)."""
    __tablename__ = 'configuration'

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
