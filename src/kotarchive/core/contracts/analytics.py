"""
Analytics aggregate contracts.

The aggregate is derived, transient and never archived. Every field has a
neutral default so a section computed from zero (or malformed) archives is
still a complete object.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field

from kotarchive.core.clock import UtcDatetime
from kotarchive.core.contracts.archive import StorageStats, WireModel

InsightLevel = Literal["info", "success", "warning"]


class DateSpan(WireModel):
    start: UtcDatetime
    end: UtcDatetime
    span_seconds: float = 0.0


class OverviewStats(WireModel):
    total_archives: int = 0
    total_games: int = 0
    total_ai_decisions: int = 0
    unique_players: int = 0
    average_game_duration: float = 0.0
    date_range: DateSpan | None = None
    total_size_metric: int = 0
    average_size_metric: float = 0.0


class WinRate(WireModel):
    wins: int = 0
    percentage: float = 0.0


class PlayerPerformance(WireModel):
    games_played: int = 0
    wins: int = 0
    total_score: int = 0
    average_score: float = 0.0
    win_percentage: float = 0.0


class GameLengthStats(WireModel):
    distribution: dict[str, int] = Field(default_factory=dict)
    average: float = 0.0
    median: float = 0.0


class PerformanceStats(WireModel):
    win_rates: dict[str, WinRate] = Field(default_factory=dict)
    game_length: GameLengthStats = Field(default_factory=GameLengthStats)
    victory_conditions: dict[str, int] = Field(default_factory=dict)
    player_performance: dict[str, PlayerPerformance] = Field(default_factory=dict)


class ActionShare(WireModel):
    count: int = 0
    percentage: float = 0.0


class ConfidenceStats(WireModel):
    average: float = 0.0
    distribution: dict[str, int] = Field(default_factory=dict)


class StrategyStats(WireModel):
    aggressive: int = 0
    conservative: int = 0
    balanced: int = 0


class RollPatterns(WireModel):
    keep_patterns: dict[str, int] = Field(default_factory=dict)
    reroll_patterns: dict[str, int] = Field(default_factory=dict)


class DecisionStats(WireModel):
    total_decisions: int = 0
    decision_patterns: dict[str, ActionShare] = Field(default_factory=dict)
    confidence: ConfidenceStats = Field(default_factory=ConfidenceStats)
    strategy: StrategyStats = Field(default_factory=StrategyStats)
    roll_patterns: RollPatterns = Field(default_factory=RollPatterns)


class GameTrendPoint(WireModel):
    game_index: int
    duration: float = 0.0
    player_count: int = 0
    date: UtcDatetime | None = None


class MonthlyActivity(WireModel):
    games: int = 0
    unique_players: int = 0


class DifficultyPoint(WireModel):
    game_number: int
    duration: float = 0.0
    player_count: int = 0
    difficulty: Literal["Easy", "Medium", "Hard"] = "Medium"


class TrendStats(WireModel):
    archive_frequency: dict[str, int] = Field(default_factory=dict)
    game_performance: list[GameTrendPoint] = Field(default_factory=list)
    player_activity: dict[str, MonthlyActivity] = Field(default_factory=dict)
    difficulty_progression: list[DifficultyPoint] = Field(default_factory=list)


class Insight(WireModel):
    type: Literal["performance", "ai", "storage"]
    level: InsightLevel
    title: str
    message: str


class AnalyticsReport(WireModel):
    """Complete aggregate returned by ``AnalyticsEngine.calculate_complete_analytics``."""

    overview: OverviewStats = Field(default_factory=OverviewStats)
    performance: PerformanceStats = Field(default_factory=PerformanceStats)
    decisions: DecisionStats = Field(default_factory=DecisionStats)
    trends: TrendStats = Field(default_factory=TrendStats)
    insights: list[Insight] = Field(default_factory=list)
    storage: StorageStats = Field(default_factory=StorageStats)
    generated_at: UtcDatetime
    skipped_archives: list[str] = Field(default_factory=list)

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


__all__ = [
    "DateSpan",
    "OverviewStats",
    "WinRate",
    "PlayerPerformance",
    "GameLengthStats",
    "PerformanceStats",
    "ActionShare",
    "ConfidenceStats",
    "StrategyStats",
    "RollPatterns",
    "DecisionStats",
    "GameTrendPoint",
    "MonthlyActivity",
    "DifficultyPoint",
    "TrendStats",
    "Insight",
    "AnalyticsReport",
]
