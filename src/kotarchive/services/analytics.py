"""
Cross-archive analytics.

:class:`AnalyticsEngine` loads a bounded set of the most recent archives
(``analytics_max_game_archives`` game logs, ``analytics_max_decision_archives``
decision trees) and derives five sections: overview, performance, decision
patterns, trends and rule-based insights. The result is memoized for
``analytics_cache_seconds``.

Archives come from players' machines and from older client versions, so every
derivation degrades instead of failing: an archive that does not load is
skipped and its id listed in ``skipped_archives``; a log entry without a
timestamp contributes zero duration; a roll without a score is left out of
the confidence bands.
"""

from __future__ import annotations

import json
import re
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from statistics import median

from kotarchive.core.clock import Clock, utc_now
from kotarchive.core.contracts.analytics import (
    ActionShare,
    AnalyticsReport,
    ConfidenceStats,
    DateSpan,
    DecisionStats,
    DifficultyPoint,
    GameLengthStats,
    GameTrendPoint,
    Insight,
    MonthlyActivity,
    OverviewStats,
    PerformanceStats,
    PlayerPerformance,
    RollPatterns,
    StrategyStats,
    TrendStats,
    WinRate,
)
from kotarchive.core.contracts.archive import (
    ArchiveRecord,
    DecisionRoll,
    DecisionTreePayload,
    GameLogPayload,
    LogEntry,
    StorageStats,
)
from kotarchive.core.settings import Settings, get_logger, load_settings
from kotarchive.services.archive_store import ArchiveStore

logger = get_logger("kotarchive.analytics")

_PLAYER_RE = re.compile(r"Player (\w+)")
_WINNER_RE = re.compile(r"(\w+)\s+wins", re.IGNORECASE)
_GAME_END_WORDS = ("wins", "victory", "eliminated")

_AGGRESSIVE_WORDS = ("attack", "aggressive", "damage")
_CONSERVATIVE_WORDS = ("safe", "conservative", "careful")

#: Insight thresholds.
LONG_GAME_MINUTES = 30
RICH_AI_DECISIONS = 100
STORAGE_HIGH_MB = 10
DOMINANT_WIN_RATE = 60


# --------------------------------------------------------------------------- #
# Per-game helpers
# --------------------------------------------------------------------------- #


def game_duration_minutes(log: Sequence[LogEntry]) -> float:
    """Minutes between the first and last timestamped entries (0 if fewer than two)."""
    stamps = [e.timestamp for e in log if e.timestamp is not None]
    if len(stamps) < 2:
        return 0.0
    return max(0.0, (stamps[-1] - stamps[0]).total_seconds() / 60)


def extract_players(log: Iterable[LogEntry]) -> list[str]:
    """Players named in ``entry.player`` (except ``System``) or as ``Player X`` in text."""
    seen: dict[str, None] = {}
    for entry in log:
        if entry.player and entry.player != "System":
            seen.setdefault(entry.player, None)
        for name in _PLAYER_RE.findall(entry.message):
            seen.setdefault(name, None)
    return list(seen)


def length_bucket(minutes: float) -> str:
    if minutes < 10:
        return "Quick (< 10min)"
    if minutes < 20:
        return "Short (10-20min)"
    if minutes < 40:
        return "Medium (20-40min)"
    return "Long (40+ min)"


def confidence_band(score: float) -> str:
    if score >= 8:
        return "Very High"
    if score >= 6:
        return "High"
    if score >= 4:
        return "Medium"
    if score >= 2:
        return "Low"
    return "Very Low"


def classify_strategy(rationale: str | None) -> str | None:
    """Keyword heuristic over the rationale text; None when there is no text."""
    if not rationale:
        return None
    text = rationale.lower()
    if any(w in text for w in _AGGRESSIVE_WORDS):
        return "aggressive"
    if any(w in text for w in _CONSERVATIVE_WORDS):
        return "conservative"
    return "balanced"


def victory_condition(message: str) -> str:
    text = message.lower()
    if "victory points" in text:
        return "Victory Points"
    if "elimination" in text:
        return "Elimination"
    if "tokyo" in text:
        return "Tokyo Control"
    return "Unknown"


def estimate_difficulty(minutes: float, entry_count: int) -> str:
    if minutes < 15 and entry_count < 50:
        return "Easy"
    if minutes > 40 or entry_count > 200:
        return "Hard"
    return "Medium"


def _face_key(faces: list[str] | str | None) -> str:
    if isinstance(faces, list):
        return ",".join(faces)
    return str(faces)


def _final_scores(payload: GameLogPayload) -> dict[str, int]:
    """Victory points per player name (and id) from the embedded snapshot, if any."""
    snapshot = payload.state_snapshot
    if snapshot is None:
        return {}
    players = snapshot.slices.get("players")
    by_id = players.get("byId") if isinstance(players, Mapping) else None
    if not isinstance(by_id, Mapping):
        return {}
    scores: dict[str, int] = {}
    for pid, record in by_id.items():
        if not isinstance(record, Mapping):
            continue
        try:
            vp = int(record.get("victoryPoints") or 0)
        except (TypeError, ValueError):
            vp = 0
        scores[str(pid)] = vp
        if record.get("name"):
            scores[str(record["name"])] = vp
    return scores


@dataclass
class GameFacts:
    """What one archived game log contributes to the aggregate."""

    record: ArchiveRecord
    entries: list[LogEntry]
    duration: float
    players: list[str]
    winner: str | None = None
    condition: str | None = None
    final_scores: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, record: ArchiveRecord, payload: GameLogPayload) -> GameFacts:
        entries = list(payload.data)
        facts = cls(
            record=record,
            entries=entries,
            duration=game_duration_minutes(entries),
            players=extract_players(entries),
            final_scores=_final_scores(payload),
        )
        endings = [e for e in entries if any(w in e.message for w in _GAME_END_WORDS)]
        if endings:
            last = endings[-1].message
            match = _WINNER_RE.search(last)
            facts.winner = match.group(1) if match else None
            facts.condition = victory_condition(last)
        return facts


def _iter_rolls(trees: Iterable[DecisionTreePayload]) -> Iterable[DecisionRoll]:
    for payload in trees:
        for _, _, roll in payload.data.iter_rolls():
            yield roll


# --------------------------------------------------------------------------- #
# Engine
# --------------------------------------------------------------------------- #


class AnalyticsEngine:
    """Memoized aggregate over the archive store."""

    def __init__(
        self,
        store: ArchiveStore,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._settings = settings or load_settings()
        self._clock = clock
        self._cached: AnalyticsReport | None = None
        self._computed_at: datetime | None = None

    @property
    def cached(self) -> AnalyticsReport | None:
        return self._cached

    def clear_cache(self) -> None:
        self._cached = None
        self._computed_at = None

    def calculate_complete_analytics(self, force: bool = False) -> AnalyticsReport:
        """Return the aggregate, recomputing when the lease expired or ``force`` is set."""
        now = self._clock()
        lease = timedelta(seconds=self._settings.analytics_cache_seconds)
        if (
            not force
            and self._cached is not None
            and self._computed_at is not None
            and now - self._computed_at < lease
        ):
            return self._cached

        records = self._store.list_all()
        games, trees, skipped = self._load(records)
        storage = self._store.storage_stats()

        report = AnalyticsReport(
            overview=self._overview(records, games, trees),
            performance=self._performance(games),
            decisions=self._decisions(trees),
            trends=self._trends(records, games),
            insights=self._insights(games, trees, storage),
            storage=storage,
            generated_at=now,
            skipped_archives=skipped,
        )
        logger.info(
            "Analytics computed over %d games and %d decision trees (%d skipped)",
            len(games),
            len(trees),
            len(skipped),
        )
        self._cached = report
        self._computed_at = now
        return report

    def export_json(self, indent: int = 2) -> str:
        """Serialize the (possibly cached) aggregate."""
        return json.dumps(self.calculate_complete_analytics().to_json_dict(), indent=indent)

    # ------------------------------------------------------------------ #
    # Loading
    # ------------------------------------------------------------------ #
    def _load(
        self, records: list[ArchiveRecord]
    ) -> tuple[list[GameFacts], list[DecisionTreePayload], list[str]]:
        """Load the newest N archives of each content type, oldest first."""
        game_records = [r for r in records if r.content_type == "gameLog"]
        tree_records = [r for r in records if r.content_type == "aidt"]
        game_records = game_records[-self._settings.analytics_max_game_archives :]
        tree_records = tree_records[-self._settings.analytics_max_decision_archives :]

        skipped: list[str] = []
        games: list[GameFacts] = []
        for record in game_records:
            payload = self._safe_load(record, skipped)
            if isinstance(payload, GameLogPayload):
                games.append(GameFacts.from_payload(record, payload))
            elif payload is not None:
                skipped.append(record.id)
        trees: list[DecisionTreePayload] = []
        for record in tree_records:
            payload = self._safe_load(record, skipped)
            if isinstance(payload, DecisionTreePayload):
                trees.append(payload)
            elif payload is not None:
                skipped.append(record.id)
        return games, trees, skipped

    def _safe_load(
        self, record: ArchiveRecord, skipped: list[str]
    ) -> GameLogPayload | DecisionTreePayload | None:
        try:
            return self._store.load(record)
        except Exception as exc:
            logger.warning("Skipping archive %s in analytics: %s", record.id, exc)
            skipped.append(record.id)
            return None

    # ------------------------------------------------------------------ #
    # Sections
    # ------------------------------------------------------------------ #
    @staticmethod
    def _overview(
        records: list[ArchiveRecord], games: list[GameFacts], trees: list[DecisionTreePayload]
    ) -> OverviewStats:
        players = {p for g in games for p in g.players}
        durations = [g.duration for g in games]
        total_size = sum(r.size_metric for r in records)
        span = None
        if records:
            stamps = sorted(r.timestamp for r in records)
            span = DateSpan(
                start=stamps[0],
                end=stamps[-1],
                span_seconds=(stamps[-1] - stamps[0]).total_seconds(),
            )
        return OverviewStats(
            total_archives=len(records),
            total_games=len(games),
            total_ai_decisions=sum(1 for _ in _iter_rolls(trees)),
            unique_players=len(players),
            average_game_duration=round(sum(durations) / len(durations), 1) if durations else 0.0,
            date_range=span,
            total_size_metric=total_size,
            average_size_metric=total_size / len(records) if records else 0.0,
        )

    @staticmethod
    def _performance(games: list[GameFacts]) -> PerformanceStats:
        stats = PerformanceStats()
        wins = Counter(g.winner for g in games if g.winner)
        total = len(games)
        stats.win_rates = {
            name: WinRate(wins=count, percentage=round(count / total * 100, 1))
            for name, count in wins.most_common()
        }
        stats.victory_conditions = dict(Counter(g.condition for g in games if g.condition))

        durations = [g.duration for g in games]
        stats.game_length = GameLengthStats(
            distribution=dict(Counter(length_bucket(d) for d in durations)),
            average=round(sum(durations) / len(durations), 1) if durations else 0.0,
            median=round(median(durations), 1) if durations else 0.0,
        )

        perf: dict[str, PlayerPerformance] = {}
        for game in games:
            for name in game.players:
                row = perf.setdefault(name, PlayerPerformance())
                row.games_played += 1
                if name == game.winner:
                    row.wins += 1
                row.total_score += game.final_scores.get(name, 0)
        for row in perf.values():
            row.average_score = round(row.total_score / row.games_played, 2)
            row.win_percentage = round(row.wins / row.games_played * 100, 1)
        stats.player_performance = perf
        return stats

    @staticmethod
    def _decisions(trees: list[DecisionTreePayload]) -> DecisionStats:
        actions: Counter[str] = Counter()
        bands: Counter[str] = Counter()
        strategy = StrategyStats()
        keep: Counter[str] = Counter()
        reroll: Counter[str] = Counter()
        scores: list[float] = []

        for roll in _iter_rolls(trees):
            actions[roll.action or "unknown"] += 1
            if roll.score is not None:
                scores.append(roll.score)
                bands[confidence_band(roll.score)] += 1
            style = classify_strategy(roll.rationale)
            if style is not None:
                setattr(strategy, style, getattr(strategy, style) + 1)
            if roll.faces:
                if roll.action == "keep":
                    keep[_face_key(roll.faces)] += 1
                elif roll.action == "reroll":
                    reroll[_face_key(roll.faces)] += 1

        total = sum(actions.values())
        return DecisionStats(
            total_decisions=total,
            decision_patterns={
                action: ActionShare(count=count, percentage=round(count / total * 100, 1))
                for action, count in actions.most_common()
            },
            confidence=ConfidenceStats(
                average=round(sum(scores) / len(scores), 2) if scores else 0.0,
                distribution=dict(bands),
            ),
            strategy=strategy,
            roll_patterns=RollPatterns(keep_patterns=dict(keep), reroll_patterns=dict(reroll)),
        )

    @staticmethod
    def _trends(records: list[ArchiveRecord], games: list[GameFacts]) -> TrendStats:
        frequency = Counter(f"{r.timestamp:%Y-%m-%d}" for r in records)

        monthly: dict[str, tuple[int, set[str]]] = {}
        for game in games:
            month = f"{game.record.timestamp:%Y-%m}"
            count, players = monthly.get(month, (0, set()))
            monthly[month] = (count + 1, players | set(game.players))

        return TrendStats(
            archive_frequency=dict(sorted(frequency.items())),
            game_performance=[
                GameTrendPoint(
                    game_index=i,
                    duration=round(g.duration, 2),
                    player_count=len(g.players),
                    date=g.record.timestamp,
                )
                for i, g in enumerate(games, start=1)
            ],
            player_activity={
                month: MonthlyActivity(games=count, unique_players=len(players))
                for month, (count, players) in sorted(monthly.items())
            },
            difficulty_progression=[
                DifficultyPoint(
                    game_number=i,
                    duration=round(g.duration, 2),
                    player_count=len(g.players),
                    difficulty=estimate_difficulty(g.duration, len(g.entries)),
                )
                for i, g in enumerate(games, start=1)
            ],
        )

    @staticmethod
    def _insights(
        games: list[GameFacts], trees: list[DecisionTreePayload], storage: StorageStats
    ) -> list[Insight]:
        insights: list[Insight] = []

        if len(games) >= 5:
            recent = games[-5:]
            avg = sum(g.duration for g in recent) / len(recent)
            if avg > LONG_GAME_MINUTES:
                insights.append(
                    Insight(
                        type="performance",
                        level="info",
                        title="Longer Games Detected",
                        message=(
                            f"Recent games average {round(avg)} minutes. "
                            "Consider adjusting difficulty or rules."
                        ),
                    )
                )

        if len(trees) >= 3:
            decisions = sum(1 for _ in _iter_rolls(trees))
            if decisions > RICH_AI_DECISIONS:
                insights.append(
                    Insight(
                        type="ai",
                        level="success",
                        title="Rich AI Data Available",
                        message=(
                            f"{decisions} AI decisions analyzed. "
                            "Comprehensive behavioral patterns detected."
                        ),
                    )
                )

        if storage.estimated_mb > STORAGE_HIGH_MB:
            insights.append(
                Insight(
                    type="storage",
                    level="warning",
                    title="Storage Usage High",
                    message=(
                        f"{storage.estimated_mb:.1f} MB used. Consider archiving older games."
                    ),
                )
            )

        if len(games) >= 3:
            played: Counter[str] = Counter()
            won: Counter[str] = Counter()
            for game in games:
                played.update(game.players)
                if game.winner in game.players:
                    won[game.winner] += 1
            rates = {name: won[name] / count * 100 for name, count in played.items()}
            if rates:
                top, rate = max(rates.items(), key=lambda item: item[1])
                if rate > DOMINANT_WIN_RATE:
                    insights.append(
                        Insight(
                            type="performance",
                            level="info",
                            title="Dominant Player Detected",
                            message=f"{top} has a {rate:.1f}% win rate. Consider balancing.",
                        )
                    )
        return insights


__all__ = [
    "AnalyticsEngine",
    "GameFacts",
    "game_duration_minutes",
    "extract_players",
    "length_bucket",
    "confidence_band",
    "classify_strategy",
    "victory_condition",
    "estimate_difficulty",
]
