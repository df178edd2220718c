"""
Activity score collectors

One collector per activity family. Each reads its family's records for a
student inside a period window and maps them to normalized
ActivityScore(score 0-100, weight) entries. The aggregator never sees
anything family-specific; adding a family means adding a collector to
DEFAULT_COLLECTORS.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from sqlalchemy import func

from config import Config
from extensions import db
from models import (
    ActivityCompetency,
    Badge,
    BattleParticipant,
    Behavior,
    BossBattle,
    ExpeditionStudentProgress,
    PointLog,
    StudentBadge,
    StudentBossBattle,
    StudentBossBattleParticipant,
    StudentMission,
    TimedActivityResult,
    TournamentParticipant,
)
from services.periods import DateRange
from services.scoring import clamp, round_half_up

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityScore:
    activity_type: str
    activity_id: Any
    name: str
    score: float
    weight: float

    def to_dict(self):
        return {
            'type': self.activity_type,
            'id': self.activity_id,
            'name': self.name,
            'score': self.score,
            'weight': self.weight,
        }


class ActivityCollector:
    """Base collector"""

    activity_type = None

    def collect(self, student_id, competency_id, classroom_id, date_range: DateRange) -> List[ActivityScore]:
        raise NotImplementedError


class LinkedActivityCollector(ActivityCollector):
    """
    Families whose activities reach a competency through
    ActivityCompetency links (missions, timed activities, tournaments,
    expeditions).
    """

    def linked_weights(self, competency_id, classroom_id) -> Dict[int, float]:
        """
        activity_id -> link weight; first link wins for duplicated activities.
        A missing or zero weight means the default weight.
        """
        links = ActivityCompetency.query.filter_by(
            activity_type=self.activity_type,
            competency_id=competency_id,
            classroom_id=classroom_id,
        ).order_by(ActivityCompetency.id).all()

        weights = {}
        for link in links:
            weight = link.weight or Config.DEFAULT_ACTIVITY_WEIGHT
            weights.setdefault(link.activity_id, weight)
        return weights

    def collect(self, student_id, competency_id, classroom_id, date_range):
        weights = self.linked_weights(competency_id, classroom_id)
        if not weights:
            return []
        return self.score_linked(student_id, weights, date_range)

    def score_linked(self, student_id, weights, date_range) -> List[ActivityScore]:
        raise NotImplementedError


class MissionCollector(LinkedActivityCollector):
    """
    Objectives assigned inside the window.
    Completed → 100; otherwise progress percentage, only if it reaches 50.
    """

    activity_type = 'MISSION'
    MIN_PARTIAL_PERCENT = 50

    def score_linked(self, student_id, weights, date_range):
        rows = StudentMission.query.filter(
            StudentMission.student_id == student_id,
            StudentMission.mission_id.in_(list(weights)),
            StudentMission.assigned_at >= date_range.start,
            StudentMission.assigned_at < date_range.end,
        ).order_by(StudentMission.id).all()

        scores = []
        for row in rows:
            completed = row.status == 'COMPLETED'
            progress = row.current_progress or 0
            target = row.target_progress or 1
            percentage = min(100.0, progress / target * 100)

            # Below half progress the objective does not count at all
            if not completed and percentage < self.MIN_PARTIAL_PERCENT:
                continue

            scores.append(ActivityScore(
                activity_type=self.activity_type,
                activity_id=row.mission_id,
                name=row.mission.name if row.mission else 'Mission',
                score=100.0 if completed else percentage,
                weight=weights[row.mission_id],
            ))
        return scores


class TimedActivityCollector(LinkedActivityCollector):
    """
    Timed exercises attempted inside the window.
    Completed → earned/base percentage with a floor of 70; not completed → 30.
    """

    activity_type = 'TIMED'
    COMPLETION_FLOOR = 70
    PARTICIPATION_SCORE = 30
    DEFAULT_BASE_POINTS = 10

    def score_linked(self, student_id, weights, date_range):
        rows = TimedActivityResult.query.filter(
            TimedActivityResult.student_id == student_id,
            TimedActivityResult.activity_id.in_(list(weights)),
            TimedActivityResult.created_at >= date_range.start,
            TimedActivityResult.created_at < date_range.end,
        ).order_by(TimedActivityResult.id).all()

        scores = []
        for row in rows:
            name = row.activity.name if row.activity else 'Timed activity'

            if row.completed_at:
                base_points = (row.activity.base_points if row.activity else None) or self.DEFAULT_BASE_POINTS
                earned = row.points_awarded or 0
                percentage = min(100.0, earned / base_points * 100)
                score = max(float(self.COMPLETION_FLOOR), percentage)
            else:
                name = f"{name} (not completed)"
                score = float(self.PARTICIPATION_SCORE)

            scores.append(ActivityScore(
                activity_type=self.activity_type,
                activity_id=row.activity_id,
                name=name,
                score=score,
                weight=weights[row.activity_id],
            ))
        return scores


class TournamentCollector(LinkedActivityCollector):
    """
    Tournament placements: first place 100, last place 50, linear between.
    """

    activity_type = 'TOURNAMENT'
    DEFAULT_MAX_PARTICIPANTS = 8
    PARTICIPATION_FLOOR = 50

    def score_linked(self, student_id, weights, date_range):
        rows = TournamentParticipant.query.filter(
            TournamentParticipant.student_id == student_id,
            TournamentParticipant.tournament_id.in_(list(weights)),
            TournamentParticipant.joined_at >= date_range.start,
            TournamentParticipant.joined_at < date_range.end,
        ).order_by(TournamentParticipant.id).all()

        scores = []
        for row in rows:
            tournament = row.tournament
            max_participants = (tournament.max_participants if tournament else None) or self.DEFAULT_MAX_PARTICIPANTS
            position = row.final_position or max_participants
            position_score = 100 - (position - 1) / max(1, max_participants - 1) * 50

            scores.append(ActivityScore(
                activity_type=self.activity_type,
                activity_id=row.tournament_id,
                name=tournament.name if tournament else 'Tournament',
                score=max(float(self.PARTICIPATION_FLOOR), position_score),
                weight=weights[row.tournament_id],
            ))
        return scores


class ExpeditionCollector(LinkedActivityCollector):
    """Expeditions: 100 if completed by the end of the window, 60 if in progress"""

    activity_type = 'EXPEDITION'
    COMPLETED_SCORE = 100
    IN_PROGRESS_SCORE = 60

    def score_linked(self, student_id, weights, date_range):
        rows = ExpeditionStudentProgress.query.filter(
            ExpeditionStudentProgress.student_id == student_id,
            ExpeditionStudentProgress.expedition_id.in_(list(weights)),
            ExpeditionStudentProgress.updated_at >= date_range.start,
            ExpeditionStudentProgress.updated_at < date_range.end,
        ).order_by(ExpeditionStudentProgress.id).all()

        scores = []
        for row in rows:
            completed = row.is_completed and (
                row.completed_at is None or row.completed_at < date_range.end
            )
            scores.append(ActivityScore(
                activity_type=self.activity_type,
                activity_id=row.expedition_id,
                name=row.expedition.name if row.expedition else 'Expedition',
                score=float(self.COMPLETED_SCORE if completed else self.IN_PROGRESS_SCORE),
                weight=weights[row.expedition_id],
            ))
        return scores


class BehaviorCollector(ActivityCollector):
    """
    Pools every behavior tagged to the competency into one synthesized entry.

    score  = positive XP share of all XP (100 with no negative XP,
             0 with no positive XP)
    weight = total XP / 10, bounded to [30, 100]
    """

    activity_type = 'BEHAVIOR'
    AGGREGATE_ID = 'behavior-aggregate'
    MIN_WEIGHT = 30
    MAX_WEIGHT = 100

    def collect(self, student_id, competency_id, classroom_id, date_range):
        behaviors = Behavior.query.filter_by(
            classroom_id=classroom_id,
            competency_id=competency_id,
            is_active=True,
        ).order_by(Behavior.id).all()
        if not behaviors:
            return []

        counts = dict(
            db.session.query(PointLog.behavior_id, func.count(PointLog.id))
            .filter(
                PointLog.student_id == student_id,
                PointLog.behavior_id.in_([b.id for b in behaviors]),
                PointLog.created_at >= date_range.start,
                PointLog.created_at < date_range.end,
            )
            .group_by(PointLog.behavior_id)
            .all()
        )

        positive_xp = 0
        negative_xp = 0
        details = []
        for behavior in behaviors:
            count = counts.get(behavior.id, 0)
            if not count:
                continue
            xp = count * abs(behavior.xp_value or 0)
            if behavior.is_positive:
                positive_xp += xp
            else:
                negative_xp += xp
            details.append(f"{'+' if behavior.is_positive else '-'} {behavior.name} (x{count})")

        if not details:
            return []

        total_xp = positive_xp + negative_xp
        if negative_xp == 0:
            score_percent = 100.0
        elif positive_xp == 0:
            score_percent = 0.0
        else:
            score_percent = positive_xp / total_xp * 100

        weight = clamp(round_half_up(total_xp / 10), self.MIN_WEIGHT, self.MAX_WEIGHT)

        return [ActivityScore(
            activity_type=self.activity_type,
            activity_id=self.AGGREGATE_ID,
            name=f"Behaviors (+{positive_xp} / -{negative_xp}): {', '.join(details)}",
            score=float(round_half_up(score_percent)),
            weight=weight,
        )]


class BadgeCollector(ActivityCollector):
    """Each badge unlocked inside the window scores 100, weighted by rarity"""

    activity_type = 'BADGE'
    RARITY_WEIGHTS = {'LEGENDARY': 100, 'EPIC': 80, 'RARE': 60}
    DEFAULT_RARITY_WEIGHT = 40

    def collect(self, student_id, competency_id, classroom_id, date_range):
        rows = StudentBadge.query.join(Badge).filter(
            Badge.classroom_id == classroom_id,
            Badge.competency_id == competency_id,
            Badge.is_active.is_(True),
            StudentBadge.student_id == student_id,
            StudentBadge.unlocked_at >= date_range.start,
            StudentBadge.unlocked_at < date_range.end,
        ).order_by(StudentBadge.id).all()

        return [
            ActivityScore(
                activity_type=self.activity_type,
                activity_id=row.badge_id,
                name=row.badge.name,
                score=100.0,
                weight=self.RARITY_WEIGHTS.get((row.badge.rarity or '').upper(), self.DEFAULT_RARITY_WEIGHT),
            )
            for row in rows
        ]


class BattleCollector(ActivityCollector):
    """
    Finished boss battles: share of correct answers, weighted by
    participation volume (5 per answer, bounded to [30, 100]).
    Participations without any answer are skipped.
    """

    FINISHED_STATUSES = ('COMPLETED', 'VICTORY', 'DEFEAT')
    WEIGHT_PER_ANSWER = 5
    MIN_WEIGHT = 30
    MAX_WEIGHT = 100

    def participations(self, student_id, competency_id, classroom_id, date_range):
        """(battle, correct, wrong) for each participation in the window"""
        raise NotImplementedError

    def entry_name(self, battle) -> str:
        raise NotImplementedError

    def collect(self, student_id, competency_id, classroom_id, date_range):
        scores = []
        for battle, correct, wrong in self.participations(student_id, competency_id, classroom_id, date_range):
            correct = correct or 0
            total_answers = correct + (wrong or 0)
            if total_answers == 0:
                continue
            scores.append(ActivityScore(
                activity_type=self.activity_type,
                activity_id=battle.id,
                name=self.entry_name(battle),
                score=float(round_half_up(correct / total_answers * 100)),
                weight=clamp(total_answers * self.WEIGHT_PER_ANSWER, self.MIN_WEIGHT, self.MAX_WEIGHT),
            ))
        return scores


class BossBattleCollector(BattleCollector):
    """Cooperative battles fought by the whole classroom against one boss"""

    activity_type = 'BOSS_BATTLE'

    def participations(self, student_id, competency_id, classroom_id, date_range):
        rows = StudentBossBattleParticipant.query.join(StudentBossBattle).filter(
            StudentBossBattle.classroom_id == classroom_id,
            StudentBossBattle.competency_id == competency_id,
            StudentBossBattle.status.in_(self.FINISHED_STATUSES),
            StudentBossBattleParticipant.student_id == student_id,
            StudentBossBattleParticipant.joined_at >= date_range.start,
            StudentBossBattleParticipant.joined_at < date_range.end,
        ).order_by(StudentBossBattleParticipant.id).all()
        return [(row.battle, row.total_correct_answers, row.total_wrong_answers) for row in rows]

    def entry_name(self, battle):
        return f"Boss Battle: {battle.boss_name}"


class ClassicBossBattleCollector(BattleCollector):
    """Classic classroom battles, one participation row per student"""

    activity_type = 'BOSS_BATTLE_CLASSIC'

    def participations(self, student_id, competency_id, classroom_id, date_range):
        rows = BattleParticipant.query.join(BossBattle).filter(
            BossBattle.classroom_id == classroom_id,
            BossBattle.competency_id == competency_id,
            BossBattle.status.in_(self.FINISHED_STATUSES),
            BattleParticipant.student_id == student_id,
            BattleParticipant.joined_at >= date_range.start,
            BattleParticipant.joined_at < date_range.end,
        ).order_by(BattleParticipant.id).all()
        return [(row.battle, row.correct_answers, row.wrong_answers) for row in rows]

    def entry_name(self, battle):
        return f"{battle.name}: {battle.boss_name}"


DEFAULT_COLLECTORS = (
    MissionCollector(),
    TimedActivityCollector(),
    TournamentCollector(),
    ExpeditionCollector(),
    BehaviorCollector(),
    BadgeCollector(),
    BossBattleCollector(),
    ClassicBossBattleCollector(),
)


def collect_activity_scores(student_id, competency_id, classroom_id, date_range,
                            collectors=DEFAULT_COLLECTORS) -> List[ActivityScore]:
    """Run every collector for one competency and concatenate the results"""
    scores = []
    for collector in collectors:
        found = collector.collect(student_id, competency_id, classroom_id, date_range)
        logger.debug("Collector %s: %d entries (student %s, competency %s)",
                     collector.activity_type, len(found), student_id, competency_id)
        scores.extend(found)
    return scores
