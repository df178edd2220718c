"""
models.py - Database Models for Competency Grading
Classroom configuration, competency catalog, gamified activity records
(read-only for the grading engine) and the stored competency grades.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from extensions import db

logger = logging.getLogger(__name__)


def utcnow():
    """Naive UTC timestamp, the format every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _parse_timestamp(value):
    """Parse an ISO timestamp into naive UTC. Returns None if it can't."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def decode_json_field(raw, default, expected=None):
    """
    Decode a JSON-bearing column into a native structure.

    The storage layer has historically handed these fields back either as
    native dicts/lists, as JSON strings, or as JSON strings that were encoded
    twice. All three are accepted. Anything else, or a value whose decoded
    type differs from ``default``'s, yields ``default``.

    Args:
        raw: Column value
        default: Fallback value
        expected: Accepted type or tuple of types (defaults to type(default))

    Returns:
        dict or list
    """
    if raw is None or raw == '':
        return default

    value = raw
    # At most two rounds: plain encoding plus one accidental re-encoding
    for _ in range(2):
        if not isinstance(value, (str, bytes)):
            break
        try:
            value = json.loads(value)
        except (TypeError, ValueError):
            logger.warning("Could not decode stored JSON value %.80r; using default", raw)
            return default

    if not isinstance(value, expected or type(default)):
        logger.warning("Stored JSON value has type %s; using default", type(value).__name__)
        return default
    return value


# ============================================================================
# TYPED CONFIGURATION VALUES
# ============================================================================

@dataclass(frozen=True)
class GradeRange:
    label: str
    min_percent: float


@dataclass(frozen=True)
class GradeScaleConfig:
    """Custom grading scale: unordered list of {label, minPercent} tiers"""
    ranges: List[GradeRange] = field(default_factory=list)

    @classmethod
    def from_raw(cls, raw):
        """
        Build from a stored value. Accepts {"ranges": [...]} or a bare list.
        Tiers without a label or with a non-numeric minPercent are dropped.
        """
        data = decode_json_field(raw, {}, expected=(dict, list))
        if isinstance(data, list):
            data = {'ranges': data}

        ranges = []
        for item in data.get('ranges') or []:
            if not isinstance(item, dict):
                continue
            label = item.get('label')
            try:
                min_percent = float(item.get('minPercent'))
            except (TypeError, ValueError):
                continue
            if not label:
                continue
            ranges.append(GradeRange(label=str(label), min_percent=min_percent))
        return cls(ranges=ranges)

    def to_dict(self):
        return {'ranges': [{'label': r.label, 'minPercent': r.min_percent} for r in self.ranges]}


@dataclass(frozen=True)
class ClosedPeriod:
    """One entry of a classroom's closed-period history"""
    period: str
    closed_at: datetime
    closed_by: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        """Returns None for malformed entries"""
        if not isinstance(data, dict):
            return None
        period = data.get('period')
        closed_at = _parse_timestamp(data.get('closedAt'))
        if not isinstance(period, str) or not period or closed_at is None:
            return None
        closed_by = data.get('closedBy')
        return cls(period=period, closed_at=closed_at,
                   closed_by=str(closed_by) if closed_by is not None else None)

    def to_dict(self):
        return {
            'period': self.period,
            'closedAt': self.closed_at.isoformat(),
            'closedBy': self.closed_by,
        }


# ============================================================================
# CLASSROOM & COMPETENCIES
# ============================================================================

class Classroom(db.Model):
    """
    Classroom - owns competency grading configuration and the bimester lifecycle
    """
    __tablename__ = 'classroom'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)

    # === COMPETENCY GRADING ===
    use_competencies = db.Column(db.Boolean, default=False, nullable=False)
    # 'PERU_LETTERS', 'PERU_VIGESIMAL', 'USA_LETTERS', 'CENTESIMAL', 'CUSTOM' or NULL
    grade_scale_type = db.Column(db.String(20), nullable=True)
    # JSON: {"ranges": [{"label": "Excelente", "minPercent": 80}, ...]}
    grade_scale_config = db.Column(db.Text, nullable=True)

    # === BIMESTER LIFECYCLE ===
    current_bimester = db.Column(db.String(20), nullable=True)  # "2025-B2"
    # JSON: [{"period": "2025-B1", "closedAt": "2025-05-09T18:00:00", "closedBy": "7"}]
    closed_bimesters = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    # === RELATIONSHIPS ===
    students = db.relationship('StudentProfile', backref='classroom', lazy='dynamic')
    competency_links = db.relationship('ClassroomCompetency', backref='classroom', lazy='dynamic',
                                       cascade='all, delete-orphan')

    def __repr__(self):
        return f'<Classroom {self.id} {self.name}>'

    def get_grade_scale_config(self):
        """Parse grade scale config; malformed values yield an empty config"""
        return GradeScaleConfig.from_raw(self.grade_scale_config)

    def set_grade_scale_config(self, config):
        """Set grade scale config from a GradeScaleConfig or dict"""
        if isinstance(config, GradeScaleConfig):
            config = config.to_dict()
        self.grade_scale_config = json.dumps(config)

    def get_closed_bimesters(self):
        """
        Parse closed-period history.

        Returns:
            list[ClosedPeriod]: in stored order, malformed entries dropped
        """
        entries = []
        for item in decode_json_field(self.closed_bimesters, []):
            entry = ClosedPeriod.from_dict(item)
            if entry is None:
                logger.warning("Dropping malformed closed bimester entry %r (classroom %s)", item, self.id)
                continue
            entries.append(entry)
        return entries

    def set_closed_bimesters(self, entries):
        """Set closed-period history from a list of ClosedPeriod"""
        self.closed_bimesters = json.dumps([e.to_dict() for e in entries])


class Competency(db.Model):
    """
    Curriculum Competency - catalog entry shared across classrooms
    """
    __tablename__ = 'competency'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    def __repr__(self):
        return f'<Competency {self.id} {self.name}>'


class ClassroomCompetency(db.Model):
    """
    Enables a catalog competency for a classroom, with a relative weight
    """
    __tablename__ = 'classroom_competency'
    __table_args__ = (
        db.UniqueConstraint('classroom_id', 'competency_id', name='uq_classroom_competency'),
    )

    id = db.Column(db.Integer, primary_key=True)
    classroom_id = db.Column(db.Integer, db.ForeignKey('classroom.id'), nullable=False, index=True)
    competency_id = db.Column(db.Integer, db.ForeignKey('competency.id'), nullable=False)
    weight = db.Column(db.Integer, default=100, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    competency = db.relationship('Competency')

    def __repr__(self):
        return f'<ClassroomCompetency Classroom:{self.classroom_id} Competency:{self.competency_id}>'


class ActivityCompetency(db.Model):
    """
    Links one gamified activity to one competency with a weight.
    activity_type: 'MISSION', 'TIMED', 'TOURNAMENT', 'EXPEDITION'
    """
    __tablename__ = 'activity_competency'

    id = db.Column(db.Integer, primary_key=True)
    classroom_id = db.Column(db.Integer, db.ForeignKey('classroom.id'), nullable=False, index=True)
    activity_type = db.Column(db.String(20), nullable=False)
    activity_id = db.Column(db.Integer, nullable=False)
    competency_id = db.Column(db.Integer, db.ForeignKey('competency.id'), nullable=False, index=True)
    weight = db.Column(db.Integer, nullable=True)

    def __repr__(self):
        return f'<ActivityCompetency {self.activity_type}:{self.activity_id} -> {self.competency_id}>'


class StudentProfile(db.Model):
    """
    Student - a member of exactly one classroom
    """
    __tablename__ = 'student_profile'

    id = db.Column(db.Integer, primary_key=True)
    classroom_id = db.Column(db.Integer, db.ForeignKey('classroom.id'), nullable=False, index=True)
    display_name = db.Column(db.String(100), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f'<StudentProfile {self.id} {self.display_name}>'


# ============================================================================
# ACTIVITY RECORDS (owned by the gamification subsystems)
# ============================================================================

class Mission(db.Model):
    __tablename__ = 'mission'

    id = db.Column(db.Integer, primary_key=True)
    classroom_id = db.Column(db.Integer, db.ForeignKey('classroom.id'), nullable=False)
    name = db.Column(db.String(200), nullable=False)


class StudentMission(db.Model):
    """Objective assigned to a student; status 'ACTIVE', 'COMPLETED', 'EXPIRED'"""
    __tablename__ = 'student_mission'

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student_profile.id'), nullable=False, index=True)
    mission_id = db.Column(db.Integer, db.ForeignKey('mission.id'), nullable=False)
    status = db.Column(db.String(20), default='ACTIVE', nullable=False)
    current_progress = db.Column(db.Integer, default=0)
    target_progress = db.Column(db.Integer, default=1)
    assigned_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    mission = db.relationship('Mission')


class TimedActivity(db.Model):
    __tablename__ = 'timed_activity'

    id = db.Column(db.Integer, primary_key=True)
    classroom_id = db.Column(db.Integer, db.ForeignKey('classroom.id'), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    base_points = db.Column(db.Integer, nullable=True)


class TimedActivityResult(db.Model):
    """One attempt; completed_at is NULL when the exercise expired or was lost"""
    __tablename__ = 'timed_activity_result'

    id = db.Column(db.Integer, primary_key=True)
    activity_id = db.Column(db.Integer, db.ForeignKey('timed_activity.id'), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey('student_profile.id'), nullable=False, index=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    points_awarded = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    activity = db.relationship('TimedActivity')


class Tournament(db.Model):
    __tablename__ = 'tournament'

    id = db.Column(db.Integer, primary_key=True)
    classroom_id = db.Column(db.Integer, db.ForeignKey('classroom.id'), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    max_participants = db.Column(db.Integer, nullable=True)


class TournamentParticipant(db.Model):
    __tablename__ = 'tournament_participant'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournament.id'), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey('student_profile.id'), nullable=False, index=True)
    final_position = db.Column(db.Integer, nullable=True)
    joined_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    tournament = db.relationship('Tournament')


class Expedition(db.Model):
    __tablename__ = 'expedition'

    id = db.Column(db.Integer, primary_key=True)
    classroom_id = db.Column(db.Integer, db.ForeignKey('classroom.id'), nullable=False)
    name = db.Column(db.String(200), nullable=False)


class ExpeditionStudentProgress(db.Model):
    __tablename__ = 'expedition_student_progress'

    id = db.Column(db.Integer, primary_key=True)
    expedition_id = db.Column(db.Integer, db.ForeignKey('expedition.id'), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey('student_profile.id'), nullable=False, index=True)
    is_completed = db.Column(db.Boolean, default=False, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    expedition = db.relationship('Expedition')


class Behavior(db.Model):
    """Behavior definition; xp_value magnitude, polarity from is_positive"""
    __tablename__ = 'behavior'

    id = db.Column(db.Integer, primary_key=True)
    classroom_id = db.Column(db.Integer, db.ForeignKey('classroom.id'), nullable=False, index=True)
    competency_id = db.Column(db.Integer, db.ForeignKey('competency.id'), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    is_positive = db.Column(db.Boolean, default=True, nullable=False)
    xp_value = db.Column(db.Integer, default=0, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)


class PointLog(db.Model):
    """Point ledger entry, optionally tied to a behavior"""
    __tablename__ = 'point_log'

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student_profile.id'), nullable=False, index=True)
    behavior_id = db.Column(db.Integer, db.ForeignKey('behavior.id'), nullable=True, index=True)
    points = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)


class Badge(db.Model):
    """Commendation definition; rarity 'COMMON', 'RARE', 'EPIC', 'LEGENDARY'"""
    __tablename__ = 'badge'

    id = db.Column(db.Integer, primary_key=True)
    classroom_id = db.Column(db.Integer, db.ForeignKey('classroom.id'), nullable=False, index=True)
    competency_id = db.Column(db.Integer, db.ForeignKey('competency.id'), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    rarity = db.Column(db.String(20), default='COMMON', nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)


class StudentBadge(db.Model):
    __tablename__ = 'student_badge'

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student_profile.id'), nullable=False, index=True)
    badge_id = db.Column(db.Integer, db.ForeignKey('badge.id'), nullable=False)
    unlocked_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    badge = db.relationship('Badge')


class BossBattle(db.Model):
    """Classroom boss battle; status 'PENDING', 'ACTIVE', 'COMPLETED', 'VICTORY', 'DEFEAT'"""
    __tablename__ = 'boss_battle'

    id = db.Column(db.Integer, primary_key=True)
    classroom_id = db.Column(db.Integer, db.ForeignKey('classroom.id'), nullable=False, index=True)
    competency_id = db.Column(db.Integer, db.ForeignKey('competency.id'), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    boss_name = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), default='PENDING', nullable=False)


class BattleParticipant(db.Model):
    __tablename__ = 'battle_participant'

    id = db.Column(db.Integer, primary_key=True)
    battle_id = db.Column(db.Integer, db.ForeignKey('boss_battle.id'), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey('student_profile.id'), nullable=False, index=True)
    correct_answers = db.Column(db.Integer, default=0, nullable=False)
    wrong_answers = db.Column(db.Integer, default=0, nullable=False)
    joined_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    battle = db.relationship('BossBattle')


class StudentBossBattle(db.Model):
    """Cooperative battle: the classroom answers questions together against one boss"""
    __tablename__ = 'student_boss_battle'

    id = db.Column(db.Integer, primary_key=True)
    classroom_id = db.Column(db.Integer, db.ForeignKey('classroom.id'), nullable=False, index=True)
    competency_id = db.Column(db.Integer, db.ForeignKey('competency.id'), nullable=True)
    boss_name = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), default='PENDING', nullable=False)


class StudentBossBattleParticipant(db.Model):
    """Running answer totals of one student in a cooperative battle"""
    __tablename__ = 'student_boss_battle_participant'

    id = db.Column(db.Integer, primary_key=True)
    battle_id = db.Column(db.Integer, db.ForeignKey('student_boss_battle.id'), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey('student_profile.id'), nullable=False, index=True)
    total_correct_answers = db.Column(db.Integer, default=0, nullable=False)
    total_wrong_answers = db.Column(db.Integer, default=0, nullable=False)
    joined_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    battle = db.relationship('StudentBossBattle')


# ============================================================================
# STORED GRADES
# ============================================================================

class StudentGrade(db.Model):
    """
    StudentGrade - computed competency grade for one student and bimester
    Manual override: while is_manual_override is set, automatic
    calculations never write score or grade_label.
    """
    __tablename__ = 'student_grade'
    __table_args__ = (
        db.UniqueConstraint('student_id', 'competency_id', 'period', name='uq_student_competency_period'),
    )

    id = db.Column(db.Integer, primary_key=True)
    classroom_id = db.Column(db.Integer, db.ForeignKey('classroom.id'), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student_profile.id'), nullable=False, index=True)
    competency_id = db.Column(db.Integer, db.ForeignKey('competency.id'), nullable=False)
    period = db.Column(db.String(20), nullable=False, index=True)

    # Calculated grade
    score = db.Column(db.Float, nullable=False, default=0.0)  # 0-100, 2 decimals
    grade_label = db.Column(db.String(20), nullable=False)
    # JSON: {"activities": [...], "totalWeight": 130, "rawScore": 86.0}
    calculation_details = db.Column(db.Text, nullable=True)
    activities_count = db.Column(db.Integer, default=0, nullable=False)

    # Manual override
    is_manual_override = db.Column(db.Boolean, default=False, nullable=False)
    manual_score = db.Column(db.Float, nullable=True)
    manual_note = db.Column(db.Text, nullable=True)

    # Metadata
    calculated_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    competency = db.relationship('Competency')
    student = db.relationship('StudentProfile')

    def __repr__(self):
        return f'<StudentGrade Student:{self.student_id} Competency:{self.competency_id} {self.period}>'

    def get_calculation_details(self):
        """Parse and return the breakdown as dict"""
        return decode_json_field(self.calculation_details, {})

    def set_calculation_details(self, details):
        """Set breakdown from dict"""
        self.calculation_details = json.dumps(details, sort_keys=True)

    @property
    def effective_score(self):
        """Manual score while overridden, calculated score otherwise"""
        if self.is_manual_override and self.manual_score is not None:
            return self.manual_score
        return self.score

    def to_dict(self):
        return {
            'id': self.id,
            'classroom_id': self.classroom_id,
            'student_id': self.student_id,
            'competency_id': self.competency_id,
            'competency_name': self.competency.name if self.competency else '',
            'period': self.period,
            'score': self.score,
            'effective_score': self.effective_score,
            'grade_label': self.grade_label,
            'activities_count': self.activities_count,
            'calculation_details': self.get_calculation_details(),
            'is_manual_override': self.is_manual_override,
            'manual_score': self.manual_score,
            'manual_note': self.manual_note,
            'calculated_at': self.calculated_at.isoformat() if self.calculated_at else None,
        }
