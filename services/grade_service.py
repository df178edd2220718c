"""
Grade Service - competency grade calculation and storage

Usage:
    from services.grade_service import grade_service

    results = grade_service.calculate_for_student(classroom_id, student_id, '2025-B2')
    grade_service.set_manual_grade(results[0]['grade_id'], 73, 'revisado')

Flow per (student, period): the period must not be in the future, the
period window is resolved from the classroom's closing history, and for
each active classroom competency every collector runs, scores are
aggregated, the classroom's scale produces the label and the row is
upserted unless a manual override is in force.
"""
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from extensions import db
from models import (
    Classroom,
    ClassroomCompetency,
    StudentGrade,
    StudentProfile,
    utcnow,
)
from services.collectors import DEFAULT_COLLECTORS, collect_activity_scores
from services.exceptions import (
    FuturePeriodError,
    GradeNotFoundError,
    InvalidPeriodError,
    InvalidScoreError,
    StudentNotFoundError,
)
from services.periods import (
    CURRENT_ALIAS,
    DateRange,
    Period,
    ensure_not_future,
    load_classroom,
    period_lifecycle,
    resolve_period,
    resolve_period_window,
)
from services.scoring import aggregate_scores, convert_to_grade_label

logger = logging.getLogger(__name__)


class GradeService:
    """
    Calculates, stores and reads competency grades.
    """

    def __init__(self, collectors=DEFAULT_COLLECTORS):
        self.collectors = collectors

    # ═══════════════════════════════════════════════════════════
    # CALCULATION
    # ═══════════════════════════════════════════════════════════

    def calculate_for_student(self, classroom_id, student_id, period=CURRENT_ALIAS,
                              now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Calculate and store a student's grades for every active competency.

        Returns:
            list: [{grade_id, competency_id, competency_name, score, grade_label,
                    activities_count, breakdown, is_manual_override}, ...]
                  Empty when the classroom does not use competency grading.

        Raises:
            ClassroomNotFoundError, StudentNotFoundError, InvalidPeriodError,
            FuturePeriodError
        """
        classroom = load_classroom(classroom_id)
        student = self._load_student(student_id, classroom)
        target = resolve_period(classroom, period, now)
        ensure_not_future(classroom, target, now)

        if not classroom.use_competencies:
            return []
        return self._calculate(classroom, student, target, now or utcnow())

    def recalculate_for_classroom(self, classroom_id, period=CURRENT_ALIAS,
                                  now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Recalculate every student of a classroom, one after another.
        Each student is committed on its own, so an interrupted run
        leaves finished students consistent.

        Returns:
            list: [{'student_id': 1, 'grades': [...]}, ...]
        """
        classroom = load_classroom(classroom_id)
        target = resolve_period(classroom, period, now)
        ensure_not_future(classroom, target, now)
        now = now or utcnow()

        students = StudentProfile.query.filter_by(
            classroom_id=classroom.id
        ).order_by(StudentProfile.id).all()

        results = []
        for student in students:
            grades = self._calculate(classroom, student, target, now) if classroom.use_competencies else []
            results.append({'student_id': student.id, 'grades': grades})

        logger.info("Recalculated %d students of classroom %s for %s", len(results), classroom.id, target)
        return results

    def _calculate(self, classroom: Classroom, student: StudentProfile, period: Period, now: datetime):
        window = resolve_period_window(classroom, period, now)
        links = self._active_competency_links(classroom.id)

        results = []
        try:
            for link in links:
                results.append(self._calculate_competency(classroom, student.id, link, period, window, now))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info("Calculated %d competency grades for student %s in classroom %s (%s)",
                    len(results), student.id, classroom.id, period)
        return results

    def _calculate_competency(self, classroom: Classroom, student_id, link: ClassroomCompetency,
                              period: Period, window: DateRange, now: datetime) -> Dict[str, Any]:
        scores = collect_activity_scores(student_id, link.competency_id, classroom.id, window, self.collectors)
        raw_score, total_weight = aggregate_scores(scores)
        score = round(raw_score, 2)
        # Tiers are matched on the unrounded score: 89.996 is not 90
        grade_label = convert_to_grade_label(raw_score, classroom.grade_scale_type,
                                             classroom.get_grade_scale_config())

        breakdown = {
            'activities': [s.to_dict() for s in scores],
            'totalWeight': total_weight,
            'rawScore': score,
        }

        grade, written = self.upsert_grade(
            classroom_id=classroom.id,
            student_id=student_id,
            competency_id=link.competency_id,
            period=str(period),
            score=score,
            grade_label=grade_label,
            breakdown=breakdown,
            activities_count=len(scores),
            now=now,
        )

        logger.debug("Student %s competency %s %s: %.2f (%s) from %d activities",
                     student_id, link.competency_id, period, score, grade_label, len(scores))

        # Overridden rows report what is stored, not the discarded calculation
        return {
            'grade_id': grade.id,
            'competency_id': link.competency_id,
            'competency_name': link.competency.name if link.competency else '',
            'score': score if written else grade.effective_score,
            'grade_label': grade_label if written else grade.grade_label,
            'activities_count': len(scores),
            'breakdown': breakdown,
            'is_manual_override': grade.is_manual_override,
        }

    # ═══════════════════════════════════════════════════════════
    # PERSISTENCE / OVERRIDE
    # ═══════════════════════════════════════════════════════════

    def upsert_grade(self, classroom_id, student_id, competency_id, period: str, score: float,
                     grade_label: str, breakdown: Dict[str, Any], activities_count: int,
                     now: Optional[datetime] = None):
        """
        Insert or update the stored grade for (student, competency, period).
        Rows under a manual override are left untouched.

        Returns:
            tuple: (StudentGrade, written)
        """
        now = now or utcnow()
        grade = StudentGrade.query.filter_by(
            student_id=student_id,
            competency_id=competency_id,
            period=period,
        ).first()

        if grade is not None and grade.is_manual_override:
            logger.info("Grade %s is manually overridden; automatic result not stored", grade.id)
            return grade, False

        if grade is None:
            grade = StudentGrade(
                classroom_id=classroom_id,
                student_id=student_id,
                competency_id=competency_id,
                period=period,
            )
            db.session.add(grade)

        grade.score = score
        grade.grade_label = grade_label
        grade.set_calculation_details(breakdown)
        grade.activities_count = activities_count
        grade.calculated_at = now
        grade.updated_at = now
        db.session.flush()
        return grade, True

    def set_manual_grade(self, grade_id, manual_score, note: Optional[str] = None):
        """
        Override a stored grade. The label is derived from the manual score
        on the classroom's scale.
        """
        grade = self._load_grade(grade_id)
        score = self._validate_score(manual_score)
        classroom = db.session.get(Classroom, grade.classroom_id)

        grade.is_manual_override = True
        grade.manual_score = round(score, 2)
        grade.manual_note = note
        grade.grade_label = convert_to_grade_label(
            score,
            classroom.grade_scale_type if classroom else None,
            classroom.get_grade_scale_config() if classroom else None,
        )
        grade.updated_at = utcnow()
        db.session.commit()

        logger.info("Grade %s manually set to %.2f (%s)", grade.id, grade.manual_score, grade.grade_label)
        return {'success': True, 'grade': grade.to_dict()}

    def clear_manual_grade(self, grade_id, now: Optional[datetime] = None):
        """
        Remove a manual override and recalculate that exact
        student/competency/period right away.

        If the recalculation cannot run (period now in the future, grading
        disabled, competency no longer active) the override is still
        cleared and the last manual score and label stay as stored values.
        """
        grade = self._load_grade(grade_id)
        classroom = load_classroom(grade.classroom_id)
        now = now or utcnow()
        fallback_score = grade.manual_score

        grade.is_manual_override = False
        grade.manual_score = None
        grade.manual_note = None

        recalculated = False
        try:
            period = Period.parse(grade.period)
            ensure_not_future(classroom, period, now)
            link = ClassroomCompetency.query.filter_by(
                classroom_id=classroom.id,
                competency_id=grade.competency_id,
                is_active=True,
            ).first()
            if classroom.use_competencies and link is not None:
                window = resolve_period_window(classroom, period, now)
                self._calculate_competency(classroom, grade.student_id, link, period, window, now)
                recalculated = True
        except (FuturePeriodError, InvalidPeriodError) as e:
            logger.warning("Grade %s: recalculation skipped after clearing override: %s", grade.id, e)
        except Exception:
            db.session.rollback()
            raise

        if not recalculated:
            if fallback_score is not None:
                grade.score = fallback_score
            grade.updated_at = now
            logger.warning("Grade %s override cleared without recalculation; keeping last manual values",
                           grade.id)

        db.session.commit()
        logger.info("Grade %s manual override cleared", grade.id)
        return {'success': True, 'recalculated': recalculated, 'grade': grade.to_dict()}

    # ═══════════════════════════════════════════════════════════
    # READS
    # ═══════════════════════════════════════════════════════════

    def get_student_grades(self, student_id, period=CURRENT_ALIAS):
        student = self._load_student(student_id)
        target = resolve_period(student.classroom, period)

        grades = StudentGrade.query.filter_by(
            student_id=student.id,
            period=str(target),
        ).order_by(StudentGrade.competency_id).all()

        return [g.to_dict() for g in grades]

    def get_classroom_grades(self, classroom_id, period=CURRENT_ALIAS):
        classroom = load_classroom(classroom_id)
        target = resolve_period(classroom, period)

        grades = StudentGrade.query.filter_by(
            classroom_id=classroom.id,
            period=str(target),
        ).order_by(StudentGrade.student_id, StudentGrade.competency_id).all()

        rows = []
        for grade in grades:
            row = grade.to_dict()
            row['student_name'] = grade.student.display_name if grade.student else ''
            rows.append(row)
        return rows

    # ═══════════════════════════════════════════════════════════
    # BIMESTER LIFECYCLE
    # ═══════════════════════════════════════════════════════════

    def get_period_status(self, classroom_id, year: Optional[int] = None):
        return period_lifecycle.get_status(classroom_id, year)

    def set_current_period(self, classroom_id, period):
        return period_lifecycle.set_current(classroom_id, period)

    def close_period(self, classroom_id, period, closed_by=None, now: Optional[datetime] = None):
        return period_lifecycle.close(classroom_id, period, closed_by=closed_by, now=now)

    def reopen_period(self, classroom_id, period):
        return period_lifecycle.reopen(classroom_id, period)

    # ═══════════════════════════════════════════════════════════
    # HELPERS
    # ═══════════════════════════════════════════════════════════

    @staticmethod
    def _active_competency_links(classroom_id):
        return ClassroomCompetency.query.filter_by(
            classroom_id=classroom_id,
            is_active=True,
        ).order_by(ClassroomCompetency.id).all()

    @staticmethod
    def _load_student(student_id, classroom: Optional[Classroom] = None) -> StudentProfile:
        student = db.session.get(StudentProfile, student_id)
        if student is None or (classroom is not None and student.classroom_id != classroom.id):
            raise StudentNotFoundError(student_id)
        return student

    @staticmethod
    def _load_grade(grade_id) -> StudentGrade:
        grade = db.session.get(StudentGrade, grade_id)
        if grade is None:
            raise GradeNotFoundError(grade_id)
        return grade

    @staticmethod
    def _validate_score(value) -> float:
        if isinstance(value, bool):
            raise InvalidScoreError(value)
        try:
            score = float(value)
        except (TypeError, ValueError):
            raise InvalidScoreError(value)
        if math.isnan(score) or not 0 <= score <= 100:
            raise InvalidScoreError(value)
        return score


grade_service = GradeService()
