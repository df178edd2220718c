"""
Shared fixtures: a testing app with a fresh in-memory schema per test and
a small factory for classrooms, students, competencies and activity records.
"""
from datetime import datetime

import pytest

from app import create_app
from extensions import db
from models import (
    ActivityCompetency,
    Badge,
    BattleParticipant,
    Behavior,
    BossBattle,
    Classroom,
    ClassroomCompetency,
    Competency,
    Expedition,
    ExpeditionStudentProgress,
    Mission,
    PointLog,
    StudentBadge,
    StudentBossBattle,
    StudentBossBattleParticipant,
    StudentMission,
    StudentProfile,
    TimedActivity,
    TimedActivityResult,
    Tournament,
    TournamentParticipant,
)

CREATED_AT = datetime(2025, 3, 1, 8, 0)
IN_B1 = datetime(2025, 4, 10, 10, 0)


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def cli_runner(app):
    return app.test_cli_runner()


class Factory:
    """Builds and commits test records"""

    def classroom(self, **kwargs):
        values = {
            'name': 'Aula 5A',
            'use_competencies': True,
            'grade_scale_type': 'PERU_LETTERS',
            'current_bimester': '2025-B1',
            'created_at': CREATED_AT,
        }
        values.update(kwargs)
        return self._save(Classroom(**values))

    def student(self, classroom, name='Ana'):
        return self._save(StudentProfile(classroom_id=classroom.id, display_name=name, created_at=CREATED_AT))

    def competency(self, classroom, name='Resuelve problemas', weight=100, is_active=True):
        competency = self._save(Competency(name=name))
        self._save(ClassroomCompetency(
            classroom_id=classroom.id,
            competency_id=competency.id,
            weight=weight,
            is_active=is_active,
        ))
        return competency

    def link(self, classroom, activity_type, activity_id, competency, weight=100):
        return self._save(ActivityCompetency(
            classroom_id=classroom.id,
            activity_type=activity_type,
            activity_id=activity_id,
            competency_id=competency.id,
            weight=weight,
        ))

    def timed_result(self, classroom, student, competency, base_points=10, points=10,
                     completed=True, at=IN_B1, weight=100, name='Cálculo mental'):
        activity = self._save(TimedActivity(classroom_id=classroom.id, name=name, base_points=base_points))
        self.link(classroom, 'TIMED', activity.id, competency, weight)
        return self._save(TimedActivityResult(
            activity_id=activity.id,
            student_id=student.id,
            completed_at=at if completed else None,
            points_awarded=points,
            created_at=at,
        ))

    def mission(self, classroom, student, competency, status='ACTIVE', progress=0, target=10,
                at=IN_B1, weight=100, name='Lee 10 cuentos'):
        mission = self._save(Mission(classroom_id=classroom.id, name=name))
        self.link(classroom, 'MISSION', mission.id, competency, weight)
        return self._save(StudentMission(
            student_id=student.id,
            mission_id=mission.id,
            status=status,
            current_progress=progress,
            target_progress=target,
            assigned_at=at,
        ))

    def tournament(self, classroom, student, competency, position, max_participants=8,
                   at=IN_B1, weight=100):
        tournament = self._save(Tournament(classroom_id=classroom.id, name='Torneo de sumas',
                                           max_participants=max_participants))
        self.link(classroom, 'TOURNAMENT', tournament.id, competency, weight)
        return self._save(TournamentParticipant(
            tournament_id=tournament.id,
            student_id=student.id,
            final_position=position,
            joined_at=at,
        ))

    def expedition(self, classroom, student, competency, completed=False, completed_at=None,
                   at=IN_B1, weight=100):
        expedition = self._save(Expedition(classroom_id=classroom.id, name='Isla del tesoro'))
        self.link(classroom, 'EXPEDITION', expedition.id, competency, weight)
        return self._save(ExpeditionStudentProgress(
            expedition_id=expedition.id,
            student_id=student.id,
            is_completed=completed,
            completed_at=completed_at,
            updated_at=at,
        ))

    def behavior(self, classroom, competency, name='Ayuda a un compañero', xp=10, positive=True,
                 is_active=True):
        return self._save(Behavior(
            classroom_id=classroom.id,
            competency_id=competency.id if competency else None,
            name=name,
            xp_value=xp,
            is_positive=positive,
            is_active=is_active,
        ))

    def point_logs(self, student, behavior, count=1, at=IN_B1):
        points = behavior.xp_value if behavior.is_positive else -behavior.xp_value
        logs = [
            PointLog(student_id=student.id, behavior_id=behavior.id, points=points, created_at=at)
            for _ in range(count)
        ]
        db.session.add_all(logs)
        db.session.commit()
        return logs

    def badge(self, classroom, student, competency, rarity='COMMON', at=IN_B1, name='Explorador'):
        badge = self._save(Badge(classroom_id=classroom.id, competency_id=competency.id,
                                 name=name, rarity=rarity))
        return self._save(StudentBadge(student_id=student.id, badge_id=badge.id, unlocked_at=at))

    def boss_battle(self, classroom, student, competency, correct, wrong, status='VICTORY', at=IN_B1):
        battle = self._save(StudentBossBattle(classroom_id=classroom.id, competency_id=competency.id,
                                              boss_name='Hidra', status=status))
        return self._save(StudentBossBattleParticipant(
            battle_id=battle.id,
            student_id=student.id,
            total_correct_answers=correct,
            total_wrong_answers=wrong,
            joined_at=at,
        ))

    def classic_boss_battle(self, classroom, student, competency, correct, wrong, status='VICTORY', at=IN_B1):
        battle = self._save(BossBattle(classroom_id=classroom.id, competency_id=competency.id,
                                       name='Batalla final', boss_name='Dragón', status=status))
        return self._save(BattleParticipant(
            battle_id=battle.id,
            student_id=student.id,
            correct_answers=correct,
            wrong_answers=wrong,
            joined_at=at,
        ))

    @staticmethod
    def _save(obj):
        db.session.add(obj)
        db.session.commit()
        return obj


@pytest.fixture
def factory(app):
    return Factory()
