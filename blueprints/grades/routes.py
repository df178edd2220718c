"""
blueprints/grades/routes.py - Grades Blueprint
JSON endpoints for competency grade calculation, stored grades,
manual overrides and bimester management.
"""

from flask import Blueprint, jsonify, request

from services.exceptions import GradingError
from services.grade_service import grade_service
from services.periods import CURRENT_ALIAS

grades_bp = Blueprint('grades', __name__)


@grades_bp.errorhandler(GradingError)
def handle_grading_error(error):
    """Domain errors carry their own status code"""
    return jsonify(error.to_dict()), error.status_code


def _missing_field(name):
    return jsonify({
        'success': False,
        'error': f'{name} is required',
        'error_code': 'MISSING_FIELD'
    }), 400


def _json_body():
    return request.get_json(silent=True) or {}


# ═══════════════════════════════════════════════════════════
# STORED GRADES
# ═══════════════════════════════════════════════════════════

@grades_bp.route('/student/<int:student_id>', methods=['GET'])
def get_student_grades(student_id):
    """Stored grades of one student for a period (default: current)"""
    period = request.args.get('period', CURRENT_ALIAS)
    grades = grade_service.get_student_grades(student_id, period)
    return jsonify({'success': True, 'student_id': student_id, 'grades': grades})


@grades_bp.route('/classroom/<int:classroom_id>', methods=['GET'])
def get_classroom_grades(classroom_id):
    """Stored grades of a whole classroom for a period"""
    period = request.args.get('period', CURRENT_ALIAS)
    grades = grade_service.get_classroom_grades(classroom_id, period)
    return jsonify({'success': True, 'classroom_id': classroom_id, 'grades': grades})


# ═══════════════════════════════════════════════════════════
# CALCULATION
# ═══════════════════════════════════════════════════════════

@grades_bp.route('/calculate/student/<int:student_id>', methods=['POST'])
def calculate_student_grades(student_id):
    """
    Calculate one student's grades.
    Body: {"classroom_id": 1, "period": "2025-B2"}
    """
    data = _json_body()
    classroom_id = data.get('classroom_id')
    if not classroom_id:
        return _missing_field('classroom_id')

    results = grade_service.calculate_for_student(
        classroom_id,
        student_id,
        data.get('period') or CURRENT_ALIAS
    )

    return jsonify({
        'success': True,
        'student_id': student_id,
        'grades': results
    })


@grades_bp.route('/calculate/classroom/<int:classroom_id>', methods=['POST'])
def recalculate_classroom_grades(classroom_id):
    """
    Recalculate every student of a classroom.
    Body: {"period": "2025-B2"}
    """
    data = _json_body()
    results = grade_service.recalculate_for_classroom(
        classroom_id,
        data.get('period') or CURRENT_ALIAS
    )

    return jsonify({
        'success': True,
        'classroom_id': classroom_id,
        'students_processed': len(results),
        'results': results
    })


# ═══════════════════════════════════════════════════════════
# MANUAL OVERRIDE
# ═══════════════════════════════════════════════════════════

@grades_bp.route('/<int:grade_id>/manual', methods=['PUT'])
def set_manual_grade(grade_id):
    """
    Manual override.
    Body: {"manual_score": 73, "manual_note": "revisado"}
    """
    data = _json_body()
    if data.get('manual_score') is None:
        return _missing_field('manual_score')

    result = grade_service.set_manual_grade(
        grade_id,
        data['manual_score'],
        data.get('manual_note')
    )
    return jsonify(result)


@grades_bp.route('/<int:grade_id>/manual', methods=['DELETE'])
def clear_manual_grade(grade_id):
    """Remove the override and restore the calculated grade"""
    result = grade_service.clear_manual_grade(grade_id)
    return jsonify(result)


# ═══════════════════════════════════════════════════════════
# BIMESTER MANAGEMENT
# ═══════════════════════════════════════════════════════════

@grades_bp.route('/bimesters/<int:classroom_id>', methods=['GET'])
def get_bimester_status(classroom_id):
    year = request.args.get('year', type=int)
    status = grade_service.get_period_status(classroom_id, year)
    return jsonify({'success': True, **status})


@grades_bp.route('/bimesters/<int:classroom_id>/current', methods=['PUT'])
def set_current_bimester(classroom_id):
    data = _json_body()
    if not data.get('period'):
        return _missing_field('period')

    result = grade_service.set_current_period(classroom_id, data['period'])
    return jsonify({'success': True, **result})


@grades_bp.route('/bimesters/<int:classroom_id>/close', methods=['POST'])
def close_bimester(classroom_id):
    data = _json_body()
    if not data.get('period'):
        return _missing_field('period')

    result = grade_service.close_period(classroom_id, data['period'], closed_by=data.get('closed_by'))
    return jsonify({'success': True, **result})


@grades_bp.route('/bimesters/<int:classroom_id>/reopen', methods=['POST'])
def reopen_bimester(classroom_id):
    data = _json_body()
    if not data.get('period'):
        return _missing_field('period')

    result = grade_service.reopen_period(classroom_id, data['period'])
    return jsonify({'success': True, **result})
