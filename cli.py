"""
cli.py - Flask CLI commands for batch grading jobs

Usage:
    flask grades recalculate 3 --period 2025-B2
    flask grades status 3 --year 2025
    flask grades close-period 3 2025-B2 --closed-by admin
    flask grades reopen-period 3 2025-B2
"""

import json

import click
from flask.cli import AppGroup

from services.exceptions import GradingError
from services.grade_service import grade_service
from services.periods import CURRENT_ALIAS

grades_cli = AppGroup('grades', help='Competency grade calculation and bimester management.')


def _run(func, *args, **kwargs):
    """Call a service function, turning domain errors into CLI errors"""
    try:
        return func(*args, **kwargs)
    except GradingError as e:
        raise click.ClickException(e.message)


@grades_cli.command('recalculate')
@click.argument('classroom_id', type=int)
@click.option('--period', default=CURRENT_ALIAS, show_default=True, help='Bimester, e.g. 2025-B2')
def recalculate(classroom_id, period):
    """Recalculate every student of a classroom."""
    results = _run(grade_service.recalculate_for_classroom, classroom_id, period)

    for entry in results:
        labels = ', '.join(
            f"{g['competency_name'] or g['competency_id']}={g['grade_label']} ({g['score']:.2f})"
            for g in entry['grades']
        )
        click.echo(f"Student {entry['student_id']}: {labels or 'no grades'}")
    click.echo(f"✅ {len(results)} students processed")


@grades_cli.command('status')
@click.argument('classroom_id', type=int)
@click.option('--year', type=int, default=None, help='Year to list (default: current bimester year)')
def status(classroom_id, year):
    """Show bimester status of a classroom as JSON."""
    result = _run(grade_service.get_period_status, classroom_id, year)
    click.echo(json.dumps(result, indent=2))


@grades_cli.command('close-period')
@click.argument('classroom_id', type=int)
@click.argument('period')
@click.option('--closed-by', default=None, help='Who closes the bimester')
def close_period(classroom_id, period, closed_by):
    """Close a bimester."""
    result = _run(grade_service.close_period, classroom_id, period, closed_by=closed_by)
    click.echo(f"🔒 Closed {result['closed_period']}; current bimester is {result['new_current_bimester']}")


@grades_cli.command('reopen-period')
@click.argument('classroom_id', type=int)
@click.argument('period')
def reopen_period(classroom_id, period):
    """Reopen a closed bimester."""
    result = _run(grade_service.reopen_period, classroom_id, period)
    click.echo(f"🔓 Reopened {result['reopened_period']}")


def register_commands(app):
    """Attach CLI command groups to the app"""
    app.cli.add_command(grades_cli)
