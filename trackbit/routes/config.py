"""
UI configuration for the signed-in user, and role limit lookup.
"""

import sqlite3
from typing import Optional

from fastapi import APIRouter, Depends

from ..auth import Identity, require_identity
from ..crud_engine import CrudEngine
from ..db import get_db
from ..tables import APP_LIMITS

APP_NAME = 'Trackbit'

PRIMARY_NAV = [
    {'title': 'Dashboard', 'href': '/dashboard', 'icon': 'LayoutDashboard'},
    {'title': 'Habits', 'href': '/habits', 'icon': 'ListTodo'},
    {'title': 'Library', 'href': '/exercises', 'icon': 'Dumbbell'},
    {'title': 'Analytics', 'href': '/analytics', 'icon': 'BarChart3'},
]

ADMIN_NAV = {'title': 'Invites', 'href': '/admin/invites', 'icon': 'Shield'}

DASHBOARD_WIDGETS = ['Streak', 'WeeklyGoals', 'NegativeHabitsSummary']

router = APIRouter(dependencies=[Depends(require_identity)])


def role_limits(conn: sqlite3.Connection, role: str) -> Optional[dict]:
    """Return the app_limits row for a role, or None when the role is unlimited."""
    return CrudEngine(conn, APP_LIMITS).find_one({'role': role})


@router.get('/ui')
def api_ui_config(identity: Identity = Depends(require_identity),
                  conn: sqlite3.Connection = Depends(get_db)):
    limits = role_limits(conn, identity.role)
    nav = list(PRIMARY_NAV)
    if identity.is_admin:
        nav.append(ADMIN_NAV)
    return {
        'app_name': APP_NAME,
        'role': identity.role,
        'is_beta_user': limits is not None,
        'primary_nav': nav,
        'dashboard_widgets': DASHBOARD_WIDGETS,
        'limits': None if limits is None else {
            'max_habits': limits['max_habits'],
            'max_custom_exercises': limits['max_custom_exercises'],
            'allowed_habit_types': limits['allowed_habit_types'],
        },
    }
