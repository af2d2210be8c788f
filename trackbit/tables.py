"""
Table descriptors for the Trackbit schema (see db.SCHEMA_SQL).
"""

from .entity_schema import ColumnDef, TableDescriptor

HABIT_TYPES = ('simple', 'complex', 'negative', 'timed')


def _id():
    return ColumnDef('id', 'integer', server_managed=True)


def _created_at():
    return ColumnDef('created_at', 'timestamp', server_managed=True)


USERS = TableDescriptor(
    name='users',
    columns=(
        ColumnDef('id', 'text'),
        ColumnDef('role', 'text', has_default=True),
        ColumnDef('name', 'text'),
        ColumnDef('email', 'text'),
        ColumnDef('email_verified', 'boolean', has_default=True),
        ColumnDef('image', 'text', nullable=True),
        ColumnDef('password_hash', 'text'),
        _created_at(),
        ColumnDef('updated_at', 'timestamp', server_managed=True),
    ),
    primary_key=('id',),
)

AUTH_SESSIONS = TableDescriptor(
    name='auth_sessions',
    columns=(
        ColumnDef('token', 'text'),
        ColumnDef('user_id', 'text'),
        ColumnDef('expires_at', 'timestamp'),
        _created_at(),
    ),
    primary_key=('token',),
    owner_column='user_id',
    relations=(('user', 'users.id'),),
)

INVITES = TableDescriptor(
    name='invites',
    columns=(
        _id(),
        ColumnDef('code', 'text'),
        ColumnDef('email', 'text', nullable=True),
        ColumnDef('invited_by', 'text', nullable=True),
        ColumnDef('role', 'text', has_default=True),
        ColumnDef('max_uses', 'integer', has_default=True),
        ColumnDef('uses', 'integer', has_default=True),
        ColumnDef('expires_at', 'timestamp', nullable=True),
        _created_at(),
        ColumnDef('consumed_at', 'timestamp', nullable=True),
    ),
    primary_key=('id',),
    relations=(('inviter', 'users.id'),),
)

APP_LIMITS = TableDescriptor(
    name='app_limits',
    columns=(
        _id(),
        ColumnDef('role', 'text'),
        ColumnDef('max_habits', 'integer', nullable=True, has_default=True),
        ColumnDef('max_custom_exercises', 'integer', nullable=True, has_default=True),
        ColumnDef('allowed_habit_types', 'json', nullable=True, has_default=True),
    ),
    primary_key=('id',),
)

HABITS = TableDescriptor(
    name='habits',
    columns=(
        _id(),
        ColumnDef('user_id', 'text'),
        ColumnDef('name', 'text'),
        ColumnDef('description', 'text', nullable=True),
        ColumnDef('type', 'enum', has_default=True, enum=HABIT_TYPES),
        ColumnDef('color_stops', 'json', has_default=True),
        ColumnDef('icon', 'text', has_default=True),
        ColumnDef('weekly_goal', 'integer', has_default=True),
        ColumnDef('daily_goal', 'integer', has_default=True),
        _created_at(),
    ),
    primary_key=('id',),
    owner_column='user_id',
    relations=(('user', 'users.id'), ('day_logs', 'day_logs.habit_id')),
)

DAY_LOGS = TableDescriptor(
    name='day_logs',
    columns=(
        ColumnDef('habit_id', 'integer'),
        ColumnDef('date', 'date'),
        ColumnDef('rating', 'integer', nullable=True),
        ColumnDef('notes', 'text', nullable=True),
        _created_at(),
    ),
    primary_key=('habit_id', 'date'),
    relations=(('habit', 'habits.id'),),
)

EXERCISES = TableDescriptor(
    name='exercises',
    columns=(
        _id(),
        # NULL owner: system default visible to everyone
        ColumnDef('user_id', 'text', nullable=True),
        ColumnDef('name', 'text'),
        ColumnDef('category', 'text', has_default=True),
        ColumnDef('description', 'text', nullable=True),
        ColumnDef('default_weight_unit', 'text', nullable=True, has_default=True),
        ColumnDef('default_distance_unit', 'text', nullable=True, has_default=True),
        _created_at(),
    ),
    primary_key=('id',),
    owner_column='user_id',
    relations=(('muscle_groups', 'exercise_muscle_groups.exercise_id'),),
)

MUSCLE_GROUPS = TableDescriptor(
    name='muscle_groups',
    columns=(
        _id(),
        ColumnDef('name', 'text'),
        ColumnDef('description', 'text', nullable=True),
    ),
    primary_key=('id',),
)

EXERCISE_MUSCLE_GROUPS = TableDescriptor(
    name='exercise_muscle_groups',
    columns=(
        ColumnDef('exercise_id', 'integer'),
        ColumnDef('muscle_group_id', 'integer'),
    ),
    primary_key=('exercise_id', 'muscle_group_id'),
    relations=(('exercise', 'exercises.id'), ('muscle_group', 'muscle_groups.id')),
)

EXERCISE_SESSIONS = TableDescriptor(
    name='exercise_sessions',
    columns=(
        _id(),
        ColumnDef('habit_id', 'integer'),
        ColumnDef('date', 'date'),
        _created_at(),
    ),
    primary_key=('id',),
    relations=(('day_log', 'day_logs.habit_id,date'),),
)

EXERCISE_LOGS = TableDescriptor(
    name='exercise_logs',
    columns=(
        _id(),
        ColumnDef('exercise_id', 'integer'),
        ColumnDef('session_id', 'integer'),
        _created_at(),
        ColumnDef('distance', 'real', nullable=True),
        ColumnDef('duration', 'integer', nullable=True),     # seconds
        ColumnDef('distance_unit', 'text', nullable=True, has_default=True),
        ColumnDef('weight_unit', 'text', nullable=True, has_default=True),
    ),
    primary_key=('id',),
    relations=(('session', 'exercise_sessions.id'), ('exercise', 'exercises.id')),
)

EXERCISE_PERFORMANCES = TableDescriptor(
    name='exercise_performances',
    columns=(
        _id(),
        ColumnDef('exercise_log_id', 'integer'),
        ColumnDef('number', 'integer', has_default=True),
        ColumnDef('reps', 'integer', nullable=True),
        ColumnDef('weight', 'real', nullable=True),
        ColumnDef('duration_ms', 'integer', nullable=True),
        ColumnDef('distance', 'real', nullable=True),
        ColumnDef('rpe', 'integer', nullable=True),
        _created_at(),
    ),
    primary_key=('id',),
    relations=(('exercise_log', 'exercise_logs.id'),),
)
