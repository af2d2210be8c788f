"""
Tests for /api/exercises and /api/muscle-groups.

Seeded system exercises (user_id NULL), in id order: Bench Press, Squat,
Deadlift, Pull Up, Plank, Running. Muscle group ids follow
trackbit.db.DEFAULT_MUSCLE_GROUPS (chest=1, back=2, shoulders=3, ...).
"""


SYSTEM_NAMES = ['Bench Press', 'Deadlift', 'Plank', 'Pull Up', 'Running', 'Squat']


def _create(client, name, **extra):
    return client.post('/api/exercises', json={'name': name, **extra})


# ═══════════════════════════════════════════════════════════════════════
# Exercise library
# ═══════════════════════════════════════════════════════════════════════

def test_list_system_exercises(alice_client):
    resp = alice_client.get('/api/exercises')
    assert resp.status_code == 200
    data = resp.json()
    assert [e['name'] for e in data] == SYSTEM_NAMES
    bench = data[0]
    assert bench['user_id'] is None
    assert bench['muscle_groups'] == [1, 3, 5]
    assert bench['last_performance'] is None
    assert 'created_at' not in bench


def test_create_custom_exercise(alice_client, bob_client):
    resp = _create(alice_client, 'Farmer Carry', category='strength', muscle_groups=[2, 10, 2])
    assert resp.status_code == 201
    data = resp.json()
    assert data['user_id'] == 'u-alice'
    assert data['muscle_groups'] == [2, 10]

    alice_names = [e['name'] for e in alice_client.get('/api/exercises').json()]
    assert alice_names == SYSTEM_NAMES + ['Farmer Carry']
    bob_names = [e['name'] for e in bob_client.get('/api/exercises').json()]
    assert bob_names == SYSTEM_NAMES


def test_get_exercise_visibility(alice_client, bob_client):
    exercise_id = _create(alice_client, 'Farmer Carry').json()['id']
    assert alice_client.get(f'/api/exercises/{exercise_id}').status_code == 200
    assert bob_client.get(f'/api/exercises/{exercise_id}').status_code == 404

    resp = bob_client.get('/api/exercises/1')
    assert resp.status_code == 200
    assert resp.json()['name'] == 'Bench Press'
    assert resp.json()['muscle_groups'] == [1, 3, 5]


def test_system_exercises_are_read_only(alice_client):
    assert alice_client.patch('/api/exercises/1', json={'name': 'Bench'}).status_code == 404
    assert alice_client.delete('/api/exercises/1').status_code == 404
    assert alice_client.get('/api/exercises/1').json()['name'] == 'Bench Press'


def test_update_muscle_groups(alice_client):
    exercise_id = _create(alice_client, 'Farmer Carry', muscle_groups=[2]).json()['id']
    resp = alice_client.patch(f'/api/exercises/{exercise_id}', json={'muscle_groups': [9, 10]})
    assert resp.status_code == 200
    assert resp.json()['muscle_groups'] == [9, 10]
    assert resp.json()['name'] == 'Farmer Carry'


def test_unknown_muscle_group(alice_client):
    resp = _create(alice_client, 'Farmer Carry', muscle_groups=[999])
    assert resp.status_code == 409
    assert resp.json()['errors'][0]['code'] == 'foreign_key_violation'
    # The insert was rolled back with the failed link
    names = [e['name'] for e in alice_client.get('/api/exercises').json()]
    assert 'Farmer Carry' not in names


def test_exercise_name_required(alice_client):
    resp = _create(alice_client, '  ')
    assert resp.status_code == 400
    assert resp.json()['errors'][0]['path'] == 'name'
    assert 'Exercise name is required' in resp.json()['errors'][0]['message']


def test_duplicate_custom_name(alice_client, bob_client):
    assert _create(alice_client, 'Farmer Carry').status_code == 201
    assert _create(alice_client, 'Farmer Carry').status_code == 409
    assert _create(bob_client, 'Farmer Carry').status_code == 201


def test_max_custom_exercises(alice_client):
    for i in range(5):
        assert _create(alice_client, f'Custom {i}').status_code == 201
    resp = _create(alice_client, 'Custom 5')
    assert resp.status_code == 400
    assert 'Custom exercise limit reached' in resp.json()['errors'][0]['message']


def test_delete_custom_exercise(alice_client):
    exercise_id = _create(alice_client, 'Farmer Carry', muscle_groups=[2]).json()['id']
    resp = alice_client.delete(f'/api/exercises/{exercise_id}')
    assert resp.json() == {'success': True, 'pk': {'id': exercise_id}}
    assert alice_client.get(f'/api/exercises/{exercise_id}').status_code == 404


def test_last_performance(alice_client, bob_client):
    session = alice_client.post('/api/tracker/exercise-sessions',
                                json={'habit_id': 2, 'date': '2024-03-01'}).json()
    alice_client.post('/api/tracker/exercise-logs', json={
        'session_id': session['id'], 'exercise_id': 2,
        'performances': [{'reps': 5, 'weight': 100}, {'reps': 5, 'weight': 105}],
    })
    squat = [e for e in alice_client.get('/api/exercises').json() if e['name'] == 'Squat'][0]
    assert squat['last_performance']['weight'] == 105
    assert squat['last_performance']['reps'] == 5

    bob_squat = [e for e in bob_client.get('/api/exercises').json() if e['name'] == 'Squat'][0]
    assert bob_squat['last_performance'] is None


# ═══════════════════════════════════════════════════════════════════════
# Muscle groups
# ═══════════════════════════════════════════════════════════════════════

def test_list_muscle_groups(alice_client):
    resp = alice_client.get('/api/muscle-groups')
    assert resp.status_code == 200
    assert len(resp.json()) == 10
    assert resp.json()[0] == {'id': 1, 'name': 'chest', 'description': None}


def test_duplicate_muscle_group(alice_client, bob_client):
    """Two creates with the same unique name: one 201, one 409."""
    first = alice_client.post('/api/muscle-groups', json={'name': 'forearms'})
    second = bob_client.post('/api/muscle-groups', json={'name': 'forearms'})
    assert first.status_code == 201
    assert second.status_code == 409
    assert second.json()['message'] == 'Conflict'
    assert second.json()['errors'][0]['path'] == 'name'


def test_muscle_group_name_required(alice_client):
    resp = alice_client.post('/api/muscle-groups', json={'name': ''})
    assert resp.status_code == 400
    assert 'Muscle group name is required' in resp.json()['errors'][0]['message']


def test_muscle_groups_require_session(anon_client):
    assert anon_client.get('/api/muscle-groups').status_code == 401
