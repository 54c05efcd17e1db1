from datetime import datetime, timedelta, timezone

from sqlmodel import Session

from coursehub import models
from coursehub.database import engine


def _skills(research, writing, design, technical):
    return {'skills': [
        {'name': 'Research', 'rating': research},
        {'name': 'Writing & Editing', 'rating': writing},
        {'name': 'Visual Design', 'rating': design},
        {'name': 'Technical / Implementation', 'rating': technical},
    ]}


def _class_with_students(client, make_user, ratings):
    prof, prof_headers = make_user('professor', name='Prof Ada')
    created = client.post('/classes', json={'name': 'Software Studio'}, headers=prof_headers)
    assert created.status_code == 200
    cls = created.json()['class']
    students = []
    for r in ratings:
        student, headers = make_user('student')
        if r is not None:
            s = client.post('/survey', json=_skills(*r), headers=headers)
            assert s.status_code == 200
        joined = client.post('/classes/join', json={'code': cls['code'].lower()}, headers=headers)
        assert joined.status_code == 200, joined.text
        students.append((student, headers))
    project = client.post(f"/classes/{cls['id']}/projects", json={'name': 'Capstone'}, headers=prof_headers)
    assert project.status_code == 200
    return cls, project.json()['project'], prof_headers, students


def test_professor_creates_class_with_join_code(client, make_user):
    _, headers = make_user('professor')
    r = client.post('/classes', json={'name': 'Databases'}, headers=headers)
    assert r.status_code == 200
    cls = r.json()['class']
    assert len(cls['code']) == 6
    assert set(cls['code']) <= set('ABCDEFGHJKMNPQRSTUVWXYZ23456789')
    listed = client.get('/classes', headers=headers).json()['classes']
    assert cls['id'] in [c['id'] for c in listed]


def test_students_cannot_create_classes(client, make_user):
    _, headers = make_user('student')
    r = client.post('/classes', json={'name': 'Nope'}, headers=headers)
    assert r.status_code == 403


def test_join_code_preview_and_duplicate_join(client, make_user):
    cls, _, _, students = _class_with_students(client, make_user, [None])
    _, headers = students[0]
    preview = client.get('/classes/join', params={'code': f"  {cls['code']} "}, headers=headers)
    assert preview.status_code == 200
    body = preview.json()['class']
    assert body['professor_name'] == 'Prof Ada'
    assert body['already_member'] is True
    assert body['member_count'] == 2
    again = client.post('/classes/join', json={'code': cls['code']}, headers=headers)
    assert again.status_code == 400


def test_unknown_and_expired_codes(client, make_user):
    _, headers = make_user('student')
    assert client.post('/classes/join', json={'code': 'ZZZZZZ'}, headers=headers).status_code == 404
    prof, _ = make_user('professor')
    with Session(engine) as session:
        session.add(models.ClassRoom(
            name='Old', code='OLD234', professor_id=prof['id'],
            join_code_expires_at=datetime.now(timezone.utc) - timedelta(days=1),
        ))
        session.commit()
    r = client.post('/classes/join', json={'code': 'old234'}, headers=headers)
    assert r.status_code == 400
    assert 'expired' in r.json()['detail']


def test_survey_round_trip(client, make_user):
    _, headers = make_user('student')
    assert client.get('/survey', headers=headers).status_code == 404
    client.post('/survey', json={'skills': [{'name': 'Research', 'rating': 4}]}, headers=headers)
    client.post('/survey', json=_skills(1, 2, 3, 4), headers=headers)
    ratings = client.get('/survey', headers=headers).json()['ratings']
    assert (ratings['research_rating'], ratings['technical_rating']) == (1, 4)
    bad = client.post('/survey', json={'skills': [{'name': 'Research', 'rating': 9}]}, headers=headers)
    assert bad.status_code == 422


def test_automatic_grouping_balances_by_score(client, make_user):
    ratings = [(5, 5, 5, 5), (5, 5, 5, 3), (5, 5, 5, 1), (5, 5, 4, 0), (3, 3, 3, 3), None]
    cls, project, prof_headers, students = _class_with_students(client, make_user, ratings)
    ids = [s['id'] for s, _ in students]
    url = f"/classes/{cls['id']}/projects/{project['id']}/groups"
    r = client.post(url, json={'mode': 'automatic', 'group_size': 2}, headers=prof_headers)
    assert r.status_code == 200, r.text
    groups = r.json()['groups']
    assert [g['name'] for g in groups] == ['Group A', 'Group B', 'Group C']
    # scores 20, 18, 16, 14, 12, 0 dealt round-robin over three groups
    assert [[m['id'] for m in g['members']] for g in groups] == [
        [ids[0], ids[3]], [ids[1], ids[4]], [ids[2], ids[5]],
    ]
    _, student_headers = students[0]
    listed = client.get(url, headers=student_headers)
    assert listed.status_code == 200
    assert listed.json()['groups'] == groups


def test_manual_grouping_filters_and_replaces(client, make_user):
    cls, project, prof_headers, students = _class_with_students(client, make_user, [None, None])
    ids = [s['id'] for s, _ in students]
    url = f"/classes/{cls['id']}/projects/{project['id']}/groups"
    client.post(url, json={'mode': 'auto'}, headers=prof_headers)
    payload = {'mode': 'manual', 'groups': [
        {'name': 'Red', 'member_ids': [ids[0], 999999]},
        {'name': 'Blue', 'member_ids': [999998]},
    ]}
    r = client.post(url, json=payload, headers=prof_headers)
    assert r.status_code == 200
    groups = r.json()['groups']
    assert [g['name'] for g in groups] == ['Red']
    assert [m['id'] for m in groups[0]['members']] == [ids[0]]
    assert client.get(url, headers=prof_headers).json()['groups'] == groups


def test_rejected_grouping_keeps_existing_groups(client, make_user):
    cls, project, prof_headers, _ = _class_with_students(client, make_user, [None, None, None])
    url = f"/classes/{cls['id']}/projects/{project['id']}/groups"
    before = client.post(url, json={'mode': 'automatic'}, headers=prof_headers).json()['groups']
    bad = client.post(url, json={'mode': 'manual', 'groups': [{'name': 'X', 'member_ids': [123456789]}]},
                      headers=prof_headers)
    assert bad.status_code == 400
    assert client.post(url, json={'mode': 'shuffle'}, headers=prof_headers).status_code == 400
    assert client.get(url, headers=prof_headers).json()['groups'] == before


def test_grouping_requires_students_and_ownership(client, make_user):
    cls, project, prof_headers, students = _class_with_students(client, make_user, [])
    url = f"/classes/{cls['id']}/projects/{project['id']}/groups"
    empty = client.post(url, json={'mode': 'automatic', 'group_size': 3}, headers=prof_headers)
    assert empty.status_code == 400
    _, other_prof = make_user('professor')
    assert client.post(url, json={'mode': 'automatic'}, headers=other_prof).status_code == 403
    missing = f"/classes/{cls['id']}/projects/987654/groups"
    assert client.post(missing, json={'mode': 'automatic'}, headers=prof_headers).status_code == 404


def test_grouping_is_recorded_in_activity(client, make_user):
    cls, project, prof_headers, _ = _class_with_students(client, make_user, [None, None])
    url = f"/classes/{cls['id']}/projects/{project['id']}/groups"
    client.post(url, json={'mode': 'automatic'}, headers=prof_headers)
    r = client.get('/activity', params={'project_id': project['id']}, headers=prof_headers)
    assert r.status_code == 200
    entries = r.json()['activity']
    assert entries[0]['action_type'] == 'groups_formed'
    assert entries[0]['user_name'] == 'Prof Ada'


def test_group_listing_shape(client, make_user):
    cls, project, prof_headers, students = _class_with_students(client, make_user, [None, None])
    url = f"/classes/{cls['id']}/projects/{project['id']}/groups"
    client.post(url, json={'mode': 'automatic', 'group_size': 2}, headers=prof_headers)
    groups = client.get(url, headers=students[0][1]).json()['groups']
    assert len(groups) == 1
    assert set(groups[0]) == {'id', 'name', 'members'}
    member = groups[0]['members'][0]
    assert set(member) == {'id', 'display_name', 'email'}
    assert member['display_name'] == member['email']


def test_member_logs_group_activity(client, make_user):
    cls, project, prof_headers, students = _class_with_students(client, make_user, [None, None, None, None])
    url = f"/classes/{cls['id']}/projects/{project['id']}/groups"
    groups = client.post(url, json={'mode': 'automatic', 'group_size': 2}, headers=prof_headers).json()['groups']
    first, second = groups[0]['id'], groups[1]['id']
    _, headers = students[0]

    body = {'project_id': project['id'], 'group_id': first, 'action_type': 'task_completed',
            'entity_id': '17', 'entity_title': 'Draft outline'}
    r = client.post('/activity', json=body, headers=headers)
    assert r.status_code == 200
    logged = r.json()
    assert logged['success'] is True
    assert logged['activity']['group_id'] == first
    assert logged['activity']['entity_title'] == 'Draft outline'

    feed = client.get('/activity', params={'project_id': project['id'], 'group_id': first}, headers=headers)
    assert [e['action_type'] for e in feed.json()['activity']] == ['task_completed']
    other = client.get('/activity', params={'project_id': project['id'], 'group_id': second}, headers=headers)
    assert other.json()['activity'] == []


def test_activity_log_rejects_bad_requests(client, make_user):
    cls, project, prof_headers, students = _class_with_students(client, make_user, [None, None])
    url = f"/classes/{cls['id']}/projects/{project['id']}/groups"
    group = client.post(url, json={'mode': 'automatic'}, headers=prof_headers).json()['groups'][0]
    _, headers = students[0]
    body = {'project_id': project['id'], 'group_id': group['id'], 'action_type': 'comment_added'}

    missing = {k: v for k, v in body.items() if k != 'group_id'}
    assert client.post('/activity', json=missing, headers=headers).status_code == 422
    assert client.post('/activity', json={**body, 'action_type': '  '}, headers=headers).status_code == 400
    assert client.post('/activity', json={**body, 'group_id': 987654}, headers=headers).status_code == 404
    assert client.post('/activity', json={**body, 'project_id': 987654}, headers=headers).status_code == 404
    _, outsider = make_user('student')
    assert client.post('/activity', json=body, headers=outsider).status_code == 403
    assert client.post('/activity', json=body).status_code in (401, 403)


def test_zero_group_size_uses_configured_default(client, make_user, monkeypatch):
    from coursehub.config import settings
    monkeypatch.setattr(settings, 'DEFAULT_GROUP_SIZE', 4)
    cls, project, prof_headers, _ = _class_with_students(client, make_user, [None] * 8)
    url = f"/classes/{cls['id']}/projects/{project['id']}/groups"
    r = client.post(url, json={'mode': 'automatic', 'group_size': 0}, headers=prof_headers)
    assert r.status_code == 200
    assert [len(g['members']) for g in r.json()['groups']] == [4, 4]
