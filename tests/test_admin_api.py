from creditbank import db
from creditbank.models import Student

NEW_STUDENT = {
    'roll_number': 'COMP3001',
    'password': 'student1',
    'first_name': 'Kiran',
    'last_name': 'Patil',
    'degree': 'BTech',
    'branch': 'COMP',
    'semester': 5,
}


def _error_code(response):
    return response.get_json()['error']['code']


def test_create_and_list_students(client, make_admin, admin_headers):
    headers = admin_headers(make_admin(role='student_affairs'))

    created = client.post('/admin/students', json=NEW_STUDENT, headers=headers)
    assert created.status_code == 201
    assert created.get_json()['data']['semester'] == 5

    listing = client.get('/admin/students?branch=COMP', headers=headers)
    data = listing.get_json()['data']
    assert [s['roll_number'] for s in data['students']] == ['COMP3001']
    assert data['stats'] == {'total': 1, 'active': 1}


def test_create_student_duplicate_roll(client, make_admin, admin_headers):
    headers = admin_headers(make_admin())
    client.post('/admin/students', json=NEW_STUDENT, headers=headers)

    response = client.post('/admin/students', json=NEW_STUDENT, headers=headers)

    assert response.status_code == 409


def test_report_viewer_cannot_create_students(client, make_admin, admin_headers):
    response = client.post('/admin/students', json=NEW_STUDENT, headers=admin_headers(make_admin(role='report_viewer')))

    assert response.status_code == 403
    assert _error_code(response) == 'ACCESS_DENIED'


def test_update_student(client, make_student, make_admin, admin_headers):
    student_id = make_student(semester=3)
    headers = admin_headers(make_admin(role='department_admin'))

    response = client.put(
        f'/admin/students/{student_id}', json={'semester': 4, 'last_name': 'Rao-Kale'}, headers=headers
    )

    assert response.status_code == 200
    data = response.get_json()['data']
    assert data['semester'] == 4
    assert data['full_name'] == 'Asha Rao-Kale'


def test_soft_delete_deactivates_and_revokes_tokens(
        app, client, make_student, make_admin, admin_headers, student_headers):
    student_id = make_student()
    student_auth = student_headers(student_id)

    response = client.delete(f'/admin/students/{student_id}', headers=admin_headers(make_admin(role='student_affairs')))
    assert response.status_code == 200

    with app.app_context():
        assert db.session.get(Student, student_id).is_active is False
    assert client.get('/auth/check', headers=student_auth).status_code == 401


def test_hard_delete_requires_university_admin(app, client, make_student, make_admin, admin_headers):
    student_id = make_student()

    denied = client.delete(
        f'/admin/students/{student_id}?hard=true', headers=admin_headers(make_admin(role='department_admin'))
    )
    assert denied.status_code == 403

    allowed = client.delete(f'/admin/students/{student_id}?hard=true', headers=admin_headers(make_admin()))
    assert allowed.status_code == 200
    with app.app_context():
        assert db.session.get(Student, student_id) is None


def test_manage_admin_users(client, make_admin, admin_headers):
    admin_id = make_admin()
    headers = admin_headers(admin_id)

    created = client.post('/admin/users', json={
        'username': 'coord',
        'email': 'coord@example.edu',
        'password': 'coordinator1',
        'first_name': 'Neha',
        'last_name': 'Joshi',
        'role': 'academic_coordinator',
    }, headers=headers)
    assert created.status_code == 201
    new_id = created.get_json()['data']['id']

    updated = client.patch(f'/admin/users/{new_id}', json={'role': 'report_viewer', 'is_active': False}, headers=headers)
    assert updated.status_code == 200
    assert updated.get_json()['data']['role']['role_code'] == 'report_viewer'
    assert updated.get_json()['data']['is_active'] is False

    listing = client.get('/admin/users', headers=headers).get_json()['data']
    assert {a['username'] for a in listing['admins']} == {'admin1', 'coord'}
    assert len(listing['roles']) == 5


def test_admin_cannot_deactivate_self(client, make_admin, admin_headers):
    admin_id = make_admin()

    response = client.patch(f'/admin/users/{admin_id}', json={'is_active': False}, headers=admin_headers(admin_id))

    assert response.status_code == 400


def test_manage_admins_permission_required(client, make_admin, admin_headers):
    response = client.get('/admin/users', headers=admin_headers(make_admin(role='department_admin')))

    assert response.status_code == 403


def test_program_structure_edit_invalidates_cache(client, make_admin, make_student, admin_headers, student_headers):
    admin = admin_headers(make_admin(role='academic_coordinator'))
    student = student_headers(make_student())

    before = client.get('/program-structure/recommended/PCC/3', headers=student)
    assert before.get_json()['data']['recommended_credits'] == 9

    response = client.put('/admin/program-structure', json={
        'vertical': 'PCC', 'basket': 'PCC', 'semester': 3, 'recommended_credits': 10,
    }, headers=admin)
    assert response.status_code == 200

    after = client.get('/program-structure/recommended/PCC/3', headers=student)
    assert after.get_json()['data']['recommended_credits'] == 10


def test_program_structure_rejects_negative_credits(client, make_admin, admin_headers):
    response = client.put('/admin/program-structure', json={
        'vertical': 'PCC', 'basket': 'PCC', 'semester': 3, 'recommended_credits': -1,
    }, headers=admin_headers(make_admin()))

    assert response.status_code == 400


def test_create_vertical_and_basket(client, make_admin, admin_headers):
    headers = admin_headers(make_admin(role='academic_coordinator'))

    vertical = client.post('/admin/verticals', json={'code': 'hss', 'name': 'Humanities'}, headers=headers)
    assert vertical.status_code == 201
    assert vertical.get_json()['data']['code'] == 'HSS'

    basket = client.post('/admin/baskets', json={'code': 'HSS1', 'name': 'Humanities I', 'vertical': 'HSS'}, headers=headers)
    assert basket.status_code == 201
    assert basket.get_json()['data']['vertical'] == 'HSS'

    duplicate = client.post('/admin/verticals', json={'code': 'HSS', 'name': 'Again'}, headers=headers)
    assert duplicate.status_code == 409


def test_department_admin_cannot_edit_curriculum(client, make_admin, admin_headers):
    response = client.post(
        '/admin/verticals', json={'code': 'HSS', 'name': 'Humanities'},
        headers=admin_headers(make_admin(role='department_admin')),
    )

    assert response.status_code == 403


def test_stats(client, make_admin, make_student, make_course, admin_headers, student_headers):
    student_id = make_student(semester=3)
    course_id = make_course(semester=3, credits=4)
    make_course(semester=1, credits=3, vertical='BSC')
    client.post(f'/students/{student_id}/completed-courses', json={'course_id': course_id},
                headers=student_headers(student_id))

    response = client.get('/admin/stats', headers=admin_headers(make_admin(role='report_viewer')))

    assert response.status_code == 200
    data = response.get_json()['data']
    assert data['overview'] == {
        'total_students': 1,
        'active_students': 1,
        'total_courses': 2,
        'active_courses': 2,
        'total_completions': 1,
    }
    assert data['recent_activity']['average_credits'] == 4
    assert data['recent_activity']['course_by_semester'] == {'1': 1, '3': 1}


def test_student_passwords_must_be_strings(client, make_student, make_admin, admin_headers):
    headers = admin_headers(make_admin())
    student_id = make_student()

    created = client.post('/admin/students', json={**NEW_STUDENT, 'password': 12345678}, headers=headers)
    assert created.status_code == 400
    assert _error_code(created) == 'VALIDATION_ERROR'

    updated = client.put(f'/admin/students/{student_id}', json={'password': 12345678}, headers=headers)
    assert updated.status_code == 400
    assert _error_code(updated) == 'VALIDATION_ERROR'


def test_admin_user_password_must_be_string(client, make_admin, admin_headers):
    response = client.post('/admin/users', json={
        'username': 'coord',
        'email': 'coord@example.edu',
        'password': 123456789,
        'first_name': 'Neha',
        'last_name': 'Joshi',
        'role': 'academic_coordinator',
    }, headers=admin_headers(make_admin()))

    assert response.status_code == 400


def test_update_student_is_active_must_be_boolean(app, client, make_student, make_admin, admin_headers):
    student_id = make_student()
    headers = admin_headers(make_admin())

    response = client.put(f'/admin/students/{student_id}', json={'is_active': 'false'}, headers=headers)
    assert response.status_code == 400
    with app.app_context():
        assert db.session.get(Student, student_id).is_active is True

    response = client.put(f'/admin/students/{student_id}', json={'is_active': False}, headers=headers)
    assert response.status_code == 200
    assert response.get_json()['data']['is_active'] is False


def test_program_structure_credits_must_be_whole(client, make_admin, admin_headers):
    headers = admin_headers(make_admin())

    for value in (2.5, True, 'many'):
        response = client.put('/admin/program-structure', json={
            'vertical': 'PCC', 'basket': 'PCC', 'semester': 3, 'recommended_credits': value,
        }, headers=headers)
        assert response.status_code == 400


def test_reports_overview(client, make_admin, admin_headers):
    response = client.get('/admin/reports', headers=admin_headers(make_admin(role='report_viewer')))

    assert response.status_code == 200
    data = response.get_json()['data']
    assert data['type'] == 'overview'
    assert [r['type'] for r in data['available_reports']] == ['student-progress', 'course-analytics']


def test_student_progress_report(client, make_admin, make_student, make_course, admin_headers, student_headers):
    leader = make_student(semester=4)
    trailing = make_student(semester=4)
    idle = make_student(semester=1)
    make_student(semester=4, is_active=False)
    big = make_course(semester=3, credits=4)
    small = make_course(semester=1, credits=3, vertical='BSC')
    for course_id in (big, small):
        client.post(f'/students/{leader}/completed-courses', json={'course_id': course_id},
                    headers=student_headers(leader))
    client.post(f'/students/{trailing}/completed-courses', json={'course_id': small},
                headers=student_headers(trailing))

    response = client.get('/admin/reports?type=student-progress',
                          headers=admin_headers(make_admin(role='report_viewer')))

    assert response.status_code == 200
    data = response.get_json()['data']
    assert data['type'] == 'student_progress'
    assert [(s['id'], s['credits_earned']) for s in data['students']] == [(leader, 7), (trailing, 3), (idle, 0)]
    assert data['students'][0]['courses_completed'] == 2
    assert data['summary'] == {'total_students': 3, 'average_credits': 3.33}


def test_course_analytics_report(client, make_admin, make_course, admin_headers):
    make_course(semester=3, credits=4)
    make_course(semester=3, credits=2)
    make_course(semester=1, credits=3, vertical='BSC')
    make_course(semester=1, credits=5, vertical='BSC', is_active=False)

    response = client.get('/admin/reports?type=course-analytics',
                          headers=admin_headers(make_admin(role='report_viewer')))

    data = response.get_json()['data']
    assert data['type'] == 'course_analytics'
    assert data['analytics'] == [
        {'semester': 1, 'course_count': 1, 'total_credits': 3},
        {'semester': 3, 'course_count': 2, 'total_credits': 6},
    ]
    assert data['summary'] == {'total_courses': 4, 'active_courses': 3, 'total_credits_offered': 9}


def test_reports_reject_unknown_type(client, make_admin, admin_headers):
    response = client.get('/admin/reports?type=enrollment-stats', headers=admin_headers(make_admin()))

    assert response.status_code == 400
    assert _error_code(response) == 'VALIDATION_ERROR'


def test_reports_need_view_reports(client, make_student, student_headers, make_admin, admin_headers):
    assert client.get('/admin/reports', headers=student_headers(make_student())).status_code == 403

    with_permission = client.get('/admin/reports', headers=admin_headers(make_admin(role='student_affairs')))
    assert with_permission.status_code == 200
