from creditbank.credits import precomputed_basket_credits, recompute_basket_credits

COURSE = {
    'title': 'Data Structures',
    'type': 'Theory',
    'credits': 4,
    'semester': 3,
    'degree': 'BTech',
    'branch': 'INFT',
    'vertical': 'PCC',
    'basket': 'PCC',
}


def _error_code(response):
    return response.get_json()['error']['code']


def test_course_code_is_generated(client, make_admin, admin_headers):
    headers = admin_headers(make_admin(role='academic_coordinator'))

    first = client.post('/courses', json=COURSE, headers=headers)
    second = client.post('/courses', json={**COURSE, 'title': 'Algorithms'}, headers=headers)

    assert first.status_code == 201
    assert first.get_json()['data']['course_code'] == 'INFT3PCC01'
    assert second.get_json()['data']['course_code'] == 'INFT3PCC02'


def test_explicit_duplicate_course_code(client, make_admin, admin_headers):
    headers = admin_headers(make_admin())
    client.post('/courses', json={**COURSE, 'course_code': 'it301'}, headers=headers)

    response = client.post('/courses', json={**COURSE, 'course_code': 'IT301'}, headers=headers)

    assert response.status_code == 409
    assert _error_code(response) == 'DUPLICATE_COURSE'


def test_course_validation(client, make_admin, admin_headers):
    headers = admin_headers(make_admin())

    assert client.post('/courses', json={**COURSE, 'credits': 0}, headers=headers).status_code == 400
    assert client.post('/courses', json={**COURSE, 'semester': 9}, headers=headers).status_code == 400
    assert client.post('/courses', json={**COURSE, 'type': 'Seminar'}, headers=headers).status_code == 400
    assert client.post('/courses', json={**COURSE, 'basket': 'BSC'}, headers=headers).status_code == 400
    assert client.post('/courses', json={**COURSE, 'title': ''}, headers=headers).status_code == 400


def test_course_writes_need_manage_courses(client, make_admin, make_student, admin_headers, student_headers):
    viewer = client.post('/courses', json=COURSE, headers=admin_headers(make_admin(role='report_viewer')))
    assert viewer.status_code == 403
    assert _error_code(viewer) == 'ACCESS_DENIED'

    student = client.post('/courses', json=COURSE, headers=student_headers(make_student()))
    assert student.status_code == 403
    assert _error_code(student) == 'WRONG_IDENTITY_TYPE'


def test_update_course(client, make_admin, make_course, admin_headers):
    course_id = make_course(semester=3, credits=4)

    response = client.put(f'/courses/{course_id}', json={
        'credits': 3, 'vertical': 'BSC', 'basket': 'BSC',
    }, headers=admin_headers(make_admin()))

    assert response.status_code == 200
    data = response.get_json()['data']
    assert data['credits'] == 3
    assert data['vertical'] == 'BSC'
    assert data['semester'] == 3


def test_delete_course_deactivates(client, make_admin, make_course, make_student, admin_headers, student_headers):
    course_id = make_course(semester=1)
    student = student_headers(make_student())

    response = client.delete(f'/courses/{course_id}', headers=admin_headers(make_admin()))
    assert response.status_code == 200

    listing = client.get('/courses', headers=student).get_json()['data']
    assert listing['total_count'] == 0
    assert client.get(f'/courses/{course_id}', headers=student).get_json()['data']['is_active'] is False


def test_list_courses_filters_and_completed_flag(client, make_course, make_student, student_headers):
    student_id = make_student(semester=3)
    headers = student_headers(student_id)
    done = make_course(semester=3, credits=4)
    open_course = make_course(semester=3, credits=2, course_type='Practical')
    make_course(semester=1, vertical='BSC')
    client.post(f'/students/{student_id}/completed-courses', json={'course_id': done}, headers=headers)

    data = client.get('/courses?semester=3', headers=headers).get_json()['data']

    flags = {c['id']: c['completed'] for c in data['courses']}
    assert flags == {done: True, open_course: False}

    practical = client.get('/courses?type=Practical', headers=headers).get_json()['data']
    assert [c['id'] for c in practical['courses']] == [open_course]

    by_vertical = client.get('/courses?vertical=bsc', headers=headers).get_json()['data']
    assert by_vertical['total_count'] == 1


def test_list_courses_pagination(client, make_course, make_admin, admin_headers):
    for _ in range(5):
        make_course(semester=2, vertical='ESC')
    headers = admin_headers(make_admin(role='report_viewer'))

    data = client.get('/courses?page=2&page_size=2', headers=headers).get_json()['data']

    assert data['total_count'] == 5
    assert data['total_pages'] == 3
    assert len(data['courses']) == 2
    assert data['has_next_page'] is True
    assert data['has_previous_page'] is True
    assert 'completed' not in data['courses'][0]


def test_basket_credits_aggregate_matches_recompute(app, client, make_course, make_student, student_headers):
    make_course(semester=3, credits=4, vertical='PCC')
    make_course(semester=4, credits=3, vertical='PCC')
    make_course(semester=1, credits=3, vertical='BSC')
    make_course(semester=3, credits=5, vertical='PCC', is_active=False)
    headers = student_headers(make_student())

    response = client.get('/basket-credits', headers=headers)

    data = response.get_json()['data']
    assert data['source'] == 'aggregate'
    assert data['baskets'] == [
        {'vertical': 'BSC', 'basket': 'BSC', 'total_credits': 3},
        {'vertical': 'PCC', 'basket': 'PCC', 'total_credits': 7},
    ]
    assert data['total_credits'] == 10

    with app.app_context():
        assert precomputed_basket_credits() == recompute_basket_credits({})


def test_basket_credits_filtered(client, make_course, make_student, student_headers):
    make_course(semester=3, credits=4, vertical='PCC')
    make_course(semester=4, credits=3, vertical='PCC')
    make_course(semester=3, credits=2, vertical='MDM')
    headers = student_headers(make_student())

    data = client.get('/basket-credits?semester=3&vertical=PCC', headers=headers).get_json()['data']

    assert data['source'] == 'filtered'
    assert data['filters'] == {'semester': 3, 'vertical': 'PCC'}
    assert data['baskets'] == [{'vertical': 'PCC', 'basket': 'PCC', 'total_credits': 4}]


def test_program_structure_overview(client, make_student, student_headers):
    data = client.get('/program-structure', headers=student_headers(make_student())).get_json()['data']

    assert data['source'] == 'database'
    assert len(data['verticals']) == 16
    assert data['vertical_totals']['PCC'] == 45
    # BSC 6 + ESC 6 + VSEC 3 + AEC 3 + VEC 3
    assert data['semester_totals']['1'] == 21


def test_recommended_credits(client, make_student, student_headers):
    headers = student_headers(make_student())

    def recommended(path):
        return client.get(path, headers=headers)

    assert recommended('/program-structure/recommended/PCC/3').get_json()['data']['recommended_credits'] == 9
    assert recommended('/program-structure/recommended/pcc/3?basket=PCC').get_json()['data']['recommended_credits'] == 9
    assert recommended('/program-structure/recommended/PCC/3?basket=BSC').get_json()['data']['recommended_credits'] == 0
    assert recommended('/program-structure/recommended/RM/1').get_json()['data']['recommended_credits'] == 0
    assert recommended('/program-structure/recommended/PCC/9').status_code == 400


def test_course_numbers_must_be_whole(client, make_admin, admin_headers):
    headers = admin_headers(make_admin())

    for credits in (2.9, True, 'four'):
        response = client.post('/courses', json={**COURSE, 'credits': credits}, headers=headers)
        assert response.status_code == 400
        assert _error_code(response) == 'VALIDATION_ERROR'
    assert client.post('/courses', json={**COURSE, 'semester': 3.5}, headers=headers).status_code == 400

    accepted = client.post('/courses', json={**COURSE, 'credits': '3'}, headers=headers)
    assert accepted.status_code == 201
    assert accepted.get_json()['data']['credits'] == 3


def test_update_course_is_active_must_be_boolean(client, make_admin, make_course, admin_headers):
    headers = admin_headers(make_admin())
    course_id = make_course()

    response = client.put(f'/courses/{course_id}', json={'is_active': 'false'}, headers=headers)
    assert response.status_code == 400
    assert client.get(f'/courses/{course_id}', headers=headers).get_json()['data']['is_active'] is True

    response = client.put(f'/courses/{course_id}', json={'is_active': False}, headers=headers)
    assert response.get_json()['data']['is_active'] is False
