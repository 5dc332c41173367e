"""
API tests for the /requests endpoints
"""
from portal.models import Borrowing, Request, Student, UserRole


class TestCreateRequestEndpoint:
    """POST /api/v1/requests/"""

    def test_camel_case_body_with_email_student_id(self, client, auth_headers, student, book):
        response = client.post('/api/v1/requests/', json={
            'type': 'borrow',
            'studentId': 'alice@university.edu',
            'bookId': book.id,
            'title': 'Borrow Clean Code'
        }, headers=auth_headers)

        assert response.status_code == 201
        data = response.json()
        assert data['message'] == 'Request created successfully'

    def test_snake_case_wins_over_camel_case(self, client, auth_headers, db_session, student, book):
        response = client.post('/api/v1/requests/', json={
            'type': 'borrow',
            'studentEmail': 'nobody@university.edu',
            'student_email': 'alice@university.edu',
            'bookId': book.id
        }, headers=auth_headers)

        assert response.status_code == 201
        request = db_session.query(Request).filter(Request.id == response.json()['id']).one()
        assert request.student_id == student.id

    def test_unknown_type_is_invalid_input(self, client, auth_headers, student):
        response = client.post('/api/v1/requests/', json={
            'type': 'spaceship',
            'studentId': student.id
        }, headers=auth_headers)

        assert response.status_code == 400
        body = response.json()
        assert body['code'] == 'INVALID_INPUT'
        assert body['details']['errors'][0]['field'] == 'type'

    def test_missing_payload_field_is_invalid_input(self, client, auth_headers, student):
        response = client.post('/api/v1/requests/', json={
            'type': 'enroll',
            'studentId': student.id
        }, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()['code'] == 'INVALID_INPUT'

    def test_non_object_body_is_invalid_input(self, client, auth_headers):
        response = client.post('/api/v1/requests/', json=['borrow'], headers=auth_headers)

        assert response.status_code == 400

    def test_student_cannot_file_for_someone_else(self, client, auth_headers, db_session, student, book, make_user):
        other = make_user(UserRole.STUDENT.value, email='bob@university.edu')
        other_student = db_session.query(Student).filter(Student.email == other.email).one()

        by_id = client.post('/api/v1/requests/', json={'type': 'borrow', 'studentId': other_student.id, 'bookId': book.id}, headers=auth_headers)
        by_email = client.post('/api/v1/requests/', json={'type': 'borrow', 'studentEmail': other.email, 'bookId': book.id}, headers=auth_headers)

        assert by_id.status_code == 403
        assert by_email.status_code == 403
        assert by_id.json()['code'] == 'FORBIDDEN'
        assert db_session.query(Request).count() == 0

    def test_omitted_student_defaults_to_caller(self, client, auth_headers, db_session, student, book):
        response = client.post('/api/v1/requests/', json={'type': 'borrow', 'bookId': book.id}, headers=auth_headers)

        assert response.status_code == 201
        request = db_session.query(Request).filter(Request.id == response.json()['id']).one()
        assert request.student_id == student.id

    def test_admin_may_file_for_any_student(self, client, admin_auth_headers, db_session, student, book):
        response = client.post('/api/v1/requests/', json={'type': 'borrow', 'studentId': student.id, 'bookId': book.id}, headers=admin_auth_headers)

        assert response.status_code == 201

    def test_requires_authentication(self, client, student, book):
        response = client.post('/api/v1/requests/', json={'type': 'borrow', 'studentId': student.id, 'bookId': book.id})

        assert response.status_code in (401, 403)


class TestDecideRequestEndpoint:
    """PUT /api/v1/requests/{id}/status"""

    def _submit(self, client, headers, **body):
        response = client.post('/api/v1/requests/', json=body, headers=headers)
        assert response.status_code == 201
        return response.json()['id']

    def test_approve_borrow(self, client, auth_headers, admin_auth_headers, db_session, student, book):
        request_id = self._submit(client, auth_headers, type='borrow', studentId=student.id, bookId=book.id)

        response = client.put(
            f'/api/v1/requests/{request_id}/status',
            json={'status': 'approved', 'adminNote': 'Enjoy'},
            headers=admin_auth_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data['status'] == 'approved'
        assert data['message'] == 'Request approved and removed from list'
        assert data['notification_sent'] is True
        assert db_session.query(Borrowing).count() == 1

    def test_second_approval_is_not_found(self, client, auth_headers, admin_auth_headers, student, book):
        request_id = self._submit(client, auth_headers, type='borrow', studentId=student.id, bookId=book.id)
        client.put(f'/api/v1/requests/{request_id}/status', json={'status': 'approved'}, headers=admin_auth_headers)

        response = client.put(f'/api/v1/requests/{request_id}/status', json={'status': 'approved'}, headers=admin_auth_headers)

        assert response.status_code == 404
        assert response.json() == {'detail': f'Request {request_id} not found', 'code': 'NOT_FOUND'}

    def test_unavailable_book_is_conflict(self, client, auth_headers, admin_auth_headers, db_session, student, book):
        book.available_copies = 0
        db_session.commit()
        request_id = self._submit(client, auth_headers, type='borrow', studentId=student.id, bookId=book.id)

        response = client.put(f'/api/v1/requests/{request_id}/status', json={'status': 'approved'}, headers=admin_auth_headers)

        assert response.status_code == 409
        assert response.json()['code'] == 'UNAVAILABLE'

    def test_unknown_course_is_unprocessable(self, client, auth_headers, admin_auth_headers, student):
        request_id = self._submit(client, auth_headers, type='enroll', studentId=student.id, courseCode='XX000')

        response = client.put(f'/api/v1/requests/{request_id}/status', json={'status': 'approved'}, headers=admin_auth_headers)

        assert response.status_code == 422
        assert response.json()['code'] == 'REFERENCE_NOT_FOUND'

    def test_students_cannot_decide(self, client, auth_headers, student):
        request_id = self._submit(client, auth_headers, type='hostel', studentId=student.id, title='Room change')

        response = client.put(f'/api/v1/requests/{request_id}/status', json={'status': 'approved'}, headers=auth_headers)

        assert response.status_code == 403


class TestListAndDeleteRequests:
    """Listing and deletion"""

    def test_list_pending_and_by_student(self, client, auth_headers, admin_auth_headers, student):
        client.post('/api/v1/requests/', json={'type': 'hostel', 'studentId': student.id, 'title': 'Room'}, headers=auth_headers)
        client.post('/api/v1/requests/', json={'type': 'other', 'studentEmail': student.email, 'title': 'ID card'}, headers=auth_headers)

        pending = client.get('/api/v1/requests/pending', headers=admin_auth_headers)
        by_id = client.get(f'/api/v1/requests/student/{student.id}', headers=auth_headers)
        by_email = client.get('/api/v1/requests/student/Alice@University.edu', headers=auth_headers)

        assert pending.status_code == 200
        assert len(pending.json()) == 2
        assert len(by_id.json()) == 2
        assert {r['title'] for r in by_email.json()} == {'Room', 'ID card'}

    def test_list_requires_admin(self, client, auth_headers):
        response = client.get('/api/v1/requests/', headers=auth_headers)

        assert response.status_code == 403

    def test_delete_request(self, client, auth_headers, admin_auth_headers, student):
        created = client.post('/api/v1/requests/', json={'type': 'hostel', 'studentId': student.id, 'title': 'Room'}, headers=auth_headers)
        request_id = created.json()['id']

        response = client.delete(f'/api/v1/requests/{request_id}', headers=admin_auth_headers)
        missing = client.delete(f'/api/v1/requests/{request_id}', headers=admin_auth_headers)

        assert response.status_code == 200
        assert missing.status_code == 404

    def test_student_cannot_list_someone_elses_requests(self, client, auth_headers, admin_auth_headers, db_session, make_user):
        other = make_user(UserRole.STUDENT.value, email='bob@university.edu')
        other_student = db_session.query(Student).filter(Student.email == other.email).one()
        client.post('/api/v1/requests/', json={'type': 'hostel', 'studentId': other_student.id, 'title': 'Room'}, headers=admin_auth_headers)

        by_id = client.get(f'/api/v1/requests/student/{other_student.id}', headers=auth_headers)
        by_email = client.get('/api/v1/requests/student/bob@university.edu', headers=auth_headers)
        as_admin = client.get(f'/api/v1/requests/student/{other_student.id}', headers=admin_auth_headers)

        assert by_id.status_code == 403
        assert by_email.status_code == 403
        assert [r['title'] for r in as_admin.json()] == ['Room']
