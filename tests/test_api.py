"""
End-to-end tests for the JSON API using the Flask test client.
"""

import io
import json
import os
import threading
from unittest.mock import patch

from round_capture import SUBMISSION_FAILED_MESSAGE

FIELDS = {
    'state': 'NSW',
    'site_code': 'S01',
    'site_name': 'Central Station',
    'guard_name': 'Guard One',
    'employee_code': 'E100',
}


def scan_all_corners(client):
    for corner in range(1, 5):
        response = client.post('/api/capture/corners', json={'payload': f'CP-{corner}', 'corner': corner})
        assert response.status_code == 200


def upload_photo(client, data, **coordinates):
    form = {'photo': (io.BytesIO(data), 'selfie.png')}
    form.update(coordinates)
    return client.post('/api/capture/photo', data=form, content_type='multipart/form-data')


def next_frame(frames):
    frame = next(frames)
    return frame.decode('utf-8') if isinstance(frame, bytes) else frame


def complete_capture(client, png_bytes):
    scan_all_corners(client)
    assert upload_photo(client, png_bytes, latitude='-33.8688', longitude='151.2093').status_code == 200
    assert client.put('/api/capture/fields', json=FIELDS).status_code == 200


class TestAuthentication:

    def test_register_assigns_default_role(self, client, access_control):
        response = client.post('/api/register', json={
            'full_name': 'Jane Doe',
            'email': 'Jane@Example.com',
            'username': 'jane',
            'password': 'correct horse'
        })

        assert response.status_code == 201
        user = response.get_json()['user']
        assert user['role'] == 'security_guard'
        assert user['email'] == 'jane@example.com'
        assert access_control.get_role(user['id']).value == 'security_guard'

    def test_register_validation_and_duplicates(self, client, make_user):
        make_user('jane')

        response = client.post('/api/register', json={'username': 'x', 'password': 'short'})
        assert response.status_code == 400
        assert len(response.get_json()['errors']) == 3

        response = client.post('/api/register', json={
            'full_name': 'Jane Again', 'email': 'other@example.com', 'username': 'JANE', 'password': 'password123'
        })
        assert response.status_code == 409

    def test_login_logout_cycle(self, client, make_user):
        make_user('guard_one')

        assert client.post('/api/login', json={'username': 'guard_one', 'password': 'wrong'}).status_code == 401

        response = client.post('/api/login', json={'username': 'GUARD_ONE', 'password': 'password123'})
        assert response.status_code == 200
        assert client.get('/api/me').get_json()['user']['username'] == 'guard_one'

        assert client.post('/api/logout').status_code == 200
        assert client.get('/api/me').status_code == 401

    def test_protected_routes_require_login(self, client):
        assert client.get('/api/capture').status_code == 401
        assert client.post('/api/capture/submit').status_code == 401
        assert client.get('/api/rounds').status_code == 401
        assert client.get('/api/users').status_code == 401


class TestCaptureApi:

    def test_full_capture_and_submit(self, flask_app, client, make_user, login, png_bytes, db):
        import app as app_module

        guard = make_user('guard_one')
        login(guard)
        complete_capture(client, png_bytes)

        state = client.get('/api/capture').get_json()['capture']
        assert state['corners_scanned'] == 4
        assert state['coordinates'] == {'lat': -33.8688, 'lng': 151.2093}

        response = client.post('/api/capture/submit')

        assert response.status_code == 201
        body = response.get_json()
        assert body['round']['location'] == 'NSW - Central Station'
        assert body['round']['employee_id'] == 'E100'
        assert body['round']['completion']['is_complete'] is True
        assert body['capture']['corners_scanned'] == 0

        stored = db.session.get(app_module.SecurityRound, body['round']['id'])
        assert stored.user_id == guard.id
        assert flask_app.photo_storage.resolve(stored.photo_url) is not None

        photo = client.get(f"/api/rounds/{stored.id}/photo")
        assert photo.status_code == 200
        assert photo.data == png_bytes

    def test_sanitized_values_read_back_unchanged(self, client, make_user, login, png_bytes):
        login(make_user('guard_one'))
        complete_capture(client, png_bytes)
        client.put('/api/capture/fields', json={'guard_name': 'guard "O\'Brien" <b>'})

        created = client.post('/api/capture/submit').get_json()['round']
        read_back = client.get(f"/api/rounds/{created['id']}").get_json()['round']

        assert created['guard_name'] == 'guard OBrien b'
        assert read_back['guard_name'] == 'guard OBrien b'

    def test_incomplete_submit_lists_every_problem(self, client, make_user, login, db):
        import app as app_module

        login(make_user('guard_one'))
        client.post('/api/capture/corners', json={'payload': 'CP-1'})

        response = client.post('/api/capture/submit')

        assert response.status_code == 400
        errors = response.get_json()['errors']
        assert 'Selfie photo is required' in errors
        assert 'Valid QR code scan is required for corner 2' in errors
        assert db.session.query(app_module.SecurityRound).count() == 0
        assert client.get('/api/capture').get_json()['capture']['corners_scanned'] == 1

    def test_store_failure_keeps_capture_and_removes_photo(self, flask_app, client, make_user, login, png_bytes):
        guard = make_user('guard_one')
        login(guard)
        complete_capture(client, png_bytes)
        owner_folder = os.path.join(flask_app.config['UPLOAD_FOLDER'], str(guard.id))
        photos_before = set(os.listdir(owner_folder)) if os.path.isdir(owner_folder) else set()

        with patch.object(flask_app.access_control, 'insert_round', side_effect=RuntimeError('disk full')):
            response = client.post('/api/capture/submit')

        assert response.status_code == 500
        assert response.get_json()['message'] == SUBMISSION_FAILED_MESSAGE
        assert client.get('/api/capture').get_json()['capture']['corners_scanned'] == 4

        assert set(os.listdir(owner_folder)) == photos_before

    def test_fields_update_sets_state(self, client, make_user, login):
        login(make_user('guard_one'))

        response = client.put('/api/capture/fields', json=FIELDS)

        assert response.status_code == 200
        assert response.get_json()['capture']['fields'] == FIELDS

    def test_concurrent_submits_store_one_round(self, flask_app, client, make_user, login, png_bytes, db):
        import app as app_module

        guard = make_user('guard_one')
        login(guard)
        complete_capture(client, png_bytes)
        second_client = flask_app.test_client()
        with second_client.session_transaction() as sess:
            sess['user_id'] = guard.id
            sess['username'] = guard.username

        entered, release = threading.Event(), threading.Event()
        original_save = flask_app.photo_storage.save

        def slow_save(*args):
            entered.set()
            release.wait(5)
            return original_save(*args)

        responses = []
        with patch.object(flask_app.photo_storage, 'save', side_effect=slow_save):
            first = threading.Thread(target=lambda: responses.append(client.post('/api/capture/submit')))
            first.start()
            try:
                assert entered.wait(5)
                second = second_client.post('/api/capture/submit')
            finally:
                release.set()
                first.join(5)

        assert second.status_code == 409
        assert [response.status_code for response in responses] == [201]
        assert db.session.query(app_module.SecurityRound).count() == 1
        assert client.get('/api/capture').get_json()['capture']['corners_scanned'] == 0

    def test_harmful_qr_payload_is_refused(self, client, make_user, login):
        login(make_user('guard_one'))

        response = client.post('/api/capture/corners', json={'payload': 'javascript:alert(1)'})

        assert response.status_code == 400
        assert response.get_json()['capture']['corners'] == [None, None, None, None]

    def test_scan_rate_limit(self, client, make_user, login):
        login(make_user('guard_one'))
        statuses = [
            client.post('/api/capture/corners', json={'payload': f'CP-{i}', 'corner': 1}).status_code
            for i in range(11)
        ]
        assert statuses[:10] == [200] * 10
        assert statuses[10] == 429

    def test_select_corner_and_reset(self, client, make_user, login):
        login(make_user('guard_one'))

        assert client.post('/api/capture/corners/3/select').get_json()['capture']['active_corner'] == 3
        assert client.post('/api/capture/corners/9/select').status_code == 400

        client.post('/api/capture/corners', json={'payload': 'CP-3'})
        response = client.delete('/api/capture')
        assert response.get_json()['capture']['corners_scanned'] == 0

    def test_photo_upload_validation(self, client, make_user, login, png_bytes):
        login(make_user('guard_one'))

        response = upload_photo(client, b'not an image')
        assert response.status_code == 400

        response = upload_photo(client, png_bytes, latitude='123', longitude='10')
        assert response.status_code == 200
        assert response.get_json()['capture']['coordinates'] is None
        assert 'invalid' in response.get_json()['warning']

        response = upload_photo(client, png_bytes)
        assert response.get_json()['warning'] == 'GPS coordinates unavailable'

    def test_unknown_field_is_refused(self, client, make_user, login):
        login(make_user('guard_one'))
        response = client.put('/api/capture/fields', json={'site_address': 'x'})
        assert response.status_code == 400


class TestRoundsApi:

    def test_visibility_by_role_and_location(self, client, make_user, make_round, login):
        guard = make_user('guard_one')
        other = make_user('guard_two')
        manager = make_user('site_manager', role='manager', locations=['NSW - Central Station'])
        own = make_round(guard, location='NSW - Central Station')
        make_round(other, location='VIC - Flinders Street')

        login(guard)
        assert [r['id'] for r in client.get('/api/rounds').get_json()['rounds']] == [own.id]

        login(manager)
        assert [r['id'] for r in client.get('/api/rounds').get_json()['rounds']] == [own.id]

        login(other)
        assert client.get(f'/api/rounds/{own.id}').status_code == 404
        assert client.get(f'/api/rounds/{own.id}/photo').status_code == 404

    def test_filter_validation(self, client, make_user, login):
        login(make_user('boss', role='admin'))
        assert client.get('/api/rounds?date_from=10/06/2024').status_code == 400
        assert client.get('/api/rounds?completion=partial').status_code == 400
        assert client.get('/api/rounds?date_from=2024-06-01&completion=complete').status_code == 200

    def test_owner_updates_and_deletes(self, client, make_user, make_round, login):
        guard = make_user('guard_one')
        manager = make_user('site_manager', role='manager')
        security_round = make_round(guard)

        login(manager)
        assert client.patch(f'/api/rounds/{security_round.id}', json={'guard_name': 'X'}).status_code == 403
        assert client.delete(f'/api/rounds/{security_round.id}').status_code == 403

        login(guard)
        response = client.patch(f'/api/rounds/{security_round.id}', json={'guard_name': 'Guard 1'})
        assert response.status_code == 200
        assert response.get_json()['round']['guard_name'] == 'Guard 1'
        assert client.patch(f'/api/rounds/{security_round.id}', json={'user_id': manager.id}).status_code == 400

        assert client.delete(f'/api/rounds/{security_round.id}').status_code == 200
        assert client.get(f'/api/rounds/{security_round.id}').status_code == 404

    def test_stream_is_event_stream(self, client, make_user, login):
        login(make_user('guard_one'))
        response = client.get('/api/rounds/stream', buffered=False)
        assert response.status_code == 200
        assert response.mimetype == 'text/event-stream'
        response.close()

    def test_stream_follows_scope_changes_while_open(self, client, access_control, make_user, make_round, login):
        admin = make_user('boss', role='admin')
        manager = make_user('site_manager', role='manager')
        guard = make_user('guard_one')
        login(manager)

        response = client.get('/api/rounds/stream', buffered=False)
        frames = iter(response.response)
        assert next_frame(frames) == ': connected\n\n'

        assert access_control.set_location_access(admin.id, manager.id, ['Site A']) is True
        make_round(guard, location='Site B')
        make_round(guard, location='Site A')

        frame = next_frame(frames)
        response.close()

        assert frame.startswith('data: ')
        assert json.loads(frame[len('data: '):])['round']['location'] == 'Site A'


class TestRoleManagementApi:

    def test_admin_changes_other_role(self, client, make_user, login):
        admin = make_user('boss', role='admin')
        guard = make_user('guard_one')
        login(admin)

        response = client.post(f'/api/users/{guard.id}/role', json={'role': 'manager'})

        assert response.status_code == 200
        assert response.get_json()['user']['role'] == 'manager'

    def test_self_change_is_refused(self, client, make_user, login):
        admin = make_user('boss', role='admin')
        login(admin)

        response = client.post(f'/api/users/{admin.id}/role', json={'role': 'security_guard'})

        assert response.status_code == 403
        assert response.get_json()['message'] == 'Cannot modify own role'
        assert client.get('/api/roles/me').get_json()['role'] == 'admin'

    def test_manager_cannot_change_roles(self, client, make_user, login):
        manager = make_user('site_manager', role='manager')
        guard = make_user('guard_one')
        login(manager)

        response = client.post(f'/api/users/{guard.id}/role', json={'role': 'admin'})
        assert response.status_code == 403
        assert response.get_json()['message'] == 'Admin privileges required'

    def test_invalid_role_unknown_user_and_stale_version(self, client, make_user, login):
        admin = make_user('boss', role='admin')
        guard = make_user('guard_one')
        login(admin)

        assert client.post(f'/api/users/{guard.id}/role', json={'role': 'owner'}).status_code == 400
        assert client.post('/api/users/9999/role', json={'role': 'manager'}).status_code == 404
        response = client.post(f'/api/users/{guard.id}/role', json={'role': 'manager', 'expected_version': 99})
        assert response.status_code == 409

    def test_admin_creates_user_with_role(self, client, make_user, login):
        login(make_user('boss', role='admin'))

        response = client.post('/api/users', json={
            'full_name': 'New Manager', 'email': 'nm@example.com', 'username': 'new_manager',
            'password': 'password123', 'role': 'manager'
        })

        assert response.status_code == 201
        assert response.get_json()['user']['role'] == 'manager'
        usernames = [u['username'] for u in client.get('/api/users').get_json()['users']]
        assert 'new_manager' in usernames

    def test_location_access_and_audit(self, client, make_user, login):
        admin = make_user('boss', role='admin')
        manager = make_user('site_manager', role='manager')
        login(admin)

        response = client.post(f'/api/users/{manager.id}/location-access', json={'locations': ['NSW - Central Station']})
        assert response.status_code == 200
        assert response.get_json()['user']['location_access'] == ['NSW - Central Station']

        entries = client.get('/api/audit/roles').get_json()['entries']
        assert entries[0]['target_user'] == manager.id

        login(manager)
        assert client.get('/api/audit/roles').status_code == 403
        assert client.get('/api/users').status_code == 403

    def test_role_permissions(self, client, make_user, login):
        login(make_user('guard_one'))
        body = client.get('/api/roles/permissions').get_json()
        assert set(body['valid_roles']) == {'security_guard', 'manager', 'admin'}
        assert client.get('/api/roles/me').get_json()['role'] == 'security_guard'


class TestMaintenanceApi:

    def test_cleanup_is_admin_only(self, client, make_user, make_round, login):
        import datetime as dt

        guard = make_user('guard_one')
        make_round(guard, created_at=dt.datetime.utcnow() - dt.timedelta(days=10))

        login(guard)
        assert client.post('/api/maintenance/cleanup').status_code == 403

        login(make_user('boss', role='admin'))
        response = client.post('/api/maintenance/cleanup')
        assert response.status_code == 200
        assert response.get_json()['deleted_count'] == 1
