"""
專案 API 測試: 權限範圍 / 成員管理 / 反向參照 / 串聯刪除
"""
import io
import os

from conftest import future_iso


def my_project_ids(client, user):
    me = client.get('/auth/me', headers=user.headers).get_json()['data']['user']
    return [project['id'] for project in me['projects']]


class TestCreateProject:

    def test_create_links_creator_and_members(self, client, owner, member, create_project):
        project = create_project(owner, members=[member])

        assert project['created_by']['id'] == owner.id
        assert [m['id'] for m in project['members']] == [member.id]
        assert project['id'] in my_project_ids(client, owner)
        assert project['id'] in my_project_ids(client, member)

    def test_duplicate_member_ids_are_collapsed(self, client, owner, member, create_project):
        response = client.post('/projects', json={
            'name': 'Twice',
            'description': 'Same member listed twice',
            'members': [member.id, member.id]
        }, headers=owner.headers)

        assert response.status_code == 201
        assert len(response.get_json()['data']['members']) == 1

    def test_unknown_member_rolls_back(self, client, owner):
        response = client.post('/projects', json={
            'name': 'Broken',
            'description': 'Member does not exist',
            'members': ['b' * 24]
        }, headers=owner.headers)

        assert response.status_code == 404
        listing = client.get('/projects', headers=owner.headers).get_json()
        assert listing['count'] == 0
        assert my_project_ids(client, owner) == []

    def test_validation(self, client, owner):
        response = client.post('/projects', json={'name': 'x'}, headers=owner.headers)
        body = response.get_json()

        assert response.status_code == 400
        assert 'name' in body['errors']
        assert 'description' in body['errors']

    def test_requires_authentication(self, client):
        response = client.post('/projects', json={'name': 'Anon', 'description': 'No token'})
        assert response.status_code == 401


class TestVisibility:

    def test_list_is_scoped(self, client, admin, owner, member, outsider, create_project):
        create_project(owner, members=[member])
        create_project(owner, name='Private')

        assert client.get('/projects', headers=admin.headers).get_json()['count'] == 2
        assert client.get('/projects', headers=owner.headers).get_json()['count'] == 2
        assert client.get('/projects', headers=member.headers).get_json()['count'] == 1
        assert client.get('/projects', headers=outsider.headers).get_json()['count'] == 0

    def test_read_access(self, client, admin, owner, member, outsider, create_project):
        project = create_project(owner, members=[member])
        url = f'/projects/{project["id"]}'

        assert client.get(url, headers=admin.headers).status_code == 200
        assert client.get(url, headers=owner.headers).status_code == 200
        assert client.get(url, headers=member.headers).status_code == 200
        assert client.get(url, headers=outsider.headers).status_code == 403

    def test_missing_project_is_not_found(self, client, outsider):
        response = client.get(f'/projects/{"c" * 24}', headers=outsider.headers)

        assert response.status_code == 404
        assert response.get_json()['message'] == 'Project not found'

    def test_malformed_id(self, client, owner):
        response = client.get('/projects/123', headers=owner.headers)
        assert response.status_code == 400


class TestUpdateAndDelete:

    def test_member_cannot_update(self, client, owner, member, create_project):
        project = create_project(owner, members=[member])

        response = client.put(f'/projects/{project["id"]}', json={'name': 'Hijacked'},
                              headers=member.headers)

        assert response.status_code == 403

    def test_creator_updates(self, client, owner, create_project):
        project = create_project(owner)

        response = client.put(f'/projects/{project["id"]}', json={'name': 'Renamed'},
                              headers=owner.headers)

        assert response.status_code == 200
        assert response.get_json()['data']['name'] == 'Renamed'

    def test_members_cannot_be_changed_through_update(self, client, owner, member,
                                                       create_project):
        project = create_project(owner)

        response = client.put(f'/projects/{project["id"]}', json={'members': [member.id]},
                              headers=owner.headers)

        assert response.status_code == 400

    def test_delete_cascades(self, client, app, owner, member, create_project, create_task):
        project = create_project(owner, members=[member])
        task = create_task(owner, project['id'], member)
        upload = client.post(
            f'/tasks/{task["id"]}/attachments',
            data={'file': (io.BytesIO(b'notes'), 'notes.txt')},
            content_type='multipart/form-data',
            headers=member.headers
        )
        stored = upload.get_json()['data']['attachments'][0]['filename']
        stored_path = os.path.join(app.config['UPLOAD_FOLDER'], stored)
        assert os.path.exists(stored_path)

        response = client.delete(f'/projects/{project["id"]}', headers=owner.headers)

        assert response.status_code == 200
        assert client.get(f'/tasks/{task["id"]}', headers=owner.headers).status_code == 404
        assert my_project_ids(client, owner) == []
        assert my_project_ids(client, member) == []
        assert not os.path.exists(stored_path)

    def test_member_cannot_delete(self, client, owner, member, create_project):
        project = create_project(owner, members=[member])

        response = client.delete(f'/projects/{project["id"]}', headers=member.headers)

        assert response.status_code == 403

    def test_outsider_is_forbidden(self, client, owner, outsider, create_project):
        project = create_project(owner)
        url = f'/projects/{project["id"]}'

        assert client.get(url, headers=outsider.headers).status_code == 403
        assert client.put(url, json={'name': 'Taken Over'},
                          headers=outsider.headers).status_code == 403
        assert client.delete(url, headers=outsider.headers).status_code == 403

        detail = client.get(url, headers=owner.headers).get_json()
        assert detail['data']['name'] == project['name']

    def test_admin_updates_and_deletes(self, client, admin, owner, create_project):
        """Admin 不是成員也可以修改 / 刪除任何專案"""
        project = create_project(owner)
        url = f'/projects/{project["id"]}'

        response = client.put(url, json={'name': 'Admin Renamed'}, headers=admin.headers)

        assert response.status_code == 200
        assert response.get_json()['data']['name'] == 'Admin Renamed'

        response = client.delete(url, headers=admin.headers)

        assert response.status_code == 200
        assert client.get(url, headers=owner.headers).status_code == 404
        assert my_project_ids(client, owner) == []


class TestMembers:

    def test_add_member(self, client, owner, member, create_project):
        project = create_project(owner)

        response = client.post(f'/projects/{project["id"]}/members',
                               json={'user_id': member.id}, headers=owner.headers)

        assert response.status_code == 200
        assert member.id in [m['id'] for m in response.get_json()['data']['members']]
        assert project['id'] in my_project_ids(client, member)

    def test_add_existing_member_is_conflict(self, client, owner, member, create_project):
        project = create_project(owner, members=[member])

        response = client.post(f'/projects/{project["id"]}/members',
                               json={'user_id': member.id}, headers=owner.headers)

        assert response.status_code == 409

    def test_add_unknown_user(self, client, owner, create_project):
        project = create_project(owner)

        response = client.post(f'/projects/{project["id"]}/members',
                               json={'user_id': 'd' * 24}, headers=owner.headers)

        assert response.status_code == 404

    def test_member_cannot_manage_members(self, client, owner, member, outsider,
                                          create_project):
        project = create_project(owner, members=[member])

        response = client.post(f'/projects/{project["id"]}/members',
                               json={'user_id': outsider.id}, headers=member.headers)

        assert response.status_code == 403

    def test_remove_member_is_idempotent(self, client, owner, member, create_project):
        project = create_project(owner, members=[member])
        url = f'/projects/{project["id"]}/members/{member.id}'

        first = client.delete(url, headers=owner.headers)
        second = client.delete(url, headers=owner.headers)

        assert first.status_code == second.status_code == 200
        assert first.get_json()['data']['members'] == second.get_json()['data']['members'] == []
        assert project['id'] not in my_project_ids(client, member)

    def test_add_then_remove_restores_membership(self, client, owner, member, outsider,
                                                 create_project):
        project = create_project(owner, members=[member])
        base = f'/projects/{project["id"]}/members'

        client.post(base, json={'user_id': outsider.id}, headers=owner.headers)
        response = client.delete(f'{base}/{outsider.id}', headers=owner.headers)

        assert [m['id'] for m in response.get_json()['data']['members']] == [member.id]
        assert my_project_ids(client, outsider) == []

    def test_removing_creator_keeps_back_reference(self, client, owner, create_project):
        project = create_project(owner, members=[owner])

        response = client.delete(f'/projects/{project["id"]}/members/{owner.id}',
                                 headers=owner.headers)

        assert response.status_code == 200
        assert response.get_json()['data']['members'] == []
        assert project['id'] in my_project_ids(client, owner)
        assert client.get(f'/projects/{project["id"]}', headers=owner.headers).status_code == 200

    def test_list_members(self, client, owner, member, create_project):
        project = create_project(owner, members=[member])

        response = client.get(f'/projects/{project["id"]}/members', headers=member.headers)

        assert response.status_code == 200
        assert response.get_json()['count'] == 1


class TestStats:

    def test_stats(self, client, owner, member, create_project, create_task):
        project = create_project(owner, members=[member])
        first = create_task(owner, project['id'], member)
        create_task(owner, project['id'], member, due_date=future_iso(days=3))
        client.put(f'/tasks/{first["id"]}', json={'status': 'Completed'}, headers=member.headers)

        response = client.get(f'/projects/{project["id"]}/stats', headers=member.headers)
        data = response.get_json()['data']

        assert response.status_code == 200
        assert data['tasks']['total'] == 2
        assert data['tasks']['completed'] == 1
        assert data['tasks']['todo'] == 1
        assert data['tasks']['overdue'] == 0
        assert data['members'] == 1
        assert data['completion_rate'] == 50.0
