"""
共用 fixtures

每個測試都有獨立的 app (記憶體 SQLite) 與上傳目錄
"""
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from flask_jwt_extended import create_access_token

from app import create_app
from models import Role, User, db, hash_password


@pytest.fixture
def app(tmp_path):
    app = create_app('testing')
    app.config.update(UPLOAD_FOLDER=str(tmp_path / 'uploads'))

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def auth_headers(token):
    return {'Authorization': f'Bearer {token}'}


def future_iso(days=7):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


@pytest.fixture
def make_user(app):
    """直接寫入資料庫建立使用者, 回傳 id / email / password / token / headers"""

    def _make_user(name='Test User', email=None, password='password123',
                   role=Role.MEMBER.value, is_active=True):
        with app.app_context():
            user = User(
                name=name,
                email=email or f'user-{uuid.uuid4().hex[:8]}@example.com',
                password_hash=hash_password(password),
                role=role,
                is_active=is_active
            )
            db.session.add(user)
            db.session.commit()
            token = create_access_token(identity=user.id)
            return SimpleNamespace(
                id=user.id,
                email=user.email,
                password=password,
                token=token,
                headers=auth_headers(token)
            )

    return _make_user


@pytest.fixture
def admin(make_user):
    return make_user(name='Admin User', role=Role.ADMIN.value)


@pytest.fixture
def owner(make_user):
    return make_user(name='Project Owner')


@pytest.fixture
def member(make_user):
    return make_user(name='Project Member')


@pytest.fixture
def outsider(make_user):
    return make_user(name='Unrelated User')


@pytest.fixture
def create_project(client):
    """透過 API 建立專案"""

    def _create_project(creator, members=(), name='Test Project',
                        description='A project used in tests'):
        response = client.post('/projects', json={
            'name': name,
            'description': description,
            'members': [m.id for m in members]
        }, headers=creator.headers)
        assert response.status_code == 201, response.get_json()
        return response.get_json()['data']

    return _create_project


@pytest.fixture
def create_task(client):
    """透過 API 建立任務"""

    def _create_task(reporter, project_id, assignee, **overrides):
        payload = {
            'title': 'Write tests',
            'description': 'Cover the task endpoints',
            'due_date': future_iso(),
            'assignee': assignee.id,
            'project': project_id
        }
        payload.update(overrides)
        response = client.post('/tasks', json=payload, headers=reporter.headers)
        assert response.status_code == 201, response.get_json()
        return response.get_json()['data']

    return _create_task
