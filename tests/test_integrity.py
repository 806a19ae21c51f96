"""
反向參照維護測試 (直接操作 session)
"""
import pytest

from errors import ConflictError, DuplicateError, NotFoundError
from integrity import (
    add_member, link_new_project, release_deleted_user, remove_member, unlink_deleted_project
)
from models import Project, Task, User, db, hash_password, utcnow


@pytest.fixture
def session(app):
    with app.app_context():
        yield db.session


def make_user(session, name):
    user = User(
        name=name,
        email=f'{name.lower().replace(" ", ".")}@example.com',
        password_hash=hash_password('password123')
    )
    session.add(user)
    session.flush()
    return user


def make_project(session, creator, member_ids=()):
    project = Project(name='Linked Project', description='Integrity tests', created_by=creator.id)
    session.add(project)
    session.flush()
    link_new_project(project, member_ids)
    session.commit()
    return project


class TestLinking:

    def test_creator_and_members_get_back_reference(self, session):
        creator = make_user(session, 'Creator One')
        member = make_user(session, 'Member One')

        project = make_project(session, creator, [member.id, member.id])

        assert project.member_ids == [member.id]
        assert creator.project_ids == [project.id]
        assert member.project_ids == [project.id]

    def test_missing_member(self, session):
        creator = make_user(session, 'Creator One')
        project = Project(name='Broken', description='Missing member', created_by=creator.id)
        session.add(project)
        session.flush()

        with pytest.raises(NotFoundError):
            link_new_project(project, ['9' * 24])


class TestMembership:

    def test_add_member_both_sides(self, session):
        creator = make_user(session, 'Creator One')
        member = make_user(session, 'Member One')
        project = make_project(session, creator)

        add_member(project, member.id)
        session.commit()

        assert member in project.members
        assert project in member.projects

    def test_add_member_twice(self, session):
        creator = make_user(session, 'Creator One')
        member = make_user(session, 'Member One')
        project = make_project(session, creator, [member.id])

        with pytest.raises(DuplicateError):
            add_member(project, member.id)

    def test_remove_member_idempotent(self, session):
        creator = make_user(session, 'Creator One')
        member = make_user(session, 'Member One')
        project = make_project(session, creator, [member.id])

        remove_member(project, member.id)
        remove_member(project, member.id)
        session.commit()

        assert project.member_ids == []
        assert member.project_ids == []

    def test_remove_unknown_user_is_noop(self, session):
        creator = make_user(session, 'Creator One')
        project = make_project(session, creator)

        assert remove_member(project, '8' * 24) is None


class TestDeletion:

    def test_unlink_deleted_project(self, session):
        creator = make_user(session, 'Creator One')
        member = make_user(session, 'Member One')
        project = make_project(session, creator, [member.id])
        session.add(Task(
            title='Cascade me', description='Deleted with project', due_date=utcnow(),
            assignee_id=member.id, reporter_id=creator.id, project_id=project.id
        ))
        session.commit()

        unlink_deleted_project(project)
        session.delete(project)
        session.commit()

        assert Task.query.count() == 0
        assert creator.project_ids == []
        assert member.project_ids == []

    def test_release_blocks_owner(self, session):
        creator = make_user(session, 'Creator One')
        make_project(session, creator)

        with pytest.raises(ConflictError) as exc_info:
            release_deleted_user(creator)
        assert exc_info.value.errors == {'projects': 1, 'tasks': 0}

    def test_release_removes_membership(self, session):
        creator = make_user(session, 'Creator One')
        member = make_user(session, 'Member One')
        project = make_project(session, creator, [member.id])

        release_deleted_user(member)
        session.delete(member)
        session.commit()

        assert project.member_ids == []
        assert session.get(User, member.id) is None
