from datetime import timedelta

import click

from integrity import link_new_project
from models import (
    Attachment, Project, Role, Task, TaskComment, TaskPriority, TaskStatus, User, db,
    hash_password, project_members, user_projects, utcnow
)

# ============================================
# 範例資料
# ============================================

SAMPLE_USERS = [
    {'name': 'Admin User', 'email': 'admin@example.com', 'role': Role.ADMIN.value},
    {'name': 'Manager User', 'email': 'manager@example.com', 'role': Role.MANAGER.value},
    {'name': 'Member User', 'email': 'member@example.com', 'role': Role.MEMBER.value},
]

SAMPLE_PASSWORD = 'password123'

SAMPLE_PROJECTS = [
    {'name': 'Website Redesign', 'description': 'Refresh the marketing site layout and copy'},
    {'name': 'Mobile App', 'description': 'First release of the companion mobile app'},
]

SAMPLE_TASKS = [
    {'title': 'Draft wireframes', 'description': 'Wireframes for the landing page',
     'status': TaskStatus.IN_PROGRESS.value, 'priority': TaskPriority.HIGH.value},
    {'title': 'Set up CI pipeline', 'description': 'Build and test on every push',
     'status': TaskStatus.TODO.value, 'priority': TaskPriority.MEDIUM.value},
    {'title': 'Write release notes', 'description': 'Summarize changes for the first release',
     'status': TaskStatus.TODO.value, 'priority': TaskPriority.LOW.value},
    {'title': 'Review copy', 'description': 'Proofread all landing page text',
     'status': TaskStatus.COMPLETED.value, 'priority': TaskPriority.MEDIUM.value},
]


def clear_data():
    """依相依順序清空所有資料表"""
    for model in (TaskComment, Attachment, Task):
        model.query.delete()
    db.session.execute(project_members.delete())
    db.session.execute(user_projects.delete())
    Project.query.delete()
    User.query.delete()


def seed_data():
    """
    匯入範例資料

    第一個使用者 (Admin) 建立所有專案, 其餘使用者為成員;
    任務輪流指派給 Manager / Member
    """
    users = [
        User(password_hash=hash_password(SAMPLE_PASSWORD), **fields) for fields in SAMPLE_USERS
    ]
    db.session.add_all(users)
    db.session.flush()

    admin, manager, member = users
    projects = []
    for fields in SAMPLE_PROJECTS:
        project = Project(created_by=admin.id, **fields)
        db.session.add(project)
        db.session.flush()
        link_new_project(project, [manager.id, member.id])
        projects.append(project)

    due_date = utcnow() + timedelta(days=14)
    for index, fields in enumerate(SAMPLE_TASKS):
        db.session.add(Task(
            project_id=projects[index % len(projects)].id,
            assignee_id=manager.id if index % 2 == 0 else member.id,
            reporter_id=admin.id,
            due_date=due_date + timedelta(days=index),
            **fields
        ))

    return len(users), len(projects), len(SAMPLE_TASKS)


# ============================================
# CLI 指令
# ============================================

def register_commands(app):

    @app.cli.command('seed')
    @click.option('--destroy', is_flag=True, help='只清空資料, 不匯入範例')
    def seed(destroy):
        """匯入 (或清空) 範例資料"""
        clear_data()
        if destroy:
            db.session.commit()
            click.echo('Data destroyed')
            return

        users, projects, tasks = seed_data()
        db.session.commit()
        click.echo(f'Data imported: {users} users, {projects} projects, {tasks} tasks')
        click.echo(f'All sample accounts use the password "{SAMPLE_PASSWORD}"')

    @app.cli.command('show-db')
    def show_db():
        """印出資料庫內容"""
        click.echo('\n' + '=' * 60)
        click.echo('資料庫內容')
        click.echo('=' * 60)

        users = User.query.order_by(User.created_at).all()
        click.echo(f'\n【使用者】共 {len(users)} 筆:')
        for u in users:
            click.echo(f'  ID: {u.id}, Email: {u.email}, Name: {u.name}, Role: {u.role}')

        projects = Project.query.order_by(Project.created_at).all()
        click.echo(f'\n【專案】共 {len(projects)} 筆:')
        for p in projects:
            creator = p.creator.name if p.creator else p.created_by
            click.echo(f'  ID: {p.id}, Name: {p.name}, Created by: {creator}')
            for m in p.members:
                click.echo(f'    Member: {m.name} ({m.email})')

        tasks = Task.query.order_by(Task.created_at).all()
        click.echo(f'\n【任務】共 {len(tasks)} 筆:')
        for t in tasks:
            click.echo(f'  ID: {t.id}, Title: {t.title}, Status: {t.status}, Project: {t.project_id}')

        click.echo('\n' + '=' * 60)
