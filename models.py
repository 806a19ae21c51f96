import hashlib
import re
import secrets
from datetime import datetime, timedelta, timezone
from enum import Enum

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import attribute_keyed_dict

from extensions import bcrypt

db = SQLAlchemy()

# ============================================
# 共用: 識別碼 / 時間 / 列舉
# ============================================

OBJECT_ID_PATTERN = re.compile(r'^[0-9a-fA-F]{24}$')


def new_object_id():
    """24 個 hex 字元的文件識別碼"""
    return secrets.token_hex(12)


def is_object_id(value):
    return isinstance(value, str) and OBJECT_ID_PATTERN.match(value) is not None


def utcnow():
    # 資料庫一律存 naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    return value.isoformat() if value else None


class Role(str, Enum):
    ADMIN = 'Admin'
    MANAGER = 'Manager'
    MEMBER = 'Member'


class TaskStatus(str, Enum):
    TODO = 'To-Do'
    IN_PROGRESS = 'In Progress'
    COMPLETED = 'Completed'


class TaskPriority(str, Enum):
    LOW = 'Low'
    MEDIUM = 'Medium'
    HIGH = 'High'


def hash_password(password):
    return bcrypt.generate_password_hash(password).decode('utf-8')


def enum_values(enum_class):
    return [member.value for member in enum_class]


def select_fields(data, select=None):
    """只保留指定欄位 (id 永遠保留)"""
    if not select:
        return data
    return {key: value for key, value in data.items() if key == 'id' or key in select}


def reference(obj, obj_id, populate):
    """關聯欄位: populate 時回傳摘要, 否則只回傳 id"""
    if not populate:
        return obj_id
    return obj.summary() if obj is not None else None


class Document:
    """
    所有集合共用的基底

    - id 在建構時就產生, 子文件可以馬上用 id 當 key
    - field_aliases: API 欄位名稱 -> 資料表欄位 (關聯欄位存成 *_id)
    """

    id = db.Column(db.String(24), primary_key=True, default=new_object_id)

    field_aliases = {}
    public_fields = ()
    # populate 欄位 -> relationship 名稱
    relations = {}

    def __init__(self, **kwargs):
        kwargs.setdefault('id', new_object_id())
        super().__init__(**kwargs)

    @classmethod
    def column_for(cls, field):
        """API 欄位對應的 column attribute, 不可查詢的欄位回傳 None"""
        if field not in cls.public_fields:
            return None
        name = cls.field_aliases.get(field, field)
        if name not in cls.__table__.columns:
            return None
        return getattr(cls, name)


# ============================================
# 多對多關聯表
# ============================================

# 專案擁有的成員清單
project_members = db.Table(
    'project_members',
    db.Column('project_id', db.String(24), db.ForeignKey('project.id'), primary_key=True),
    db.Column('user_id', db.String(24), db.ForeignKey('user.id'), primary_key=True),
    db.Column('joined_at', db.DateTime, default=utcnow)
)

# 使用者端的反向參照 (建立者 + 成員), 由 integrity 模組維護
user_projects = db.Table(
    'user_projects',
    db.Column('user_id', db.String(24), db.ForeignKey('user.id'), primary_key=True),
    db.Column('project_id', db.String(24), db.ForeignKey('project.id'), primary_key=True),
    db.Column('added_at', db.DateTime, default=utcnow)
)


# ============================================
# 1. User 模型
# ============================================
class User(Document, db.Model):
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(50), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=Role.MEMBER.value)
    avatar = db.Column(db.String(255), default='default-avatar.jpg')
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_login = db.Column(db.DateTime)

    # 同一時間只有一個有效的重設 token (存 SHA-256)
    reset_password_token = db.Column(db.String(64), index=True)
    reset_password_expire = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    projects = db.relationship(
        'Project', secondary=user_projects, order_by=user_projects.c.added_at, lazy='select'
    )

    public_fields = (
        'id', 'name', 'email', 'role', 'avatar', 'is_active', 'last_login',
        'projects', 'created_at', 'updated_at'
    )

    relations = {'projects': 'projects'}

    __table_args__ = (
        db.Index('idx_user_role', 'role'),
    )

    @property
    def is_admin(self):
        return self.role == Role.ADMIN.value

    @property
    def project_ids(self):
        return [project.id for project in self.projects]

    def set_password(self, password):
        self.password_hash = hash_password(password)

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    @staticmethod
    def hash_reset_token(token):
        return hashlib.sha256(token.encode('utf-8')).hexdigest()

    def generate_password_reset_token(self, expires_minutes=10):
        """產生重設 token, 資料庫只保存雜湊值; 回傳明文給呼叫端"""
        token = secrets.token_hex(20)
        self.reset_password_token = self.hash_reset_token(token)
        self.reset_password_expire = utcnow() + timedelta(minutes=expires_minutes)
        return token

    def clear_password_reset_token(self):
        self.reset_password_token = None
        self.reset_password_expire = None

    def summary(self):
        return {'id': self.id, 'name': self.name, 'email': self.email}

    def to_dict(self, populate=(), select=None):
        # password_hash / reset token 永遠不輸出
        data = {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'avatar': self.avatar,
            'is_active': self.is_active,
            'last_login': isoformat(self.last_login),
            'projects': (
                [{'id': p.id, 'name': p.name} for p in self.projects]
                if 'projects' in populate else self.project_ids
            ),
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at)
        }
        return select_fields(data, select)


# ============================================
# 2. Project 模型
# ============================================
class Project(Document, db.Model):
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False)
    created_by = db.Column(db.String(24), db.ForeignKey('user.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    creator = db.relationship('User', foreign_keys=[created_by])
    members = db.relationship(
        'User', secondary=project_members, order_by=project_members.c.joined_at, lazy='select'
    )
    # 衍生欄位: project 指向此專案的任務 (不另外儲存)
    tasks = db.relationship(
        'Task', primaryjoin='Project.id == Task.project_id',
        order_by='Task.created_at.desc()', viewonly=True
    )

    public_fields = (
        'id', 'name', 'description', 'created_by', 'members', 'tasks',
        'created_at', 'updated_at'
    )
    relations = {'created_by': 'creator', 'members': 'members', 'tasks': 'tasks'}

    @property
    def member_ids(self):
        return [member.id for member in self.members]

    def summary(self):
        return {'id': self.id, 'name': self.name}

    def to_dict(self, populate=(), select=None):
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'created_by': reference(self.creator, self.created_by, 'created_by' in populate),
            'members': (
                [member.summary() for member in self.members]
                if 'members' in populate else self.member_ids
            ),
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at)
        }
        if 'tasks' in populate:
            data['tasks'] = [task.summary() for task in self.tasks]
        return select_fields(data, select)


# ============================================
# 3. Task 模型
# ============================================
class Task(Document, db.Model):
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False)
    due_date = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=TaskStatus.TODO.value)
    priority = db.Column(db.String(20), nullable=False, default=TaskPriority.MEDIUM.value)

    assignee_id = db.Column(db.String(24), db.ForeignKey('user.id'), nullable=False)
    reporter_id = db.Column(db.String(24), db.ForeignKey('user.id'), nullable=False)
    project_id = db.Column(db.String(24), db.ForeignKey('project.id'), nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    assignee = db.relationship('User', foreign_keys=[assignee_id])
    reporter = db.relationship('User', foreign_keys=[reporter_id])
    project = db.relationship('Project', foreign_keys=[project_id])

    comments = db.relationship(
        'TaskComment', back_populates='task', order_by='TaskComment.created_at',
        cascade='all, delete-orphan'
    )
    # 以附件 id 為 key, 找不到時直接是 KeyError 而不是線性搜尋
    attachments = db.relationship(
        'Attachment', back_populates='task', order_by='Attachment.uploaded_at',
        collection_class=attribute_keyed_dict('id'), cascade='all, delete-orphan'
    )

    field_aliases = {
        'assignee': 'assignee_id',
        'reporter': 'reporter_id',
        'project': 'project_id'
    }
    public_fields = (
        'id', 'title', 'description', 'due_date', 'status', 'priority',
        'assignee', 'reporter', 'project', 'comments', 'attachments',
        'created_at', 'updated_at'
    )
    relations = {
        'assignee': 'assignee',
        'reporter': 'reporter',
        'project': 'project',
        'comments': 'comments',
        'attachments': 'attachments'
    }

    __table_args__ = (
        db.Index('idx_task_project_status', 'project_id', 'status'),
        db.Index('idx_task_assignee_status', 'assignee_id', 'status'),
        db.Index('idx_task_due_date', 'due_date'),
        db.Index('idx_task_created_at', 'created_at'),
    )

    def summary(self):
        return {
            'id': self.id,
            'title': self.title,
            'status': self.status,
            'priority': self.priority,
            'due_date': isoformat(self.due_date)
        }

    def to_dict(self, populate=(), select=None):
        populate_children = 'comments' in populate or 'attachments' in populate
        data = {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'due_date': isoformat(self.due_date),
            'status': self.status,
            'priority': self.priority,
            'assignee': reference(self.assignee, self.assignee_id, 'assignee' in populate),
            'reporter': reference(self.reporter, self.reporter_id, 'reporter' in populate),
            'project': reference(self.project, self.project_id, 'project' in populate),
            'comments': [c.to_dict(populate_children) for c in self.comments],
            'attachments': [a.to_dict(populate_children) for a in self.attachments.values()],
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at)
        }
        return select_fields(data, select)


# ============================================
# 4. TaskComment 模型 (屬於 Task)
# ============================================
class TaskComment(Document, db.Model):
    task_id = db.Column(db.String(24), db.ForeignKey('task.id'), nullable=False, index=True)
    text = db.Column(db.Text, nullable=False)
    # 作者被刪除後為 None
    created_by = db.Column(db.String(24), db.ForeignKey('user.id', ondelete='SET NULL'))
    created_at = db.Column(db.DateTime, default=utcnow)

    task = db.relationship('Task', back_populates='comments')
    author = db.relationship('User', foreign_keys=[created_by])

    def to_dict(self, populate=False):
        return {
            'id': self.id,
            'text': self.text,
            'created_by': reference(self.author, self.created_by, populate),
            'created_at': isoformat(self.created_at)
        }


# ============================================
# 5. Attachment 模型 (屬於 Task)
# ============================================
class Attachment(Document, db.Model):
    task_id = db.Column(db.String(24), db.ForeignKey('task.id'), nullable=False, index=True)
    filename = db.Column(db.String(255), nullable=False)
    original_name = db.Column(db.String(255), nullable=False)
    mime_type = db.Column(db.String(100), nullable=False)
    size = db.Column(db.Integer, nullable=False)
    uploaded_by = db.Column(db.String(24), db.ForeignKey('user.id', ondelete='SET NULL'))
    uploaded_at = db.Column(db.DateTime, default=utcnow)

    task = db.relationship('Task', back_populates='attachments')
    uploader = db.relationship('User', foreign_keys=[uploaded_by])

    def to_dict(self, populate=False):
        return {
            'id': self.id,
            'filename': self.filename,
            'original_name': self.original_name,
            'mime_type': self.mime_type,
            'size': self.size,
            'uploaded_by': reference(self.uploader, self.uploaded_by, populate),
            'uploaded_at': isoformat(self.uploaded_at)
        }
