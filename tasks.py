from flask import Blueprint, request
from flask_jwt_extended import jwt_required
from marshmallow import Schema, fields, validate
from sqlalchemy.exc import SQLAlchemyError
import logging

from auth import current_actor
from errors import NotFoundError, ValidationError
from models import (
    Attachment, Project, Task, TaskComment, TaskPriority, TaskStatus, User, db, enum_values
)
from policy import AuthorizationContext, authorize
from projects import visible_projects_criteria
from resources import create_one, delete_one, get_all, get_one, serialize, update_one
from responses import success_response
from storage import remove_upload, remove_uploads, save_upload
from validation import (
    ObjectId, UTCDateTime, ensure_object_id, future_date, get_json_body, get_list_params,
    validate_request_data
)

tasks_bp = Blueprint('tasks', __name__)
logger = logging.getLogger(__name__)

LIST_POPULATE = ('assignee', 'reporter', 'project')
DETAIL_POPULATE = LIST_POPULATE + ('comments', 'attachments')

# ============================================
# Input Validation Schemas
# ============================================

class CreateTaskSchema(Schema):
    """建立任務驗證"""
    title = fields.String(
        required=True,
        validate=validate.Length(min=3, max=100, error='Title must be 3-100 characters'),
        error_messages={'required': 'Title is required'}
    )
    description = fields.String(
        required=True,
        validate=validate.Length(min=5, error='Description must be at least 5 characters'),
        error_messages={'required': 'Description is required'}
    )
    due_date = UTCDateTime(
        required=True,
        validate=future_date,
        error_messages={'required': 'Due date is required'}
    )
    status = fields.String(
        validate=validate.OneOf(enum_values(TaskStatus)),
        load_default=TaskStatus.TODO.value
    )
    priority = fields.String(
        validate=validate.OneOf(enum_values(TaskPriority)),
        load_default=TaskPriority.MEDIUM.value
    )
    assignee = ObjectId(required=True, error_messages={'required': 'Task must be assigned to a user'})
    project = ObjectId(required=True, error_messages={'required': 'Task must belong to a project'})


class UpdateTaskSchema(Schema):
    """更新任務驗證 (project 建立後不可更改)"""
    title = fields.String(validate=validate.Length(min=3, max=100))
    description = fields.String(validate=validate.Length(min=5))
    due_date = UTCDateTime(validate=future_date)
    status = fields.String(validate=validate.OneOf(enum_values(TaskStatus)))
    priority = fields.String(validate=validate.OneOf(enum_values(TaskPriority)))
    assignee = ObjectId()


class CommentSchema(Schema):
    text = fields.String(
        required=True,
        validate=validate.Length(min=1, max=2000),
        error_messages={'required': 'Please provide comment text'}
    )


# ============================================
# 輔助函數
# ============================================

def to_columns(data):
    """API 欄位 (assignee / project) 轉成資料表欄位 (*_id)"""
    return {Task.field_aliases.get(key, key): value for key, value in data.items()}


def ensure_assignee_exists(user_id):
    if db.session.get(User, user_id) is None:
        raise ValidationError('Validation failed', {'assignee': ['Assigned user not found']})


def load_task(task_id, action, message=None, populate=LIST_POPULATE):
    """
    先載入任務 (不存在 -> 404), 權限範圍取自所屬專案

    Returns:
        tuple: (actor, task)
    """
    actor = current_actor()
    task = get_one(Task, task_id, populate=populate)
    authorize(AuthorizationContext.for_task(actor, task), 'task', action, message)
    return actor, task


def visible_tasks_criteria(actor):
    project_criteria = visible_projects_criteria(actor)
    if not project_criteria:
        return ()
    return (Task.project.has(*project_criteria),)


def _optional_id(name):
    value = request.args.get(name)
    return ensure_object_id(value, name) if value else None


def paginated_tasks(filters=None, criteria=(), populate=LIST_POPULATE):
    params = get_list_params()
    page = get_all(
        Task,
        filters=filters,
        criteria=criteria,
        populate=populate,
        sort=params['sort'],
        page=params['page'],
        limit=params['limit']
    )
    return success_response(
        serialize(Task, page.items, populate=populate, select=params['select']),
        count=len(page.items),
        pagination=page.pagination
    )


# ============================================
# 任務列表 / 建立
# ============================================

@tasks_bp.route('', methods=['GET'])
@jwt_required()
def get_tasks():
    """
    任務列表

    Query Parameters:
        - status / priority / assignee / project: 相等條件
        - page, limit, sort, select
    """
    actor = current_actor()
    return paginated_tasks(
        filters={
            'status': request.args.get('status'),
            'priority': request.args.get('priority'),
            'assignee': _optional_id('assignee'),
            'project': _optional_id('project')
        },
        criteria=visible_tasks_criteria(actor)
    )


@tasks_bp.route('', methods=['POST'])
@jwt_required()
def create_task():
    """
    建立任務

    reporter 固定為目前使用者; 專案不存在 -> 404, 非專案成員 -> 403
    """
    actor = current_actor()
    data = validate_request_data(CreateTaskSchema, get_json_body())

    project = get_one(Project, data['project'], populate=('members',))
    authorize(
        AuthorizationContext.for_project(actor, project), 'project', 'create-task',
        'Not authorized to create tasks in this project'
    )
    ensure_assignee_exists(data['assignee'])

    task = create_one(
        Task, data,
        transform=lambda validated: {**to_columns(validated), 'reporter_id': actor.id}
    )

    logger.info(f"Task created: {task.title} in project {project.id} by user {actor.id}")

    return success_response(
        serialize(Task, task, populate=LIST_POPULATE),
        'Task created successfully', 201
    )


# ============================================
# 單一任務
# ============================================

@tasks_bp.route('/<task_id>', methods=['GET'])
@jwt_required()
def get_task(task_id):
    _, task = load_task(
        task_id, 'read', 'Not authorized to access this task', populate=DETAIL_POPULATE
    )
    return success_response(
        serialize(Task, task, populate=DETAIL_POPULATE, select=get_list_params()['select'])
    )


@tasks_bp.route('/<task_id>', methods=['PUT'])
@jwt_required()
def update_task(task_id):
    actor, task = load_task(task_id, 'update', 'Not authorized to update this task')

    def transform(data, _task):
        if 'assignee' in data:
            ensure_assignee_exists(data['assignee'])
        return to_columns(data)

    task = update_one(Task, task.id, get_json_body(), schema=UpdateTaskSchema, transform=transform)

    logger.info(f"Task {task.id} updated by user {actor.id}")

    return success_response(
        serialize(Task, task, populate=LIST_POPULATE),
        'Task updated successfully'
    )


@tasks_bp.route('/<task_id>', methods=['DELETE'])
@jwt_required()
def delete_task(task_id):
    actor, task = load_task(task_id, 'delete', 'Not authorized to delete this task')

    filenames = [attachment.filename for attachment in task.attachments.values()]
    delete_one(Task, task.id)
    remove_uploads(filenames)

    logger.info(f"Task deleted: {task_id} by user {actor.id}")

    return success_response(message='Task deleted successfully')


# ============================================
# 留言
# ============================================

@tasks_bp.route('/<task_id>/comments', methods=['POST'])
@jwt_required()
def add_comment(task_id):
    actor, task = load_task(task_id, 'comment', 'Not authorized to comment on this task')
    data = validate_request_data(CommentSchema, get_json_body())

    task.comments.append(TaskComment(text=data['text'], created_by=actor.id))
    db.session.commit()

    logger.info(f"Comment added to task {task.id} by user {actor.id}")

    return success_response(
        serialize(Task, task, populate=('comments',)),
        'Comment added successfully', 201
    )


# ============================================
# 附件
# ============================================

@tasks_bp.route('/<task_id>/attachments', methods=['POST'])
@jwt_required()
def upload_attachment(task_id):
    """
    上傳附件 (multipart/form-data, 欄位名稱 file)

    寫入資料庫失敗時刪除已存的檔案
    """
    actor, task = load_task(task_id, 'attach', 'Not authorized to add attachments to this task')

    stored = save_upload(request.files.get('file'))
    attachment = Attachment(uploaded_by=actor.id, **stored)
    task.attachments[attachment.id] = attachment

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        remove_upload(stored['filename'])
        raise

    logger.info(f"Attachment {attachment.id} uploaded to task {task.id} by user {actor.id}")

    return success_response(
        serialize(Task, task, populate=('attachments',)),
        'File uploaded successfully', 201
    )


@tasks_bp.route('/<task_id>/attachments/<attachment_id>', methods=['DELETE'])
@jwt_required()
def delete_attachment(task_id, attachment_id):
    actor, task = load_task(
        task_id, 'delete-attachment', 'Not authorized to delete attachments from this task'
    )
    attachment_id = ensure_object_id(attachment_id, 'attachment_id')

    try:
        attachment = task.attachments.pop(attachment_id)
    except KeyError:
        raise NotFoundError('Attachment')

    db.session.commit()
    remove_upload(attachment.filename)

    logger.info(f"Attachment {attachment_id} removed from task {task.id} by user {actor.id}")

    return success_response(
        serialize(Task, task, populate=('attachments',)),
        'Attachment deleted successfully'
    )


# ============================================
# 依使用者 / 專案查詢
# ============================================

@tasks_bp.route('/user/<user_id>', methods=['GET'])
@jwt_required()
def get_tasks_by_user(user_id):
    """指派給某使用者的任務: 本人或 Admin"""
    actor = current_actor()
    user_id = ensure_object_id(user_id, 'user_id')
    authorize(
        AuthorizationContext.for_user(actor, user_id), 'self', 'read',
        'Not authorized to view these tasks'
    )
    return paginated_tasks(filters={'assignee': user_id}, populate=('project',))


@tasks_bp.route('/project/<project_id>', methods=['GET'])
@jwt_required()
def get_tasks_by_project(project_id):
    actor = current_actor()
    project = get_one(Project, project_id, populate=('members',))
    authorize(
        AuthorizationContext.for_project(actor, project), 'project', 'read',
        'Not authorized to view tasks for this project'
    )
    return paginated_tasks(filters={'project': project.id}, populate=('assignee', 'reporter'))
