from flask import Blueprint
from flask_jwt_extended import jwt_required
from sqlalchemy import and_, case, func, or_
from marshmallow import Schema, fields, validate
import logging

from auth import current_actor
from integrity import add_member, link_new_project, remove_member, unlink_deleted_project
from models import Project, Task, TaskStatus, User, db, utcnow
from policy import AuthorizationContext, authorize
from resources import create_one, delete_one, get_all, get_one, serialize, update_one
from responses import success_response
from storage import remove_uploads
from validation import (
    ObjectId, ensure_object_id, get_json_body, get_list_params, validate_request_data
)

projects_bp = Blueprint('projects', __name__)
logger = logging.getLogger(__name__)

DETAIL_POPULATE = ('created_by', 'members')

# ============================================
# Input Validation Schemas
# ============================================

class CreateProjectSchema(Schema):
    """建立專案驗證"""
    name = fields.String(
        required=True,
        validate=validate.Length(min=3, max=100, error='Name must be 3-100 characters'),
        error_messages={'required': 'Name is required'}
    )
    description = fields.String(
        required=True,
        validate=validate.Length(min=5, error='Description must be at least 5 characters'),
        error_messages={'required': 'Description is required'}
    )
    members = fields.List(ObjectId())


class UpdateProjectSchema(Schema):
    """更新專案驗證 (成員請用 /members 端點)"""
    name = fields.String(validate=validate.Length(min=3, max=100))
    description = fields.String(validate=validate.Length(min=5))


class AddMemberSchema(Schema):
    """新增成員驗證"""
    user_id = ObjectId(required=True, error_messages={'required': 'Please provide a user ID'})


# ============================================
# 輔助函數
# ============================================

def load_project(project_id, action, populate=DETAIL_POPULATE):
    """
    先載入專案 (不存在 -> 404) 再檢查權限 (不允許 -> 403)

    Returns:
        tuple: (actor, project)
    """
    actor = current_actor()
    project = get_one(Project, project_id, populate=populate)
    authorize(AuthorizationContext.for_project(actor, project), 'project', action)
    return actor, project


def visible_projects_criteria(actor):
    """非 Admin 只看得到自己建立或參與的專案"""
    if actor.is_admin:
        return ()
    return (or_(
        Project.created_by == actor.id,
        Project.members.any(User.id == actor.id)
    ),)


# ============================================
# 專案列表 / 建立
# ============================================

@projects_bp.route('', methods=['GET'])
@jwt_required()
def get_projects():
    actor = current_actor()
    params = get_list_params()

    page = get_all(
        Project,
        criteria=visible_projects_criteria(actor),
        populate=('created_by',),
        sort=params['sort'],
        page=params['page'],
        limit=params['limit']
    )

    return success_response(
        serialize(Project, page.items, populate=('created_by',), select=params['select']),
        count=len(page.items),
        pagination=page.pagination
    )


@projects_bp.route('', methods=['POST'])
@jwt_required()
def create_project():
    """
    建立新專案

    建立者與初始成員的 projects 清單在同一個 transaction 中更新
    """
    actor = current_actor()
    data = validate_request_data(CreateProjectSchema, get_json_body())
    member_ids = data.pop('members', [])

    project = create_one(
        Project, data,
        transform=lambda validated: {**validated, 'created_by': actor.id},
        propagate=lambda created: link_new_project(created, member_ids)
    )

    logger.info(f"Project created: {project.name} by user {actor.id}")

    return success_response(
        serialize(Project, project, populate=DETAIL_POPULATE),
        'Project created successfully', 201
    )


# ============================================
# 單一專案
# ============================================

@projects_bp.route('/<project_id>', methods=['GET'])
@jwt_required()
def get_project(project_id):
    _, project = load_project(project_id, 'read')
    return success_response(
        serialize(
            Project, project,
            populate=DETAIL_POPULATE + ('tasks',),
            select=get_list_params()['select']
        )
    )


@projects_bp.route('/<project_id>', methods=['PUT'])
@jwt_required()
def update_project(project_id):
    actor, project = load_project(project_id, 'update')

    project = update_one(Project, project.id, get_json_body(), schema=UpdateProjectSchema)

    logger.info(f"Project {project.id} updated by user {actor.id}")

    return success_response(
        serialize(Project, project, populate=DETAIL_POPULATE),
        'Project updated successfully'
    )


@projects_bp.route('/<project_id>', methods=['DELETE'])
@jwt_required()
def delete_project(project_id):
    """
    刪除專案

    任務一併刪除, 附件檔案在 commit 成功後才移除
    """
    actor, project = load_project(project_id, 'delete')

    filenames = []
    delete_one(
        Project, project.id,
        on_delete=lambda doomed: filenames.extend(unlink_deleted_project(doomed))
    )
    remove_uploads(filenames)

    logger.info(f"Project deleted: {project_id} by user {actor.id}")

    return success_response(message='Project deleted successfully')


# ============================================
# 專案成員管理
# ============================================

@projects_bp.route('/<project_id>/members', methods=['GET'])
@jwt_required()
def get_project_members(project_id):
    _, project = load_project(project_id, 'read')
    members = [member.summary() for member in project.members]
    return success_response(members, count=len(members))


@projects_bp.route('/<project_id>/members', methods=['POST'])
@jwt_required()
def add_project_member(project_id):
    actor, project = load_project(project_id, 'manage-members')
    data = validate_request_data(AddMemberSchema, get_json_body())

    user = add_member(project, data['user_id'])
    db.session.commit()

    logger.info(f"Member {user.id} added to project {project.id} by user {actor.id}")

    return success_response(
        serialize(Project, project, populate=DETAIL_POPULATE),
        'Member added successfully'
    )


@projects_bp.route('/<project_id>/members/<user_id>', methods=['DELETE'])
@jwt_required()
def remove_project_member(project_id, user_id):
    """移除成員; 移除非成員也回傳成功"""
    actor, project = load_project(project_id, 'manage-members')
    user_id = ensure_object_id(user_id, 'user_id')

    remove_member(project, user_id)
    db.session.commit()

    logger.info(f"Member {user_id} removed from project {project.id} by user {actor.id}")

    return success_response(
        serialize(Project, project, populate=DETAIL_POPULATE),
        'Member removed successfully'
    )


# ============================================
# 專案統計
# ============================================

@projects_bp.route('/<project_id>/stats', methods=['GET'])
@jwt_required()
def get_project_stats(project_id):
    """任務狀態統計, 用單一聚合查詢"""
    _, project = load_project(project_id, 'read')

    completed = TaskStatus.COMPLETED.value
    task_stats = db.session.query(
        func.count(Task.id).label('total'),
        func.sum(case((Task.status == TaskStatus.TODO.value, 1), else_=0)).label('todo'),
        func.sum(case((Task.status == TaskStatus.IN_PROGRESS.value, 1), else_=0)).label('in_progress'),
        func.sum(case((Task.status == completed, 1), else_=0)).label('completed'),
        func.sum(case((and_(Task.due_date < utcnow(), Task.status != completed), 1), else_=0)).label('overdue')
    ).filter(Task.project_id == project.id).one()

    total = task_stats.total or 0
    done = task_stats.completed or 0

    return success_response({
        'tasks': {
            'total': total,
            'todo': task_stats.todo or 0,
            'in_progress': task_stats.in_progress or 0,
            'completed': done,
            'overdue': task_stats.overdue or 0
        },
        'members': len(project.members),
        'completion_rate': round(done / (total or 1) * 100, 2)
    })
