"""
反向參照維護

資料庫沒有幫我們同步 Project.members 與 User.projects 兩邊的清單,
這裡的函式只修改 session, 由呼叫端 (resources 的 hook 或 controller)
在同一個 transaction 中 commit, 任何一步失敗兩邊都會 rollback.
"""
import logging

from sqlalchemy import or_

from errors import ConflictError, DuplicateError, NotFoundError
from models import Attachment, Project, Task, TaskComment, User, db

logger = logging.getLogger(__name__)


def require_user(user_id, resource='User'):
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource)
    return user


def _unique(ids):
    seen = []
    for value in ids or ():
        if value not in seen:
            seen.append(value)
    return seen


def _add_back_reference(user, project):
    # User.projects 是去重的有序集合
    if project not in user.projects:
        user.projects.append(project)


# ============================================
# 專案建立
# ============================================


def link_new_project(project, member_ids=()):
    """建立者與初始成員的 projects 都加上新專案"""
    creator = require_user(project.created_by)
    _add_back_reference(creator, project)

    for user_id in _unique(member_ids):
        user = require_user(user_id)
        if user not in project.members:
            project.members.append(user)
        _add_back_reference(user, project)

    logger.info(f"Project {project.id} linked to creator and {len(project.members)} member(s)")


# ============================================
# 成員管理
# ============================================


def add_member(project, user_id):
    """新增成員; 使用者不存在 -> 404, 已是成員 -> 409"""
    user = require_user(user_id)

    if user in project.members:
        raise DuplicateError('Project member')

    project.members.append(user)
    _add_back_reference(user, project)

    logger.info(f"Member added to project {project.id}: user {user.id}")
    return user


def remove_member(project, user_id):
    """
    移除成員

    移除非成員視為成功 (不改變任何東西). 建立者仍保留反向參照,
    因為建立者不需要在 members 裡也擁有專案權限.
    """
    user = db.session.get(User, user_id)
    if user is None:
        return None

    if user in project.members:
        project.members.remove(user)

    if user.id != project.created_by and project in user.projects:
        user.projects.remove(project)

    logger.info(f"Member removed from project {project.id}: user {user.id}")
    return user


# ============================================
# 刪除
# ============================================


def unlink_deleted_project(project):
    """
    刪除專案前: 串聯刪除任務, 並從所有參照此專案的使用者清單中移除

    Returns:
        list: 被刪除任務的附件檔名 (commit 後再清除檔案)
    """
    filenames = []
    for task in Task.query.filter_by(project_id=project.id).all():
        filenames.extend(attachment.filename for attachment in task.attachments.values())
        db.session.delete(task)

    users = User.query.filter(User.projects.any(Project.id == project.id)).all()
    for user in users:
        user.projects.remove(project)

    logger.info(
        f"Project {project.id} unlinked from {len(users)} user(s), "
        f"{len(filenames)} attachment file(s) scheduled for removal"
    )
    return filenames


def release_deleted_user(user):
    """
    刪除使用者前的檢查與清理

    仍是專案建立者或任務的 assignee / reporter 時拒絕刪除 (409),
    否則從所有專案成員清單移除, 留言與附件的作者改為 None.
    """
    owned_projects = Project.query.filter_by(created_by=user.id).count()
    linked_tasks = Task.query.filter(
        or_(Task.assignee_id == user.id, Task.reporter_id == user.id)
    ).count()

    if owned_projects or linked_tasks:
        raise ConflictError(
            'User still owns projects or tasks; reassign them or deactivate the user instead',
            {'projects': owned_projects, 'tasks': linked_tasks}
        )

    for project in Project.query.filter(Project.members.any(User.id == user.id)).all():
        project.members.remove(user)

    TaskComment.query.filter_by(created_by=user.id).update({'created_by': None})
    Attachment.query.filter_by(uploaded_by=user.id).update({'uploaded_by': None})

    logger.info(f"User {user.id} released from all project memberships")
