"""
權限判斷

所有判斷都是純函式: 只看 AuthorizationContext, 不查資料庫也不修改狀態.
呼叫端必須先載入資源 (不存在時回 404), 再建立 context 做判斷.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum

from errors import ForbiddenError
from models import Role

logger = logging.getLogger(__name__)


class Action(str, Enum):
    READ = 'read'
    UPDATE = 'update'
    DELETE = 'delete'
    MANAGE_MEMBERS = 'manage-members'
    CREATE_TASK = 'create-task'
    COMMENT = 'comment'
    ATTACH = 'attach'
    DELETE_ATTACHMENT = 'delete-attachment'
    LIST = 'list'


@dataclass(frozen=True)
class Actor:
    id: str
    role: str

    @property
    def is_admin(self):
        return self.role == Role.ADMIN.value

    @classmethod
    def from_user(cls, user):
        return cls(id=user.id, role=user.role)


@dataclass(frozen=True)
class AuthorizationContext:
    """一次請求用到的權限資訊, 與資料庫文件的結構無關"""

    actor: Actor
    creator_id: str = None
    member_ids: frozenset = field(default_factory=frozenset)
    assignee_id: str = None
    reporter_id: str = None
    subject_id: str = None

    @classmethod
    def for_project(cls, actor, project):
        return cls(
            actor=actor,
            creator_id=project.created_by,
            member_ids=frozenset(project.member_ids)
        )

    @classmethod
    def for_task(cls, actor, task):
        # 任務的權限範圍來自所屬專案
        project = task.project
        return cls(
            actor=actor,
            creator_id=project.created_by if project is not None else None,
            member_ids=frozenset(project.member_ids) if project is not None else frozenset(),
            assignee_id=task.assignee_id,
            reporter_id=task.reporter_id
        )

    @classmethod
    def for_user(cls, actor, user_id):
        return cls(actor=actor, subject_id=user_id)


# ============================================
# 條件 (clauses)
# ============================================


def is_admin(ctx):
    return ctx.actor.is_admin


def is_creator(ctx):
    return ctx.creator_id is not None and ctx.creator_id == ctx.actor.id


def is_member(ctx):
    return ctx.actor.id in ctx.member_ids


def is_assignee(ctx):
    return ctx.assignee_id is not None and ctx.assignee_id == ctx.actor.id


def is_reporter(ctx):
    return ctx.reporter_id is not None and ctx.reporter_id == ctx.actor.id


def is_self(ctx):
    return ctx.subject_id is not None and ctx.subject_id == ctx.actor.id


# ============================================
# 規則表: 任一條件成立即允許
# ============================================

PROJECT_RULES = {
    Action.READ: (is_admin, is_creator, is_member),
    Action.UPDATE: (is_admin, is_creator),
    Action.DELETE: (is_admin, is_creator),
    Action.MANAGE_MEMBERS: (is_admin, is_creator),
    Action.CREATE_TASK: (is_admin, is_creator, is_member),
}

TASK_RULES = {
    Action.READ: (is_admin, is_creator, is_member),
    Action.UPDATE: (is_admin, is_creator, is_assignee, is_reporter),
    Action.DELETE: (is_admin, is_creator, is_reporter),
    Action.COMMENT: (is_admin, is_creator, is_member),
    Action.ATTACH: (is_admin, is_creator, is_member),
    Action.DELETE_ATTACHMENT: (is_admin, is_creator, is_reporter),
}

USER_RULES = {
    Action.LIST: (is_admin,),
    Action.READ: (is_admin,),
    Action.UPDATE: (is_admin,),
    Action.DELETE: (is_admin,),
}

# 使用者自己的資料 (個人資料 / 密碼 / 自己的任務)
SELF_RULES = {
    Action.READ: (is_admin, is_self),
    Action.UPDATE: (is_self,),
}

RULES = {
    'project': PROJECT_RULES,
    'task': TASK_RULES,
    'user': USER_RULES,
    'self': SELF_RULES,
}


def is_allowed(ctx, resource, action):
    clauses = RULES[resource].get(Action(action), ())
    return any(clause(ctx) for clause in clauses)


def authorize(ctx, resource, action, message=None):
    """不允許時丟出 ForbiddenError (403)"""
    if not is_allowed(ctx, resource, action):
        logger.warning(
            f"Forbidden: user {ctx.actor.id} ({ctx.actor.role}) tried to "
            f"{Action(action).value} {resource}"
        )
        raise ForbiddenError(message or f'Not authorized to {Action(action).value} this {resource}')
