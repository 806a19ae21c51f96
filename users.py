from flask import Blueprint, request
from flask_jwt_extended import jwt_required
from marshmallow import Schema, fields, validate
import logging

from auth import (
    RegisterSchema, current_actor, ensure_email_available, new_user_fields, password_length
)
from errors import ConflictError
from integrity import release_deleted_user
from models import Role, User, enum_values, hash_password
from policy import AuthorizationContext, authorize
from resources import create_one, delete_one, get_all, get_one, serialize, update_one
from responses import success_response
from validation import NormalizedEmail, get_json_body, get_list_params, validate_request_data

users_bp = Blueprint('users', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class CreateUserSchema(RegisterSchema):
    """管理員建立使用者, 可以指定角色"""
    role = fields.String(
        validate=validate.OneOf(enum_values(Role), error='Role must be either: Admin, Manager, or Member'),
        load_default=Role.MEMBER.value
    )


class UpdateUserSchema(Schema):
    name = fields.String(validate=validate.Length(min=3, max=50))
    email = NormalizedEmail()
    role = fields.String(validate=validate.OneOf(enum_values(Role)))
    is_active = fields.Boolean()
    password = fields.String(validate=password_length)


def _parse_bool(value):
    if value is None:
        return None
    return value.lower() in ('1', 'true', 'yes')


def require_admin(action):
    """使用者管理只開放給 Admin"""
    actor = current_actor()
    authorize(AuthorizationContext(actor=actor), 'user', action, 'Admin access required')
    return actor


# ============================================
# 使用者列表 / 建立
# ============================================

@users_bp.route('', methods=['GET'])
@jwt_required()
def get_users():
    require_admin('list')
    params = get_list_params()

    page = get_all(
        User,
        filters={
            'role': request.args.get('role'),
            'is_active': _parse_bool(request.args.get('is_active'))
        },
        sort=params['sort'],
        page=params['page'],
        limit=params['limit']
    )

    return success_response(
        serialize(User, page.items, select=params['select']),
        count=len(page.items),
        pagination=page.pagination
    )


@users_bp.route('', methods=['POST'])
@jwt_required()
def create_user():
    require_admin('update')
    data = validate_request_data(CreateUserSchema, get_json_body())
    ensure_email_available(data['email'])

    user = create_one(User, data, transform=new_user_fields)

    logger.info(f"User created by admin: {user.email} ({user.role})")

    return success_response(user.to_dict(), 'User created successfully', 201)


# ============================================
# 單一使用者
# ============================================

@users_bp.route('/<user_id>', methods=['GET'])
@jwt_required()
def get_user(user_id):
    require_admin('read')
    user = get_one(User, user_id, populate=('projects',))
    return success_response(
        serialize(User, user, populate=('projects',), select=get_list_params()['select'])
    )


@users_bp.route('/<user_id>', methods=['PUT'])
@jwt_required()
def update_user(user_id):
    require_admin('update')

    def transform(data, user):
        if 'email' in data:
            ensure_email_available(data['email'], user)
        if 'password' in data:
            data['password_hash'] = hash_password(data.pop('password'))
            # 舊的重設 token 一併作廢
            user.clear_password_reset_token()
        return data

    user = update_one(User, user_id, get_json_body(), schema=UpdateUserSchema, transform=transform)

    logger.info(f"User {user.id} updated by admin")

    return success_response(user.to_dict(), 'User updated successfully')


@users_bp.route('/<user_id>', methods=['DELETE'])
@jwt_required()
def delete_user(user_id):
    actor = require_admin('delete')

    def on_delete(user):
        if user.id == actor.id:
            raise ConflictError('Administrators cannot delete their own account')
        release_deleted_user(user)

    delete_one(User, user_id, on_delete=on_delete)

    return success_response(message='User removed')
