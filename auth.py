from flask import Blueprint, current_app, url_for
from flask_jwt_extended import (
    create_access_token, create_refresh_token, current_user, get_jwt_identity, jwt_required
)
from marshmallow import Schema, ValidationError as SchemaError, fields, validate
import logging

from errors import DuplicateError, UnauthorizedError
from extensions import limiter
from models import Role, User, db, hash_password, utcnow
from policy import Actor, AuthorizationContext, authorize
from resources import create_one, update_one
from responses import success_response
from validation import NormalizedEmail, get_json_body, validate_request_data

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)

# bcrypt 只看前 72 bytes
PASSWORD_MAX_LENGTH = 72


def password_length(value):
    min_length = current_app.config['PASSWORD_MIN_LENGTH']
    if not min_length <= len(value) <= PASSWORD_MAX_LENGTH:
        raise SchemaError(
            f'Password must be {min_length}-{PASSWORD_MAX_LENGTH} characters'
        )


# ============================================
# Input Validation Schemas (用 marshmallow)
# ============================================

class RegisterSchema(Schema):
    """註冊輸入驗證"""
    name = fields.String(
        required=True,
        validate=validate.Length(min=3, max=50, error='Name must be 3-50 characters'),
        error_messages={'required': 'Name is required'}
    )
    email = NormalizedEmail(required=True, error_messages={
        'required': 'Email is required',
        'invalid': 'Please enter a valid email address'
    })
    password = fields.String(
        required=True,
        validate=password_length,
        error_messages={'required': 'Password is required'}
    )


class LoginSchema(Schema):
    """登入輸入驗證"""
    email = NormalizedEmail(required=True)
    password = fields.String(required=True)


class UpdateDetailsSchema(Schema):
    """個人資料更新驗證"""
    name = fields.String(validate=validate.Length(min=3, max=50))
    email = NormalizedEmail()


class UpdatePasswordSchema(Schema):
    """密碼修改驗證"""
    current_password = fields.String(required=True)
    new_password = fields.String(required=True, validate=password_length)


class ForgotPasswordSchema(Schema):
    email = NormalizedEmail(required=True)


class ResetPasswordSchema(Schema):
    password = fields.String(required=True, validate=password_length)


# ============================================
# Helper Functions (供其他模組使用)
# ============================================

def current_actor():
    """目前登入者 (id + role), 由 JWT user_lookup_loader 解析"""
    return Actor.from_user(current_user)


def ensure_email_available(email, user=None):
    existing = User.query.filter_by(email=email).first()
    if existing is not None and existing is not user:
        raise DuplicateError('User with this email')


def new_user_fields(data, role=Role.MEMBER.value):
    """建立使用者前: 密碼轉成 hash, 補上角色"""
    data = dict(data)
    data['password_hash'] = hash_password(data.pop('password'))
    data.setdefault('role', role)
    return data


# ============================================
# 註冊 API
# ============================================

@auth_bp.route('/register', methods=['POST'])
@limiter.limit('5 per hour')
def register():
    """
    使用者註冊

    角色固定為 Member, 其他角色由管理員在 /users 指定
    """
    data = validate_request_data(RegisterSchema, get_json_body())

    ensure_email_available(data['email'])

    user = create_one(
        User, data,
        transform=lambda validated: {**new_user_fields(validated), 'last_login': utcnow()}
    )

    logger.info(f"New user registered: {user.email}")

    return success_response({
        'user': user.to_dict(),
        'token': create_access_token(identity=user.id)
    }, 'User registered successfully', 201)


# ============================================
# 登入 API
# ============================================

@auth_bp.route('/login', methods=['POST'])
@limiter.limit('10 per minute')
def login():
    """
    使用者登入

    不區分 email / password 錯誤, 避免帳號枚舉
    """
    data = validate_request_data(LoginSchema, get_json_body())

    user = User.query.filter_by(email=data['email']).first()

    if not user or not user.check_password(data['password']):
        logger.warning(f"Failed login attempt for email: {data['email']}")
        raise UnauthorizedError('Invalid credentials')

    if not user.is_active:
        logger.warning(f"Inactive user login attempt: {user.email}")
        raise UnauthorizedError(
            'Your account has been deactivated. Please contact an administrator.'
        )

    user.last_login = utcnow()
    db.session.commit()

    logger.info(f"User logged in: {user.email}")

    return success_response({
        'user': user.to_dict(),
        'token': create_access_token(identity=user.id),
        'refresh_token': create_refresh_token(identity=user.id)
    }, 'Login successful')


# ============================================
# Token 刷新 / 登出
# ============================================

@auth_bp.route('/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    """用 refresh token 換新的 access token"""
    return success_response(
        {'token': create_access_token(identity=current_user.id)},
        'Token refreshed'
    )


@auth_bp.route('/logout', methods=['GET'])
@jwt_required()
def logout():
    """登出 (token 由前端丟棄)"""
    logger.info(f"User logged out: {get_jwt_identity()}")
    return success_response(message='User logged out successfully')


# ============================================
# 取得 / 更新當前使用者
# ============================================

@auth_bp.route('/me', methods=['GET'])
@jwt_required()
def get_me():
    return success_response(
        {'user': current_user.to_dict(populate=('projects',))},
        'User profile retrieved successfully'
    )


@auth_bp.route('/updatedetails', methods=['PUT'])
@jwt_required()
def update_details():
    actor = current_actor()
    authorize(AuthorizationContext.for_user(actor, actor.id), 'self', 'update')

    def transform(data, user):
        if 'email' in data:
            ensure_email_available(data['email'], user)
        return data

    user = update_one(
        User, actor.id, get_json_body(), schema=UpdateDetailsSchema, transform=transform
    )

    logger.info(f"User profile updated: {user.email}")

    return success_response({'user': user.to_dict()}, 'User details updated successfully')


@auth_bp.route('/updatepassword', methods=['PUT'])
@jwt_required()
def update_password():
    data = validate_request_data(UpdatePasswordSchema, get_json_body())
    user = current_user

    if not user.check_password(data['current_password']):
        raise UnauthorizedError('Current password is incorrect')

    user.set_password(data['new_password'])
    user.clear_password_reset_token()
    db.session.commit()

    logger.info(f"Password changed for user: {user.email}")

    return success_response(
        {'token': create_access_token(identity=user.id)},
        'Password updated successfully'
    )


# ============================================
# 忘記密碼 / 重設密碼
# ============================================

FORGOT_PASSWORD_MESSAGE = 'Password reset email sent if account exists'


@auth_bp.route('/forgotpassword', methods=['POST'])
@limiter.limit('10 per minute')
def forgot_password():
    """
    申請重設密碼

    不論帳號是否存在都回傳相同訊息
    """
    data = validate_request_data(ForgotPasswordSchema, get_json_body())

    user = User.query.filter_by(email=data['email']).first()
    if user is not None and user.is_active:
        token = user.generate_password_reset_token(
            current_app.config['RESET_TOKEN_EXPIRES_MINUTES']
        )
        db.session.commit()

        # 尚未串接寄信, 先記錄在 log
        reset_url = url_for('auth.reset_password', token=token, _external=True)
        logger.info(f"Password reset token generated: {reset_url}")

    return success_response(message=FORGOT_PASSWORD_MESSAGE)


@auth_bp.route('/resetpassword/<token>', methods=['PUT'])
def reset_password(token):
    data = validate_request_data(ResetPasswordSchema, get_json_body())

    user = User.query.filter(
        User.reset_password_token == User.hash_reset_token(token),
        User.reset_password_expire > utcnow()
    ).first()

    if user is None:
        raise UnauthorizedError('Invalid or expired token')

    user.set_password(data['password'])
    user.clear_password_reset_token()
    db.session.commit()

    logger.info(f"Password reset for user: {user.email}")

    return success_response(
        {'token': create_access_token(identity=user.id)},
        'Password reset successful'
    )
