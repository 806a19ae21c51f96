import logging
import traceback

import marshmallow
from flask import current_app, request
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from models import db
from responses import error_response

logger = logging.getLogger(__name__)

# ============================================
# 錯誤類型
# ============================================


class APIError(Exception):
    """所有可預期錯誤的基底類別, 由全域錯誤處理轉成回應"""

    status_code = 500
    default_message = 'Internal server error'

    def __init__(self, message=None, errors=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.errors = errors


class ValidationError(APIError):
    status_code = 400
    default_message = 'Validation failed'


class UnauthorizedError(APIError):
    status_code = 401
    default_message = 'Not authorized to access this resource'


class ForbiddenError(APIError):
    status_code = 403
    default_message = 'Forbidden access'


class NotFoundError(APIError):
    status_code = 404
    default_message = 'Resource not found'

    def __init__(self, resource='Resource', errors=None):
        super().__init__(f'{resource} not found', errors)


class DuplicateError(APIError):
    status_code = 409
    default_message = 'Resource already exists'

    def __init__(self, resource='Resource', errors=None):
        super().__init__(f'{resource} already exists', errors)


class ConflictError(APIError):
    """目前狀態不允許此操作 (例如刪除仍擁有資源的使用者)"""
    status_code = 409
    default_message = 'Request conflicts with the current state of the resource'


class ServerError(APIError):
    status_code = 500


# ============================================
# 全域錯誤處理
# ============================================


def _debug_payload(error):
    if current_app.debug:
        return {'stack': traceback.format_exception(type(error), error, error.__traceback__)}
    return {}


def register_error_handlers(app):
    """把所有例外集中轉成 {success: false, message, errors?} 格式"""

    @app.errorhandler(APIError)
    def handle_api_error(error):
        db.session.rollback()
        if error.status_code >= 500:
            logger.error(f"{type(error).__name__}: {error.message}", exc_info=True)
        else:
            logger.info(f"{type(error).__name__} on {request.method} {request.path}: {error.message}")
        return error_response(
            error.message, error.status_code, error.errors, **_debug_payload(error)
        )

    @app.errorhandler(marshmallow.ValidationError)
    def handle_schema_error(error):
        db.session.rollback()
        return error_response('Validation failed', 400, error.messages)

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(error):
        # unique index 衝突 (例如 email 重複)
        db.session.rollback()
        logger.warning(f"Integrity error on {request.method} {request.path}: {error.orig}")
        message = 'Duplicate field value already exists'
        if 'email' in str(error.orig).lower():
            message = 'User with this email already exists'
        return error_response(message, 409, **_debug_payload(error))

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        if error.code == 429:
            logger.warning(f"Rate limit exceeded from: {request.remote_addr}")
        messages = {
            404: f'Not Found - {request.path}',
            405: 'The HTTP method is not allowed for this endpoint',
            413: 'Uploaded file is too large',
            429: 'Too many requests. Please try again later.',
        }
        return error_response(messages.get(error.code, error.description), error.code)

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """
        處理所有未預期的錯誤

        這是最後的防線, 不把錯誤細節給前端 (debug 模式除外)
        """
        db.session.rollback()
        logger.error(f"Unexpected error: {str(error)}", exc_info=True)
        return error_response(
            'An unexpected error occurred. Please try again later.', 500,
            **_debug_payload(error)
        )
