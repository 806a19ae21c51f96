from datetime import timezone

from flask import current_app, request
from marshmallow import ValidationError as SchemaError
from marshmallow import fields

from errors import ValidationError
from models import is_object_id, utcnow

# ============================================
# 自訂欄位
# ============================================


class ObjectId(fields.String):
    """24 個 hex 字元的識別碼, 統一轉小寫"""

    default_error_messages = {
        'invalid_id': 'Must be a valid 24 character hex id'
    }

    def _deserialize(self, value, attr, data, **kwargs):
        value = super()._deserialize(value, attr, data, **kwargs)
        if not is_object_id(value):
            raise self.make_error('invalid_id')
        return value.lower()


class NormalizedEmail(fields.Email):
    """Email 不分大小寫: 去除空白後轉小寫再驗證"""

    def _deserialize(self, value, attr, data, **kwargs):
        value = super()._deserialize(value, attr, data, **kwargs)
        return value.strip().lower()


class UTCDateTime(fields.DateTime):
    """帶時區的輸入轉成 naive UTC, 跟資料庫一致"""

    def _deserialize(self, value, attr, data, **kwargs):
        value = super()._deserialize(value, attr, data, **kwargs)
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


def future_date(value):
    if value <= utcnow():
        raise SchemaError('Due date must be in the future')


# ============================================
# Helper Functions
# ============================================


def validate_request_data(schema_class, data, partial=False):
    """
    統一的輸入驗證函數

    驗證失敗時丟出 ValidationError (400), 成功回傳驗證後的資料
    """
    if data is None:
        raise ValidationError('Request body must be JSON')

    schema = schema_class()
    try:
        return schema.load(data, partial=partial)
    except SchemaError as err:
        raise ValidationError('Validation failed', err.messages)


def get_json_body():
    return request.get_json(silent=True)


def ensure_object_id(value, name='id'):
    """路徑參數在查詢前先檢查格式"""
    if not is_object_id(value):
        raise ValidationError(f'Invalid {name}', {name: ['Must be a valid 24 character hex id']})
    return value.lower()


def _split(value):
    if not value:
        return None
    return [item.strip() for item in value.split(',') if item.strip()]


def get_list_params():
    """
    解析列表查詢參數

    page / limit 無效時回到預設值; sort 與 select 以逗號分隔
    """
    default_limit = current_app.config['DEFAULT_PAGE_SIZE']
    max_limit = current_app.config['MAX_PAGE_SIZE']

    page = request.args.get('page', 1, type=int)
    limit = request.args.get('limit', default_limit, type=int)

    if page is None or page < 1:
        page = 1
    if limit is None or limit < 1:
        limit = default_limit
    limit = min(limit, max_limit)  # 限制最大值避免性能問題

    return {
        'page': page,
        'limit': limit,
        'sort': _split(request.args.get('sort')),
        'select': _split(request.args.get('select'))
    }
