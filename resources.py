"""
共用的 CRUD 操作

get_one / get_all / create_one / update_one / delete_one 適用於任何集合,
以參數 (populate, filters, sort, transform, on_delete ...) 控制行為.
跨集合的副作用一律由呼叫端透過 hook 傳入, 這裡只碰目標文件本身.
"""
import logging
from collections import namedtuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from errors import NotFoundError, ValidationError
from models import db
from responses import get_pagination_info
from validation import ensure_object_id, validate_request_data

logger = logging.getLogger(__name__)

Page = namedtuple('Page', ['items', 'pagination'])

DEFAULT_SORT = ('-created_at',)

# ============================================
# Helper Functions
# ============================================


def _load_options(model, populate):
    options = []
    for field in populate or ():
        relation = model.relations.get(field)
        if relation is None:
            raise ValueError(f'{model.__name__} cannot populate {field!r}')
        options.append(selectinload(getattr(model, relation)))
    return options


def _column(model, field, purpose):
    column = model.column_for(field)
    if column is None:
        raise ValidationError(
            f'Invalid {purpose} field', {purpose: [f'Unknown field: {field}']}
        )
    return column


def _order_by(model, sort):
    clauses = []
    for field in sort or DEFAULT_SORT:
        descending = field.startswith('-')
        column = _column(model, field.lstrip('-'), 'sort')
        clauses.append(column.desc() if descending else column.asc())
    # 同值時用 id 保持分頁順序穩定
    clauses.append(model.id.asc())
    return clauses


def _commit(action, model):
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.error(f"{action} {model.__name__} failed", exc_info=True)
        raise


def serialize(model, value, populate=(), select=None):
    """
    把文件 (或文件列表) 轉成 dict

    select 中有未知欄位時回傳 400
    """
    if select:
        unknown = [field for field in select if field not in model.public_fields]
        if unknown:
            raise ValidationError(
                'Invalid select field', {'select': [f'Unknown field: {f}' for f in unknown]}
            )
    if isinstance(value, (list, tuple)):
        return [item.to_dict(populate=populate, select=select) for item in value]
    return value.to_dict(populate=populate, select=select)


# ============================================
# 查詢
# ============================================


def get_one(model, object_id, populate=()):
    """依 id 取得單一文件, 不存在時丟出 NotFoundError"""
    object_id = ensure_object_id(object_id)
    instance = db.session.get(model, object_id, options=_load_options(model, populate))
    if instance is None:
        raise NotFoundError(model.__name__)
    return instance


def get_all(model, filters=None, criteria=(), populate=(), sort=None, page=1, limit=10):
    """
    分頁查詢

    Args:
        filters: {欄位: 值} 的相等條件 (API 欄位名稱)
        criteria: 額外的 SQLAlchemy 條件 (例如權限範圍)
        sort: ['-created_at', 'title'] 形式, 預設依建立時間新到舊

    Returns:
        Page(items, pagination), total 與分頁使用同一組條件
    """
    query = model.query

    for field, value in (filters or {}).items():
        if value is None:
            continue
        query = query.filter(_column(model, field, 'filter') == value)

    for criterion in criteria:
        query = query.filter(criterion)

    query = query.options(*_load_options(model, populate)).order_by(*_order_by(model, sort))

    paginated = query.paginate(page=page, per_page=limit, error_out=False)

    return Page(paginated.items, get_pagination_info(page, limit, paginated.total))


# ============================================
# 寫入
# ============================================


def create_one(model, data, schema=None, transform=None, propagate=None):
    """
    建立文件

    流程: schema 驗證 -> transform(data) -> 寫入 -> propagate(instance) -> commit
    propagate 與主要寫入在同一個 transaction, 任何一步丟出例外都會 rollback
    """
    if schema is not None:
        data = validate_request_data(schema, data)
    if transform is not None:
        data = transform(data)

    instance = model(**data)
    db.session.add(instance)

    try:
        db.session.flush()
        if propagate is not None:
            propagate(instance)
    except Exception:
        db.session.rollback()
        logger.error(f"Create {model.__name__} failed", exc_info=True)
        raise

    _commit('Create', model)
    logger.info(f"{model.__name__} created: {instance.id}")
    return instance


def update_one(model, object_id, data, schema=None, transform=None):
    """
    更新文件

    transform 同時拿到驗證後的資料與現有文件, 可以修改或補上欄位
    """
    instance = get_one(model, object_id)

    if schema is not None:
        data = validate_request_data(schema, data, partial=True)
    if not data:
        raise ValidationError('Please provide at least one field to update')
    if transform is not None:
        data = transform(data, instance)

    for field, value in data.items():
        setattr(instance, field, value)

    _commit('Update', model)
    logger.info(f"{model.__name__} updated: {instance.id}")
    return instance


def delete_one(model, object_id, on_delete=None):
    """
    刪除文件

    on_delete 在刪除前同步執行 (用於串聯刪除 / 反向參照維護)
    """
    instance = get_one(model, object_id)

    try:
        if on_delete is not None:
            on_delete(instance)
        db.session.delete(instance)
        db.session.flush()
    except Exception:
        db.session.rollback()
        logger.error(f"Delete {model.__name__} failed", exc_info=True)
        raise

    _commit('Delete', model)
    logger.info(f"{model.__name__} deleted: {object_id}")
    return instance
