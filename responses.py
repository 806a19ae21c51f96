from flask import jsonify

# ============================================
# 統一回應格式
# {success, message?, data?, count?, pagination?}
# ============================================


def success_response(data=None, message=None, status=200, **meta):
    body = {'success': True}
    if message is not None:
        body['message'] = message
    if data is not None:
        body['data'] = data
    body.update(meta)
    return jsonify(body), status


def error_response(message, status=500, errors=None, **extra):
    body = {'success': False, 'message': message}
    if errors is not None:
        body['errors'] = errors
    body.update(extra)
    return jsonify(body), status


def get_pagination_info(page, limit, total):
    """
    分頁資訊

    next / prev 只在還有下一頁 / 上一頁時才出現
    """
    pagination = {
        'page': page,
        'limit': limit,
        'total': total,
        'total_pages': (total + limit - 1) // limit if limit else 0
    }

    if page * limit < total:
        pagination['next'] = {'page': page + 1, 'limit': limit}

    if (page - 1) * limit > 0:
        pagination['prev'] = {'page': page - 1, 'limit': limit}

    return pagination
