import logging
import os
import uuid

from flask import current_app

from errors import ValidationError

logger = logging.getLogger(__name__)


def upload_folder():
    folder = current_app.config['UPLOAD_FOLDER']
    os.makedirs(folder, exist_ok=True)
    return folder


def file_extension(filename):
    """副檔名 (小寫, 不含點); 直接看原始檔名, 非 ASCII 檔名也適用"""
    return os.path.splitext(os.path.basename(filename))[1].lstrip('.').lower()


def allowed_file(filename, mimetype=None):
    """副檔名在白名單內, 且 Content-Type 與副檔名相符"""
    extension = file_extension(filename)
    if extension not in current_app.config['ALLOWED_EXTENSIONS']:
        return False
    if mimetype is None:
        return True
    return mimetype in current_app.config['ALLOWED_MIME_TYPES'].get(extension, ())


def save_upload(file_storage):
    """
    儲存上傳檔案

    檔名用 uuid 產生, 不同請求寫入同一目錄不會互相覆蓋

    Returns:
        dict: filename, original_name, mime_type, size
    """
    if file_storage is None or not file_storage.filename:
        raise ValidationError('Please upload a file')

    if not allowed_file(file_storage.filename, file_storage.mimetype):
        raise ValidationError('File type not supported')

    filename = f'file-{uuid.uuid4().hex}.{file_extension(file_storage.filename)}'
    path = os.path.join(upload_folder(), filename)

    file_storage.save(path)
    size = os.path.getsize(path)

    logger.info(f"File stored: {filename} ({size} bytes)")

    return {
        'filename': filename,
        'original_name': os.path.basename(file_storage.filename),
        'mime_type': file_storage.mimetype,
        'size': size
    }


def remove_upload(filename):
    path = os.path.join(current_app.config['UPLOAD_FOLDER'], filename)
    try:
        os.remove(path)
    except FileNotFoundError:
        logger.warning(f"Attachment file already missing: {filename}")


def remove_uploads(filenames):
    for filename in filenames:
        remove_upload(filename)
