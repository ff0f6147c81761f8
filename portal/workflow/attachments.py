"""
portal/workflow/attachments.py
------------------------------
Attachment store collaborator.

    store.save(requisition_id, file) → reference string

The workflow only keeps the reference (in requisition_attachments); the
bytes live wherever the store puts them. LocalAttachmentStore writes to
UPLOAD_FOLDER/<requisition_id>/<random>_<safe filename>.
"""
import os
import uuid

from flask import current_app
from werkzeug.utils import secure_filename


class AttachmentStore:
    """Interface: persist a file for a requisition and return its reference."""

    def save(self, requisition_id, file) -> str:
        raise NotImplementedError

    def open(self, reference):
        raise NotImplementedError


class LocalAttachmentStore(AttachmentStore):

    def __init__(self, root):
        self.root = root

    def save(self, requisition_id, file) -> str:
        folder = os.path.join(self.root, str(requisition_id))
        os.makedirs(folder, exist_ok=True)
        name = f'{uuid.uuid4().hex[:12]}_{secure_filename(file.filename) or "file"}'
        file.save(os.path.join(folder, name))
        return f'{requisition_id}/{name}'

    def open(self, reference):
        path = os.path.normpath(os.path.join(self.root, reference))
        if not path.startswith(os.path.normpath(self.root) + os.sep):
            raise ValueError(f'Reference escapes the attachment root: {reference!r}')
        return open(path, 'rb')


def init_attachment_store(app):
    root = app.config.get('UPLOAD_FOLDER') or os.path.join(app.instance_path, 'uploads')
    app.extensions['attachment_store'] = LocalAttachmentStore(root)


def get_store() -> AttachmentStore:
    return current_app.extensions['attachment_store']


def allowed_file(filename: str) -> bool:
    allowed = current_app.config['ALLOWED_ATTACHMENT_EXTENSIONS']
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in allowed
