"""
portal/admin/__init__.py
------------------------
Admin blueprint: routing policy configuration.
URL prefix: /admin
"""
from flask import Blueprint

admin = Blueprint('admin', __name__)

from portal.admin import routes  # noqa: E402, F401  (registers routes)
