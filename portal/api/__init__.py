"""
portal/api/__init__.py
----------------------
Requisition workflow API blueprint.
URL prefix: /api/requisitions
"""
from flask import Blueprint

requisitions = Blueprint('requisitions', __name__)

from portal.api import routes  # noqa: E402, F401  (registers routes)
