"""
portal/reports/__init__.py
--------------------------
Reporting blueprint.
URL prefix: /reports
"""
from flask import Blueprint

reports = Blueprint('reports', __name__)

from portal.reports import routes  # noqa: E402, F401  (registers routes)
