from flask import Blueprint

main = Blueprint('main', __name__)

from portal.main import routes  # noqa: F401, E402
