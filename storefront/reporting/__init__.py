from flask import Blueprint

reporting = Blueprint('reporting', __name__)

from storefront.reporting import routes  # noqa: F401, E402
