from flask import Blueprint

customers = Blueprint('customers', __name__)

from storefront.customers import routes  # noqa: F401, E402
from storefront.customers import models  # noqa: F401, E402
