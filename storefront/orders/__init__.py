from flask import Blueprint

orders = Blueprint('orders', __name__)

from storefront.orders import routes  # noqa: F401, E402
from storefront.orders import models  # noqa: F401, E402
