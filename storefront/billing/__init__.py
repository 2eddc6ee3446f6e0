from flask import Blueprint

billing = Blueprint('billing', __name__)

from storefront.billing import routes  # noqa: F401, E402
from storefront.billing import models  # noqa: F401, E402  registers Invoice/InvoiceItem/Payment with SQLAlchemy
