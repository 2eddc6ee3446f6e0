from flask import Blueprint

auth = Blueprint('auth', __name__)

from storefront.auth import routes   # noqa: F401, E402
from storefront.auth import models   # noqa: F401, E402  registers User/StaffPermission with SQLAlchemy
