import enum
from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash
from storefront import db


# Admin modules a staff user can be granted access to.
PERMISSION_KEYS = ('inventory', 'billing', 'invoice_archive', 'customers')


class RoleEnum(enum.Enum):
    admin = "admin"
    staff = "staff"
    user  = "user"


class User(db.Model):
    """A storefront account. Only admin and staff roles reach the back-office."""
    __tablename__ = 'users'

    id            = db.Column(db.Integer, primary_key=True)
    name          = db.Column(db.String(120), nullable=False)
    username      = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email         = db.Column(db.String(120), nullable=True)
    phone         = db.Column(db.String(20), nullable=True)
    password_hash = db.Column(db.String(256), nullable=False)
    role          = db.Column(db.Enum(RoleEnum), nullable=False, default=RoleEnum.user)
    created_at    = db.Column(db.DateTime, nullable=False, default=datetime.now)

    permissions = db.relationship('StaffPermission', backref='staff', lazy='select',
                                  cascade='all, delete-orphan')

    # ── Password helpers ──────────────────────────────────────────
    def set_password(self, plain_password: str) -> None:
        """Hash and store the password. Never stores plain text."""
        self.password_hash = generate_password_hash(plain_password)

    def check_password(self, plain_password: str) -> bool:
        """Return True if the supplied password matches the stored hash."""
        return check_password_hash(self.password_hash, plain_password)

    # ── Convenience ───────────────────────────────────────────────
    @property
    def is_admin(self) -> bool:
        return self.role == RoleEnum.admin

    def can(self, permission_key: str) -> bool:
        """Admins open every module; staff only what they were granted."""
        if self.is_admin:
            return True
        if self.role != RoleEnum.staff:
            return False
        return any(p.permission_key == permission_key and p.allowed for p in self.permissions)

    def allowed_modules(self) -> list:
        return [key for key in PERMISSION_KEYS if self.can(key)]

    def to_dict(self) -> dict:
        return {
            'id':       self.id,
            'name':     self.name,
            'username': self.username,
            'email':    self.email,
            'phone':    self.phone,
            'role':     self.role.value,
        }

    def __repr__(self) -> str:
        return f"<User {self.username!r} role={self.role.value!r}>"


class StaffPermission(db.Model):
    """staff × permission_key → allowed. One row per granted (or revoked) module."""
    __tablename__ = 'staff_permissions'

    id             = db.Column(db.Integer, primary_key=True)
    staff_id       = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    permission_key = db.Column(db.String(40), nullable=False)
    allowed        = db.Column(db.Boolean, nullable=False, default=False)

    __table_args__ = (
        db.UniqueConstraint('staff_id', 'permission_key', name='uq_staff_permission'),
    )

    def __repr__(self):
        return f"<StaffPermission staff={self.staff_id} {self.permission_key}={self.allowed}>"
