import enum
from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash
from portal import db
from portal.auth.identity import Identity


class RoleEnum(enum.Enum):
    requester = "requester"
    approver  = "approver"
    admin     = "admin"


class User(db.Model):
    """A portal user: requester, approver or admin."""
    __tablename__ = 'users'

    id            = db.Column(db.Integer, primary_key=True)
    name          = db.Column(db.String(120), nullable=False)
    username      = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email         = db.Column(db.String(200), nullable=True)
    password_hash = db.Column(db.String(256), nullable=False)
    role          = db.Column(db.Enum(RoleEnum), nullable=False, default=RoleEnum.requester)
    department    = db.Column(db.String(100), nullable=True)
    is_active     = db.Column(db.Boolean, nullable=False, default=True)
    created_at    = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

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

    @property
    def identity(self) -> Identity:
        """The {id, role, department} triple the workflow core consumes."""
        return Identity(id=self.id, role=self.role.value, department=self.department)

    def to_dict(self) -> dict:
        return {
            'id':         self.id,
            'name':       self.name,
            'username':   self.username,
            'email':      self.email,
            'role':       self.role.value,
            'department': self.department,
        }

    def __repr__(self) -> str:
        return f"<User {self.username!r} role={self.role.value!r}>"
