from sqlalchemy import func, CheckConstraint
from filestore.extensions import db

# Keep simple text+CHECK for plan names (no DB enum migration pain)
ACCOUNT_BASIC = "basic"
ACCOUNT_PRO = "pro"

class User(db.Model):
    """The slice of the users table that billing reconciliation writes to."""

    __tablename__ = "users"

    uuid = db.Column(db.String(36), primary_key=True)
    email = db.Column(db.String(255), nullable=True)

    account_type = db.Column(db.String(16), nullable=False, server_default=ACCOUNT_BASIC)
    post_api_calls = db.Column(db.Integer, nullable=False, server_default=db.text("5"))
    get_api_calls = db.Column(db.Integer, nullable=False, server_default=db.text("5"))
    edit_api_calls = db.Column(db.Integer, nullable=False, server_default=db.text("5"))

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(
            "account_type IN ('basic','pro')",
            name="ck_users_account_type_valid",
        ),
    )

    def __repr__(self) -> str:
        return f"<User uuid={self.uuid!r} account_type={self.account_type!r}>"
