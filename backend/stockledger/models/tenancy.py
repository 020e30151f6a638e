from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Business(db.Model):
    """
    Tenant root.

    Every product, ledger entry, sale and return carries business_id, and every
    service call takes it explicitly. Nothing reads an ambient "current business".
    """
    __tablename__ = "businesses"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_businesses_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Business id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class NotificationSettings(db.Model):
    """
    Per-business low-stock thresholds and alert channel preferences.

    last_alert_at backs the dispatch rate limit; delivery itself happens
    outside this service.
    """
    __tablename__ = "notification_settings"
    __table_args__ = (
        db.UniqueConstraint("business_id", name="uq_notification_settings_business"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    threshold = db.Column(db.Integer, nullable=False, default=10)
    critical_threshold = db.Column(db.Integer, nullable=False, default=5)

    email_enabled = db.Column(db.Boolean, nullable=False, default=False)
    sms_enabled = db.Column(db.Boolean, nullable=False, default=False)
    email_address = db.Column(db.String(255), nullable=True)
    phone_number = db.Column(db.String(32), nullable=True)

    last_alert_at = db.Column(db.DateTime(timezone=True), nullable=True)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    business = db.relationship("Business", backref=db.backref("notification_settings", uselist=False))

    def to_dict(self) -> dict:
        return {
            "business_id": self.business_id,
            "threshold": self.threshold,
            "critical_threshold": self.critical_threshold,
            "email_enabled": self.email_enabled,
            "sms_enabled": self.sms_enabled,
            "email_address": self.email_address,
            "phone_number": self.phone_number,
            "last_alert_at": to_utc_z(self.last_alert_at),
        }
