"""Site-wide key/value settings (e.g. the PayPal product ID per mode)."""

from app.extensions import db


class SiteSetting(db.Model):
    __tablename__ = "site_settings"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False)
    value = db.Column(db.Text, nullable=True)
    description = db.Column(db.String(255), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @classmethod
    def get_value(cls, key):
        setting = cls.query.filter_by(key=key).first()
        return setting.value if setting else None

    @classmethod
    def set_value(cls, key, value, description=None):
        setting = cls.query.filter_by(key=key).first()
        if setting:
            setting.value = value
        else:
            db.session.add(cls(key=key, value=value, description=description))
        db.session.flush()

    def __repr__(self):
        return f"<SiteSetting {self.key}>"
