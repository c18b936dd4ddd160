from datetime import datetime, timezone

from evergreater import db, bcrypt
from flask_login import UserMixin


GLOBAL_COUNTER_ID = 1

# Column name -> JSON key used on the HTTP and push surfaces
ACCOUNT_WIRE_FIELDS = {
    'tickets_contributed': 'ticketsContributed',
    'supplies': 'supplies',
    'currency': 'currency',
    'premium_currency': 'premiumCurrency',
    'generator_count': 'generatorCount',
}


def to_wire(fields):
    return {ACCOUNT_WIRE_FIELDS[name]: value for name, value in fields.items()}


def _utcnow():
    return datetime.now(timezone.utc)


class Account(UserMixin, db.Model):
    __tablename__ = 'accounts'
    __table_args__ = (
        db.CheckConstraint('tickets_contributed >= 0', name='ck_accounts_tickets_non_negative'),
        db.CheckConstraint('supplies >= 0', name='ck_accounts_supplies_non_negative'),
        db.CheckConstraint('currency >= 0', name='ck_accounts_currency_non_negative'),
        db.CheckConstraint('premium_currency >= 0', name='ck_accounts_premium_non_negative'),
        db.CheckConstraint('generator_count >= 0', name='ck_accounts_generators_non_negative'),
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    tickets_contributed = db.Column(db.Integer, nullable=False, default=0)
    supplies = db.Column(db.Integer, nullable=False, default=100)
    currency = db.Column(db.Integer, nullable=False, default=0)
    premium_currency = db.Column(db.Integer, nullable=False, default=0)
    generator_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        payload = {'id': self.id, 'email': self.email}
        payload.update(to_wire({name: getattr(self, name) for name in ACCOUNT_WIRE_FIELDS}))
        return payload


class GlobalCounter(db.Model):
    __tablename__ = 'global_counter'
    __table_args__ = (
        db.CheckConstraint('value >= 0', name='ck_global_counter_non_negative'),
    )

    id = db.Column(db.Integer, primary_key=True)
    value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
