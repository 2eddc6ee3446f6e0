import re
from datetime import datetime
from storefront import db


CODE_PREFIX = 'CUST'


def next_customer_code(existing_codes) -> str:
    """
    Next human-readable customer code: highest numeric suffix + 1,
    zero-padded to 3 digits. CUST001 when there is nothing to go on.
    """
    numbers = []
    for code in existing_codes:
        match = re.fullmatch(rf'{CODE_PREFIX}(\d+)', (code or '').strip())
        if match:
            numbers.append(int(match.group(1)))
    if not numbers:
        return f'{CODE_PREFIX}001'
    return f'{CODE_PREFIX}{max(numbers) + 1:03d}'


class Customer(db.Model):
    __tablename__ = 'customers'

    id         = db.Column(db.Integer, primary_key=True)
    cust_id    = db.Column(db.String(20), unique=True, nullable=False, index=True)
    name       = db.Column(db.String(120), nullable=False, index=True)
    phone      = db.Column(db.String(20), nullable=True, index=True)
    address    = db.Column(db.Text, nullable=True)
    state      = db.Column(db.String(60), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)

    def to_dict(self) -> dict:
        return {
            'id':      self.id,
            'cust_id': self.cust_id,
            'name':    self.name,
            'phone':   self.phone,
            'address': self.address,
            'state':   self.state,
        }

    def __repr__(self):
        return f"<Customer {self.cust_id} {self.name!r}>"
