from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy(session_options={"expire_on_commit": False})

CALENDARIUM_NAME = "Calendarium Culinarium"
CALENDARIUM_PRICE = 20.0

PAYMENT_METHODS = ("banktransfer", "paypal")

# Wertebereich einer SQLite INTEGER Spalte
INT_MIN = -2**63
INT_MAX = 2**63 - 1

# ----------------------
# Produkt Modell
# ----------------------
class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), unique=True, nullable=False)
    description = db.Column(db.Text)
    price = db.Column(db.Float)
    shipping = db.Column(db.Float)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "shipping": self.shipping,
        }

    def __repr__(self):
        return f"<Product {self.name}>"


def products_that_should_exist():
    return [
        Product(
            name=CALENDARIUM_NAME,
            description="Der Slow Food Youth Saisonkalender",
            price=CALENDARIUM_PRICE,
            shipping=0.0,
        )
    ]

# ----------------------
# Bestell-Modell
# ----------------------

# JSON-Feldname -> Typ der Eingabe.
ORDER_FIELDS = {
    "product_id": int,
    "amount": int,
    "company_invoice": str,
    "first_name_invoice": str,
    "last_name_invoice": str,
    "company_delivery": str,
    "first_name_delivery": str,
    "last_name_delivery": str,
    "email": str,
    "address_street_invoice": str,
    "address_street_no_invoice": str,
    "address_code_invoice": str,
    "address_city_invoice": str,
    "address_country_invoice": str,
    "address_street_delivery": str,
    "address_street_no_delivery": str,
    "address_code_delivery": str,
    "address_city_delivery": str,
    "address_country_delivery": str,
    "payment": str,
    "premium": str,
    "is_reseller": bool,
    "slow_food_member": bool,
    "agrees_agb": bool,
    "agrees_data_privacy": bool,
    "message": str,
}


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    date = db.Column(db.String(40), nullable=False)

    # ⭐ RECHNUNGSANSCHRIFT
    company_invoice = db.Column(db.String(200), default="")
    first_name_invoice = db.Column(db.String(120), nullable=False)
    last_name_invoice = db.Column(db.String(120), nullable=False)
    address_street_invoice = db.Column(db.String(200), nullable=False)
    address_street_no_invoice = db.Column(db.String(20), nullable=False)
    address_code_invoice = db.Column(db.String(20), nullable=False)
    address_city_invoice = db.Column(db.String(120), nullable=False)
    address_country_invoice = db.Column(db.String(120), nullable=False)

    # ⭐ VERSANDANSCHRIFT
    company_delivery = db.Column(db.String(200), default="")
    first_name_delivery = db.Column(db.String(120), nullable=False)
    last_name_delivery = db.Column(db.String(120), nullable=False)
    address_street_delivery = db.Column(db.String(200), nullable=False)
    address_street_no_delivery = db.Column(db.String(20), nullable=False)
    address_code_delivery = db.Column(db.String(20), nullable=False)
    address_city_delivery = db.Column(db.String(120), nullable=False)
    address_country_delivery = db.Column(db.String(120), nullable=False)

    email = db.Column(db.String(120), nullable=False)
    payment = db.Column(db.String(20))
    premium = db.Column(db.String(50), default="")
    is_reseller = db.Column(db.Boolean, default=False)
    slow_food_member = db.Column(db.Boolean, default=False)
    agrees_agb = db.Column(db.Boolean, default=False)
    agrees_data_privacy = db.Column(db.Boolean, default=False)
    message = db.Column(db.Text, default="")
    billbee_api_response = db.Column(db.Text, default="")

    @classmethod
    def from_json(cls, data):
        """Build an unsaved order from a decoded request body.

        ``id``, ``date`` and ``billbee_api_response`` are never taken from
        the client. Raises ``ValueError`` for a field of the wrong type or an
        integer outside the range of a database column.
        """
        if not isinstance(data, dict):
            raise ValueError("Ungültige Bestellung.")
        values = {}
        for field, typ in ORDER_FIELDS.items():
            value = data.get(field)
            if value is None:
                value = typ()
            # bool ist eine Unterklasse von int
            if (typ is int and isinstance(value, bool)) or not isinstance(value, typ):
                raise ValueError(f"Ungültiger Wert für '{field}'.")
            if typ is int and not INT_MIN <= value <= INT_MAX:
                raise ValueError(f"Ungültiger Wert für '{field}'.")
            values[field] = value
        return cls(billbee_api_response="", **values)

    def to_dict(self):
        result = {"id": self.id, "date": self.date}
        result.update((field, getattr(self, field)) for field in ORDER_FIELDS)
        result["billbee_api_response"] = self.billbee_api_response or ""
        return result

    def __repr__(self):
        return f"<Order {self.id} {self.email}>"

# ----------------------
# Preis & Pruefung
# ----------------------

class OrderRejected(Exception):
    """Raised with a customer-facing message when an order cannot be accepted."""


def compute_price(amount):
    if amount < 3:
        discount = 0.0
    elif amount < 5:
        discount = 0.1
    elif amount < 50:
        discount = 0.15
    else:
        discount = 0.2
    return amount * CALENDARIUM_PRICE * (1.0 - discount)


def order_reference(order_id, voucher=False):
    prefix = "UZ-" if voucher else "CC-"
    return f"{prefix}{order_id:06d}"


def _verify_address(order, suffix, label):
    if not getattr(order, f"first_name_{suffix}") or not getattr(order, f"last_name_{suffix}"):
        raise OrderRejected(f"Bitte geben Sie einen Namen an ({label})!")
    if not getattr(order, f"address_street_{suffix}"):
        raise OrderRejected(f"Bitte geben Sie eine gültigen Straßennamen an ({label})!")
    if not getattr(order, f"address_street_no_{suffix}"):
        raise OrderRejected(f"Bitte geben Sie eine gültige Straßennummer an ({label})!")
    if not getattr(order, f"address_code_{suffix}"):
        raise OrderRejected(f"Bitte geben Sie eine gültige Postleitzahl an ({label})!")
    if not getattr(order, f"address_city_{suffix}"):
        raise OrderRejected(f"Bitte geben Sie eine gültige Stadt an ({label})!")
    if not getattr(order, f"address_country_{suffix}"):
        raise OrderRejected(f"Bitte geben Sie ein gültiges Land an ({label})!")


def verify_order(order):
    """Check an order field by field; the first failure wins."""
    if order.amount is None or order.amount < 1:
        raise OrderRejected("Bitte bestellen Sie mindestens ein Produkt!")
    if not order.email:
        raise OrderRejected("Bitte geben Sie gültige Emailadresse an!")
    _verify_address(order, "invoice", "Rechnungsanschrift")
    _verify_address(order, "delivery", "Versandanschrift")
    if order.payment not in PAYMENT_METHODS:
        raise OrderRejected("Bitte wählen Sie eine gültige Zahlart aus (banktransfer oder paypal)!")
    if not order.agrees_agb:
        raise OrderRejected(
            "Sie müssen für eine Bestellung die AGBs unter "
            "https://calendariumculinarium.de/agb akzeptieren!"
        )
    if not order.agrees_data_privacy:
        raise OrderRejected(
            "Sie müssen für eine Bestellung die Datenschutzerklärung unter "
            "https://calendariumculinarium.de/datenschutz akzeptieren!"
        )
