from models import Order

TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "ORDERS_API_USER": "admin",
    "ORDERS_API_PASSWORD": "geheim",
    "BILLBEE_FORWARDING": False,
}


def order_payload(**overrides):
    data = {
        "product_id": 1,
        "amount": 2,
        "company_invoice": "",
        "first_name_invoice": "Erika",
        "last_name_invoice": "Mustermann",
        "company_delivery": "Slow Food Youth",
        "first_name_delivery": "Max",
        "last_name_delivery": "Mustermann",
        "email": "erika@example.org",
        "address_street_invoice": "Heidestraße",
        "address_street_no_invoice": "17",
        "address_code_invoice": "51147",
        "address_city_invoice": "Köln",
        "address_country_invoice": "Deutschland",
        "address_street_delivery": "Hauptstraße",
        "address_street_no_delivery": "3a",
        "address_code_delivery": "10115",
        "address_city_delivery": "Berlin",
        "address_country_delivery": "Deutschland",
        "payment": "banktransfer",
        "premium": "",
        "is_reseller": False,
        "slow_food_member": True,
        "agrees_agb": True,
        "agrees_data_privacy": True,
        "message": "Bitte als Geschenk verpacken",
    }
    data.update(overrides)
    return data


def make_order(order_id=None, date="2026-10-19T12:00:00+02:00", **overrides):
    order = Order.from_json(order_payload(**overrides))
    order.id = order_id
    order.date = date
    return order
