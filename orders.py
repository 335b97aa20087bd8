import logging
from datetime import datetime, timezone

import pandas as pd
from sqlalchemy.exc import SQLAlchemyError

from billbee import ForwardingError
from models import Order, OrderRejected, order_reference, verify_order

logger = logging.getLogger(__name__)

TRANSIENT_FAILURE = "Billbee returned HTTP status: 500"

VOUCHER_COLUMNS = (
    "Convivium", "Typ", "Firma", "Name2", "Name3", "Name4",
    "Strasse", "PLZ", "Ort", "Land", "Mitgliedsnummer",
)


def now_iso():
    return datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")


def confirmation_message(order):
    return f"Vielen Dank für Deine Bestellung mit Bestellnr. '{order_reference(order.id)}'."

# =====================================================
# BESTELLUNG AUFGEBEN
# =====================================================

def place_order(store, forwarder, data, now=now_iso):
    """Run one order submission from decoded JSON to the stored Billbee outcome.

    Raises OrderRejected for anything the customer has to fix. Storage
    errors propagate; nothing is forwarded unless the order was saved.
    Forwarding failures never propagate: they end up on the order.
    """
    try:
        order = Order.from_json(data)
    except ValueError as e:
        raise OrderRejected(str(e)) from e
    order.date = now()

    if store.get_product_by_id(order.product_id) is None:
        raise OrderRejected("Bitte wählen Sie ein existierendes Produkt.")
    verify_order(order)

    store.add_order(order)
    logger.info("Bestellung %s gespeichert", order_reference(order.id))

    if forwarder is not None:
        forward_and_record(store, forwarder, order)
    return order


def forward_and_record(store, forwarder, order):
    try:
        response = forwarder.forward_order(order)
    except ForwardingError as err:
        response = str(err)
    else:
        logger.info("Bestellung %s an Billbee weitergeleitet", order_reference(order.id))

    order.billbee_api_response = response
    try:
        store.add_billbee_response(order.id, response)
    except SQLAlchemyError:
        # Die Bestellung selbst ist gespeichert; die Antwort steht nur im Log.
        logger.critical(
            "Billbee-Antwort zu %s konnte nicht gespeichert werden: %s",
            order_reference(order.id), response, exc_info=True
        )
    return response

# =====================================================
# WARTUNG
# =====================================================

def forward_missing_orders(store, forwarder):
    """Re-send orders whose last Billbee attempt ended in an HTTP 500.

    Returns the number of orders that went through this time.
    """
    forwarded = 0
    for order in store.get_orders():
        if TRANSIENT_FAILURE not in (order.billbee_api_response or ""):
            continue
        if order.first_name_delivery == "Test":
            continue
        logger.info("Erneut senden: %s %s", order.first_name_delivery, order.last_name_delivery)
        try:
            response = forwarder.forward_order(order)
        except ForwardingError as err:
            logger.warning("Billbee-Fehler bei %s: %s", order_reference(order.id), err)
            continue
        store.add_billbee_response(order.id, response)
        forwarded += 1
    return forwarded


def read_voucher_orders(path, now=now_iso):
    """Yield ``(order, convivium)`` for every member row of the supporter CSV.

    Raises ValueError before the first row when columns are missing.
    """
    df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8")
    if df.shape[1] < len(VOUCHER_COLUMNS):
        raise ValueError(
            f"Die CSV-Datei hat {df.shape[1]} Spalten, erwartet werden {len(VOUCHER_COLUMNS)}: "
            + ", ".join(VOUCHER_COLUMNS)
        )
    for number, row in enumerate(df.itertuples(index=False, name=None), start=1):
        convivium, _typ, company, name2, name3, name4, street, plz, city, country, member_no = row[:len(VOUCHER_COLUMNS)]
        name = ", ".join(n for n in (name2, name3, name4) if n)
        country = country or "Deutschland"
        address = {
            "company": company, "first_name": "", "last_name": name,
            "address_street": street, "address_street_no": "",
            "address_code": plz, "address_city": city, "address_country": country,
        }
        values = {}
        for suffix in ("invoice", "delivery"):
            values.update((f"{key}_{suffix}", value) for key, value in address.items())
        order = Order(
            id=number, product_id=0, amount=1, date=now(), email="",
            payment="banktransfer", premium="",
            is_reseller=False, slow_food_member=True,
            agrees_agb=True, agrees_data_privacy=True,
            message=f"Mitgliedsnummer {member_no}", billbee_api_response="",
            **values
        )
        yield order, convivium


def send_voucher_orders(path, forwarder):
    sent = failed = 0
    for order, convivium in read_voucher_orders(path):
        try:
            forwarder.forward_voucher_order(order, convivium)
        except ForwardingError as err:
            logger.warning("%s: %s", order_reference(order.id, voucher=True), err)
            failed += 1
        else:
            sent += 1
    return sent, failed
