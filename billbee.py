import json
import logging
import threading
import time

import requests

from models import CALENDARIUM_NAME, compute_price, order_reference

logger = logging.getLogger(__name__)

BILLBEE_PRODUCT_ID = 200000000711626
BILLBEE_CREATED = 201
MIN_REQUEST_INTERVAL = 0.5

# Billbee PaymentMethod codes
PAYMENT_BANKTRANSFER = 1
PAYMENT_PAYPAL = 3
PAYMENT_VOUCHER = 6


class ForwardingError(Exception):
    """A failed Billbee call. ``str(err)`` is stored on the order as is."""

    def __init__(self, message, subject="Fehler bei billbee"):
        super().__init__(message)
        self.subject = subject


class RateLimiter:
    """Leaky bucket with room for a single request.

    ``wait()`` blocks until at least ``interval`` seconds have passed since
    the previous call and then records the current time as the new mark.
    Callers must serialise access themselves.
    """

    def __init__(self, interval=MIN_REQUEST_INTERVAL, clock=time.monotonic, sleep=time.sleep):
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self.last = clock()

    def wait(self):
        elapsed = self.clock() - self.last
        delay = self.interval - elapsed
        if delay > 0:
            logger.info("Billbee-Handler wartet %d ms...", int(delay * 1000))
            self.sleep(delay)
        else:
            delay = 0.0
        self.last = self.clock()
        return delay

# =====================================================
# REQUEST BODY
# =====================================================

def _address(order, suffix):
    return {
        "FirstName": getattr(order, f"first_name_{suffix}"),
        "LastName": getattr(order, f"last_name_{suffix}"),
        "Company": getattr(order, f"company_{suffix}") or "",
        "Street": getattr(order, f"address_street_{suffix}"),
        "HouseNumber": getattr(order, f"address_street_no_{suffix}"),
        "Zip": getattr(order, f"address_code_{suffix}"),
        "City": getattr(order, f"address_city_{suffix}"),
        "Country": getattr(order, f"address_country_{suffix}"),
        "Email": order.email,
    }


def _tags(order):
    tags = []
    if order.is_reseller:
        tags.append("reseller")
    if order.slow_food_member:
        tags.append("slow_food_mitglied")
    return tags


def build_order_body(order, voucher=False, convivium=None):
    """Translate an order into the body of Billbee's ``POST /orders``."""
    invoice = _address(order, "invoice")
    invoice["BillbeeId"] = 0
    tags = _tags(order)
    if voucher:
        payment = PAYMENT_VOUCHER
        total = 0.0
        if convivium:
            tags.append(convivium)
        tags.append("UZ")
    else:
        payment = PAYMENT_BANKTRANSFER if order.payment == "banktransfer" else PAYMENT_PAYPAL
        total = compute_price(order.amount)
    return {
        "CreatedAt": order.date,
        "OrderNumber": order_reference(order.id, voucher=voucher),
        "InvoiceAddress": invoice,
        "ShippingAddress": _address(order, "delivery"),
        "PaymentMethod": payment,
        "ShippingCost": 0,
        "TotalCost": total,
        "OrderItems": [{
            "Product": {"Title": CALENDARIUM_NAME, "BillbeeId": BILLBEE_PRODUCT_ID},
            "Quantity": order.amount,
            "TotalPrice": total,
        }],
        "Currency": "EUR",
        "SellerComment": order.message or "",
        "Tags": tags,
    }

# =====================================================
# BILLBEE CLIENT
# =====================================================

class BillbeeForwarder:

    def __init__(self, url, api_key, username, password, emailer=None,
                 orders_url="https://calendariumculinarium.de/api/orders",
                 timeout=30, rate_limiter=None):
        self.url = url
        self.api_key = api_key
        self.username = username
        self.password = password
        self.emailer = emailer
        self.orders_url = orders_url
        self.timeout = timeout
        self.rate_limiter = rate_limiter or RateLimiter()
        self.lock = threading.Lock()

    def forward_order(self, order):
        """Send ``order`` to Billbee and return the raw response body.

        Raises ForwardingError on any failure after alerting the operators.
        """
        reference = order_reference(order.id)
        try:
            return self._send(order)
        except ForwardingError as err:
            logger.warning("Billbee-Weiterleitung von %s fehlgeschlagen: %s", reference, err)
            self._notify(err, reference)
            raise

    def forward_voucher_order(self, order, convivium):
        """Send a supporter voucher order (zero priced, no alert mail)."""
        return self._send(order, voucher=True, convivium=convivium)

    def _send(self, order, **kwargs):
        with self.lock:
            self.rate_limiter.wait()
            try:
                payload = json.dumps(build_order_body(order, **kwargs))
            except (TypeError, ValueError) as e:
                raise ForwardingError(str(e), "Fehler beim Bestellung erstellen") from e

            try:
                response = requests.post(
                    self.url,
                    data=payload,
                    auth=(self.username, self.password),
                    headers={
                        "Content-Type": "application/json",
                        "X-Billbee-Api-Key": self.api_key,
                    },
                    timeout=self.timeout,
                    stream=True,
                )
            except requests.RequestException as e:
                raise ForwardingError(str(e), "Fehler beim Bestellung weiterleiten") from e

            try:
                if response.status_code != BILLBEE_CREATED:
                    message = f"Billbee returned HTTP status: {response.status_code} {response.reason}"
                    try:
                        message += " with error message: " + response.content.decode("utf-8", "replace")
                    except requests.RequestException as e:
                        message += " and error reading response body: " + str(e)
                    raise ForwardingError(message, "Fehler bei billbee")
                try:
                    return response.content.decode("utf-8", "replace")
                except requests.RequestException as e:
                    raise ForwardingError(str(e), "Fehler beim Response lesen") from e
            finally:
                response.close()

    def _notify(self, err, reference):
        if self.emailer is None:
            return
        body = (
            f"{err}\r\n\r\nBei Bestellung {reference}\r\n"
            f"Hier Bestelldetails einsehen: {self.orders_url}"
        )
        try:
            self.emailer.send_email(err.subject, body)
        except Exception:
            logger.critical("Fehler-Mail zu %s konnte nicht versendet werden", reference, exc_info=True)
