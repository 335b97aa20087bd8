import os
import logging
import secrets
from functools import wraps

import click
from flask import Flask, request, jsonify
from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from billbee import BillbeeForwarder
from emailer import Emailer
from models import OrderRejected, db, products_that_should_exist
from orders import (
    confirmation_message, forward_missing_orders, place_order, send_voucher_orders
)
from storage import OrderStore

# =====================================================
# CONFIG
# =====================================================

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def load_config():
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        database_url = database_url.replace("postgres://", "postgresql://")
    return {
        "SQLALCHEMY_DATABASE_URI": database_url or "sqlite:///calendarium.db",
        "SQLALCHEMY_TRACK_MODIFICATIONS": False,
        "ORDERS_API_USER": os.getenv("ORDERS_API_USER"),
        "ORDERS_API_PASSWORD": os.getenv("ORDERS_API_PASSWORD"),
        "BILLBEE_FORWARDING": os.getenv("BILLBEE_FORWARDING") == "1",
        "BILLBEE_URL": os.getenv("BILLBEE_URL"),
        "BILLBEE_API_KEY": os.getenv("BILLBEE_API_KEY"),
        "BILLBEE_USER": os.getenv("BILLBEE_USER"),
        "BILLBEE_PASSWORD": os.getenv("BILLBEE_PASSWORD"),
        "BILLBEE_TIMEOUT": float(os.getenv("BILLBEE_TIMEOUT", "30")),
        "SENDGRID_API_KEY": os.getenv("SENDGRID_API_KEY"),
        "EMAIL_SENDER": os.getenv("EMAIL_SENDER"),
        "ERROR_EMAIL_RECIPIENTS": os.getenv("ERROR_EMAIL_RECIPIENTS", ""),
        "ORDERS_URL": os.getenv("ORDERS_URL", "https://calendariumculinarium.de/api/orders"),
    }


def build_forwarder(config):
    if not config["BILLBEE_FORWARDING"]:
        return None
    if not config["BILLBEE_URL"]:
        raise RuntimeError("BILLBEE_URL fehlt!")
    recipients = config["ERROR_EMAIL_RECIPIENTS"]
    if isinstance(recipients, str):
        recipients = [r.strip() for r in recipients.split(",")]
    emailer = Emailer(config["SENDGRID_API_KEY"], config["EMAIL_SENDER"], recipients)
    logger.info("Billbee-Weiterleitung aktiviert.")
    return BillbeeForwarder(
        config["BILLBEE_URL"],
        config["BILLBEE_API_KEY"],
        config["BILLBEE_USER"],
        config["BILLBEE_PASSWORD"],
        emailer=emailer,
        orders_url=config["ORDERS_URL"],
        timeout=config["BILLBEE_TIMEOUT"],
    )

# =====================================================
# BASIC AUTH
# =====================================================

def requires_auth(username, password, realm="Please enter your username and password for this site"):
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            auth = request.authorization
            given_user = (auth.username or "") if auth else ""
            given_pass = (auth.password or "") if auth else ""
            # beide Vergleiche laufen immer, in konstanter Zeit
            user_ok = secrets.compare_digest(given_user.encode(), username.encode())
            pass_ok = secrets.compare_digest(given_pass.encode(), password.encode())
            if auth is None or not (user_ok and pass_ok):
                return "Unauthorized", 401, {
                    "WWW-Authenticate": f'Basic realm="{realm}"',
                    "Content-Type": "text/plain; charset=utf-8",
                }
            return view(*args, **kwargs)
        return wrapped
    return decorator


def text(body, status=200):
    return body, status, {"Content-Type": "text/plain; charset=utf-8"}

# =====================================================
# APP
# =====================================================

def create_app(test_config=None, forwarder=None):
    app = Flask(__name__)
    app.config.update(load_config())
    if test_config:
        app.config.update(test_config)

    if not app.config["ORDERS_API_USER"] or not app.config["ORDERS_API_PASSWORD"]:
        raise RuntimeError("ORDERS_API_USER / ORDERS_API_PASSWORD fehlen!")

    db.init_app(app)
    store = OrderStore(db)
    if forwarder is None:
        forwarder = build_forwarder(app.config)
    app.extensions["order_store"] = store
    app.extensions["billbee"] = forwarder

    # Tabellen & Produkte anlegen, Fehler hier beenden den Start.
    with app.app_context():
        store.create_schema()
        if store.ensure_products(products_that_should_exist()):
            logger.info("Datenbank: neue Datenbank angelegt.")
        else:
            logger.info("Datenbank: bestehende Datenbank wird verwendet.")

    # ---------- Produkte ----------
    @app.route("/api/products", methods=["GET"])
    def get_products():
        logger.info("getProducts API call...")
        try:
            products = store.get_products()
        except SQLAlchemyError as e:
            logger.error("Produkte laden fehlgeschlagen: %s", e)
            return text(str(e), 400)
        return jsonify([p.to_dict() for p in products])

    @app.route("/api/products/<name>", methods=["GET"])
    def get_product(name):
        logger.info("getProduct API call for '%s'...", name)
        try:
            product = store.get_product(name)
        except SQLAlchemyError as e:
            logger.error("Produkt laden fehlgeschlagen: %s", e)
            return text(str(e), 400)
        if product is None:
            return text(f"Produkt '{name}' nicht gefunden.", 400)
        return jsonify(product.to_dict())

    # ---------- Bestellung ----------
    @app.route("/api/orders", methods=["POST"])
    def create_order():
        logger.info("createOrder API call...")
        data = request.get_json(silent=True)
        try:
            order = place_order(store, forwarder, data)
        except OrderRejected as e:
            logger.warning("Bestellung abgelehnt: %s", e)
            return text(str(e), 400)
        except SQLAlchemyError as e:
            logger.error("Bestellung speichern fehlgeschlagen: %s", e)
            return text(str(e), 400)
        return text(confirmation_message(order))

    # ---------- Alle Bestellungen ----------
    @app.route("/api/orders", methods=["GET"])
    @requires_auth(app.config["ORDERS_API_USER"], app.config["ORDERS_API_PASSWORD"])
    def get_orders():
        logger.info("getOrders API call...")
        try:
            orders = store.get_orders()
        except SQLAlchemyError as e:
            logger.error("Bestellungen laden fehlgeschlagen: %s", e)
            return text(str(e), 400)
        return jsonify([o.to_dict() for o in orders])

    # ---------- Wartung ----------
    @app.cli.command("init-db")
    def init_db():
        """Create tables and catalog products, then exit."""
        click.echo(f"{len(store.get_products())} Produkt(e) in der Datenbank.")

    @app.cli.command("forward-missing")
    def forward_missing():
        """Re-send orders Billbee answered with HTTP 500."""
        if forwarder is None:
            raise click.ClickException("Billbee-Weiterleitung ist nicht aktiviert.")
        n = forward_missing_orders(store, forwarder)
        click.echo(f"{n} Bestellung(en) erneut weitergeleitet.")

    @app.cli.command("send-voucher-orders")
    @click.argument("csv_file", type=click.Path(exists=True, dir_okay=False))
    def send_vouchers(csv_file):
        """Send supporter voucher (UZ) orders from a member CSV to Billbee."""
        if forwarder is None:
            raise click.ClickException("Billbee-Weiterleitung ist nicht aktiviert.")
        try:
            sent, failed = send_voucher_orders(csv_file, forwarder)
        except ValueError as e:
            raise click.ClickException(str(e))
        click.echo(f"{sent} gesendet, {failed} fehlgeschlagen.")

    return app

# =====================================================
# START
# =====================================================

if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=8000, threaded=True)
