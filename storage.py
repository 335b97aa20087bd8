import logging
import threading
from contextlib import contextmanager

from sqlalchemy import func, select

from models import Order, Product

logger = logging.getLogger(__name__)


class OrderStore:
    """Serialised access to products and orders.

    Every method holds ``self.lock`` for exactly one statement (or one
    commit) and hands the connection back to the pool before releasing it,
    so concurrent request threads never interleave inside a transaction.
    Returned model instances are detached but fully loaded.
    """

    def __init__(self, db):
        self.db = db
        self.lock = threading.Lock()

    @contextmanager
    def _session(self):
        with self.lock:
            session = self.db.session
            try:
                yield session
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    # ---------- Schema ----------
    def create_schema(self):
        with self.lock:
            self.db.create_all()

    # ---------- Produkte ----------
    def add_product(self, product):
        with self._session() as session:
            session.add(product)
            session.commit()
        return product

    def get_products(self):
        with self._session() as session:
            return list(session.scalars(select(Product).order_by(Product.id)))

    def get_product(self, name):
        """Return the product called ``name`` or ``None``."""
        with self._session() as session:
            return session.scalars(select(Product).filter_by(name=name)).first()

    def get_product_by_id(self, product_id):
        with self._session() as session:
            return session.get(Product, product_id)

    def ensure_products(self, products):
        created = False
        for product in products:
            if self.get_product(product.name) is None:
                self.add_product(product)
                logger.info("Produkt angelegt: %s", product.name)
                created = True
        return created

    # ---------- Bestellungen ----------
    def add_order(self, order):
        """Insert ``order`` and set its generated id."""
        with self._session() as session:
            session.add(order)
            session.commit()
        return order.id

    def add_billbee_response(self, order_id, response):
        # Nur dieses eine Feld einer Bestellung ist je veraenderbar.
        with self._session() as session:
            result = session.execute(
                Order.__table__.update()
                .where(Order.__table__.c.id == order_id)
                .values(billbee_api_response=response)
            )
            session.commit()
        if result.rowcount != 1:
            logger.warning("Billbee-Antwort fuer unbekannte Bestellung %s", order_id)

    def get_orders(self):
        with self._session() as session:
            return list(session.scalars(select(Order).order_by(Order.id)))

    def count_orders(self):
        with self._session() as session:
            return session.scalar(select(func.count()).select_from(Order))
