import logging
from datetime import datetime

from sqlalchemy import create_engine, Column, Integer, String, Float, DateTime, ForeignKey
from sqlalchemy.orm import declarative_base, sessionmaker, relationship
from sqlalchemy.pool import StaticPool

from models import Category, Product

logger = logging.getLogger(__name__)

Base = declarative_base()


class ProductRecord(Base):
    __tablename__ = 'products'

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    price = Column(Float, nullable=False)
    category = Column(String, nullable=False)
    image = Column(String, default='')
    stock = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    def __repr__(self):
        return f"<ProductRecord(name='{self.name}', price={self.price}, stock={self.stock})>"


class TransactionRecord(Base):
    __tablename__ = 'transactions'

    id = Column(String, primary_key=True)
    date = Column(DateTime, nullable=False)
    total = Column(Float, nullable=False)
    # 'cash' atau 'qris'
    payment_method = Column(String, nullable=False)
    customer_name = Column(String)
    table_number = Column(String)
    created_at = Column(DateTime, default=datetime.now)

    items = relationship("TransactionItemRecord", back_populates="transaction",
                         cascade="all, delete-orphan")

    def __repr__(self):
        return f"<TransactionRecord(id={self.id}, total={self.total})>"


class TransactionItemRecord(Base):
    __tablename__ = 'transaction_items'

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String, ForeignKey('transactions.id', ondelete='CASCADE'), nullable=False)
    # Bukan foreign key: produk boleh dihapus setelah terjual
    product_id = Column(String, nullable=False)
    product_name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Float, nullable=False)
    created_at = Column(DateTime, default=datetime.now)

    transaction = relationship("TransactionRecord", back_populates="items")

    def __repr__(self):
        return f"<TransactionItemRecord(product_id={self.product_id}, quantity={self.quantity})>"


Session = sessionmaker()


def create_db_engine(url):
    """Membuat engine; SQLite in-memory memakai satu koneksi bersama."""
    if url in ('sqlite://', 'sqlite:///:memory:'):
        return create_engine(url, connect_args={'check_same_thread': False}, poolclass=StaticPool)
    return create_engine(url)


def init_db(url):
    """Inisialisasi database dan mengikat factory ``Session`` ke engine."""
    engine = create_db_engine(url)
    Base.metadata.create_all(engine)
    Session.configure(bind=engine)
    logger.info("Database siap: %s", engine.url.render_as_string(hide_password=True))
    return engine


def get_session():
    return Session()


INITIAL_PRODUCTS = [
    Product(id='1', name='Nasi Goreng Spesial', price=25000, category=Category.FOOD.value, image='/photo.jpg', stock=50),
    Product(id='2', name='Es Kopi Susu Gula Aren', price=18000, category=Category.DRINK.value, image='/kopi.png', stock=100),
    Product(id='3', name='Mie Goreng Jawa', price=22000, category=Category.FOOD.value, image='/mie.png', stock=40),
    Product(id='4', name='Teh Manis Dingin', price=5000, category=Category.DRINK.value, image='/teh.png', stock=200),
    Product(id='5', name='Kentang Goreng', price=15000, category=Category.SNACK.value, image='/kentang.png', stock=80),
    Product(id='6', name='Roti Bakar Coklat', price=12000, category=Category.DESSERT.value, image='/roti.png', stock=30),
    Product(id='7', name='Burger Sapi', price=35000, category=Category.FOOD.value, image='/burger.png', stock=25),
    Product(id='8', name='Matcha Latte', price=24000, category=Category.DRINK.value, image='/matcha.png', stock=45),
]


# Fungsi untuk menambahkan produk sample
def seed_sample_products(repository):
    # Cek apakah sudah ada produk
    if repository.list_products():
        return 0

    for product in INITIAL_PRODUCTS:
        repository.create_product(product)
    logger.info("Katalog kosong, %d produk awal ditambahkan", len(INITIAL_PRODUCTS))
    return len(INITIAL_PRODUCTS)
