"""Cadangan lokal produk/transaksi dan status sesi kasir.

File JSON ini hanya untuk pemulihan baca saat database tidak bisa
dihubungi, bukan sumber data utama.
"""

import json
import logging
import os
import threading
from datetime import datetime
from typing import List, Tuple

from database import INITIAL_PRODUCTS, seed_sample_products
from errors import KasirError
from models import CartLineItem, PaymentMethod, Product, Transaction, TransactionLineItem

logger = logging.getLogger(__name__)


def _product_to_dict(p: Product) -> dict:
    return {
        'id': p.id, 'name': p.name, 'price': p.price, 'category': p.category,
        'image': p.image, 'stock': p.stock,
        'created_at': p.created_at.isoformat() if p.created_at else None,
    }


def _product_from_dict(d: dict) -> Product:
    created_at = d.get('created_at')
    return Product(
        id=str(d['id']), name=d['name'], price=float(d['price']), category=d['category'],
        image=d.get('image', ''), stock=int(d.get('stock', 0)),
        created_at=datetime.fromisoformat(created_at) if created_at else None,
    )


def _transaction_to_dict(t: Transaction) -> dict:
    return {
        'id': t.id,
        'date': t.date.isoformat(),
        'total': t.total,
        'payment_method': t.payment_method.value,
        'customer_name': t.customer_name,
        'table_number': t.table_number,
        'items': [_product_to_dict(i.product) | {'quantity': i.quantity} for i in t.items],
    }


def _transaction_from_dict(d: dict) -> Transaction:
    items = tuple(
        CartLineItem(product=_product_from_dict(i), quantity=int(i['quantity']))
        for i in d.get('items', [])
    )
    return Transaction(
        id=str(d['id']),
        date=datetime.fromisoformat(d['date']),
        total=float(d['total']),
        payment_method=PaymentMethod(d['payment_method']),
        items=items,
        customer_name=d.get('customer_name'),
        table_number=d.get('table_number'),
    )


class LocalCache:
    def __init__(self, path: str) -> None:
        self.path = path
        # Penulisan bisa datang dari beberapa thread handler sekaligus
        self._lock = threading.RLock()

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError):
            logger.warning("File cache %s tidak bisa dibaca", self.path)
            return {}

    def _write(self, data: dict) -> None:
        tmp_path = self.path + '.tmp'
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self.path)

    def get_flag(self, name: str) -> bool:
        return bool(self._read().get('flags', {}).get(name, False))

    def get_value(self, name: str):
        return self._read().get('flags', {}).get(name)

    def set_flag(self, name: str, value) -> None:
        with self._lock:
            data = self._read()
            flags = data.setdefault('flags', {})
            if value is None:
                flags.pop(name, None)
            else:
                flags[name] = value
            self._write(data)

    def save_products(self, products: List[Product]) -> None:
        with self._lock:
            data = self._read()
            data['products'] = [_product_to_dict(p) for p in products]
            self._write(data)

    def save_transactions(self, transactions: List[Transaction]) -> None:
        with self._lock:
            data = self._read()
            data['transactions'] = [_transaction_to_dict(t) for t in transactions]
            self._write(data)

    def load_products(self) -> List[Product]:
        return [_product_from_dict(d) for d in self._read().get('products', [])]

    def load_transactions(self) -> List[Transaction]:
        return [_transaction_from_dict(d) for d in self._read().get('transactions', [])]


class SessionState:
    """Status sesi untuk satu proses kasir.

    Dibaca dari cache saat aplikasi mulai (``load``) dan dihapus saat
    ``logout``. Login di sini hanya gerbang sederhana, bukan autentikasi;
    perintah admin hanya terbuka untuk chat yang melakukan login.
    """

    def __init__(self, cache: LocalCache) -> None:
        self.cache = cache
        self.migration_done = False
        self.logged_in = False
        self.username = None
        self.chat_id = None

    def load(self) -> 'SessionState':
        self.migration_done = self.cache.get_flag('migration_done')
        self.logged_in = self.cache.get_flag('logged_in')
        self.username = self.cache.get_value('username')
        self.chat_id = self.cache.get_value('chat_id')
        return self

    def login(self, username: str, password: str, settings, chat_id=None) -> bool:
        if not username or not password:
            return False
        if username != settings.admin_username or password != settings.admin_password:
            return False
        self.logged_in = True
        self.username = username
        self.chat_id = chat_id
        self.cache.set_flag('logged_in', True)
        self.cache.set_flag('username', username)
        self.cache.set_flag('chat_id', chat_id)
        return True

    def logout(self) -> None:
        self.logged_in = False
        self.username = None
        self.chat_id = None
        self.cache.set_flag('logged_in', None)
        self.cache.set_flag('username', None)
        self.cache.set_flag('chat_id', None)

    def is_admin(self, chat_id) -> bool:
        return self.logged_in and self.chat_id == chat_id

    def mark_migrated(self) -> None:
        self.migration_done = True
        self.cache.set_flag('migration_done', True)


def migrate_local_cache(repository, cache: LocalCache, state: SessionState) -> Tuple[int, int]:
    """Memindahkan data cache ke database kosong, hanya sekali."""
    if state.migration_done:
        logger.info("Migrasi sudah pernah dilakukan")
        return 0, 0

    products_count = 0
    transactions_count = 0

    products = cache.load_products()
    if products and not repository.list_products():
        for product in products:
            repository.create_product(product)
            products_count += 1
        logger.info("Migrasi %d produk ke database", products_count)

    transactions = cache.load_transactions()
    if transactions and not repository.list_transactions():
        for transaction in transactions:
            repository.create_transaction_header(transaction.header)
            repository.create_transaction_items(
                TransactionLineItem.from_cart_line(transaction.id, line) for line in transaction.items
            )
            transactions_count += 1
        logger.info("Migrasi %d transaksi ke database", transactions_count)

    state.mark_migrated()
    return products_count, transactions_count


def load_catalog(repository, cache: LocalCache) -> Tuple[List[Product], List[Transaction], bool]:
    """Memuat produk dan transaksi; kembali ke cache lokal jika database gagal.

    Mengembalikan ``(products, transactions, from_cache)``.
    """
    try:
        seed_sample_products(repository)
        products = repository.list_products()
        transactions = repository.list_transactions()
    except KasirError:
        logger.warning("Gagal memuat data dari database. Menggunakan data lokal.", exc_info=True)
        return cache.load_products() or list(INITIAL_PRODUCTS), cache.load_transactions(), True

    try:
        cache.save_products(products)
        cache.save_transactions(transactions)
    except OSError:
        logger.warning("Gagal memperbarui cache lokal %s", cache.path)
    return products, transactions, False
