"""Akses data produk dan transaksi.

``Repository`` adalah kontrak yang dipakai alur checkout, laporan dan bot.
``SqlRepository`` mengimplementasikannya di atas SQLAlchemy, satu sesi per
operasi seperti bot kasir versi awal: buka sesi, tulis, ``commit``, tutup.

Setiap penulisan yang berhasil memicu notifikasi perubahan ke pelanggan
(``subscribe``) berupa daftar data terbaru. Notifikasi hanya untuk tampilan,
alur checkout tidak bergantung padanya.
"""

import logging
import threading
import uuid
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterable, List

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from database import Session, ProductRecord, TransactionRecord, TransactionItemRecord
from errors import NotFoundError, PersistenceError, ValidationError
from models import Product, PaymentMethod, Transaction, TransactionHeader, TransactionLineItem

logger = logging.getLogger(__name__)

PRODUCTS = 'products'
TRANSACTIONS = 'transactions'

PRODUCT_FIELDS = ('name', 'price', 'category', 'image', 'stock')

_STAGE_MESSAGES = {
    'header': 'Gagal menyimpan transaksi.',
    'items': 'Gagal menyimpan item transaksi.',
    'stock': 'Gagal memperbarui stok produk.',
    'product': 'Gagal menyimpan data produk.',
    'read': 'Gagal memuat data dari database.',
    'rollback': 'Gagal membatalkan transaksi.',
}


class Repository:
    """Kontrak penyimpanan produk dan transaksi."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Callable]] = defaultdict(list)
        self._batch = threading.local()

    # ---- Produk ----

    def list_products(self) -> List[Product]:
        raise NotImplementedError

    def get_product(self, product_id: str) -> Product:
        raise NotImplementedError

    def create_product(self, product: Product) -> Product:
        raise NotImplementedError

    def update_product(self, product_id: str, **fields) -> Product:
        raise NotImplementedError

    def delete_product(self, product_id: str) -> None:
        raise NotImplementedError

    def get_product_stock(self, product_id: str) -> int:
        raise NotImplementedError

    def set_product_stock(self, product_id: str, stock: int) -> None:
        raise NotImplementedError

    # ---- Transaksi ----

    def list_transactions(self) -> List[Transaction]:
        raise NotImplementedError

    def create_transaction_header(self, header: TransactionHeader) -> Transaction:
        raise NotImplementedError

    def create_transaction_items(self, items: Iterable[TransactionLineItem]) -> None:
        raise NotImplementedError

    def delete_transaction(self, transaction_id: str) -> None:
        raise NotImplementedError

    # ---- Notifikasi perubahan ----

    def subscribe(self, kind: str, callback: Callable[[list], None]) -> Callable[[], None]:
        """Mendaftarkan callback untuk ``products`` atau ``transactions``.

        Mengembalikan fungsi untuk berhenti berlangganan.
        """
        if kind not in (PRODUCTS, TRANSACTIONS):
            raise ValueError(f"Jenis data tidak dikenal: {kind}")
        self._listeners[kind].append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners[kind]:
                self._listeners[kind].remove(callback)

        return unsubscribe

    @contextmanager
    def batched_notifications(self):
        """Menunda notifikasi di dalam blok; tiap jenis data dikirim sekali di akhir."""
        if getattr(self._batch, 'pending', None) is not None:
            yield
            return
        self._batch.pending = pending = []
        try:
            yield
        finally:
            self._batch.pending = None
            for kind in pending:
                self._notify(kind)

    def _notify(self, kind: str) -> None:
        pending = getattr(self._batch, 'pending', None)
        if pending is not None:
            if kind not in pending:
                pending.append(kind)
            return
        listeners = list(self._listeners.get(kind, ()))
        if not listeners:
            return
        try:
            snapshot = self.list_products() if kind == PRODUCTS else self.list_transactions()
        except PersistenceError:
            logger.exception("Gagal memuat data terbaru untuk notifikasi %s", kind)
            return
        for callback in listeners:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Listener %s gagal memproses perubahan", kind)


def _to_persistence_error(exc: SQLAlchemyError, stage: str) -> PersistenceError:
    detail = str(getattr(exc, 'orig', None) or exc)
    if isinstance(exc, IntegrityError):
        hint = 'Data dengan id yang sama sudah ada atau melanggar relasi tabel.'
    elif isinstance(exc, OperationalError):
        hint = 'Periksa koneksi database dan pastikan skema tabel sudah dibuat.'
    else:
        hint = None
    return PersistenceError(_STAGE_MESSAGES.get(stage, 'Kesalahan database.'),
                            detail=detail, hint=hint, stage=stage)


def _product_from_record(record: ProductRecord) -> Product:
    return Product(
        id=record.id,
        name=record.name,
        price=record.price,
        category=record.category,
        image=record.image or '',
        stock=record.stock,
        created_at=record.created_at,
    )


class SqlRepository(Repository):
    """Implementasi ``Repository`` dengan SQLAlchemy."""

    def __init__(self, session_factory=Session) -> None:
        super().__init__()
        self._session_factory = session_factory

    @contextmanager
    def _session(self, stage: str):
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("Database error (%s): %s", stage, exc)
            raise _to_persistence_error(exc, stage) from exc
        finally:
            session.close()

    # ---- Produk ----

    def list_products(self) -> List[Product]:
        with self._session('read') as session:
            records = (session.query(ProductRecord)
                       .order_by(ProductRecord.created_at.desc(), ProductRecord.id.desc())
                       .all())
            return [_product_from_record(r) for r in records]

    def get_product(self, product_id: str) -> Product:
        with self._session('read') as session:
            record = session.get(ProductRecord, product_id)
            if record is None:
                raise NotFoundError(f"Produk {product_id} tidak ditemukan.")
            return _product_from_record(record)

    def create_product(self, product: Product) -> Product:
        record = ProductRecord(
            id=product.id or uuid.uuid4().hex,
            name=product.name,
            price=product.price,
            category=product.category,
            image=product.image,
            stock=product.stock,
            created_at=product.created_at or datetime.now(),
        )
        with self._session('product') as session:
            session.add(record)
            session.commit()
            created = _product_from_record(record)
        self._notify(PRODUCTS)
        return created

    def update_product(self, product_id: str, **fields) -> Product:
        unknown = set(fields) - set(PRODUCT_FIELDS)
        if unknown:
            raise ValidationError(f"Kolom produk tidak dikenal: {', '.join(sorted(unknown))}")
        if fields.get('stock', 0) < 0 or fields.get('price', 0) < 0:
            raise ValidationError('Harga dan stok tidak boleh negatif.')

        with self._session('product') as session:
            record = session.get(ProductRecord, product_id)
            if record is None:
                raise NotFoundError(f"Produk {product_id} tidak ditemukan.")
            for name, value in fields.items():
                setattr(record, name, value)
            session.commit()
            updated = _product_from_record(record)
        self._notify(PRODUCTS)
        return updated

    def delete_product(self, product_id: str) -> None:
        with self._session('product') as session:
            record = session.get(ProductRecord, product_id)
            if record is None:
                raise NotFoundError(f"Produk {product_id} tidak ditemukan.")
            session.delete(record)
            session.commit()
        self._notify(PRODUCTS)

    def get_product_stock(self, product_id: str) -> int:
        with self._session('stock') as session:
            stock = (session.query(ProductRecord.stock)
                     .filter(ProductRecord.id == product_id)
                     .scalar())
            if stock is None:
                raise NotFoundError(f"Produk {product_id} tidak ditemukan.")
            return stock

    def set_product_stock(self, product_id: str, stock: int) -> None:
        if stock < 0:
            raise ValidationError('Stok tidak boleh negatif.')
        with self._session('stock') as session:
            updated = (session.query(ProductRecord)
                       .filter(ProductRecord.id == product_id)
                       .update({ProductRecord.stock: stock, ProductRecord.updated_at: datetime.now()},
                               synchronize_session=False))
            if not updated:
                raise NotFoundError(f"Produk {product_id} tidak ditemukan.")
            session.commit()
        self._notify(PRODUCTS)

    # ---- Transaksi ----

    def list_transactions(self) -> List[Transaction]:
        with self._session('read') as session:
            headers = (session.query(TransactionRecord)
                       .order_by(TransactionRecord.date.desc())
                       .all())
            if not headers:
                return []

            # Item diambil terpisah lalu digabung per transaksi
            items_by_transaction = defaultdict(list)
            for row in session.query(TransactionItemRecord).order_by(TransactionItemRecord.id).all():
                line = TransactionLineItem(
                    transaction_id=row.transaction_id,
                    product_id=row.product_id,
                    product_name=row.product_name,
                    quantity=row.quantity,
                    price=row.price,
                )
                items_by_transaction[row.transaction_id].append(line.to_cart_line())

            return [
                Transaction(
                    id=h.id,
                    date=h.date,
                    total=h.total,
                    payment_method=PaymentMethod(h.payment_method),
                    items=tuple(items_by_transaction.get(h.id, ())),
                    customer_name=h.customer_name,
                    table_number=h.table_number,
                )
                for h in headers
            ]

    def create_transaction_header(self, header: TransactionHeader) -> Transaction:
        with self._session('header') as session:
            session.add(TransactionRecord(
                id=header.id,
                date=header.date,
                total=header.total,
                payment_method=PaymentMethod(header.payment_method).value,
                customer_name=header.customer_name,
                table_number=header.table_number,
            ))
            session.commit()
        self._notify(TRANSACTIONS)
        return Transaction(
            id=header.id,
            date=header.date,
            total=header.total,
            payment_method=PaymentMethod(header.payment_method),
            customer_name=header.customer_name,
            table_number=header.table_number,
        )

    def create_transaction_items(self, items: Iterable[TransactionLineItem]) -> None:
        items = list(items)
        with self._session('items') as session:
            session.add_all([
                TransactionItemRecord(
                    transaction_id=item.transaction_id,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity=item.quantity,
                    price=item.price,
                )
                for item in items
            ])
            session.commit()
        self._notify(TRANSACTIONS)

    def delete_transaction(self, transaction_id: str) -> None:
        with self._session('rollback') as session:
            (session.query(TransactionItemRecord)
             .filter(TransactionItemRecord.transaction_id == transaction_id)
             .delete(synchronize_session=False))
            (session.query(TransactionRecord)
             .filter(TransactionRecord.id == transaction_id)
             .delete(synchronize_session=False))
            session.commit()
        self._notify(TRANSACTIONS)
