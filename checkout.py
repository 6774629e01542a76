"""Alur checkout: keranjang menjadi transaksi tersimpan dan stok diperbarui.

Urutan langkah:

1. Validasi keranjang, metode bayar dan uang tunai.
2. Hitung total, buat id transaksi, salin isi keranjang.
3. Simpan header transaksi.
4. Simpan item transaksi. Jika gagal, header dihapus lagi sebelum error
   diteruskan ke pemanggil.
5. Potong stok per produk (minimal 0). Kegagalan hanya dicatat di log,
   transaksi tetap dianggap berhasil.
6. Kembalikan transaksi yang tersimpan.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Union

from cart import Cart
from config import TAX_RATE
from errors import NotFoundError, ValidationError
from models import PaymentMethod, Transaction, TransactionHeader, TransactionLineItem

logger = logging.getLogger(__name__)


class CheckoutState(Enum):
    IDLE = 'idle'
    VALIDATING = 'validating'
    HEADER_WRITTEN = 'header_written'
    ITEMS_WRITTEN = 'items_written'
    STOCK_RECONCILING = 'stock_reconciling'
    COMPLETE = 'complete'
    ROLLED_BACK = 'rolled_back'
    FAILED = 'failed'


@dataclass(frozen=True)
class CheckoutRequest:
    payment_method: Optional[Union[PaymentMethod, str]]
    cash_tendered: Optional[float] = None
    customer_name: Optional[str] = None
    table_number: Optional[str] = None


@dataclass
class CheckoutResult:
    transaction: Transaction
    change_due: float = 0.0
    stock_failures: List[str] = field(default_factory=list)


class TimestampIdFactory:
    """Id transaksi dari timestamp milidetik, dinaikkan bila bentrok."""

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            value = max(int(time.time() * 1000), self._last + 1)
            self._last = value
            return str(value)


def confirm_qris_payment(transaction_total: float) -> bool:
    # Belum terhubung ke payment gateway; pembayaran QRIS selalu dianggap lunas
    return True


def _parse_payment_method(value) -> PaymentMethod:
    if value is None or value == '':
        raise ValidationError('Pilih metode pembayaran terlebih dahulu.')
    try:
        return PaymentMethod(value)
    except ValueError:
        raise ValidationError(f'Metode pembayaran tidak dikenal: {value}')


class CheckoutWorkflow:
    """Menjalankan satu checkout per panggilan; dipakai oleh satu terminal."""

    def __init__(self, repository, tax_rate: float = TAX_RATE,
                 clock: Callable[[], datetime] = datetime.now,
                 id_factory: Optional[Callable[[], str]] = None) -> None:
        self.repository = repository
        self.tax_rate = tax_rate
        self.clock = clock
        self.id_factory = id_factory or TimestampIdFactory()
        self.state = CheckoutState.IDLE

    def _transition(self, state: CheckoutState) -> None:
        logger.debug("Checkout: %s -> %s", self.state.value, state.value)
        self.state = state

    def validate(self, cart: Cart, request: CheckoutRequest) -> PaymentMethod:
        """Memeriksa prasyarat checkout tanpa menyentuh database."""
        if cart.is_empty:
            raise ValidationError('Keranjang belanja masih kosong.')

        method = _parse_payment_method(request.payment_method)
        total = cart.total(self.tax_rate)

        if method is PaymentMethod.CASH:
            if request.cash_tendered is None:
                raise ValidationError('Masukkan jumlah uang tunai yang diterima.')
            if request.cash_tendered < round(total, 2):
                raise ValidationError(
                    f'Uang tunai kurang. Total Rp {total:,.0f}, diterima Rp {request.cash_tendered:,.0f}.'
                )
        elif not confirm_qris_payment(total):
            raise ValidationError('Pembayaran QRIS belum dikonfirmasi.')
        return method

    def checkout(self, cart: Cart, request: CheckoutRequest) -> CheckoutResult:
        self._transition(CheckoutState.VALIDATING)
        try:
            method = self.validate(cart, request)
        except ValidationError:
            self._transition(CheckoutState.IDLE)
            raise

        # Salinan isi keranjang; perubahan produk setelah ini tidak berpengaruh
        total = cart.total(self.tax_rate)
        transaction_id = self.id_factory()
        line_items = [TransactionLineItem.from_cart_line(transaction_id, line) for line in cart.lines()]
        header = TransactionHeader(
            id=transaction_id,
            date=self.clock(),
            total=total,
            payment_method=method,
            customer_name=request.customer_name,
            table_number=request.table_number,
        )

        try:
            self.repository.create_transaction_header(header)
        except Exception:
            logger.error("Gagal menyimpan header transaksi %s", transaction_id)
            self._transition(CheckoutState.FAILED)
            raise
        self._transition(CheckoutState.HEADER_WRITTEN)

        try:
            self.repository.create_transaction_items(line_items)
        except Exception:
            logger.error("Gagal menyimpan item transaksi %s, header dibatalkan", transaction_id)
            self._rollback(transaction_id)
            raise
        self._transition(CheckoutState.ITEMS_WRITTEN)

        self._transition(CheckoutState.STOCK_RECONCILING)
        stock_failures = self._reconcile_stock(line_items)

        transaction = Transaction(
            id=header.id,
            date=header.date,
            total=header.total,
            payment_method=header.payment_method,
            items=tuple(item.to_cart_line() for item in line_items),
            customer_name=header.customer_name,
            table_number=header.table_number,
        )
        change_due = 0.0
        if method is PaymentMethod.CASH:
            change_due = max(0.0, round(request.cash_tendered - total, 2))

        self._transition(CheckoutState.COMPLETE)
        logger.info("Transaksi %s berhasil, total Rp %s (%s)",
                    transaction_id, f"{total:,.0f}", method.value)
        return CheckoutResult(transaction=transaction, change_due=change_due,
                              stock_failures=stock_failures)

    def _rollback(self, transaction_id: str) -> None:
        try:
            self.repository.delete_transaction(transaction_id)
        except Exception:
            logger.exception("Rollback transaksi %s gagal", transaction_id)
            self._transition(CheckoutState.FAILED)
            return
        self._transition(CheckoutState.ROLLED_BACK)

    def _reconcile_stock(self, line_items: List[TransactionLineItem]) -> List[str]:
        failures = []
        # Satu notifikasi produk untuk seluruh item, bukan per item
        with self.repository.batched_notifications():
            for item in line_items:
                try:
                    current = self.repository.get_product_stock(item.product_id)
                    new_stock = max(0, current - item.quantity)
                    if item.quantity > current:
                        logger.warning("Stok %s kurang: tersedia %d, terjual %d; stok menjadi 0",
                                       item.product_name, current, item.quantity)
                    self.repository.set_product_stock(item.product_id, new_stock)
                except NotFoundError:
                    logger.warning("Produk %s sudah tidak ada, stok tidak diperbarui", item.product_id)
                    failures.append(item.product_id)
                except Exception:
                    logger.exception("Gagal memperbarui stok produk %s", item.product_id)
                    failures.append(item.product_id)
        return failures
