"""Keranjang belanja di memori, satu keranjang per sesi kasir."""

from typing import Dict, List

from config import TAX_RATE
from models import CartLineItem, Product


class Cart:
    """Menyimpan pilihan produk pelanggan dan menghitung total."""

    def __init__(self) -> None:
        self._lines: Dict[str, CartLineItem] = {}

    def add_item(self, product: Product) -> CartLineItem:
        # Jumlah tidak dibatasi stok; stok dipotong (minimal 0) saat checkout
        line = self._lines.get(product.id)
        if line is None:
            line = CartLineItem(product=product, quantity=1)
        else:
            line = line.with_quantity(line.quantity + 1)
        self._lines[product.id] = line
        return line

    def change_quantity(self, product_id: str, delta: int) -> int:
        """Mengubah jumlah item; jumlah 0 menghapus baris. Mengembalikan jumlah baru."""
        line = self._lines.get(product_id)
        if line is None:
            return 0
        quantity = max(0, line.quantity + delta)
        if quantity == 0:
            del self._lines[product_id]
        else:
            self._lines[product_id] = line.with_quantity(quantity)
        return quantity

    def remove_item(self, product_id: str) -> None:
        self._lines.pop(product_id, None)

    def clear(self) -> None:
        self._lines.clear()

    def lines(self) -> List[CartLineItem]:
        return list(self._lines.values())

    def get(self, product_id: str):
        return self._lines.get(product_id)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    def subtotal(self) -> float:
        return sum(line.line_total for line in self._lines.values())

    def tax(self, tax_rate: float = TAX_RATE) -> float:
        return self.subtotal() * tax_rate

    def total(self, tax_rate: float = TAX_RATE) -> float:
        return self.subtotal() * (1 + tax_rate)

    def __len__(self) -> int:
        return len(self._lines)


class CartRegistry:
    """Keranjang aktif per sesi (mis. per chat Telegram)."""

    def __init__(self) -> None:
        self._carts: Dict[str, Cart] = {}

    def get(self, session_id) -> Cart:
        key = str(session_id)
        if key not in self._carts:
            self._carts[key] = Cart()
        return self._carts[key]

    def discard(self, session_id) -> None:
        self._carts.pop(str(session_id), None)
