from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from errors import ValidationError


class Category(str, Enum):
    FOOD = 'Makanan'
    DRINK = 'Minuman'
    SNACK = 'Cemilan'
    DESSERT = 'Penutup'


# Kategori untuk item transaksi lama (kategori tidak ikut disimpan)
UNKNOWN_CATEGORY = 'Tidak diketahui'


class PaymentMethod(str, Enum):
    CASH = 'cash'
    QRIS = 'qris'


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price: float
    category: str
    image: str = ''
    stock: int = 0
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class CartLineItem:
    product: Product
    quantity: int

    @property
    def product_id(self) -> str:
        return self.product.id

    @property
    def line_total(self) -> float:
        return self.product.price * self.quantity

    def with_quantity(self, quantity: int) -> 'CartLineItem':
        return replace(self, quantity=quantity)


@dataclass(frozen=True)
class TransactionLineItem:
    """Baris item seperti yang disimpan di tabel ``transaction_items``."""
    transaction_id: str
    product_id: str
    product_name: str
    quantity: int
    price: float

    @classmethod
    def from_cart_line(cls, transaction_id: str, line: CartLineItem) -> 'TransactionLineItem':
        return cls(
            transaction_id=transaction_id,
            product_id=line.product.id,
            product_name=line.product.name,
            quantity=line.quantity,
            price=line.product.price,
        )

    def to_cart_line(self) -> CartLineItem:
        # Kategori dan gambar tidak disimpan, isi dengan nilai bawaan
        product = Product(
            id=self.product_id,
            name=self.product_name,
            price=self.price,
            category=UNKNOWN_CATEGORY,
            image='',
            stock=0,
        )
        return CartLineItem(product=product, quantity=self.quantity)


@dataclass(frozen=True)
class TransactionHeader:
    id: str
    date: datetime
    total: float
    payment_method: PaymentMethod
    customer_name: Optional[str] = None
    table_number: Optional[str] = None


@dataclass(frozen=True)
class Transaction:
    id: str
    date: datetime
    total: float
    payment_method: PaymentMethod
    items: Tuple[CartLineItem, ...] = field(default_factory=tuple)
    customer_name: Optional[str] = None
    table_number: Optional[str] = None

    @property
    def header(self) -> TransactionHeader:
        return TransactionHeader(
            id=self.id,
            date=self.date,
            total=self.total,
            payment_method=self.payment_method,
            customer_name=self.customer_name,
            table_number=self.table_number,
        )

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)


@dataclass
class ProductForm:
    """Isian form tambah/ubah produk dari sisi UI."""
    name: str
    price: float
    category: str
    stock: int
    image: str = ''

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError('Nama produk harus diisi.')
        if self.price < 0:
            raise ValidationError('Harga tidak boleh negatif.')
        if self.stock < 0:
            raise ValidationError('Stok tidak boleh negatif.')
        if self.category not in {c.value for c in Category}:
            raise ValidationError(f'Kategori tidak dikenal: {self.category}')

    def to_fields(self) -> dict:
        self.validate()
        return {
            'name': self.name.strip(),
            'price': float(self.price),
            'category': self.category,
            'stock': int(self.stock),
            'image': self.image,
        }

    @classmethod
    def parse(cls, text: str) -> 'ProductForm':
        """Membaca format ``nama;harga;kategori;stok[;gambar]``."""
        parts = [p.strip() for p in text.split(';')]
        if len(parts) < 4:
            raise ValidationError('Format: nama;harga;kategori;stok')
        try:
            price = float(parts[1])
            stock = int(parts[3])
        except ValueError:
            raise ValidationError('Harga dan stok harus berupa angka.')
        category = parse_category(parts[2])
        return cls(
            name=parts[0],
            price=price,
            category=category,
            stock=stock,
            image=parts[4] if len(parts) > 4 else '',
        )


def parse_category(value: str) -> str:
    value = value.strip()
    for category in Category:
        if value.lower() in (category.value.lower(), category.name.lower()):
            return category.value
    raise ValidationError(f'Kategori tidak dikenal: {value}')
