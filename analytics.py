"""Ringkasan data untuk laporan: omzet, tren, produk terlaris, stok menipis."""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Optional

from config import LOW_STOCK_THRESHOLD, TOP_PRODUCTS_LIMIT, TREND_DAYS
from models import UNKNOWN_CATEGORY, Product, Transaction


@dataclass(frozen=True)
class DashboardStats:
    total_revenue: float
    total_transactions: int
    today_revenue: float
    today_count: int
    revenue_change: float
    low_stock_count: int


@dataclass(frozen=True)
class DailySales:
    day: date
    revenue: float
    transactions: int


@dataclass(frozen=True)
class ProductSales:
    product_id: str
    name: str
    quantity: int
    revenue: float


def _on_day(transactions: Iterable[Transaction], day: date) -> List[Transaction]:
    return [t for t in transactions if t.date.date() == day]


def dashboard_stats(transactions: List[Transaction], products: List[Product], today: date,
                    low_stock_threshold: int = LOW_STOCK_THRESHOLD) -> DashboardStats:
    todays = _on_day(transactions, today)
    today_revenue = sum(t.total for t in todays)
    yesterday_revenue = sum(t.total for t in _on_day(transactions, today - timedelta(days=1)))

    revenue_change = 0.0
    if yesterday_revenue > 0:
        revenue_change = (today_revenue - yesterday_revenue) / yesterday_revenue * 100

    return DashboardStats(
        total_revenue=sum(t.total for t in transactions),
        total_transactions=len(transactions),
        today_revenue=today_revenue,
        today_count=len(todays),
        revenue_change=revenue_change,
        low_stock_count=len(low_stock_products(products, low_stock_threshold)),
    )


def sales_trend(transactions: List[Transaction], today: date, days: int = TREND_DAYS) -> List[DailySales]:
    """Omzet dan jumlah transaksi per hari, dari yang terlama sampai hari ini."""
    trend = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        on_day = _on_day(transactions, day)
        trend.append(DailySales(day=day, revenue=sum(t.total for t in on_day), transactions=len(on_day)))
    return trend


def top_products(transactions: Iterable[Transaction], limit: int = TOP_PRODUCTS_LIMIT) -> List[ProductSales]:
    totals = OrderedDict()
    for t in transactions:
        for item in t.items:
            name, quantity, revenue = totals.get(item.product_id, (item.product.name, 0, 0.0))
            totals[item.product_id] = (name, quantity + item.quantity, revenue + item.line_total)

    ranked = [ProductSales(product_id=pid, name=name, quantity=qty, revenue=rev)
              for pid, (name, qty, rev) in totals.items()]
    ranked.sort(key=lambda p: p.revenue, reverse=True)
    return ranked[:limit]


def category_breakdown(transactions: Iterable[Transaction], products: Iterable[Product]) -> dict:
    """Omzet per kategori.

    Item transaksi tidak menyimpan kategori, jadi kategori diambil dari
    katalog saat ini. Produk yang sudah dihapus masuk ke kategori
    ``UNKNOWN_CATEGORY``.
    """
    categories = {p.id: p.category for p in products}
    breakdown = {}
    for t in transactions:
        for item in t.items:
            category = categories.get(item.product_id, UNKNOWN_CATEGORY)
            breakdown[category] = breakdown.get(category, 0.0) + item.line_total
    return breakdown


def recent_transactions(transactions: Iterable[Transaction], limit: int = 5) -> List[Transaction]:
    return sorted(transactions, key=lambda t: t.date, reverse=True)[:limit]


def low_stock_products(products: Iterable[Product], threshold: int = LOW_STOCK_THRESHOLD) -> List[Product]:
    return [p for p in products if p.stock < threshold]


def search_products(products: Iterable[Product], query: str = '',
                    category: Optional[str] = None) -> List[Product]:
    query = (query or '').strip().lower()
    return [
        p for p in products
        if query in p.name.lower() and (category is None or p.category == category)
    ]
