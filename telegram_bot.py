from telegram import Update, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.ext import Application, CommandHandler, CallbackQueryHandler, ContextTypes, MessageHandler, filters
import asyncio
import logging
from datetime import date

import analytics
from cart import CartRegistry
from checkout import CheckoutRequest, CheckoutWorkflow
from config import LOW_STOCK_THRESHOLD, TAX_RATE, configure_logging, load_settings
from database import init_db
from errors import KasirError, NotFoundError, PersistenceError, ValidationError
from insight import BusinessInsightService
from local_cache import LocalCache, SessionState, load_catalog, migrate_local_cache
from models import PaymentMethod, Product, ProductForm
from repository import PRODUCTS, TRANSACTIONS, SqlRepository

logger = logging.getLogger(__name__)

# Menyimpan keranjang belanja per chat
carts = CartRegistry()


def rupiah(amount) -> str:
    return f"Rp {amount:,.0f}"


def _services(context: ContextTypes.DEFAULT_TYPE) -> dict:
    return context.application.bot_data


async def _reply(update: Update, text: str, reply_markup=None) -> None:
    """Membalas sesuai tipe update (tombol inline atau pesan biasa)."""
    if update.callback_query:
        await update.callback_query.edit_message_text(text, reply_markup=reply_markup)
    else:
        await update.message.reply_text(text, reply_markup=reply_markup)


def _require_login(update: Update, context: ContextTypes.DEFAULT_TYPE) -> bool:
    """Perintah admin hanya untuk chat yang melakukan /login."""
    return _services(context)['state'].is_admin(update.effective_chat.id)


def render_cart(cart) -> tuple:
    """Teks dan tombol keranjang."""
    pesan = "Keranjang Belanja Anda:\n\n"
    keyboard = []
    for line in cart.lines():
        product = line.product
        pesan += f"{product.name} - {line.quantity} x {rupiah(product.price)} = {rupiah(line.line_total)}\n"
        keyboard.append([
            InlineKeyboardButton("➖", callback_data=f"kurang_{product.id}"),
            InlineKeyboardButton(f"{product.name} ({line.quantity})", callback_data="noop"),
            InlineKeyboardButton("➕", callback_data=f"tambah_{product.id}"),
            InlineKeyboardButton("🗑", callback_data=f"hapus_{product.id}"),
        ])

    pesan += f"\nSubtotal: {rupiah(cart.subtotal())}"
    pesan += f"\nPajak ({TAX_RATE:.0%}): {rupiah(cart.tax())}"
    pesan += f"\nTotal: {rupiah(cart.total())}"

    keyboard.append([InlineKeyboardButton("Checkout", callback_data="checkout")])
    keyboard.append([InlineKeyboardButton("Kosongkan Keranjang", callback_data="kosongkan")])
    return pesan, InlineKeyboardMarkup(keyboard)


def render_receipt(result) -> str:
    transaksi = result.transaction
    struk = f"STRUK PEMBELIAN #{transaksi.id}\n"
    struk += f"Tanggal: {transaksi.date:%Y-%m-%d %H:%M:%S}\n"
    struk += f"Pembayaran: {transaksi.payment_method.value.upper()}\n\n"
    struk += "Detail Pembelian:\n"
    for item in transaksi.items:
        struk += f"{item.product.name} - {item.quantity} x {rupiah(item.product.price)} = {rupiah(item.line_total)}\n"
    struk += f"\nTotal (termasuk pajak): {rupiah(transaksi.total)}"
    if transaksi.payment_method is PaymentMethod.CASH:
        struk += f"\nKembalian: {rupiah(result.change_due)}"
    struk += "\n\nTerima kasih telah berbelanja!"
    return struk


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Mengirim pesan saat perintah /start diterima."""
    user = update.effective_user
    await update.message.reply_text(
        f'Halo {user.first_name}! Selamat datang di KasirPintar.\n'
        'Gunakan /produk untuk melihat daftar produk yang tersedia.\n'
        'Gunakan /keranjang untuk melihat keranjang belanja Anda.\n'
        'Gunakan /checkout untuk menyelesaikan pembelian.\n'
        'Admin: /login, /laporan, /stok, /tambahproduk, /ubahstok, /hapusproduk, /tanya.'
    )


async def login(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    services = _services(context)
    if len(context.args) != 2:
        await update.message.reply_text('Format: /login <username> <password>')
        return
    berhasil = await asyncio.to_thread(
        services['state'].login, context.args[0], context.args[1], services['settings'],
        chat_id=update.effective_chat.id,
    )
    if berhasil:
        await update.message.reply_text(f'Login berhasil. Halo, {context.args[0]}!')
    else:
        await update.message.reply_text('Username atau password salah')


async def logout(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not _require_login(update, context):
        await update.message.reply_text('Anda belum login.')
        return
    await asyncio.to_thread(_services(context)['state'].logout)
    await update.message.reply_text('Anda telah logout.')


async def produk(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Menampilkan daftar produk yang tersedia."""
    repository = _services(context)['repository']
    try:
        produk_list = await asyncio.to_thread(repository.list_products)
    except PersistenceError:
        produk_list = _services(context)['cache'].load_products()

    produk_list = analytics.search_products(produk_list, ' '.join(context.args or []))
    if not produk_list:
        await update.message.reply_text('Tidak ada produk yang tersedia.')
        return

    keyboard = []
    for p in produk_list:
        keyboard.append([
            InlineKeyboardButton(
                f"{p.name} - {rupiah(p.price)} (Stok: {p.stock})",
                callback_data=f"beli_{p.id}"
            )
        ])

    reply_markup = InlineKeyboardMarkup(keyboard)
    await update.message.reply_text('Pilih produk untuk dibeli:', reply_markup=reply_markup)


async def handle_button(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Menangani ketika tombol inline ditekan."""
    query = update.callback_query
    await query.answer()

    # Ambil data dari callback
    data = query.data

    if data.startswith('beli_'):
        await tambah_ke_keranjang(update, context, data.split('_', 1)[1])
    elif data.startswith('tambah_'):
        await ubah_jumlah(update, context, data.split('_', 1)[1], 1)
    elif data.startswith('kurang_'):
        await ubah_jumlah(update, context, data.split('_', 1)[1], -1)
    elif data.startswith('hapus_'):
        await hapus_dari_keranjang(update, context, data.split('_', 1)[1])
    elif data.startswith('bayar_'):
        await pilih_pembayaran(update, context, data.split('_', 1)[1])
    elif data == "checkout":
        await checkout(update, context)
    elif data == "kosongkan":
        await kosongkan_keranjang(update, context)


async def tambah_ke_keranjang(update: Update, context: ContextTypes.DEFAULT_TYPE, product_id: str) -> None:
    """Menambahkan produk ke keranjang belanja."""
    repository = _services(context)['repository']
    try:
        product = await asyncio.to_thread(repository.get_product, product_id)
    except NotFoundError:
        await update.callback_query.edit_message_text('Produk tidak ditemukan.')
        return

    line = carts.get(update.effective_chat.id).add_item(product)
    await update.callback_query.edit_message_text(
        f'Ditambahkan: {product.name} - {rupiah(product.price)} (jumlah: {line.quantity})\n'
        'Gunakan /keranjang untuk melihat keranjang belanja Anda.\n'
        'Gunakan /produk untuk melihat produk lainnya.'
    )


async def lihat_keranjang(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Menampilkan isi keranjang belanja."""
    cart = carts.get(update.effective_chat.id)
    if cart.is_empty:
        await _reply(update, 'Keranjang belanja Anda kosong.')
        return
    pesan, reply_markup = render_cart(cart)
    await _reply(update, pesan, reply_markup)


async def ubah_jumlah(update: Update, context: ContextTypes.DEFAULT_TYPE, product_id: str, delta: int) -> None:
    carts.get(update.effective_chat.id).change_quantity(product_id, delta)
    await lihat_keranjang(update, context)


async def hapus_dari_keranjang(update: Update, context: ContextTypes.DEFAULT_TYPE, product_id: str) -> None:
    """Menghapus produk dari keranjang belanja."""
    carts.get(update.effective_chat.id).remove_item(product_id)
    await lihat_keranjang(update, context)


async def kosongkan_keranjang(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Mengosongkan keranjang belanja."""
    carts.discard(update.effective_chat.id)
    await update.callback_query.edit_message_text('Keranjang belanja Anda telah dikosongkan.')


async def checkout(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Menampilkan total dan pilihan metode pembayaran."""
    cart = carts.get(update.effective_chat.id)
    if cart.is_empty:
        await _reply(update, 'Keranjang belanja Anda kosong.')
        return

    keyboard = InlineKeyboardMarkup([[
        InlineKeyboardButton("💵 Tunai", callback_data="bayar_cash"),
        InlineKeyboardButton("📱 QRIS", callback_data="bayar_qris"),
    ]])
    await _reply(update, f"Total yang harus dibayar: {rupiah(cart.total())}\nPilih metode pembayaran:", keyboard)


async def pilih_pembayaran(update: Update, context: ContextTypes.DEFAULT_TYPE, method: str) -> None:
    if method == PaymentMethod.CASH.value:
        context.user_data['awaiting_cash'] = True
        total = carts.get(update.effective_chat.id).total()
        await update.callback_query.edit_message_text(
            f"Total: {rupiah(total)}\nKetik jumlah uang tunai yang diterima, mis. /tunai 50000"
        )
        return
    await selesaikan_transaksi(update, context, CheckoutRequest(payment_method=method))


async def tunai(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Menerima jumlah uang tunai, lewat /tunai atau pesan angka biasa."""
    text = ' '.join(context.args) if context.args else (update.message.text or '')
    if not context.args and not context.user_data.get('awaiting_cash'):
        return
    try:
        amount = float(text.replace('.', '').replace(',', '').strip())
    except ValueError:
        await update.message.reply_text('Jumlah uang tidak valid. Contoh: /tunai 50000')
        return
    await selesaikan_transaksi(update, context, CheckoutRequest(
        payment_method=PaymentMethod.CASH, cash_tendered=amount,
    ))


async def selesaikan_transaksi(update: Update, context: ContextTypes.DEFAULT_TYPE, request: CheckoutRequest) -> None:
    """Menyelesaikan transaksi."""
    services = _services(context)
    cart = carts.get(update.effective_chat.id)

    try:
        result = await asyncio.to_thread(services['workflow'].checkout, cart, request)
    except ValidationError as exc:
        await _reply(update, f"⚠️ {exc}")
        return
    except PersistenceError as exc:
        await _reply(update, "⚠️ " + exc.user_message())
        return

    context.user_data.pop('awaiting_cash', None)
    carts.discard(update.effective_chat.id)

    struk = render_receipt(result)
    group_id = services['settings'].group_chat_id
    if group_id:
        # Kirim struk ke grup
        await context.bot.send_message(chat_id=group_id, text=struk)
        struk += "\n\nStruk juga telah dikirim ke grup kasir."
    await _reply(update, struk)


async def laporan(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Ringkasan penjualan untuk admin."""
    if not _require_login(update, context):
        await update.message.reply_text('Silakan /login terlebih dahulu.')
        return

    services = _services(context)
    products, transactions, from_cache = await asyncio.to_thread(
        load_catalog, services['repository'], services['cache'])
    today = date.today()
    stats = analytics.dashboard_stats(transactions, products, today)

    pesan = "Dashboard Insight\n\n"
    if from_cache:
        pesan += "(Gagal memuat data dari database. Menggunakan data lokal.)\n\n"
    pesan += f"Omzet hari ini: {rupiah(stats.today_revenue)} ({stats.revenue_change:+.1f}% dibanding kemarin)\n"
    pesan += f"Transaksi hari ini: {stats.today_count}\n"
    pesan += f"Total omzet: {rupiah(stats.total_revenue)} dari {stats.total_transactions} transaksi\n"
    pesan += f"Produk stok menipis: {stats.low_stock_count}\n\n"

    pesan += "Tren 7 hari:\n"
    for day in analytics.sales_trend(transactions, today):
        pesan += f"{day.day:%d %b}: {rupiah(day.revenue)} ({day.transactions} transaksi)\n"

    pesan += "\nProduk terlaris:\n"
    for i, item in enumerate(analytics.top_products(transactions), start=1):
        pesan += f"{i}. {item.name} - {item.quantity} terjual, {rupiah(item.revenue)}\n"

    await update.message.reply_text(pesan)


async def stok(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not _require_login(update, context):
        await update.message.reply_text('Silakan /login terlebih dahulu.')
        return

    services = _services(context)
    products, _, from_cache = await asyncio.to_thread(
        load_catalog, services['repository'], services['cache'])
    pesan = "Inventaris:\n\n"
    if from_cache:
        pesan += "(Gagal memuat data dari database. Menggunakan data lokal.)\n\n"
    for p in products:
        status = 'Low Stock' if p.stock < LOW_STOCK_THRESHOLD else 'Ready Stock'
        pesan += f"[{p.id}] {p.name} ({p.category}) - {rupiah(p.price)} - stok {p.stock} ({status})\n"
    await update.message.reply_text(pesan)


async def tambah_produk(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not _require_login(update, context):
        await update.message.reply_text('Silakan /login terlebih dahulu.')
        return

    try:
        form = ProductForm.parse(' '.join(context.args))
        product = await asyncio.to_thread(
            _services(context)['repository'].create_product, Product(id='', **form.to_fields()))
    except KasirError as exc:
        await update.message.reply_text(f"⚠️ {exc}")
        return
    await update.message.reply_text(f"Produk {product.name} ditambahkan (id {product.id}).")


async def ubah_stok(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not _require_login(update, context):
        await update.message.reply_text('Silakan /login terlebih dahulu.')
        return
    if len(context.args) != 2 or not context.args[1].isdigit():
        await update.message.reply_text('Format: /ubahstok <id> <jumlah>')
        return

    try:
        product = await asyncio.to_thread(
            _services(context)['repository'].update_product, context.args[0], stock=int(context.args[1]))
    except KasirError as exc:
        await update.message.reply_text(f"⚠️ {exc}")
        return
    await update.message.reply_text(f"Stok {product.name} sekarang {product.stock}.")


async def hapus_produk(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not _require_login(update, context):
        await update.message.reply_text('Silakan /login terlebih dahulu.')
        return
    if len(context.args) != 1:
        await update.message.reply_text('Format: /hapusproduk <id>')
        return

    try:
        await asyncio.to_thread(_services(context)['repository'].delete_product, context.args[0])
    except KasirError as exc:
        await update.message.reply_text(f"⚠️ {exc}")
        return
    await update.message.reply_text('Produk dihapus.')


async def tanya(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Pertanyaan bebas ke asisten bisnis AI."""
    if not _require_login(update, context):
        await update.message.reply_text('Silakan /login terlebih dahulu.')
        return

    pertanyaan = ' '.join(context.args or []).strip()
    if not pertanyaan:
        await update.message.reply_text(
            'Halo! Saya asisten bisnis pintar Anda. Tanyakan saya tentang performa penjualan, '
            'saran promosi, atau analisis stok barang. Contoh: /tanya produk apa yang paling laris?'
        )
        return

    services = _services(context)
    # Panggilan AI dan database bersifat blocking, jalankan di luar event loop
    products, transactions, _ = await asyncio.to_thread(
        load_catalog, services['repository'], services['cache'])
    jawaban = await asyncio.to_thread(services['insight'].generate, transactions, products, pertanyaan)
    await update.message.reply_text(jawaban)


def build_application(settings) -> Application:
    """Menyiapkan database, layanan dan handler bot."""
    init_db(settings.database_url)
    repository = SqlRepository()
    cache = LocalCache(settings.local_cache_path)
    state = SessionState(cache).load()

    try:
        migrate_local_cache(repository, cache, state)
    except KasirError:
        logger.warning("Migrasi data lokal gagal atau sudah selesai", exc_info=True)
    load_catalog(repository, cache)

    # Cache lokal ikut diperbarui setiap ada perubahan data
    repository.subscribe(PRODUCTS, cache.save_products)
    repository.subscribe(TRANSACTIONS, cache.save_transactions)

    application = Application.builder().token(settings.telegram_bot_token).build()
    application.bot_data.update(
        settings=settings,
        repository=repository,
        workflow=CheckoutWorkflow(repository),
        insight=BusinessInsightService.from_settings(settings),
        cache=cache,
        state=state,
    )

    # Menambahkan handler
    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("login", login))
    application.add_handler(CommandHandler("logout", logout))
    application.add_handler(CommandHandler("produk", produk))
    application.add_handler(CommandHandler("keranjang", lihat_keranjang))
    application.add_handler(CommandHandler("checkout", checkout))
    application.add_handler(CommandHandler("tunai", tunai))
    application.add_handler(CommandHandler("laporan", laporan))
    application.add_handler(CommandHandler("stok", stok))
    application.add_handler(CommandHandler("tambahproduk", tambah_produk))
    application.add_handler(CommandHandler("ubahstok", ubah_stok))
    application.add_handler(CommandHandler("hapusproduk", hapus_produk))
    application.add_handler(CommandHandler("tanya", tanya))
    application.add_handler(CallbackQueryHandler(handle_button))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, tunai))
    return application


def main() -> None:
    """Menjalankan bot."""
    settings = load_settings('.env')
    configure_logging(settings.log_level)
    if not settings.telegram_bot_token:
        raise SystemExit("TELEGRAM_BOT_TOKEN belum diisi.")

    # Mulai bot
    build_application(settings).run_polling()


if __name__ == '__main__':
    main()
