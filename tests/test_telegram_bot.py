import asyncio
import time
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest

import telegram_bot
from cart import Cart
from checkout import CheckoutResult, CheckoutWorkflow
from errors import PersistenceError
from local_cache import LocalCache, SessionState
from models import CartLineItem, PaymentMethod, Transaction
from repository import Repository

SETTINGS = SimpleNamespace(admin_username='admin', admin_password='admin123')


def message_update(chat_id=1):
    update = MagicMock()
    update.callback_query = None
    update.effective_chat.id = chat_id
    update.message.reply_text = AsyncMock()
    return update


def admin_context(repository, tmp_path, chat_id=1, **services):
    cache = LocalCache(str(tmp_path / 'kasir_cache.json'))
    state = SessionState(cache)
    state.login('admin', 'admin123', SETTINGS, chat_id=chat_id)
    context = MagicMock()
    context.application.bot_data = {'repository': repository, 'cache': cache, 'state': state, **services}
    return context


@pytest.fixture(autouse=True)
def fresh_carts(monkeypatch):
    monkeypatch.setattr(telegram_bot, 'carts', telegram_bot.CartRegistry())


def test_render_cart_shows_tax_and_total(nasi_goreng):
    cart = Cart()
    cart.add_item(nasi_goreng)

    text, markup = telegram_bot.render_cart(cart)

    assert 'Subtotal: Rp 25,000' in text
    assert 'Pajak (10%): Rp 2,500' in text
    assert 'Total: Rp 27,500' in text
    assert markup.inline_keyboard[-2][0].callback_data == 'checkout'


def test_render_receipt_includes_change_for_cash(nasi_goreng):
    transaction = Transaction(id='123', date=datetime(2026, 10, 19, 12, 0), total=27500.0,
                              payment_method=PaymentMethod.CASH,
                              items=(CartLineItem(product=nasi_goreng, quantity=1),))

    receipt = telegram_bot.render_receipt(CheckoutResult(transaction=transaction, change_due=2500))

    assert receipt.startswith('STRUK PEMBELIAN #123')
    assert 'Kembalian: Rp 2,500' in receipt


def test_empty_cart_message():
    update = message_update()

    asyncio.run(telegram_bot.lihat_keranjang(update, MagicMock()))

    update.message.reply_text.assert_awaited_once_with('Keranjang belanja Anda kosong.', reply_markup=None)


def test_cash_payment_completes_checkout_and_clears_cart(stocked_repository, nasi_goreng):
    telegram_bot.carts.get(1).add_item(nasi_goreng)
    update = message_update()
    context = MagicMock()
    context.args = ['30000']
    context.user_data = {'awaiting_cash': True}
    context.application.bot_data = {
        'workflow': CheckoutWorkflow(stocked_repository),
        'settings': SimpleNamespace(group_chat_id=None),
    }

    asyncio.run(telegram_bot.tunai(update, context))

    reply = update.message.reply_text.await_args.args[0]
    assert 'STRUK PEMBELIAN' in reply
    assert 'Kembalian: Rp 2,500' in reply
    assert telegram_bot.carts.get(1).is_empty
    assert stocked_repository.get_product_stock('A') == 4


def test_insufficient_cash_keeps_cart(stocked_repository, nasi_goreng):
    telegram_bot.carts.get(1).add_item(nasi_goreng)
    update = message_update()
    context = MagicMock()
    context.args = ['1000']
    context.user_data = {'awaiting_cash': True}
    context.application.bot_data = {
        'workflow': CheckoutWorkflow(stocked_repository),
        'settings': SimpleNamespace(group_chat_id=None),
    }

    asyncio.run(telegram_bot.tunai(update, context))

    assert 'Uang tunai kurang' in update.message.reply_text.await_args.args[0]
    assert not telegram_bot.carts.get(1).is_empty
    assert stocked_repository.list_transactions() == []


class SlowInsight:
    def generate(self, transactions, products, query):
        time.sleep(0.5)
        return 'Jual paket hemat.'


def test_tanya_keeps_the_event_loop_running(stocked_repository, tmp_path):
    update = message_update(chat_id=42)
    context = admin_context(stocked_repository, tmp_path, chat_id=42, insight=SlowInsight())
    context.args = ['ide', 'promosi?']

    async def scenario():
        gaps = []

        async def ticker():
            last = time.monotonic()
            while True:
                await asyncio.sleep(0.05)
                now = time.monotonic()
                gaps.append(now - last)
                last = now

        task = asyncio.create_task(ticker())
        await telegram_bot.tanya(update, context)
        task.cancel()
        return gaps

    gaps = asyncio.run(scenario())

    assert gaps and max(gaps) < 0.3
    update.message.reply_text.assert_awaited_once_with('Jual paket hemat.')


def test_stok_falls_back_to_local_cache(tmp_path, nasi_goreng):
    repository = Mock(spec=Repository)
    repository.list_products.side_effect = PersistenceError('down', stage='read')
    update = message_update()
    context = admin_context(repository, tmp_path)
    context.application.bot_data['cache'].save_products([nasi_goreng])

    asyncio.run(telegram_bot.stok(update, context))

    reply = update.message.reply_text.await_args.args[0]
    assert 'Menggunakan data lokal' in reply
    assert '[A] Nasi Goreng Spesial' in reply


def test_admin_commands_refused_for_other_chats(stocked_repository, tmp_path):
    update = message_update(chat_id=7)
    context = admin_context(stocked_repository, tmp_path, chat_id=42)
    context.args = ['A']

    asyncio.run(telegram_bot.hapus_produk(update, context))

    update.message.reply_text.assert_awaited_once_with('Silakan /login terlebih dahulu.')
    assert stocked_repository.get_product('A').name == 'Nasi Goreng Spesial'


def test_login_records_chat(tmp_path):
    update = message_update(chat_id=42)
    context = admin_context(Mock(spec=Repository), tmp_path)
    context.application.bot_data['state'].logout()
    context.application.bot_data['settings'] = SETTINGS
    context.args = ['admin', 'admin123']

    asyncio.run(telegram_bot.login(update, context))

    assert context.application.bot_data['state'].is_admin(42)
    assert not context.application.bot_data['state'].is_admin(1)
