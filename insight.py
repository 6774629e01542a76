import json
import logging
from typing import List, Optional

from openai import OpenAI, OpenAIError

from config import AI_HISTORY_WINDOW
from errors import ExternalServiceError
from models import Product, Transaction

logger = logging.getLogger(__name__)

NO_API_KEY_MESSAGE = "API Key tidak ditemukan. Harap konfigurasi API Key untuk menggunakan fitur AI."
EMPTY_ANSWER_MESSAGE = "Maaf, saya tidak dapat menghasilkan analisis saat ini."
FAILURE_MESSAGE = "Terjadi kesalahan saat menghubungi layanan AI. Coba lagi nanti."

PROMPT_TEMPLATE = """
Anda adalah asisten bisnis pintar untuk sebuah aplikasi kasir bernama "KasirPintar".

Data Penjualan Terakhir:
{sales}

Data Inventaris:
{inventory}

Pertanyaan User: "{query}"

Tugas:
Berikan analisis bisnis, saran, atau jawaban yang relevan berdasarkan data di atas.
Gunakan bahasa Indonesia yang profesional namun ramah.
Jika diminta saran promosi, berikan ide kreatif.
Jika diminta analisis performa, gunakan data penjualan.
Jawab dengan singkat dan padat (maksimal 2 paragraf).
"""


def build_payload(transactions: List[Transaction], products: List[Product], query: str,
                  window: int = AI_HISTORY_WINDOW) -> dict:
    """Ringkasan data yang dikirim ke model: maksimal ``window`` transaksi terbaru."""
    ordered = sorted(transactions, key=lambda t: t.date)[-window:]
    return {
        'sales': [
            {
                'date': t.date.isoformat(),
                'total': t.total,
                'items': ', '.join(f"{i.product.name} (x{i.quantity})" for i in t.items),
            }
            for t in ordered
        ],
        'inventory': [{'name': p.name, 'stock': p.stock} for p in products],
        'query': query,
    }


def build_prompt(payload: dict) -> str:
    inventory = ', '.join(f"{p['name']} (Stock: {p['stock']})" for p in payload['inventory'])
    return PROMPT_TEMPLATE.format(
        sales=json.dumps(payload['sales'], ensure_ascii=False),
        inventory=inventory,
        query=payload['query'],
    )


class BusinessInsightService:
    """Asisten AI untuk analisis penjualan; tidak pernah melempar error."""

    def __init__(self, client: Optional[OpenAI], model: str,
                 window: int = AI_HISTORY_WINDOW) -> None:
        self.client = client
        self.model = model
        self.window = window

    @classmethod
    def from_settings(cls, settings) -> 'BusinessInsightService':
        client = None
        if settings.openai_api_key:
            client = OpenAI(api_key=settings.openai_api_key, base_url=settings.ai_base_url)
        return cls(client, settings.ai_model)

    def generate(self, transactions: List[Transaction], products: List[Product], query: str) -> str:
        if self.client is None:
            return NO_API_KEY_MESSAGE

        try:
            text = self._ask(build_prompt(build_payload(transactions, products, query, self.window)))
        except ExternalServiceError:
            logger.exception("AI API error")
            return FAILURE_MESSAGE
        except Exception:
            # Respons rusak atau error transport di luar OpenAIError
            logger.exception("Gagal memproses jawaban AI")
            return FAILURE_MESSAGE
        return text or EMPTY_ANSWER_MESSAGE

    def _ask(self, prompt: str) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{'role': 'user', 'content': prompt}],
            )
        except OpenAIError as exc:
            raise ExternalServiceError(str(exc)) from exc
        if not response.choices:
            return ''
        return (response.choices[0].message.content or '').strip()
