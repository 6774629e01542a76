"""Hierarki error aplikasi kasir."""

from typing import Optional


class KasirError(Exception):
    """Error dasar aplikasi."""


class ValidationError(KasirError):
    """Input ditolak sebelum ada penulisan ke database."""


class NotFoundError(KasirError):
    """Data dengan id tersebut tidak ada."""


class PersistenceError(KasirError):
    """Gagal membaca atau menulis ke database.

    ``stage`` menandai tahap yang gagal: ``header``, ``items``, ``stock``,
    ``product`` atau ``read``.
    """

    def __init__(self, message: str, detail: Optional[str] = None,
                 hint: Optional[str] = None, stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.hint = hint
        self.stage = stage

    def user_message(self) -> str:
        pesan = f"Gagal menyimpan transaksi\n\nPesan: {self.message}"
        if self.detail:
            pesan += f"\n\nDetail: {self.detail}"
        if self.hint:
            pesan += f"\n\nSaran Teknis: {self.hint}"
        return pesan


class ExternalServiceError(KasirError):
    """Layanan eksternal (asisten AI) tidak bisa dihubungi."""
