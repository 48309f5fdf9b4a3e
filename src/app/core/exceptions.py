from __future__ import annotations

import asyncio


class LoaderError(Exception):
    """Базовая ошибка top-N загрузчика."""


class InvalidParameter(LoaderError, ValueError):
    """Небезопасный лимит, неизвестная колонка или ключ. Запрос не отправляется."""


class DecodeError(LoaderError):
    """Строка из хранилища не соответствует схеме отношения. Весь батч отменяется."""


class StoreError(LoaderError):
    """Ошибка драйвера при выполнении запроса (без ретраев)."""

    def __init__(self, message: str, *, original: BaseException, is_disconnect: bool = False) -> None:
        super().__init__(message)
        self.original = original
        self.is_disconnect = is_disconnect


class Cancelled(LoaderError, asyncio.CancelledError):
    """Загрузка прервана вызывающей стороной (cancel или timeout)."""
