"""
Распаковка сжатых данных IDAT в фоновом потоке.
Результат доставляется одним Future: либо весь поток целиком, либо ошибка.
"""

import logging
import threading
import zlib
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Optional

from png_errors import InflateError

logger = logging.getLogger(__name__)

_default_executor = None
_default_lock = threading.Lock()


def get_default_executor() -> Executor:
    """Общий пул потоков для распаковки (создаётся при первом обращении)"""
    global _default_executor
    with _default_lock:
        if _default_executor is None:
            _default_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix='inflate')
        return _default_executor


def inflate_sync(payload: bytes, max_length: Optional[int] = None) -> bytes:
    """
    Распаковывает zlib-поток, ошибки zlib превращаются в InflateError.

    Если задан max_length, распаковывается не больше max_length + 1 байт:
    поток длиннее max_length считается ошибкой.
    """
    try:
        if max_length is None:
            return zlib.decompress(payload)

        decompressor = zlib.decompressobj()
        data = decompressor.decompress(payload, max_length + 1)
    except zlib.error as e:
        raise InflateError(f"Ошибка распаковки IDAT: {e}") from e

    if len(data) > max_length:
        raise InflateError(f"Распакованные данные IDAT длиннее ожидаемых {max_length} байт")
    if not decompressor.eof:
        raise InflateError("Поток IDAT обрывается до конца")
    return data


class Inflater:
    """Асинхронная распаковка zlib поверх Executor"""

    def __init__(self, executor: Optional[Executor] = None):
        self._owns_executor = False
        if executor is None:
            executor = get_default_executor()
        self.executor = executor

    @classmethod
    def with_own_executor(cls, max_workers: int = 1) -> 'Inflater':
        """Создаёт Inflater с собственным пулом, который закрывается в shutdown()"""
        inflater = cls(ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='inflate'))
        inflater._owns_executor = True
        return inflater

    def inflate(self, payload: bytes, max_length: Optional[int] = None) -> Future:
        """Запускает распаковку и возвращает Future с распакованными байтами"""
        logger.debug("Распаковка %d байт IDAT (не более %s)", len(payload), max_length)
        return self.executor.submit(inflate_sync, bytes(payload), max_length)

    def shutdown(self):
        """Закрывает собственный пул (общий пул не трогаем)"""
        if self._owns_executor:
            self.executor.shutdown(wait=True)
