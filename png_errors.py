"""
Исключения декодера PNG.
Все ошибки фатальны: частичный результат не возвращается.
"""


class PNGError(Exception):
    """Базовая ошибка декодирования PNG"""


class CorruptFileError(PNGError, EOFError):
    """Курсор чтения вышел за пределы данных"""


class InvalidFilterError(PNGError, ValueError):
    """Неизвестный тип фильтра строки"""

    def __init__(self, filter_type: int, row: int):
        super().__init__(f"Неверный алгоритм фильтрации: {filter_type} (строка {row})")
        self.filter_type = filter_type
        self.row = row


class InflateError(PNGError):
    """Ошибка распаковки данных IDAT"""


class PaletteIndexError(PNGError, IndexError):
    """Индекс пикселя за пределами палитры"""

    def __init__(self, index: int, palette_size: int):
        super().__init__(f"Индекс палитры {index} вне диапазона 0-{palette_size - 1}")
        self.index = index
        self.palette_size = palette_size


class UnsupportedFormatError(PNGError, ValueError):
    """Параметры изображения не поддерживаются декодером"""
