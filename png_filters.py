"""
Обратная фильтрация строк PNG и сборка чересстрочных (Adam7) изображений.
Все вычисления ведутся по модулю 256, соседние байты берутся
с тем же смещением внутри пикселя.
"""

import logging
from typing import Callable, Optional, Sequence, Tuple

from png_errors import CorruptFileError, InvalidFilterError

logger = logging.getLogger(__name__)

FILTER_NONE = 0
FILTER_SUB = 1
FILTER_UP = 2
FILTER_AVERAGE = 3
FILTER_PAETH = 4

# (x0, y0, dx, dy) для каждого из семи проходов Adam7
ADAM7_PASSES = (
    (0, 0, 8, 8),
    (4, 0, 8, 8),
    (0, 4, 4, 8),
    (2, 0, 4, 4),
    (0, 2, 2, 4),
    (1, 0, 2, 2),
    (0, 1, 1, 2),
)

RowCallback = Callable[[int, bytearray], None]


def paeth_predictor(left: int, upper: int, upper_left: int) -> int:
    """Предсказатель Paeth: при равенстве выигрывает левый, затем верхний"""
    p = left + upper - upper_left
    pa = abs(p - left)
    pb = abs(p - upper)
    pc = abs(p - upper_left)
    if pa <= pb and pa <= pc:
        return left
    elif pb <= pc:
        return upper
    return upper_left


def unfilter_scanlines(data: Sequence[int], scanline_length: int, pixel_bytes: int, rows: int,
                       pos: int = 0, on_row: Optional[RowCallback] = None,
                       pixels: Optional[bytearray] = None) -> Tuple[bytearray, int]:
    """
    Снимает фильтры с `rows` строк, начиная с позиции `pos` в потоке.

    Каждая строка в потоке - байт типа фильтра и `scanline_length` байт данных.
    После восстановления строки вызывается `on_row(row, pixels)`.
    Возвращает буфер восстановленных байтов и позицию сразу за последней строкой.
    """
    if pixels is None:
        pixels = bytearray(scanline_length * rows)
    length = len(data)

    for row in range(rows):
        if pos + 1 + scanline_length > length:
            raise CorruptFileError(f"Неполные данные изображения: строка {row} обрывается")

        filter_type = data[pos]
        pos += 1
        start = row * scanline_length
        # Для i-го байта строки верхний сосед лежит в prior + i,
        # левый - на pixel_bytes раньше (тот же байт соседнего пикселя)
        prior = start - scanline_length

        if filter_type == FILTER_NONE:
            pixels[start:start + scanline_length] = data[pos:pos + scanline_length]

        elif filter_type == FILTER_SUB:
            for i in range(scanline_length):
                left = pixels[start + i - pixel_bytes] if i >= pixel_bytes else 0
                pixels[start + i] = (data[pos + i] + left) & 0xFF

        elif filter_type == FILTER_UP:
            for i in range(scanline_length):
                upper = pixels[prior + i] if row else 0
                pixels[start + i] = (data[pos + i] + upper) & 0xFF

        elif filter_type == FILTER_AVERAGE:
            for i in range(scanline_length):
                left = pixels[start + i - pixel_bytes] if i >= pixel_bytes else 0
                upper = pixels[prior + i] if row else 0
                pixels[start + i] = (data[pos + i] + (left + upper) // 2) & 0xFF

        elif filter_type == FILTER_PAETH:
            for i in range(scanline_length):
                left = pixels[start + i - pixel_bytes] if i >= pixel_bytes else 0
                if row:
                    upper = pixels[prior + i]
                    upper_left = pixels[prior + i - pixel_bytes] if i >= pixel_bytes else 0
                else:
                    upper = upper_left = 0
                pixels[start + i] = (data[pos + i] + paeth_predictor(left, upper, upper_left)) & 0xFF

        else:
            raise InvalidFilterError(filter_type, row)

        pos += scanline_length

        if on_row is not None:
            on_row(row, pixels)

    return pixels, pos


def pass_size(width: int, height: int, x0: int, y0: int, dx: int, dy: int) -> Tuple[int, int]:
    """Размер подизображения одного прохода Adam7 (0, если проход пуст)"""
    pass_width = -(-(width - x0) // dx)
    pass_height = -(-(height - y0) // dy)
    return max(pass_width, 0), max(pass_height, 0)


def filtered_length(width: int, height: int, pixel_bytes: int, interlaced: bool = False) -> int:
    """Длина отфильтрованного потока: байт фильтра плюс данные на каждую строку"""
    if not interlaced:
        return height * (1 + width * pixel_bytes)

    total = 0
    for x0, y0, dx, dy in ADAM7_PASSES:
        pass_width, pass_height = pass_size(width, height, x0, y0, dx, dy)
        if pass_width and pass_height:
            total += pass_height * (1 + pass_width * pixel_bytes)
    return total


def _scatter_row(pixels: bytearray, width: int, pixel_bytes: int,
                 x0: int, y0: int, dx: int, dy: int, pass_width: int) -> RowCallback:
    """Возвращает обработчик, раскладывающий строку прохода по полному изображению"""
    scanline_length = pass_width * pixel_bytes
    step = dx * pixel_bytes

    def scatter(row: int, pass_pixels: bytearray):
        image_pos = ((y0 + row * dy) * width + x0) * pixel_bytes
        pass_pos = row * scanline_length
        for _ in range(pass_width):
            pixels[image_pos:image_pos + pixel_bytes] = pass_pixels[pass_pos:pass_pos + pixel_bytes]
            image_pos += step
            pass_pos += pixel_bytes

    return scatter


def deinterlace_adam7(data: Sequence[int], width: int, height: int, pixel_bytes: int,
                      pos: int = 0, pixels: Optional[bytearray] = None) -> Tuple[bytearray, int]:
    """
    Читает семь проходов Adam7 подряд и собирает полное изображение.

    Проходы читаются строго по порядку: позиция в потоке общая.
    Результат имеет ту же форму, что и у обычного (не чересстрочного) изображения.
    """
    if pixels is None:
        pixels = bytearray(width * height * pixel_bytes)

    for index, (x0, y0, dx, dy) in enumerate(ADAM7_PASSES, start=1):
        pass_width, pass_height = pass_size(width, height, x0, y0, dx, dy)
        if pass_width == 0 or pass_height == 0:
            logger.debug("Проход %d пуст для %dx%d", index, width, height)
            continue

        _, pos = unfilter_scanlines(
            data,
            pixel_bytes * pass_width,
            pixel_bytes,
            pass_height,
            pos,
            _scatter_row(pixels, width, pixel_bytes, x0, y0, dx, dy, pass_width)
        )

    return pixels, pos
