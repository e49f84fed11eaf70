"""
Парсер PNG файлов без использования готовых библиотек.
Читает чанки, распаковывает IDAT, снимает фильтры строк,
собирает Adam7 и переводит пиксели в 8-битный RGBA.
"""

import logging
import struct
from concurrent.futures import Future
from typing import Callable, Dict, Optional

from inflater import Inflater
from png_errors import CorruptFileError, PaletteIndexError, PNGError, UnsupportedFormatError
from png_filters import deinterlace_adam7, filtered_length, unfilter_scanlines

logger = logging.getLogger(__name__)

SIGNATURE_LENGTH = 8
IHDR_LENGTH = 13

GRAYSCALE = 0
TRUECOLOR = 2
INDEXED = 3
GRAYSCALE_ALPHA = 4
TRUECOLOR_ALPHA = 6

INTERLACE_NONE = 0
INTERLACE_ADAM7 = 1

COLOR_SPACES = {1: 'DeviceGray', 3: 'DeviceRGB'}

PixelsCallback = Callable[[bytearray], None]


class PNGParser:
    """Парсер для PNG файлов"""

    def __init__(self, file_path: Optional[str] = None, inflater: Optional[Inflater] = None):
        self.file_path = file_path
        self.inflater = inflater
        self.data = b''
        self.pos = 0
        self._reset()

    def _reset(self):
        self.width = 0
        self.height = 0
        self.bits = 0
        self.color_type = None
        self.compression_method = 0
        self.filter_method = 0
        self.interlace_method = INTERLACE_NONE
        self.palette = b''
        self.transparency = {}
        self.text = {}
        self.img_data = bytearray()
        self.colors = None
        self.has_alpha_channel = False
        self.pixel_bitlength = 0
        self.color_space = None
        self._decoded_palette = None  # RGBA-палитра, считается один раз

    # ---- чтение данных ----

    def _advance(self, count: int) -> int:
        """Сдвигает курсор на count байт и возвращает старую позицию"""
        start = self.pos
        if count < 0 or start + count > len(self.data):
            raise CorruptFileError("Неполный или повреждённый PNG файл")
        self.pos = start + count
        return start

    def read_byte(self) -> int:
        """Читает один байт"""
        return self.data[self._advance(1)]

    def read_bytes(self, count: int) -> bytes:
        """Читает несколько байт"""
        start = self._advance(count)
        return bytes(self.data[start:start + count])

    def read_uint32(self) -> int:
        """Читает 32-битное беззнаковое число (big-endian)"""
        return struct.unpack('>I', self.read_bytes(4))[0]

    def read_uint16(self) -> int:
        """Читает 16-битное беззнаковое число (big-endian)"""
        return struct.unpack('>H', self.read_bytes(2))[0]

    def skip(self, count: int):
        """Пропускает count байт"""
        self._advance(count)

    # ---- чанки ----

    def parse_header(self, chunk_size: int):
        """Парсит IHDR"""
        if chunk_size < IHDR_LENGTH:
            raise CorruptFileError(f"Слишком короткий IHDR: {chunk_size} байт")
        self.width = self.read_uint32()
        self.height = self.read_uint32()
        self.bits = self.read_byte()
        self.color_type = self.read_byte()
        self.compression_method = self.read_byte()
        self.filter_method = self.read_byte()
        self.interlace_method = self.read_byte()
        self.skip(chunk_size - IHDR_LENGTH)

    def parse_transparency(self, chunk_size: int):
        """Парсит tRNS в зависимости от текущего типа цвета"""
        # По стандарту tRNS идёт после PLTE и до IDAT, но порядок здесь не проверяется
        self.transparency = {}
        if self.color_type == INDEXED:
            alphas = list(self.read_bytes(chunk_size))
            short = len(self.palette) // 3 - len(alphas)
            if short > 0:
                alphas.extend([255] * short)
            self.transparency['indexed'] = alphas
        elif self.color_type == GRAYSCALE:
            if chunk_size < 2:
                raise CorruptFileError("Слишком короткий tRNS для оттенков серого")
            self.transparency['grayscale'] = self.read_uint16()
            self.skip(chunk_size - 2)
        elif self.color_type == TRUECOLOR:
            if chunk_size < 6:
                raise CorruptFileError("Слишком короткий tRNS для RGB")
            self.transparency['rgb'] = (self.read_uint16(), self.read_uint16(), self.read_uint16())
            self.skip(chunk_size - 6)
        else:
            logger.warning("tRNS для типа цвета %s игнорируется", self.color_type)
            self.skip(chunk_size)

    def parse_text(self, chunk_size: int):
        """Парсит tEXt: ключ и значение разделены нулевым байтом"""
        text = self.read_bytes(chunk_size)
        index = text.find(b'\x00')
        if index == -1:
            key, value = text, b''
        else:
            key, value = text[:index], text[index + 1:]
        key = key.decode('latin-1')
        if key in self.text:
            logger.debug("Ключ tEXt '%s' встречается повторно, берём последнее значение", key)
        self.text[key] = value.decode('latin-1')

    def finalize_header(self):
        """Вычисляет производные параметры после IEND"""
        if self.color_type is None:
            raise CorruptFileError("IEND встретился раньше IHDR")

        if self.color_type in (GRAYSCALE, INDEXED, GRAYSCALE_ALPHA):
            self.colors = 1
        elif self.color_type in (TRUECOLOR, TRUECOLOR_ALPHA):
            self.colors = 3
        else:
            self.colors = None

        self.has_alpha_channel = self.color_type in (GRAYSCALE_ALPHA, TRUECOLOR_ALPHA)
        if self.colors:
            self.pixel_bitlength = self.bits * (self.colors + (1 if self.has_alpha_channel else 0))
        self.color_space = COLOR_SPACES.get(self.colors)
        self.img_data = bytes(self.img_data)

    def parse_bytes(self, data: bytes) -> 'PNGParser':
        """Парсит весь PNG из памяти (сигнатура пропускается без проверки)"""
        self._reset()
        self.data = data
        self.pos = SIGNATURE_LENGTH

        while True:
            chunk_size = self.read_uint32()
            section = self.read_bytes(4).decode('latin-1')
            logger.debug("Чанк %s, %d байт, смещение %d", section, chunk_size, self.pos)

            if section == 'IHDR':
                self.parse_header(chunk_size)
            elif section == 'PLTE':
                self.palette = self.read_bytes(chunk_size)
            elif section == 'IDAT':
                self.img_data.extend(self.read_bytes(chunk_size))
            elif section == 'tRNS':
                self.parse_transparency(chunk_size)
            elif section == 'tEXt':
                self.parse_text(chunk_size)
            elif section == 'IEND':
                self.finalize_header()
                return self
            else:
                # Неизвестный чанк - пропускаем по длине
                self.skip(chunk_size)

            self.skip(4)  # CRC не проверяется

    def parse(self) -> 'PNGParser':
        """Читает файл и парсит его чанки"""
        with open(self.file_path, 'rb') as f:
            data = f.read()
        return self.parse_bytes(data)

    @classmethod
    def from_bytes(cls, data: bytes, inflater: Optional[Inflater] = None) -> 'PNGParser':
        return cls(None, inflater).parse_bytes(data)

    @classmethod
    def load(cls, file_path: str, inflater: Optional[Inflater] = None) -> 'PNGParser':
        """Синхронно загружает файл и разбирает заголовок"""
        return cls(file_path, inflater).parse()

    @classmethod
    def decode_file(cls, file_path: str, callback: Optional[PixelsCallback] = None,
                    inflater: Optional[Inflater] = None) -> Future:
        """Загружает файл и возвращает Future с RGBA буфером"""
        try:
            parser = cls.load(file_path, inflater)
        except (OSError, PNGError) as e:
            failed = Future()
            failed.set_exception(e)
            return failed
        return parser.decode(callback)

    # ---- геометрия ----

    @property
    def pixel_bytes(self) -> int:
        return self.pixel_bitlength // 8

    @property
    def scanline_length(self) -> int:
        return self.pixel_bytes * self.width

    @property
    def expected_stream_length(self) -> int:
        """Сколько байт должен дать распакованный IDAT"""
        return filtered_length(self.width, self.height, self.pixel_bytes,
                               self.interlace_method == INTERLACE_ADAM7)

    def check_supported(self):
        """Проверяет, что изображение можно декодировать"""
        if self.colors is None:
            raise UnsupportedFormatError(f"Неизвестный тип цвета: {self.color_type}")
        if self.bits != 8:
            raise UnsupportedFormatError(f"Поддерживается только глубина 8 бит, получено {self.bits}")
        if self.interlace_method not in (INTERLACE_NONE, INTERLACE_ADAM7):
            raise UnsupportedFormatError(f"Неизвестный метод чередования: {self.interlace_method}")
        if self.width <= 0 or self.height <= 0:
            raise UnsupportedFormatError(f"Неверный размер изображения: {self.width}x{self.height}")

    # ---- палитра ----

    def decode_palette(self) -> bytes:
        """Разворачивает палитру в RGBA с учётом прозрачности"""
        palette = self.palette
        transparency = self.transparency.get('indexed', [])
        ret = bytearray()
        for c, i in enumerate(range(0, len(palette) - 2, 3)):
            ret.extend(palette[i:i + 3])
            ret.append(transparency[c] if c < len(transparency) else 255)
        return bytes(ret)

    def get_rgba_palette(self) -> bytes:
        """Возвращает RGBA-палитру из кеша, при первом вызове вычисляет её"""
        # Кеш не защищён от одновременного заполнения из нескольких потоков
        if self._decoded_palette is None:
            self._decoded_palette = self.decode_palette()
        return self._decoded_palette

    def clear_cache(self):
        """Очищает кеш палитры"""
        self._decoded_palette = None

    # ---- пиксели ----

    def read_pixels(self, data: bytes) -> bytearray:
        """Снимает фильтры с распакованного потока (и собирает Adam7)"""
        pixel_bytes = self.pixel_bytes
        if self.interlace_method == INTERLACE_ADAM7:
            pixels, _ = deinterlace_adam7(data, self.width, self.height, pixel_bytes)
        else:
            pixels, _ = unfilter_scanlines(data, self.scanline_length, pixel_bytes, self.height)
        return pixels

    def copy_to_image_data(self, image_data: bytearray, pixels: bytes) -> bytearray:
        """
        Записывает пиксели в RGBA буфер.

        Палитра используется только для типа цвета 3: PLTE в RGB-файле
        (рекомендуемая палитра) не меняет пиксели.
        """
        length = len(image_data)

        if self.color_type == INDEXED:
            if not self.palette:
                raise CorruptFileError("Индексированное изображение без PLTE")
            palette = self.get_rgba_palette()
            entries = len(palette) // 4
            i = 0
            for index in pixels[:length // 4]:
                if index >= entries:
                    raise PaletteIndexError(index, entries)
                k = index * 4
                image_data[i:i + 4] = palette[k:k + 4]
                i += 4
            return image_data

        alpha = self.has_alpha_channel
        i = j = 0
        if self.colors == 1:
            while i < length:
                v = pixels[j]
                j += 1
                image_data[i] = image_data[i + 1] = image_data[i + 2] = v
                if alpha:
                    image_data[i + 3] = pixels[j]
                    j += 1
                else:
                    image_data[i + 3] = 255
                i += 4
        else:
            while i < length:
                image_data[i:i + 3] = pixels[j:j + 3]
                j += 3
                if alpha:
                    image_data[i + 3] = pixels[j]
                    j += 1
                else:
                    image_data[i + 3] = 255
                i += 4
        return image_data

    def to_rgba(self, pixels: bytes) -> bytearray:
        """Выделяет буфер width*height*4 и заполняет его"""
        return self.copy_to_image_data(bytearray(self.width * self.height * 4), pixels)

    # ---- декодирование ----

    @staticmethod
    def _chain(source: Future, transform: Callable, callback: Optional[PixelsCallback]) -> Future:
        """Future, который завершится результатом transform(source.result())"""
        result = Future()

        def on_done(done: Future):
            try:
                value = transform(done.result())
                if callback is not None:
                    callback(value)
            except Exception as e:
                result.set_exception(e)
                return
            result.set_result(value)

        source.add_done_callback(on_done)
        return result

    def decode_pixels(self, callback: Optional[PixelsCallback] = None) -> Future:
        """Распаковывает IDAT и возвращает Future с буфером пикселей без фильтров"""
        try:
            self.check_supported()
        except UnsupportedFormatError as e:
            failed = Future()
            failed.set_exception(e)
            return failed

        inflater = self.inflater or Inflater()
        inflated = inflater.inflate(self.img_data, self.expected_stream_length)
        return self._chain(inflated, self.read_pixels, callback)

    def decode(self, callback: Optional[PixelsCallback] = None) -> Future:
        """Возвращает Future с RGBA буфером width*height*4"""
        return self._chain(self.decode_pixels(), self.to_rgba, callback)

    def get_rgba(self) -> bytearray:
        """Синхронное декодирование в RGBA"""
        return self.decode().result()

    def get_info(self) -> Dict:
        """Метаданные изображения"""
        return {
            'width': self.width,
            'height': self.height,
            'bit_depth': self.bits,
            'color_type': self.color_type,
            'color_space': self.color_space,
            'has_alpha': self.has_alpha_channel,
            'interlaced': self.interlace_method == INTERLACE_ADAM7,
            'palette_size': len(self.palette) // 3,
            'transparency': next(iter(self.transparency), None),
            'text': dict(self.text),
        }
