"""
Flask веб-приложение для декодирования PNG файлов в RGBA
"""

from flask import Flask, request, jsonify, send_file
import base64
import io
import os
import tempfile
from png_errors import PNGError
from png_parser import PNGParser

app = Flask(__name__)
app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024  # 16MB максимум
app.config['UPLOAD_FOLDER'] = tempfile.gettempdir()
app.config['MAX_PIXELS'] = 4096 * 4096
# Переопределение через окружение: PNGDECODE_MAX_PIXELS=...
app.config.from_prefixed_env('PNGDECODE')


def save_upload():
    """Сохраняет загруженный файл во временный путь; возвращает (путь, ошибка)"""
    if 'file' not in request.files:
        return None, (jsonify({'error': 'Файл не загружен'}), 400)

    file = request.files['file']
    if file.filename == '':
        return None, (jsonify({'error': 'Файл не выбран'}), 400)

    temp_path = os.path.join(app.config['UPLOAD_FOLDER'], f'temp_{os.urandom(8).hex()}.png')
    file.save(temp_path)
    return temp_path, None


def decode_upload(temp_path):
    """Декодирует файл; возвращает (parser, rgba, ошибка)"""
    parser = PNGParser.load(temp_path)

    if parser.width * parser.height > app.config['MAX_PIXELS']:
        return parser, None, (jsonify({'error': f'Слишком большое изображение: {parser.width}x{parser.height}'}), 413)

    rgba = parser.decode().result()
    return parser, rgba, None


@app.route('/api/info', methods=['POST'])
def get_png_info():
    """Получает метаданные PNG файла (размер, тип цвета, текстовые чанки)"""
    temp_path, error = save_upload()
    if error:
        return error

    try:
        parser = PNGParser.load(temp_path)
        return jsonify(parser.get_info())
    except PNGError as e:
        return jsonify({'error': f'Ошибка парсинга: {str(e)}'}), 400
    except Exception as e:
        app.logger.exception("Ошибка чтения PNG")
        return jsonify({'error': f'Ошибка обработки: {str(e)}'}), 500
    finally:
        # Удаляем временный файл
        if os.path.exists(temp_path):
            os.remove(temp_path)


@app.route('/api/decode', methods=['POST'])
def decode_png():
    """Декодирует PNG и возвращает RGBA пиксели в base64"""
    temp_path, error = save_upload()
    if error:
        return error

    try:
        parser, rgba, error = decode_upload(temp_path)
        if error:
            return error

        return jsonify({
            'width': parser.width,
            'height': parser.height,
            'pixels': base64.b64encode(bytes(rgba)).decode('ascii')
        })
    except PNGError as e:
        return jsonify({'error': f'Ошибка декодирования: {str(e)}'}), 400
    except Exception as e:
        app.logger.exception("Ошибка декодирования PNG")
        return jsonify({'error': f'Ошибка обработки: {str(e)}'}), 500
    finally:
        if os.path.exists(temp_path):
            os.remove(temp_path)


@app.route('/api/raw', methods=['POST'])
def raw_png_pixels():
    """Отдаёт RGBA пиксели как бинарный файл"""
    temp_path, error = save_upload()
    if error:
        return error

    try:
        parser, rgba, error = decode_upload(temp_path)
        if error:
            return error

        response = send_file(
            io.BytesIO(bytes(rgba)),
            mimetype='application/octet-stream',
            as_attachment=True,
            download_name=f'image_{parser.width}x{parser.height}.rgba'
        )
        response.headers['X-Image-Width'] = str(parser.width)
        response.headers['X-Image-Height'] = str(parser.height)
        return response
    except PNGError as e:
        return jsonify({'error': f'Ошибка декодирования: {str(e)}'}), 400
    except Exception as e:
        app.logger.exception("Ошибка выгрузки пикселей")
        return jsonify({'error': f'Ошибка обработки: {str(e)}'}), 500
    finally:
        if os.path.exists(temp_path):
            os.remove(temp_path)


if __name__ == '__main__':
    # Для Docker используем 0.0.0.0, чтобы принимать подключения извне
    app.run(debug=True, host='0.0.0.0', port=5000)
