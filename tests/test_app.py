"""
Тесты для app.py (Flask приложение)
"""
import base64
import io
import tempfile

import pytest

from app import app
from png_factory import PNG_SIGNATURE, build_png, build_png_from_stream
from png_parser import GRAYSCALE, TRUECOLOR_ALPHA


@pytest.fixture
def client():
    """Фикстура для тестового клиента Flask"""
    app.config['TESTING'] = True
    app.config['UPLOAD_FOLDER'] = tempfile.gettempdir()
    with app.test_client() as client:
        yield client


def upload(data, name='test.png'):
    return {'file': (io.BytesIO(data), name)}


class TestApp:
    """Тесты для Flask приложения"""

    def test_info_endpoint_no_file(self, client):
        response = client.post('/api/info')
        assert response.status_code == 400
        assert 'error' in response.get_json()

    def test_info_endpoint_empty_form(self, client):
        response = client.post('/api/info', data={})
        assert response.status_code == 400

    def test_info_endpoint(self, client):
        data = build_png(3, 2, bytes(24), TRUECOLOR_ALPHA, 4, text={'Title': 'demo'})
        response = client.post('/api/info', data=upload(data), content_type='multipart/form-data')
        assert response.status_code == 200
        info = response.get_json()
        assert info['width'] == 3
        assert info['height'] == 2
        assert info['has_alpha'] is True
        assert info['color_space'] == 'DeviceRGB'
        assert info['text'] == {'Title': 'demo'}

    def test_info_endpoint_corrupt_file(self, client):
        response = client.post('/api/info', data=upload(PNG_SIGNATURE + b'\x00'),
                               content_type='multipart/form-data')
        assert response.status_code == 400
        assert 'error' in response.get_json()

    def test_decode_endpoint(self, client):
        data = build_png(1, 1, bytes([128]), GRAYSCALE, 1)
        response = client.post('/api/decode', data=upload(data), content_type='multipart/form-data')
        assert response.status_code == 200
        result = response.get_json()
        assert result['width'] == 1
        assert result['height'] == 1
        assert base64.b64decode(result['pixels']) == bytes([128, 128, 128, 255])

    def test_decode_endpoint_invalid_filter(self, client):
        data = build_png_from_stream(1, 1, bytes([6, 0]), GRAYSCALE)
        response = client.post('/api/decode', data=upload(data), content_type='multipart/form-data')
        assert response.status_code == 400

    def test_decode_endpoint_oversized_stream(self, client):
        data = build_png_from_stream(1, 1, b'\x00\x80' + bytes(1024 * 1024), GRAYSCALE)
        response = client.post('/api/decode', data=upload(data), content_type='multipart/form-data')
        assert response.status_code == 400
        assert 'error' in response.get_json()

    def test_decode_endpoint_too_large(self, client, monkeypatch):
        monkeypatch.setitem(app.config, 'MAX_PIXELS', 3)
        data = build_png(2, 2, bytes(4), GRAYSCALE, 1)
        response = client.post('/api/decode', data=upload(data), content_type='multipart/form-data')
        assert response.status_code == 413

    def test_decode_endpoint_no_file(self, client):
        response = client.post('/api/decode')
        assert response.status_code == 400

    def test_raw_endpoint(self, client):
        raw = bytes([1, 2, 3, 4, 5, 6, 7, 8])
        data = build_png(2, 1, raw, TRUECOLOR_ALPHA, 4, filter_types=(4,))
        response = client.post('/api/raw', data=upload(data), content_type='multipart/form-data')
        assert response.status_code == 200
        assert response.mimetype == 'application/octet-stream'
        assert response.headers['X-Image-Width'] == '2'
        assert response.headers['X-Image-Height'] == '1'
        assert response.data == raw

    def test_raw_endpoint_no_file(self, client):
        response = client.post('/api/raw')
        assert response.status_code == 400

    def test_404_page(self, client):
        response = client.get('/nonexistent')
        assert response.status_code == 404
