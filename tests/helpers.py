"""Shared builders for test payloads"""

import io
import time
import random
from threading import Lock

from Crypto.Cipher import AES
from Crypto.Util.Padding import pad
from PIL import Image

from fuz_protocol import encode_bytes_field, encode_key, encode_varint, encode_varint_field, FIXED32
from manga_models import Chapter, ImagePage
from manga_providers import MangaProvider

# Key/iv pair used by the COMIC FUZ sample page
KEY_HEX = '2e009856520e10917accae78097a2e13d9dd7a97d3a5ea293527ec9d0132bba3'
IV_HEX = 'e8c7e042d6ba9fb85c128d5ceb64b82f'


def make_image(fmt='JPEG', size=(64, 96), color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new('RGB', size, color).save(buf, format=fmt)
    return buf.getvalue()


def make_pattern_png(size=(64, 64)) -> bytes:
    img = Image.new('RGB', size)
    img.putdata([((x * 7) % 256, (y * 5) % 256, (x * y) % 256)
                 for y in range(size[1]) for x in range(size[0])])
    buf = io.BytesIO()
    img.save(buf, format='PNG')
    return buf.getvalue()


def encrypt(data: bytes, key_hex: str = KEY_HEX, iv_hex: str = IV_HEX) -> bytes:
    cipher = AES.new(bytes.fromhex(key_hex), AES.MODE_CBC, iv=bytes.fromhex(iv_hex))
    return cipher.encrypt(pad(data, 16))


# === protobuf builders ===

def pb_image(image_url, iv=None, key=None, width=0, height=0, is_extra_page=None) -> bytes:
    out = encode_bytes_field(1, image_url)
    if iv is not None:
        out += encode_bytes_field(3, iv)
    if key is not None:
        out += encode_bytes_field(4, key)
    if width:
        out += encode_varint_field(5, width)
    if height:
        out += encode_varint_field(6, height)
    if is_extra_page is not None:
        out += encode_varint_field(7, int(is_extra_page))
    return out


def pb_page_image(image_url, **kwargs) -> bytes:
    return encode_bytes_field(1, pb_image(image_url, **kwargs))


def pb_page_webview(url) -> bytes:
    return encode_bytes_field(2, encode_bytes_field(1, url))


def pb_page_last() -> bytes:
    return encode_bytes_field(3, b'')


def pb_viewer_data(pages, title='', scroll_direction=None) -> bytes:
    out = encode_bytes_field(1, title) if title else b''
    for page in pages:
        out += encode_bytes_field(2, page)
    if scroll_direction is not None:
        out += encode_varint_field(6, scroll_direction)
    return out


def pb_response(pages=(), title='', chapter_id=None, manga_name=None, with_viewer=True,
                scroll_direction=None, extra=b'') -> bytes:
    out = encode_bytes_field(1, encode_varint_field(1, 10))
    if with_viewer:
        out += encode_bytes_field(2, pb_viewer_data(pages, title, scroll_direction))
    if manga_name is not None:
        out += encode_bytes_field(11, encode_varint_field(1, 77) + encode_bytes_field(2, manga_name))
    if chapter_id is not None:
        out += encode_varint_field(12, chapter_id)
    return out + extra


def pb_unknown_fields() -> bytes:
    """Fields the decoder does not know: a string, a fixed32 and a varint"""
    return (encode_bytes_field(7, 'next update soon')
            + encode_key(99, FIXED32) + b'\x01\x02\x03\x04'
            + encode_key(14, 0) + encode_varint(1))


# === fakes ===

class FakeProvider(MangaProvider):
    """Serves page bytes from a dict; values that are exceptions are raised"""

    SITE_NAME = 'Fake'

    def __init__(self, payloads, chapter=None, delay=(0.0, 0.02), on_fetch=None):
        super().__init__(client=None)
        self.payloads = payloads
        self.chapter = chapter
        self.delay = delay
        self.on_fetch = on_fetch
        self.calls = []
        self._lock = Lock()

    def resolve(self, locator):
        if isinstance(self.chapter, Exception):
            raise self.chapter
        return self.chapter

    def fetch_page_bytes(self, page):
        with self._lock:
            self.calls.append(page.source_reference)
        if self.delay[1]:
            time.sleep(random.uniform(*self.delay))
        if self.on_fetch:
            self.on_fetch(page)
        value = self.payloads[page.source_reference]
        if isinstance(value, Exception):
            raise value
        return value


def image_chapter(refs, decryption=None, chapter_id='1', title='Test Chapter') -> Chapter:
    pages = tuple(ImagePage(source_reference=ref, decryption=decryption) for ref in refs)
    return Chapter(chapter_id=chapter_id, title=title, pages=pages, source='Fake')


class FakeResponse:
    def __init__(self, status_code=200, content=b'', json_data=None, text=None):
        self.status_code = status_code
        self.content = content
        self._json = json_data
        self.text = text if text is not None else content.decode('utf-8', 'replace')

    def json(self):
        if self._json is None:
            raise ValueError('No JSON object could be decoded')
        return self._json


class FakeHttpClient:
    """Stands in for HttpClient; replies are popped in order"""

    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []

    def _next(self, method, url, headers, data=None):
        self.requests.append({'method': method, 'url': url, 'headers': headers or {}, 'data': data})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def get(self, url, headers=None, **kwargs):
        return self._next('GET', url, headers)

    def post(self, url, data=None, headers=None, **kwargs):
        return self._next('POST', url, headers, data)

    def close(self):
        pass
