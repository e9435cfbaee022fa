"""
COMIC FUZ Protocol - Binary (protobuf wire format) messages of the web manga viewer API

Request messages are encoded by hand, responses are decoded into small
dataclasses and then into a provider-agnostic Chapter.

Schema (package fuz.web_manga_viewer, only the parts we use):

    WebMangaViewerRequest { DeviceInfo device_info = 1; bool use_ticket = 2;
        UserPoint consume_point = 3;
        oneof chapter_interface { uint32 chapter_id = 4; ChapterArgument chapter_argument = 5; } }
    WebMangaViewerResponse { UserPoint user_point = 1; optional ViewerData viewer_data = 2;
        Manga manga = 11; uint32 chapter_id = 12; ... }
    ViewerPage { oneof content { Image image = 1; WebView webview = 2; LastPage last_page = 3; } }
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterator, List, Optional, Tuple, Union

from manga_errors import ErrorCause, ProviderError, SchemaError
from manga_models import Chapter, DecryptionParams, ImagePage, LastPage, WebViewPage

logger = logging.getLogger(__name__)

# Wire types
VARINT = 0
FIXED64 = 1
LENGTH_DELIMITED = 2
START_GROUP = 3
END_GROUP = 4
FIXED32 = 5

_UINT64_MASK = (1 << 64) - 1


class DeviceType(IntEnum):
    IOS = 0
    ANDROID = 1
    BROWSER = 2


class ImageQuality(IntEnum):
    NORMAL = 0
    HIGH = 1


class Position(IntEnum):
    FIRST = 0
    LAST = 1
    DETAIL = 2


class ScrollDirection(IntEnum):
    LEFT = 0
    RIGHT = 1
    VERTICAL = 2
    NONE = 3


# === Encoding ===

def encode_varint(value: int) -> bytes:
    value &= _UINT64_MASK
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def encode_key(number: int, wire_type: int) -> bytes:
    return encode_varint((number << 3) | wire_type)


def encode_varint_field(number: int, value: int) -> bytes:
    return encode_key(number, VARINT) + encode_varint(int(value))


def encode_bytes_field(number: int, value: Union[bytes, str]) -> bytes:
    if isinstance(value, str):
        value = value.encode('utf-8')
    return encode_key(number, LENGTH_DELIMITED) + encode_varint(len(value)) + value


@dataclass
class DeviceInfo:
    secret: str = ''
    app_ver: str = ''
    device_type: DeviceType = DeviceType.BROWSER
    os_ver: str = ''
    is_tablet: bool = False
    image_quality: ImageQuality = ImageQuality.HIGH

    def encode(self) -> bytes:
        # proto3 scalars equal to their default are left off the wire
        out = b''
        if self.secret:
            out += encode_bytes_field(1, self.secret)
        if self.app_ver:
            out += encode_bytes_field(2, self.app_ver)
        if self.device_type:
            out += encode_varint_field(3, self.device_type)
        if self.os_ver:
            out += encode_bytes_field(4, self.os_ver)
        if self.is_tablet:
            out += encode_varint_field(5, 1)
        if self.image_quality:
            out += encode_varint_field(6, self.image_quality)
        return out


@dataclass
class UserPoint:
    free: int = 0
    paid: int = 0

    def encode(self) -> bytes:
        out = b''
        if self.free:
            out += encode_varint_field(1, self.free)
        if self.paid:
            out += encode_varint_field(2, self.paid)
        return out


@dataclass
class ChapterArgument:
    manga_id: int
    position: Position = Position.FIRST

    def encode(self) -> bytes:
        out = b''
        if self.manga_id:
            out += encode_varint_field(1, self.manga_id)
        if self.position:
            out += encode_varint_field(2, self.position)
        return out


@dataclass
class WebMangaViewerRequest:
    device_info: DeviceInfo = field(default_factory=DeviceInfo)
    use_ticket: bool = False
    consume_point: UserPoint = field(default_factory=UserPoint)
    chapter_id: Optional[int] = None
    chapter_argument: Optional[ChapterArgument] = None

    def __post_init__(self):
        if (self.chapter_id is None) == (self.chapter_argument is None):
            raise ValueError("Exactly one of chapter_id or chapter_argument must be set")

    @classmethod
    def for_chapter(cls, chapter_id: int, secret: str = '',
                    image_quality: ImageQuality = ImageQuality.HIGH) -> 'WebMangaViewerRequest':
        return cls(device_info=DeviceInfo(secret=secret, image_quality=image_quality),
                   chapter_id=chapter_id)

    @classmethod
    def for_manga(cls, manga_id: int, position: Position = Position.FIRST, secret: str = '',
                  image_quality: ImageQuality = ImageQuality.HIGH) -> 'WebMangaViewerRequest':
        return cls(device_info=DeviceInfo(secret=secret, image_quality=image_quality),
                   chapter_argument=ChapterArgument(manga_id, position))

    def encode(self) -> bytes:
        out = encode_bytes_field(1, self.device_info.encode())
        if self.use_ticket:
            out += encode_varint_field(2, 1)
        out += encode_bytes_field(3, self.consume_point.encode())
        # oneof members are always written, even when zero
        if self.chapter_id is not None:
            out += encode_varint_field(4, self.chapter_id)
        else:
            out += encode_bytes_field(5, self.chapter_argument.encode())
        return out


# === Decoding ===

def _read_varint(data: bytes, pos: int) -> Tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise SchemaError("Truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & _UINT64_MASK, pos
        shift += 7
        if shift >= 70:
            raise SchemaError("Varint too long")


def iter_fields(data: bytes) -> Iterator[Tuple[int, int, Union[int, bytes]]]:
    """Yield (field number, wire type, value) for every field of one message"""
    pos = 0
    end = len(data)
    while pos < end:
        key, pos = _read_varint(data, pos)
        number, wire_type = key >> 3, key & 0x7
        if number == 0:
            raise SchemaError("Field number 0 is not allowed")

        if wire_type == VARINT:
            value, pos = _read_varint(data, pos)
        elif wire_type == LENGTH_DELIMITED:
            length, pos = _read_varint(data, pos)
            if pos + length > end:
                raise SchemaError(f"Field {number} overruns the message ({length} bytes)")
            value = data[pos:pos + length]
            pos += length
        elif wire_type == FIXED64:
            if pos + 8 > end:
                raise SchemaError(f"Truncated fixed64 field {number}")
            value = data[pos:pos + 8]
            pos += 8
        elif wire_type == FIXED32:
            if pos + 4 > end:
                raise SchemaError(f"Truncated fixed32 field {number}")
            value = data[pos:pos + 4]
            pos += 4
        else:
            raise SchemaError(f"Unsupported wire type {wire_type} for field {number}")

        yield number, wire_type, value


def _expect(number: int, wire_type: int, expected: int, message: str):
    if wire_type != expected:
        raise SchemaError(f"{message}.{number}: wire type {wire_type}, expected {expected}")


def _string(value: bytes, where: str) -> str:
    try:
        return value.decode('utf-8')
    except UnicodeDecodeError as e:
        raise SchemaError(f"{where} is not valid UTF-8") from e


def _int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


@dataclass
class ImageContent:
    image_url: str = ''
    url_scheme: Optional[str] = None
    iv: Optional[str] = None
    encryption_key: Optional[str] = None
    image_width: int = 0
    image_height: int = 0
    is_extra_page: Optional[bool] = None


@dataclass
class WebViewContent:
    url: str = ''


@dataclass
class LastPageContent:
    pass


ViewerPageContent = Union[ImageContent, WebViewContent, LastPageContent]


@dataclass
class ViewerData:
    viewer_title: str = ''
    pages: List[ViewerPageContent] = field(default_factory=list)
    scroll: int = 0
    is_first_page_blank: bool = False
    scroll_option: int = 0
    scroll_direction: ScrollDirection = ScrollDirection.LEFT


@dataclass
class MangaInfo:
    manga_id: int = 0
    manga_name: str = ''


@dataclass
class WebMangaViewerResponse:
    user_point: UserPoint = field(default_factory=UserPoint)
    viewer_data: Optional[ViewerData] = None
    manga: Optional[MangaInfo] = None
    chapter_id: Optional[int] = None


def decode_user_point(data: bytes) -> UserPoint:
    point = UserPoint()
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            _expect(number, wire_type, VARINT, 'UserPoint')
            point.free = value
        elif number == 2:
            _expect(number, wire_type, VARINT, 'UserPoint')
            point.paid = value
    return point


def decode_image(data: bytes) -> ImageContent:
    image = ImageContent()
    for number, wire_type, value in iter_fields(data):
        if number in (1, 2, 3, 4):
            _expect(number, wire_type, LENGTH_DELIMITED, 'Image')
            text = _string(value, f'Image.{number}')
            if number == 1:
                image.image_url = text
            elif number == 2:
                image.url_scheme = text
            elif number == 3:
                image.iv = text
            else:
                image.encryption_key = text
        elif number in (5, 6, 7):
            _expect(number, wire_type, VARINT, 'Image')
            if number == 5:
                image.image_width = value
            elif number == 6:
                image.image_height = value
            else:
                image.is_extra_page = bool(value)
        # extra_id / extra_index / extra_slot_id and unknown fields are not needed
    return image


def decode_viewer_page(data: bytes) -> ViewerPageContent:
    """Decode one ViewerPage; the content oneof must hold a known variant"""
    content = None
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            _expect(number, wire_type, LENGTH_DELIMITED, 'ViewerPage')
            content = decode_image(value)
        elif number == 2:
            _expect(number, wire_type, LENGTH_DELIMITED, 'ViewerPage')
            webview = WebViewContent()
            for n, wt, v in iter_fields(value):
                if n == 1:
                    _expect(n, wt, LENGTH_DELIMITED, 'WebView')
                    webview.url = _string(v, 'WebView.url')
            content = webview
        elif number == 3:
            _expect(number, wire_type, LENGTH_DELIMITED, 'ViewerPage')
            # LastPage has no fields, anything inside is ignored
            for _ in iter_fields(value):
                pass
            content = LastPageContent()
        else:
            raise SchemaError(f"Unknown ViewerPage content variant {number}")

    if content is None:
        raise SchemaError("ViewerPage has no content")
    return content


def decode_viewer_data(data: bytes) -> ViewerData:
    viewer = ViewerData()
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            _expect(number, wire_type, LENGTH_DELIMITED, 'ViewerData')
            viewer.viewer_title = _string(value, 'ViewerData.viewer_title')
        elif number == 2:
            _expect(number, wire_type, LENGTH_DELIMITED, 'ViewerData')
            viewer.pages.append(decode_viewer_page(value))
        elif number == 3:
            _expect(number, wire_type, VARINT, 'ViewerData')
            viewer.scroll = _int32(value)
        elif number == 4:
            _expect(number, wire_type, VARINT, 'ViewerData')
            viewer.is_first_page_blank = bool(value)
        elif number == 5:
            _expect(number, wire_type, VARINT, 'ViewerData')
            viewer.scroll_option = _int32(value)
        elif number == 6:
            _expect(number, wire_type, VARINT, 'ViewerData')
            try:
                viewer.scroll_direction = ScrollDirection(value)
            except ValueError as e:
                raise SchemaError(f"Unknown scroll direction {value}") from e
    return viewer


def decode_manga(data: bytes) -> MangaInfo:
    manga = MangaInfo()
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            _expect(number, wire_type, VARINT, 'Manga')
            manga.manga_id = value
        elif number == 2:
            _expect(number, wire_type, LENGTH_DELIMITED, 'Manga')
            manga.manga_name = _string(value, 'Manga.manga_name')
    return manga


def decode_response(data: bytes) -> WebMangaViewerResponse:
    response = WebMangaViewerResponse()
    for number, wire_type, value in iter_fields(data):
        if number == 1:
            _expect(number, wire_type, LENGTH_DELIMITED, 'WebMangaViewerResponse')
            response.user_point = decode_user_point(value)
        elif number == 2:
            _expect(number, wire_type, LENGTH_DELIMITED, 'WebMangaViewerResponse')
            response.viewer_data = decode_viewer_data(value)
        elif number == 11:
            _expect(number, wire_type, LENGTH_DELIMITED, 'WebMangaViewerResponse')
            response.manga = decode_manga(value)
        elif number == 12:
            _expect(number, wire_type, VARINT, 'WebMangaViewerResponse')
            response.chapter_id = value
    return response


def _to_descriptor(content: ViewerPageContent):
    if isinstance(content, ImageContent):
        has_key = content.encryption_key is not None
        has_iv = content.iv is not None
        if has_key != has_iv:
            raise SchemaError("Image page carries only half of its decryption material")
        decryption = DecryptionParams(content.encryption_key, content.iv) if has_key else None
        return ImagePage(
            source_reference=content.image_url,
            decryption=decryption,
            width=content.image_width,
            height=content.image_height,
            is_extra_page=content.is_extra_page,
        )
    if isinstance(content, WebViewContent):
        return WebViewPage(content.url)
    if isinstance(content, LastPageContent):
        return LastPage()
    raise SchemaError(f"Unhandled page content {type(content).__name__}")


def response_to_chapter(response: WebMangaViewerResponse,
                        requested_id: Optional[str] = None) -> Chapter:
    if response.viewer_data is None:
        raise ProviderError(ErrorCause.AUTH_REQUIRED,
                            "Chapter is not viewable with this device identity")

    viewer = response.viewer_data
    manga_title = response.manga.manga_name if response.manga and response.manga.manga_name else None

    # proto3 drops a zero id from the wire; manga-position requests know no id
    if response.chapter_id is not None:
        chapter_id = str(response.chapter_id)
    elif requested_id is not None:
        chapter_id = str(requested_id)
    else:
        chapter_id = None

    return Chapter(
        chapter_id=chapter_id,
        title=viewer.viewer_title or manga_title or (f"Chapter {chapter_id}" if chapter_id else ""),
        pages=tuple(_to_descriptor(p) for p in viewer.pages),
        manga_title=manga_title,
        reading_direction=viewer.scroll_direction.name.lower(),
        source='COMIC FUZ',
    )


def decode_chapter(data: bytes, requested_id: Optional[str] = None) -> Chapter:
    """Decode a WebMangaViewerResponse payload straight into a validated Chapter"""
    chapter = response_to_chapter(decode_response(data), requested_id).validate()
    logger.debug(f"Decoded chapter {chapter.chapter_id} with {len(chapter.pages)} pages")
    return chapter
