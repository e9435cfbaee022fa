"""
Manga Models - Provider-agnostic chapter and page descriptors
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from manga_crypto import CipherParams
from manga_errors import CryptoError, SchemaError, failure_reason


@dataclass(frozen=True)
class DecryptionParams:
    """Hex-encoded key/iv exactly as delivered by the platform"""
    key_hex: str
    iv_hex: str

    def cipher_params(self) -> CipherParams:
        return CipherParams.from_hex(self.key_hex, self.iv_hex)


@dataclass(frozen=True)
class ImagePage:
    source_reference: str
    decryption: Optional[DecryptionParams] = None
    width: int = 0
    height: int = 0
    scrambled: bool = False      # tile-shuffled (GigaViewer "baku")
    is_extra_page: Optional[bool] = None

    def validate(self):
        if not self.source_reference:
            raise SchemaError("Image page has an empty source reference")
        if self.decryption is not None:
            try:
                self.decryption.cipher_params()
            except CryptoError as e:
                raise SchemaError(f"Image page has unusable decryption parameters: {e}") from e


@dataclass(frozen=True)
class WebViewPage:
    """In-reader web page shown between images"""
    target_url: str

    def validate(self):
        pass


@dataclass(frozen=True)
class LastPage:
    """Artificial end-of-chapter marker"""

    def validate(self):
        pass


PageDescriptor = Union[ImagePage, WebViewPage, LastPage]


@dataclass(frozen=True)
class Chapter:
    chapter_id: Optional[str]
    title: str
    pages: Tuple[PageDescriptor, ...] = ()
    manga_title: Optional[str] = None
    banner: Optional[str] = None
    reading_direction: Optional[str] = None
    source: str = ''

    def validate(self) -> 'Chapter':
        for i, page in enumerate(self.pages):
            try:
                page.validate()
            except SchemaError as e:
                raise SchemaError(f"Page {i} of chapter {self.chapter_id}: {e.message}") from e
        return self

    def image_pages(self) -> List[Tuple[int, ImagePage]]:
        """(position, page) for every image page, in chapter order"""
        return [(i, p) for i, p in enumerate(self.pages) if isinstance(p, ImagePage)]

    @property
    def display_title(self) -> str:
        if self.manga_title and self.manga_title not in self.title:
            return f"{self.manga_title} - {self.title}"
        if self.title:
            return self.title
        return f"Chapter {self.chapter_id}" if self.chapter_id is not None else "Chapter"


@dataclass
class PageResult:
    index: int
    data: bytes
    image_format: str

    ok = True


@dataclass
class PageFailure:
    index: int
    error: BaseException = field(repr=False)

    ok = False

    @property
    def reason(self) -> str:
        return failure_reason(self.error)


FetchResult = Union[PageResult, PageFailure]
