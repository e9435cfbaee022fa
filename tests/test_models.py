import pytest

from manga_errors import ErrorCause, ProviderError, SchemaError
from manga_models import Chapter, DecryptionParams, ImagePage, LastPage, PageFailure, WebViewPage
from tests.helpers import IV_HEX, KEY_HEX


def test_image_page_without_decryption_is_valid():
    ImagePage('page/1.jpg').validate()


def test_image_page_with_decryption_is_valid():
    ImagePage('page/1.jpg', DecryptionParams(KEY_HEX, IV_HEX)).validate()


def test_empty_source_reference_rejected():
    with pytest.raises(SchemaError):
        ImagePage('').validate()


@pytest.mark.parametrize('key_hex,iv_hex', [('00' * 10, IV_HEX), (KEY_HEX, '00' * 4), ('zz', IV_HEX)])
def test_bad_decryption_params_rejected(key_hex, iv_hex):
    with pytest.raises(SchemaError):
        ImagePage('page/1.jpg', DecryptionParams(key_hex, iv_hex)).validate()


def test_chapter_validate_reports_page_position():
    chapter = Chapter('9', 'Ch', pages=(ImagePage('a'), ImagePage('')))
    with pytest.raises(SchemaError, match='Page 1'):
        chapter.validate()


def test_image_pages_keep_chapter_positions():
    chapter = Chapter('9', 'Ch', pages=(
        WebViewPage('https://example.com'), ImagePage('a'), ImagePage('b'), LastPage(),
    ))
    assert [i for i, _ in chapter.image_pages()] == [1, 2]


def test_display_title():
    assert Chapter('1', 'Episode 3', manga_title='Series').display_title == 'Series - Episode 3'
    assert Chapter('1', 'Series Episode 3', manga_title='Series').display_title == 'Series Episode 3'
    assert Chapter('1', '').display_title == 'Chapter 1'
    assert Chapter(None, '').display_title == 'Chapter'


def test_chapters_compare_structurally():
    a = Chapter('1', 'T', pages=(ImagePage('a', DecryptionParams(KEY_HEX, IV_HEX)), LastPage()))
    b = Chapter('1', 'T', pages=(ImagePage('a', DecryptionParams(KEY_HEX, IV_HEX)), LastPage()))
    assert a == b


def test_page_failure_reason():
    failure = PageFailure(2, ProviderError(ErrorCause.NETWORK, 'boom'))
    assert failure.reason == 'network'
    assert not failure.ok
