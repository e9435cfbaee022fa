import io
import os
import zipfile

import pytest
from PIL import Image

from manga_models import Chapter, PageResult
from manga_utils import (
    chapter_output_path, clean_filename, convert_image, descramble_giga_image,
    sniff_image_format, write_chapter,
)
from tests.helpers import make_image, make_pattern_png


def pixels(data):
    with Image.open(io.BytesIO(data)) as img:
        return list(img.convert('RGB').getdata())


@pytest.mark.parametrize('fmt,ext', [('JPEG', 'jpg'), ('PNG', 'png'), ('WEBP', 'webp'), ('GIF', 'gif')])
def test_sniff_image_format(fmt, ext):
    assert sniff_image_format(make_image(fmt)) == ext


def test_sniff_unknown_defaults_to_jpg():
    assert sniff_image_format(b'not an image') == 'jpg'
    assert sniff_image_format(b'') == 'jpg'


def test_clean_filename():
    assert clean_filename('Chapter 1: The/Start?') == 'Chapter_1_TheStart'
    assert clean_filename('第1話 はじまり') == '第1話_はじまり'
    assert clean_filename('???') == 'chapter'


def test_descramble_swaps_cells_across_the_diagonal():
    original = make_pattern_png((64, 64))
    once = descramble_giga_image(original)

    assert pixels(once) != pixels(original)
    assert pixels(descramble_giga_image(once)) == pixels(original)

    with Image.open(io.BytesIO(original)) as src, Image.open(io.BytesIO(once)) as out:
        # 64 // 32 * 8 = 16 px cells; cell (0, 1) now holds what was in (1, 0)
        assert out.crop((0, 16, 16, 32)).tobytes() == src.crop((16, 0, 32, 16)).tobytes()
        # diagonal cells stay put
        assert out.crop((16, 16, 32, 32)).tobytes() == src.crop((16, 16, 32, 32)).tobytes()


def test_descramble_keeps_margins():
    original = make_pattern_png((70, 75))
    once = descramble_giga_image(original)
    with Image.open(io.BytesIO(original)) as src, Image.open(io.BytesIO(once)) as out:
        assert out.crop((64, 0, 70, 75)).tobytes() == src.crop((64, 0, 70, 75)).tobytes()
        assert out.crop((0, 64, 70, 75)).tobytes() == src.crop((0, 64, 70, 75)).tobytes()


def test_descramble_tiny_image_is_unchanged():
    tiny = make_image('PNG', size=(20, 20))
    assert descramble_giga_image(tiny) == tiny


def test_convert_image():
    data, ext = convert_image(make_image('JPEG'), 'png')
    assert ext == 'png'
    assert sniff_image_format(data) == 'png'

    png = make_image('PNG')
    assert convert_image(png, 'original') == (png, 'png')
    assert convert_image(png, 'png') == (png, 'png')


def sample_pages():
    # handed over out of order on purpose
    return [
        PageResult(2, make_image('PNG', color=(0, 0, 255)), 'png'),
        PageResult(0, make_image('JPEG', color=(255, 0, 0)), 'jpg'),
        PageResult(1, make_image('PNG', color=(0, 255, 0)), 'png'),
    ]


def test_write_zip_in_index_order(tmp_path):
    pages = sample_pages()
    path = write_chapter(pages, str(tmp_path / 'out.cbz'), 'cbz')

    with zipfile.ZipFile(path) as zf:
        assert zf.namelist() == ['001.jpg', '002.png', '003.png']
        by_index = sorted(pages, key=lambda p: p.index)
        assert [zf.read(n) for n in zf.namelist()] == [p.data for p in by_index]


def test_write_raw_directory(tmp_path):
    path = write_chapter(sample_pages(), str(tmp_path / 'chapter'), 'raw')
    assert sorted(os.listdir(path)) == ['001.jpg', '002.png', '003.png']


def test_write_raw_replaces_pages_of_a_longer_run(tmp_path):
    target = tmp_path / 'chapter'
    target.mkdir()
    for name in ('001.jpg', '004.jpg', '005.png', 'notes.txt'):
        (target / name).write_bytes(b'old')

    write_chapter(sample_pages(), str(target), 'raw')

    assert sorted(os.listdir(target)) == ['001.jpg', '002.png', '003.png', 'notes.txt']
    assert (target / '001.jpg').read_bytes() != b'old'


def test_write_with_format_conversion(tmp_path):
    path = write_chapter(sample_pages(), str(tmp_path / 'out.zip'), 'zip', image_format='png')
    with zipfile.ZipFile(path) as zf:
        assert zf.namelist() == ['001.png', '002.png', '003.png']


def test_write_pdf(tmp_path):
    path = write_chapter(sample_pages(), str(tmp_path / 'out.pdf'), 'pdf', title='Test')
    with open(path, 'rb') as f:
        content = f.read()
    assert content.startswith(b'%PDF')


def test_write_nothing_is_an_error(tmp_path):
    with pytest.raises(ValueError):
        write_chapter([], str(tmp_path / 'out.zip'))
    with pytest.raises(ValueError):
        write_chapter(sample_pages(), str(tmp_path / 'out.epub'), 'epub')


def test_chapter_output_path():
    chapter = Chapter('5', 'Episode 5', manga_title='Some Manga')
    assert chapter_output_path(chapter, 'out', 'cbz') == os.path.join('out', 'Some_Manga_-_Episode_5.cbz')
    assert chapter_output_path(chapter, 'out', 'raw') == os.path.join('out', 'Some_Manga_-_Episode_5')
