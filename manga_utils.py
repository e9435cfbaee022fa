"""
Manga Utilities - Image helpers and writing ordered chapter pages to a folder, ZIP/CBZ or PDF
"""

import io
import os
import re
import zipfile
import logging
from typing import List, Optional, Tuple
from PIL import Image
from reportlab.pdfgen import canvas
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader

from manga_models import Chapter, PageResult

logger = logging.getLogger(__name__)

# Pillow format name -> file extension
PIL_EXTENSIONS = {
    'JPEG': 'jpg',
    'PNG': 'png',
    'WEBP': 'webp',
    'GIF': 'gif',
    'AVIF': 'avif',
}

SAVE_EXTENSIONS = {
    'raw': '',
    'zip': '.zip',
    'cbz': '.cbz',
    'pdf': '.pdf',
}

# Names produced by page_entries
PAGE_FILE_RE = re.compile(r'^\d{3,}\.[a-z0-9]+$')


def sniff_image_format(data: bytes) -> str:
    """Guess the image extension from magic bytes, falling back to Pillow, then jpg"""
    if data[:3] == b'\xff\xd8\xff':
        return 'jpg'
    if data[:8].startswith(b'\x89PNG'):
        return 'png'
    if data[:4] == b'RIFF' and data[8:12] == b'WEBP':
        return 'webp'
    if data[:6] in (b'GIF87a', b'GIF89a'):
        return 'gif'
    if data[4:8] == b'ftyp' and data[8:12] in (b'avif', b'avis'):
        return 'avif'
    try:
        with Image.open(io.BytesIO(data)) as img:
            return PIL_EXTENSIONS.get(img.format, 'jpg')
    except Exception:
        return 'jpg'


def clean_filename(name: str) -> str:
    """Clean filename for safe saving"""
    name = re.sub(r'[^\w\s-]', '', name)
    name = re.sub(r'\s+', '_', name.strip())
    return name[:100] or 'chapter'


def _encode(img: Image.Image, pil_format: str) -> bytes:
    if pil_format == 'JPEG' and img.mode not in ('RGB', 'L'):
        img = img.convert('RGB')
    buf = io.BytesIO()
    if pil_format == 'JPEG':
        img.save(buf, format='JPEG', quality=95)
    else:
        img.save(buf, format=pil_format)
    return buf.getvalue()


def descramble_giga_image(data: bytes, num_cells: int = 4, divisible_with: int = 8) -> bytes:
    """Undo GigaViewer tile shuffling.

    The image is cut into a num_cells x num_cells grid of cells whose sides are
    rounded down to a multiple of ``divisible_with``; every cell above the
    diagonal was swapped with its mirror below it. Pixels outside the grid
    (right and bottom margins) are untouched.
    """
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        pil_format = img.format or 'PNG'
        width, height = img.size
        cell_w = width // (num_cells * divisible_with) * divisible_with
        cell_h = height // (num_cells * divisible_with) * divisible_with
        if not cell_w or not cell_h:
            return data

        out = img.copy()
        for i in range(num_cells):
            for j in range(i + 1, num_cells):
                src = (i * cell_w, j * cell_h, i * cell_w + cell_w, j * cell_h + cell_h)
                dst = (j * cell_w, i * cell_h, j * cell_w + cell_w, i * cell_h + cell_h)
                out.paste(img.crop(dst), src[:2])
                out.paste(img.crop(src), dst[:2])

    return _encode(out, pil_format)


def convert_image(data: bytes, image_format: str) -> Tuple[bytes, str]:
    """Re-encode to png/jpeg/webp; 'original' keeps the bytes untouched"""
    if image_format in (None, '', 'original'):
        return data, sniff_image_format(data)

    pil_format = 'JPEG' if image_format in ('jpg', 'jpeg') else image_format.upper()
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        if img.format == pil_format:
            return data, PIL_EXTENSIONS.get(pil_format, image_format)
        converted = _encode(img, pil_format)
    return converted, PIL_EXTENSIONS.get(pil_format, image_format)


def page_entries(pages: List[PageResult], image_format: str = 'original') -> List[Tuple[str, bytes]]:
    """(file name, bytes) for every page in chapter order: 001.jpg, 002.png, ..."""
    ordered = sorted(pages, key=lambda p: p.index)
    width = max(3, len(str(len(ordered))))
    entries = []
    for n, page in enumerate(ordered, 1):
        if image_format in (None, '', 'original'):
            data, ext = page.data, page.image_format
        else:
            data, ext = convert_image(page.data, image_format)
        entries.append((f"{n:0{width}d}.{ext}", data))
    return entries


def chapter_output_path(chapter: Chapter, output_dir: str = '.', save_format: str = 'zip') -> str:
    """Default output location for a chapter"""
    return os.path.join(output_dir, clean_filename(chapter.display_title) + SAVE_EXTENSIONS[save_format])


def write_raw(entries: List[Tuple[str, bytes]], path: str) -> str:
    """Write numbered page files into a directory.

    Numbered files left by an earlier, longer run are removed so the
    directory holds exactly this chapter's pages.
    """
    os.makedirs(path, exist_ok=True)
    names = {name for name, _ in entries}
    stale = [f for f in os.listdir(path) if PAGE_FILE_RE.match(f) and f not in names]
    if stale:
        logger.warning(f"Removing {len(stale)} stale page files from {path}")
        for name in stale:
            os.remove(os.path.join(path, name))
    for name, data in entries:
        with open(os.path.join(path, name), 'wb') as f:
            f.write(data)
    logger.info(f"Wrote {len(entries)} images to {path}")
    return path


def write_zip(entries: List[Tuple[str, bytes]], path: str) -> str:
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with zipfile.ZipFile(path, 'w', zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries:
            zf.writestr(name, data)
    logger.info(f"Created manga ZIP: {path}")
    return path


def write_pdf(entries: List[Tuple[str, bytes]], path: str, title: Optional[str] = None) -> str:
    """One PDF page per image, sized to the image aspect ratio at A4 width"""
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    c = canvas.Canvas(path)
    if title:
        c.setTitle(title)

    for name, data in entries:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.mode not in ('RGB', 'L'):
                img = img.convert('RGB')
            img_width, img_height = img.size
            target_width = A4[0]
            target_height = img_height * (target_width / img_width)
            c.setPageSize((target_width, target_height))
            c.drawImage(ImageReader(img), 0, 0, width=target_width, height=target_height)
            c.showPage()

    c.save()
    logger.info(f"Created manga PDF: {path}")
    return path


def write_chapter(pages: List[PageResult], path: str, save_format: str = 'zip',
                  image_format: str = 'original', title: Optional[str] = None) -> str:
    """Write pages in index order to ``path``; returns the path written"""
    if not pages:
        raise ValueError("No pages to write")
    if save_format not in SAVE_EXTENSIONS:
        raise ValueError(f"Unsupported save format: {save_format}")

    entries = page_entries(pages, image_format)

    if save_format == 'raw':
        return write_raw(entries, path)
    if save_format in ('zip', 'cbz'):
        return write_zip(entries, path)
    return write_pdf(entries, path, title)
