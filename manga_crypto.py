"""
Manga Crypto - AES-CBC decryption of encrypted page images
"""

import binascii
import logging
from dataclasses import dataclass

from Crypto.Cipher import AES
from Crypto.Util.Padding import unpad

from manga_errors import InvalidInputError, PaddingInvalidError

logger = logging.getLogger(__name__)

BLOCK_SIZE = AES.block_size  # 16
SUPPORTED_KEY_SIZES = (16, 32)  # AES-128 / AES-256


def _decode_hex(value: str, name: str) -> bytes:
    try:
        return binascii.unhexlify(value.strip())
    except (binascii.Error, ValueError, AttributeError) as e:
        raise InvalidInputError(f"{name} is not valid hex: {e}") from e


@dataclass(frozen=True)
class CipherParams:
    """Raw AES key and iv for one page"""
    key: bytes
    iv: bytes

    def __post_init__(self):
        if len(self.key) not in SUPPORTED_KEY_SIZES:
            raise InvalidInputError(f"Unsupported AES key size: {len(self.key)} bytes")
        if len(self.iv) != BLOCK_SIZE:
            raise InvalidInputError(f"IV must be {BLOCK_SIZE} bytes, got {len(self.iv)}")

    @classmethod
    def from_hex(cls, key_hex: str, iv_hex: str) -> 'CipherParams':
        return cls(_decode_hex(key_hex, 'key'), _decode_hex(iv_hex, 'iv'))


def decrypt_aes_cbc(ciphertext: bytes, params: CipherParams) -> bytes:
    """Decrypt a whole page at once and strip its PKCS#7 padding"""
    if not ciphertext or len(ciphertext) % BLOCK_SIZE != 0:
        raise InvalidInputError(
            f"Ciphertext length {len(ciphertext)} is not a nonzero multiple of {BLOCK_SIZE}"
        )

    cipher = AES.new(params.key, AES.MODE_CBC, iv=params.iv)
    padded = cipher.decrypt(ciphertext)
    try:
        return unpad(padded, BLOCK_SIZE)
    except ValueError as e:
        logger.debug(f"Bad padding on {len(ciphertext)} byte ciphertext: {e}")
        raise PaddingInvalidError(str(e)) from e


def decrypt_hex(ciphertext: bytes, key_hex: str, iv_hex: str) -> bytes:
    """Decrypt with the hex-encoded key/iv as they appear on the wire"""
    return decrypt_aes_cbc(ciphertext, CipherParams.from_hex(key_hex, iv_hex))
