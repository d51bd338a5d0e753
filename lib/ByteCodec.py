"""
Byte Text Codec Module

Converts operator typed text into byte lists and back.

Accepted input:
- hex: "01 02 ff", "0x01,0x02", "0102ff"
- dec: "1 2 255", "1,2,255"
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
import re

## import private pkgs
from Errors import ValidationError

_DEC_RE = re.compile(r'^\d+$')
_HEX_TOKEN_RE = re.compile(r'^[0-9a-fA-F]{1,2}$')
_HEX_RUN_RE = re.compile(r'^[0-9a-fA-F]+$')

def parse_bytes(text: str, mode: str = 'hex') -> list:
    """
    Parse a byte list from text.

    Args:
        text (str): Operator input
        mode (str): 'hex' or 'dec'

    Returns:
        list: Ints 0..255, empty for blank input

    Raises:
        ValidationError: On malformed input
    """

    text = (text or '').strip()
    if not text:
        return []

    if mode == 'dec':
        out = []
        for part in re.split(r'[\s,]+', text):
            if not part:
                continue

            if not _DEC_RE.match(part):
                raise ValidationError("DEC parse error: '%s'" % (part))

            n = int(part)
            if n > 255:
                raise ValidationError('DEC byte out of range: %d' % (n))

            out.append(n)

        return out

    cleaned = re.sub(r'0x', '', text, flags = re.IGNORECASE).replace(',', ' ').strip()

    ## separated tokens, 1 or 2 digits each
    if re.search(r'\s', cleaned):
        out = []
        for part in cleaned.split():
            if not _HEX_TOKEN_RE.match(part):
                raise ValidationError("HEX parse error: '%s'" % (part))

            out.append(int(part, 16))

        return out

    if not _HEX_RUN_RE.match(cleaned):
        raise ValidationError('HEX parse error: invalid characters')

    if len(cleaned) % 2:
        raise ValidationError('HEX parse error: odd-length hex string')

    return list(bytes.fromhex(cleaned))

def bytes_to_hex(values: list) -> str:
    return ' '.join('%02X' % (b) for b in values)

def bytes_to_ascii(values: list) -> str:
    return ''.join(chr(b) if 32 <= b <= 126 else '.' for b in values)
