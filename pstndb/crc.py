"""CRC-32 used to seal node index pages.

Same polynomial as [MS-PST] 5.3 (0xEDB88320, reflected) with a zero seed and
no final inversion, so it does not match zlib.crc32.
"""


def _make_table():
    table = []
    for i in range(256):
        crc = i
        for _ in range(8):
            if crc & 1:
                crc = (crc >> 1) ^ 0xEDB88320
            else:
                crc >>= 1
        table.append(crc)
    return tuple(table)


_CRC_TABLE = _make_table()


def compute_crc(data: bytes, crc: int = 0) -> int:
    """Compute the page CRC over ``data``.

    Args:
        data: Bytes to checksum.
        crc: Running value when checksumming in pieces.

    Returns:
        32-bit CRC value.
    """
    for b in data:
        crc = _CRC_TABLE[(crc ^ b) & 0xFF] ^ (crc >> 8)
    return crc & 0xFFFFFFFF
