"""
The FITS ``CHECKSUM``/``DATASUM`` convention.

Checksums are 32-bit ones'-complement sums of the big-endian 32-bit words
of a byte range.  Sums of disjoint ranges combine with the same end-around
carry addition, so the header and data parts of an HDU can be summed
separately.  A correctly stamped HDU sums to all ones (0xFFFFFFFF).

Translated from the FITS Checksum Proposal by Seaman, Pence, and Rots.
"""

import numpy as np

from tilefits.errors import ChecksumFormatError, MissingChecksumError


ALL_ONES = 0xFFFFFFFF

# Zero baseline written into the CHECKSUM card before summing the header
ZERO_CHECKSUM = '0' * 16

# _MASK and _EXCLUDE are used for encoding the checksum value into a
# character string.
_MASK = [0xFF000000,
         0x00FF0000,
         0x0000FF00,
         0x000000FF]

_EXCLUDE = [0x3a, 0x3b, 0x3c, 0x3d, 0x3e, 0x3f, 0x40,
            0x5b, 0x5c, 0x5d, 0x5e, 0x5f, 0x60]

# Largest number of words summed at once into a 64-bit accumulator
_CHUNK_WORDS = 1 << 24


def _fold(value):
    # end-around carry until the value fits in 32 bits
    while value >> 32:
        value = (value & ALL_ONES) + (value >> 32)
    return value


def checksum(data, sum32=0):
    """
    Compute the ones'-complement checksum of a sequence of bytes.

    Parameters
    ----------
    data : bytes-like or numpy array
        The memory region to checksum.  A length that is not a multiple of
        4 is treated as if zero padded; the input itself is not touched.

    sum32 : int, optional
        Incremental checksum value from another region.

    Returns
    -------
    int
        The 32-bit checksum.
    """

    if isinstance(data, np.ndarray):
        data = np.ascontiguousarray(data).view(np.uint8).ravel()
        nbytes = data.size
    else:
        data = memoryview(data).cast('B')
        nbytes = len(data)

    remainder = nbytes % 4
    whole = nbytes - remainder
    words = np.frombuffer(data[:whole], dtype='>u4')

    total = int(sum32) & ALL_ONES
    for idx in range(0, words.size, _CHUNK_WORDS):
        total += int(words[idx:idx + _CHUNK_WORDS].sum(dtype=np.uint64))
        total = _fold(total)

    if remainder:
        tail = bytes(data[whole:]) + b'\0' * (4 - remainder)
        total += int.from_bytes(tail, 'big')

    return _fold(total)


def sum_of(*sums):
    """
    Combine checksums of disjoint byte ranges with end-around carry
    addition; the order of the arguments does not matter.
    """

    total = 0
    for value in sums:
        total = _fold(total + (int(value) & ALL_ONES))
    return total


def difference_of(total, part):
    """
    Subtract the checksum ``part`` of a sub-range from the checksum
    ``total`` of the whole range (ones'-complement subtraction).
    """

    return sum_of(total, ~int(part) & ALL_ONES)


def _encode_byte(byte):
    """
    Encode a single byte into four printable characters whose codes sum to
    ``byte + 4 * ord('0')``.
    """

    quotient = byte // 4 + ord('0')
    remainder = byte % 4

    ch = [quotient + remainder, quotient, quotient, quotient]

    check = True
    while check:
        check = False
        for x in _EXCLUDE:
            for j in (0, 2):
                if ch[j] == x or ch[j + 1] == x:
                    ch[j] += 1
                    ch[j + 1] -= 1
                    check = True
    return ch


def encode(value, complement=False):
    """
    Encodes the checksum `value` using the algorithm described in SPR
    section A.7.2 and returns it as a 16 character string.

    Parameters
    ----------
    value : int
        a checksum

    complement : bool, optional
        encode the ones' complement of `value` (as done for the
        ``CHECKSUM`` card itself)

    Returns
    -------
    ascii encoded checksum
    """

    value = int(value) & ALL_ONES
    if complement:
        value = ~value & ALL_ONES

    asc = [0] * 16
    for i in range(4):
        byte = (value & _MASK[i]) >> ((3 - i) * 8)
        ch = _encode_byte(byte)
        for j in range(4):
            asc[4 * j + i] = ch[j]

    # rotate right by one character so the string lines up with the word
    # boundaries once placed in the CHECKSUM card
    return ''.join(chr(asc[(i + 15) % 16]) for i in range(16))


def decode(text, complement=False):
    """
    Decode a 16 character checksum string produced by `encode`.

    Raises
    ------
    ChecksumFormatError
        if the string does not have exactly 16 characters, or contains a
        character outside of the encoding's alphabet.
    """

    if isinstance(text, bytes):
        text = text.decode('latin-1')
    if len(text) != 16:
        raise ChecksumFormatError(
            'invalid length: a checksum string has 16 characters, got %d'
            % len(text))

    codes = [ord(c) for c in text]
    for code in codes:
        if code < 0x30 or code > 0x72 or code in _EXCLUDE:
            raise ChecksumFormatError(
                'invalid character %r in checksum string %r'
                % (chr(code), text))

    # undo the rotation, then sum the four words with end-around carry so
    # that carries between the bytes of strings other than those made by
    # encode() are kept
    asc = bytes(codes[(m + 1) % 16] - ord('0') for m in range(16))
    value = sum_of(*[int.from_bytes(asc[idx:idx + 4], 'big')
                     for idx in range(0, 16, 4)])

    if complement:
        value = ~value & ALL_ONES
    return value


def verify(header, data=b''):
    """
    Verify a header and the bytes of its data unit against the
    ``CHECKSUM`` and ``DATASUM`` cards of the header.

    Returns `True` when both the data sum and the whole-unit checksum
    match.

    Raises
    ------
    MissingChecksumError
        if either card is absent from the header.
    """

    for keyword in ('CHECKSUM', 'DATASUM'):
        if keyword not in header:
            raise MissingChecksumError(
                'missing checksum field: %s' % keyword)

    datasum = checksum(data)
    try:
        stored = int(str(header['DATASUM']).strip())
    except ValueError:
        return False
    if stored != datasum:
        return False

    decode(header['CHECKSUM'])
    total = checksum(header.tobytes(), datasum)
    return total == ALL_ONES
