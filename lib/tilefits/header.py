import copy

from tilefits.card import Card, _pad
from tilefits.errors import FormatError
from tilefits.util import BLOCK_SIZE, _pad_length


__all__ = ['Header']


END_CARD = 'END' + ' ' * 77


class Header(object):
    """
    FITS header class.

    The purpose of this class is to present the header like a dictionary
    as opposed to a list of cards.  The header uses the card's keyword as
    the dictionary key and the card's value as the dictionary value.

    When the header contains cards with duplicate keywords, only the value
    of the first card with the given keyword is returned; a 2-tuple index
    ``(keyword, n)`` returns the n-th value with that keyword.  The header
    may also be indexed by card position.
    """

    def __init__(self, cards=[]):
        self._cards = []
        self._modified = False

        if isinstance(cards, Header):
            cards = cards.cards

        for card in cards:
            self.append(card, end=True)

    def __len__(self):
        return len(self._cards)

    def __iter__(self):
        for card in self._cards:
            yield card.keyword

    def __contains__(self, keyword):
        try:
            self._cardindex(keyword)
        except (KeyError, IndexError):
            return False
        return True

    def __getitem__(self, key):
        if isinstance(key, slice):
            return Header([copy.copy(c) for c in self._cards[key]])
        return self._cards[self._cardindex(key)].value

    def __setitem__(self, key, value):
        if isinstance(value, tuple):
            if not (0 < len(value) <= 2):
                raise ValueError(
                    'A Header item may be set with either a scalar value, '
                    'a 1-tuple containing a scalar value, or a 2-tuple '
                    'containing a scalar value and comment string.')
            if len(value) == 1:
                value, comment = value[0], None
            else:
                value, comment = value
        else:
            comment = None

        try:
            idx = self._cardindex(key)
        except KeyError:
            self.append(Card(key, value, comment))
            return

        card = self._cards[idx]
        card.value = value
        if comment is not None:
            card.comment = comment
        self._modified = True

    def __delitem__(self, key):
        """
        Delete card(s) with the name `key`.  Deleting a keyword that is not
        in the header is silently ignored.
        """

        if isinstance(key, str):
            key = key.upper()
            self._cards = [c for c in self._cards if c.keyword != key]
        else:
            del self._cards[self._cardindex(key)]
        self._modified = True

    def __str__(self):
        return self.tostring()

    def __repr__(self):
        return self.tostring(padding=False, endcard=False)

    def __eq__(self, other):
        if isinstance(other, Header):
            return self.tostring() == other.tostring()
        return NotImplemented

    @property
    def cards(self):
        """
        The underlying physical cards that make up this Header; it can be
        looked at, but it should not be modified directly.
        """

        return tuple(self._cards)

    @property
    def comments(self):
        """View the comments associated with each keyword, if any."""

        return _HeaderComments(self)

    @classmethod
    def fromstring(cls, data):
        """
        Creates an HDU header from a string containing the entire header
        data, up to and including the ``END`` card.
        """

        if isinstance(data, bytes):
            data = data.decode('latin-1')

        if len(data) % Card.length != 0:
            raise FormatError('Header size is not a multiple of %d: %d'
                              % (Card.length, len(data)))

        cards = []
        idx = 0
        found_end = False
        while idx < len(data):
            image = [data[idx:idx + Card.length]]
            idx += Card.length
            if image[0][:8] == 'END     ':
                found_end = True
                break
            while data[idx:idx + 8] == 'CONTINUE' and \
                    "'" in data[idx + 8:idx + Card.length]:
                image.append(data[idx:idx + Card.length])
                idx += Card.length
            cards.append(Card.fromstring(''.join(image)))

        if not found_end:
            raise FormatError('Header missing END card.')

        return cls(cards)

    @classmethod
    def fromfile(cls, fileobj):
        """
        Read a header (a sequence of 2880 byte blocks ending with the block
        holding the ``END`` card) from a file path or file-like object.
        """

        close_file = False
        if isinstance(fileobj, str):
            fileobj = open(fileobj, 'rb')
            close_file = True

        try:
            blocks = []
            while True:
                block = fileobj.read(BLOCK_SIZE)
                if not block:
                    if not blocks:
                        raise EOFError()
                    raise FormatError('Header missing END card.')
                if isinstance(block, bytes):
                    block = block.decode('latin-1')
                blocks.append(block)
                if len(block) < BLOCK_SIZE:
                    raise FormatError('Header block is truncated.')
                if _find_end(block) is not None:
                    break
            data = ''.join(blocks)
            return cls.fromstring(data[:_find_end(data) + Card.length])
        finally:
            if close_file:
                fileobj.close()

    def tostring(self, padding=True, endcard=True):
        """
        Returns a string representation of the header, with an ``END``
        card appended and padded with blanks to a whole number of FITS
        blocks unless disabled.
        """

        s = ''.join(str(card) for card in self._cards)
        if endcard:
            s += _pad('END')
        if padding:
            s += ' ' * _pad_length(len(s))
        return s

    def tobytes(self):
        return self.tostring().encode('latin-1')

    def clear(self):
        """
        Remove all cards from the header.
        """

        self._cards = []
        self._modified = True

    def copy(self, strip=False):
        """
        Make a copy of the `Header`.

        Parameters
        ----------
        strip : bool (optional)
           If True, strip any headers that are specific to one of the standard
           HDU types, so that this header can be used in a different HDU.
        """

        tmp = Header([copy.copy(card) for card in self._cards])
        if strip:
            tmp._strip()
        return tmp

    def get(self, key, default=None):
        try:
            return self[key]
        except (KeyError, IndexError):
            return default

    def set(self, keyword, value=None, comment=None, before=None,
            after=None):
        """
        Set the value and/or comment and/or position of a specified keyword.

        If the keyword does not already exist in the header, a new keyword is
        created in the specified position, or appended to the end of the header
        if no position is specified.

        Parameters
        ----------
        keyword : str
            A header keyword

        value : str (optional)
            The value to set for the given keyword; if None the existing value
            is kept, but '' may be used to set a blank value

        comment : str (optional)
            The comment to set for the given keyword; if None the existing
            comment is kept, but '' may be used to set a blank comment

        before : str, int (optional)
            Name of the keyword, or index of the `Card` before which
            this card should be located in the header.  The argument `before`
            takes precedence over `after` if both specified.

        after : str, int (optional)
            Name of the keyword, or index of the `Card` after which this card
            should be located in the header.
        """

        if keyword in self:
            idx = self._cardindex(keyword)
            card = self._cards[idx]
            if value is not None:
                card.value = value
            if comment is not None:
                card.comment = comment
            self._modified = True
            if before is not None or after is not None:
                del self._cards[idx]
                self._relativeinsert(card, before=before, after=after)
        else:
            card = Card(keyword, value, comment)
            if before is not None or after is not None:
                self._relativeinsert(card, before=before, after=after)
            else:
                self.append(card)

    # The historical spelling used throughout the HDU classes
    update = set

    def keys(self):
        return [card.keyword for card in self._cards]

    def values(self):
        return [card.value for card in self._cards]

    def items(self):
        return [(card.keyword, card.value) for card in self._cards]

    def pop(self, key, *default):
        try:
            value = self[key]
        except (KeyError, IndexError):
            if default:
                return default[0]
            raise
        del self[key]
        return value

    def append(self, card=None, bottom=False, end=False):
        """
        Appends a new keyword+value card to the end of the Header, similar
        to list.append().

        By default if the last cards in the Header have commentary keywords,
        this will append the new keyword before the commentary.

        Parameters
        ----------
        card : str, tuple, Card
            A keyword or a (keyword, value, [comment]) tuple representing a
            single header card; the comment is optional in which case a
            2-tuple may be used

        bottom : bool (optional)
            If True, instead of appending after the last non-commentary card,
            append after the last non-blank card.

        end : bool (optional):
            If True, append at the very end of the Header.
        """

        if isinstance(card, str):
            card = Card(card)
        elif isinstance(card, tuple):
            card = Card(*card)
        elif card is None:
            card = Card()
        elif not isinstance(card, Card):
            raise ValueError(
                'The value appended to a Header must be either a keyword or '
                '(keyword, value, [comment]) tuple; got: %r' % (card,))

        blank = ' ' * Card.length
        if end or str(card) == blank:
            self._cards.append(card)
        else:
            idx = len(self._cards) - 1
            while idx >= 0 and str(self._cards[idx]) == blank:
                idx -= 1

            if not bottom and card.keyword not in Card._commentary_keywords:
                while (idx >= 0 and
                       self._cards[idx].keyword in Card._commentary_keywords):
                    idx -= 1

            self._cards.insert(idx + 1, card)

        self._modified = True

    def extend(self, cards):
        for card in cards:
            self.append(card)

    def insert(self, idx, card):
        """
        Inserts a new keyword+value card into the Header at a given location,
        similar to list.insert().
        """

        if isinstance(card, str):
            card = Card(card)
        elif isinstance(card, tuple):
            card = Card(*card)
        self._cards.insert(idx, card)
        self._modified = True

    def count(self, keyword):
        keyword = keyword.upper()
        return len([c for c in self._cards if c.keyword == keyword])

    def index(self, keyword):
        return self._cardindex(keyword)

    def rename_key(self, oldkey, newkey, force=False):
        """
        Rename a card's keyword in the header.

        Parameters
        ----------
        oldkey : str or int
            old keyword

        newkey : str
            new keyword

        force : bool
            When `True`, if new key name already exists, force to have
            duplicate name.
        """

        oldkey = oldkey.upper()
        newkey = newkey.upper()

        if newkey == 'CONTINUE':
            raise ValueError('Can not rename to CONTINUE')

        if (newkey in Card._commentary_keywords or
                oldkey in Card._commentary_keywords):
            if not (newkey in Card._commentary_keywords and
                    oldkey in Card._commentary_keywords):
                raise ValueError('Regular and commentary keys can not be '
                                 'renamed to each other.')
        elif not force and newkey in self:
            raise ValueError('Intended keyword %s already exists in header.'
                             % newkey)

        idx = self._cardindex(oldkey)
        card = self._cards[idx]
        self._cards[idx] = Card(newkey, card.value, card.comment)
        self._modified = True

    def add_history(self, value, before=None, after=None):
        self._add_commentary('HISTORY', value, before=before, after=after)

    def add_comment(self, value, before=None, after=None):
        self._add_commentary('COMMENT', value, before=before, after=after)

    def add_blank(self, value='', before=None, after=None):
        self._add_commentary('', value, before=before, after=after)

    def _add_commentary(self, key, value, before=None, after=None):
        # commentary text longer than a card is split over several cards
        chunks = [value[idx:idx + 72] for idx in range(0, len(value), 72)]
        for chunk in chunks or ['']:
            card = Card(key, chunk)
            if before is not None or after is not None:
                self._relativeinsert(card, before=before, after=after)
                if after is not None:
                    after = self._cards.index(card)
            else:
                self.append(card, bottom=True)

    def _cardindex(self, key):
        """Returns an index into the ._cards list given a valid lookup key."""

        if isinstance(key, int) and not isinstance(key, bool):
            if key < 0:
                key += len(self._cards)
            if key < 0 or key >= len(self._cards):
                raise IndexError('Header index out of range.')
            return key

        if isinstance(key, str):
            key = (key, 0)

        if isinstance(key, tuple):
            if (len(key) != 2 or not isinstance(key[0], str) or
                    not isinstance(key[1], int)):
                raise ValueError(
                    'Tuple indices must be 2-tuples consisting of a '
                    'keyword string and an integer index.')
            keyword, n = key
            keyword = keyword.strip().upper()
            if keyword.startswith('HIERARCH '):
                keyword = keyword[9:].strip()
            found = [idx for idx, card in enumerate(self._cards)
                     if card.keyword.upper() == keyword]
            if not found:
                raise KeyError("Keyword %r not found." % keyword)
            try:
                return found[n]
            except IndexError:
                raise IndexError('There are only %d %r cards in the header.'
                                 % (len(found), keyword))

        raise ValueError('Header indices must be either a string, a 2-tuple, '
                         'or an integer.')

    def _relativeinsert(self, card, before=None, after=None):
        """
        Inserts a new card before or after an existing card; used to
        implement support for the before/after keyword arguments to
        Header.set().
        """

        insertionkey = after if before is None else before
        if isinstance(insertionkey, int) and \
                insertionkey >= len(self._cards):
            idx = len(self._cards)
        else:
            try:
                idx = self._cardindex(insertionkey)
            except KeyError:
                # anchor not present; fall back to a plain append
                self.append(card)
                return
        if before is not None:
            self.insert(idx, card)
        else:
            self.insert(idx + 1, card)

    def _strip(self):
        """
        Strip cards like ``SIMPLE``, ``BITPIX``, etc. so the rest of the
        header can be used to reconstruct another kind of header.
        """

        naxis = self.get('NAXIS', 0)
        tfields = self.get('TFIELDS', 0)

        for idx in range(naxis):
            del self['NAXIS' + str(idx + 1)]

        for name in ('TFORM', 'TSCAL', 'TZERO', 'TNULL', 'TTYPE',
                     'TUNIT', 'TDISP', 'TDIM', 'THEAP', 'TBCOL'):
            for idx in range(tfields):
                del self[name + str(idx + 1)]

        for name in ('SIMPLE', 'XTENSION', 'BITPIX', 'NAXIS', 'EXTEND',
                     'PCOUNT', 'GCOUNT', 'GROUPS', 'THEAP', 'TFIELDS',
                     'CHECKSUM', 'DATASUM'):
            del self[name]


class _HeaderComments(object):
    """
    A class used internally by the Header class for the Header.comments
    attribute access.
    """

    def __init__(self, header):
        self._header = header

    def __getitem__(self, item):
        idx = self._header._cardindex(item)
        return self._header._cards[idx].comment

    def __setitem__(self, item, comment):
        idx = self._header._cardindex(item)
        self._header._cards[idx].comment = comment
        self._header._modified = True


def _find_end(data):
    """
    Returns the offset of the ``END`` card within a header string, or None;
    only card boundaries are considered.
    """

    for idx in range(0, len(data) - Card.length + 1, Card.length):
        if data[idx:idx + Card.length] == END_CARD:
            return idx
    return None
