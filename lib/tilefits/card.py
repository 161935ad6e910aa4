import re
import warnings

import numpy as np

from tilefits import core
from tilefits.errors import FormatError
from tilefits.util import _str_to_num, _is_int, _words_group
from tilefits.verify import _Verify, _ErrList


__all__ = ['Card', 'Undefined', 'UNDEFINED']


class Undefined(object):
    """Undefined value."""

    def __repr__(self):
        return 'UNDEFINED'
UNDEFINED = Undefined()


class Card(_Verify):
    length = 80

    # String for a FITS standard compliant (FSC) keyword.
    _keywd_FSC_RE = re.compile(r'^[A-Z0-9_-]{0,8}$')
    # This will match any printable ASCII character excluding '='
    _keywd_hierarch_RE = re.compile(r'^(?:HIERARCH )?(?:^|[ -<>-~]+ ?)+$',
                                    re.I)

    # A number sub-string, either an integer or a float in fixed or
    # scientific notation.  NFSC allows lower case of DE for exponent,
    # allows space between sign, digits, exponent sign, and exponents
    _digits_NFSC = r'(\.\d+|\d+(\.\d*)?) *([deDE] *[+-]? *\d+)?'
    _numr_NFSC = r'[+-]? *' + _digits_NFSC

    # This regex helps delete leading zeros from numbers, otherwise
    # Python might evaluate them as octal values.
    _number_NFSC_RE = re.compile(r'(?P<sign>[+-])? *0*(?P<digt>%s)'
                                 % _digits_NFSC)

    # The valu group will return a match if a FITS string, boolean,
    # number, or complex value is found, otherwise it will return
    # None, meaning the keyword is undefined.  A non-greedy match is
    # done for a string, since a greedy match will find a single-quote
    # after the comment separator resulting in an incorrect match.
    _value_NFSC_RE = re.compile(
        r'(?P<valu_field> *'
            r'(?P<valu>'
                r'\'(?P<strg>([ -~]+?|\'\'|)) *?\'(?=$|/| )|'
                r'(?P<bool>[FT])|'
                r'(?P<numr>' + _numr_NFSC + r')|'
                r'(?P<cplx>\( *'
                    r'(?P<real>' + _numr_NFSC + r') *, *'
                    r'(?P<imag>' + _numr_NFSC + r') *\))'
            r')? *)'
        r'(?P<comm_field>'
            r'(?P<sepr>/ *)'
            r'(?P<comm>(.|\n)*)'
        r')?$')

    _commentary_keywords = ['', 'COMMENT', 'HISTORY', 'END']

    def __init__(self, keyword=None, value=None, comment=None):
        self._keyword = None
        self._value = None
        self._comment = None
        self._image = None
        self._modified = False
        self._valuestring = None

        if keyword is not None:
            self.keyword = keyword
        if value is not None:
            self.value = value
        if comment is not None:
            self.comment = comment

    def __repr__(self):
        return repr((self.keyword, self.value, self.comment))

    def __str__(self):
        return self.image

    def __len__(self):
        return 3

    def __getitem__(self, index):
        return (self.keyword, self.value, self.comment)[index]

    @property
    def keyword(self):
        if self._keyword is not None:
            return self._keyword
        elif self._image is not None:
            self._keyword = self._parsekeyword()
            return self._keyword
        else:
            self.keyword = ''
            return ''

    @keyword.setter
    def keyword(self, keyword):
        if self._keyword is not None and self._image is not None:
            raise AttributeError(
                'Once set, the Card keyword may not be modified')
        if not isinstance(keyword, str):
            raise FormatError('Keyword name %r is not a string.' % keyword)

        keyword = keyword.strip()
        keyword_upper = keyword.upper()
        if keyword_upper.startswith('HIERARCH '):
            keyword = keyword[9:].strip()
            keyword_upper = keyword.upper()
            if not core.ENABLE_LONG_KEYWORDS:
                raise FormatError(
                    'HIERARCH keywords are disabled: %r' % keyword)
        elif len(keyword) <= 8 and self._keywd_FSC_RE.match(keyword_upper):
            keyword = keyword_upper
        elif not core.ENABLE_LONG_KEYWORDS:
            raise FormatError('Illegal keyword name: %r.' % keyword)
        elif not self._keywd_hierarch_RE.match(keyword):
            raise FormatError('Illegal HIERARCH keyword name: %r.' % keyword)

        self._keyword = keyword
        self._modified = True

    @property
    def value(self):
        if self._value is None:
            if self._image is not None:
                self._value = self._parsevalue()
            else:
                self._value = ''
        return self._value

    @value.setter
    def value(self, value):
        if value is None:
            value = UNDEFINED
        if isinstance(value, np.bool_):
            value = bool(value)
        elif isinstance(value, np.integer):
            value = int(value)
        elif isinstance(value, np.floating):
            value = float(value)
        elif isinstance(value, np.complexfloating):
            value = complex(value)
        elif isinstance(value, bytes):
            value = value.decode('ascii')

        if not isinstance(value, (str, bool, int, float, complex,
                                  Undefined)):
            raise FormatError('Illegal value: %r.' % value)
        if isinstance(value, str):
            if any(not (32 <= ord(c) <= 126) for c in value):
                raise FormatError('Card values must contain only printable '
                                  'ASCII characters: %r' % value)
            if (not core.ENABLE_LONG_STRINGS and
                    self.keyword not in self._commentary_keywords and
                    len(value.replace("'", "''")) > 68):
                raise FormatError('Long string values are disabled: the '
                                  'value of %s does not fit on one card.'
                                  % self.keyword)

        if self._value is None or self._value != value or \
                type(self._value) is not type(value):
            self._value = value
            self._valuestring = None
            self._modified = True

    @property
    def comment(self):
        if self._comment is None:
            if self._image is not None:
                self._comment = self._parsecomment()
            else:
                self._comment = ''
        return self._comment

    @comment.setter
    def comment(self, comment):
        if comment is None:
            comment = ''
        if any(not (32 <= ord(c) <= 126) for c in comment):
            raise FormatError('Card comments must contain only printable '
                              'ASCII characters: %r' % comment)
        if self._comment != comment:
            self._comment = comment
            self._modified = True

    @property
    def image(self):
        """
        The card "image", that is, the 80 byte character string that
        represents this card in an actual FITS header (or a multiple of
        80 for long string values).
        """

        if self._image is None or self._modified:
            self._image = self._formatimage()
            self._modified = False
        return self._image

    @classmethod
    def fromstring(cls, image):
        """
        Construct a `Card` object from a (raw) string.  The string may be
        longer than 80 characters when it holds ``CONTINUE`` cards.
        """

        card = cls()
        card._image = _pad(image)
        return card

    def _parsekeyword(self):
        keyword = self._image[:8].strip()
        keyword_upper = keyword.upper()
        if keyword_upper in self._commentary_keywords:
            return keyword_upper
        if keyword_upper == 'HIERARCH' and '=' in self._image:
            return self._image.split('=', 1)[0][9:].strip()
        return keyword_upper

    def _parsevalue(self):
        """Extract the keyword value from the card image."""

        # for commentary cards, no need to parse further
        if self.keyword in self._commentary_keywords:
            return self._image[8:].rstrip()

        if len(self._image) > self.length:
            values = []
            for card in self._itersubcards():
                value = card.value.rstrip().replace("''", "'")
                if value and value[-1] == '&':
                    value = value[:-1]
                values.append(value)
            return ''.join(values).rstrip()

        valuecomment = self._split()[1]
        if not valuecomment:
            return UNDEFINED
        m = self._value_NFSC_RE.match(valuecomment)
        if m is None:
            raise FormatError('Unparsable card (%s), fix it first with '
                              '.verify(\'fix\').' % self.keyword)

        if m.group('bool') is not None:
            value = m.group('bool') == 'T'
        elif m.group('strg') is not None:
            value = re.sub("''", "'", m.group('strg')).rstrip()
        elif m.group('numr') is not None:
            value = self._parsenumber(m.group('numr'))
        elif m.group('cplx') is not None:
            value = complex(self._parsenumber(m.group('real')),
                            self._parsenumber(m.group('imag')))
        else:
            value = UNDEFINED

        self._valuestring = m.group('valu')
        return value

    def _parsenumber(self, text):
        numr = self._number_NFSC_RE.match(text)
        digt = numr.group('digt').replace(' ', '')
        digt = digt.replace('d', 'e').replace('D', 'E')
        sign = numr.group('sign') or ''
        return _str_to_num(sign + digt)

    def _parsecomment(self):
        """Extract the keyword comment from the card image."""

        # for commentary cards, no need to parse further
        if self.keyword in self._commentary_keywords:
            return ''

        if len(self._image) > self.length:
            comments = [card.comment for card in self._itersubcards()
                        if card.comment]
            m = self._value_NFSC_RE.match('/ ' + ' '.join(comments).rstrip())
        else:
            m = self._value_NFSC_RE.match(self._split()[1])

        if m is not None:
            comment = m.group('comm')
            if comment:
                return comment.rstrip()
        return ''

    def _split(self):
        """
        Split the card image between the keyword and the rest of the card.
        """

        image = self._image if self._image is not None else self.image

        if self.keyword in self._commentary_keywords + ['CONTINUE']:
            return image[:8].strip(), image[8:].strip()

        if image[:9] == 'HIERARCH ' and '=' in image:
            keyword, valuecomment = image.split('=', 1)
            return keyword[9:].strip(), valuecomment.strip()

        # The equal sign is in column 9 for standard cards; a card
        # without it has an undefined value
        if image[8:10] == '= ':
            return image[:8].strip(), image[10:].strip()
        return image[:8].strip(), ''

    def _itersubcards(self):
        """
        If the card image is greater than 80 characters, it should consist
        of a normal card followed by one or more CONTINUE card.  This method
        returns the subcards that make up this logical card.
        """

        ncards = len(self._image) // Card.length
        for idx in range(0, Card.length * ncards, Card.length):
            card = Card.fromstring(self._image[idx:idx + Card.length])
            if idx > 0 and card.keyword != 'CONTINUE':
                raise FormatError(
                    'Long card images must have CONTINUE cards after the '
                    'first card.')
            if not isinstance(card.value, str):
                raise FormatError(
                    'CONTINUE cards must have string values.')
            yield card

    def _formatkeyword(self):
        if self.keyword:
            if len(self.keyword) <= 8 and \
                    self._keywd_FSC_RE.match(self.keyword):
                return '%-8s' % self.keyword
            else:
                return 'HIERARCH %s ' % self.keyword
        else:
            return ' ' * 8

    def _formatvalue(self):
        value = self.value
        if not self.keyword:
            # Blank cards must have blank values
            value = ''
        elif self.keyword in self._commentary_keywords:
            # The value of a commentary card must be just a raw unprocessed
            # string
            value = str(value)
        else:
            value = _format_value(value)

        # For HIERARCH cards the value should be shortened to conserve space
        if len(self.keyword) > 8:
            value = value.strip()

        return value

    def _formatcomment(self):
        if not self.comment:
            return ''
        else:
            return ' / %s' % self.comment

    def _formatimage(self):
        keyword = self._formatkeyword()
        value = self._formatvalue()
        is_commentary = keyword.strip() in self._commentary_keywords
        if is_commentary:
            comment = ''
            delimiter = ''
        else:
            comment = self._formatcomment()
            delimiter = '= '

        output = ''.join([keyword, delimiter, value, comment])

        keywordvalue_length = len(keyword) + len(delimiter) + len(value)
        if (keywordvalue_length > self.length and
                keyword.startswith('HIERARCH')):
            if keywordvalue_length == self.length + 1 and keyword[-1] == ' ':
                output = ''.join([keyword[:-1], delimiter, value, comment])
            else:
                raise FormatError('The keyword %s with its value is too long'
                                  % self.keyword)

        if len(output) <= self.length:
            output = '%-80s' % output
        elif isinstance(self.value, str) and \
                len(value) > (self.length - 10) and not is_commentary:
            # try not to use CONTINUE if the string value can fit in one
            # line; instead, just truncate the comment
            output = self._formatlongimage()
        else:
            warnings.warn('Card is too long, comment will be truncated.')
            output = output[:Card.length]
        return output

    def _formatlongimage(self):
        """
        Break up long string value/comment into ``CONTINUE`` cards.  The
        value string goes in one block and the comment string in another.
        """

        value_length = 67
        comment_length = 64
        output = []

        value = self.value.replace("'", "''")
        words = _words_group(value, value_length)
        for idx, word in enumerate(words):
            if idx == 0:
                headstr = '%-8s= ' % self.keyword
            else:
                headstr = 'CONTINUE  '
            output.append('%-80s' % (headstr + "'%s&'" % word))

        if self.comment:
            words = _words_group(self.comment, comment_length)
            for word in words:
                output.append('%-80s' % ("CONTINUE  '&' / " + word))

        return ''.join(output)

    def _verify(self, option='warn'):
        errs = _ErrList([], unit='Card')
        if self._image is None or self.keyword in ('', 'END'):
            return errs

        keyword = self._image[:8].strip()
        if keyword != keyword.upper() and \
                not self._image.startswith('HIERARCH'):
            def fix(self=self):
                self._keyword = keyword.upper()
                self._modified = True
            errs.append(self.run_option(
                option, err_text='Card keyword %r is not upper case.'
                % keyword, fix_text='Fixed %r card to meet the FITS '
                'standard.' % keyword, fix=fix))

        try:
            self.value
        except FormatError as exc:
            errs.append(self.run_option(option, err_text=str(exc),
                                        fixable=False))
        return errs


def _format_value(value):
    """
    Converts a card value to its appropriate string representation as
    defined by the FITS format.
    """

    # string value should occupies at least 8 columns, unless it is
    # a null string
    if isinstance(value, str):
        if value == '':
            return "''"
        else:
            exp_val_str = value.replace("'", "''")
            val_str = "'%-8s'" % exp_val_str
            return '%-20s' % val_str

    # must be before int checking since bool is also int
    elif isinstance(value, (bool, np.bool_)):
        return '%20s' % ('T' if value else 'F')

    elif _is_int(value):
        return '%20d' % value

    elif isinstance(value, (float, np.floating)):
        return '%20s' % _format_float(value)

    elif isinstance(value, (complex, np.complexfloating)):
        val_str = '(%s, %s)' % (_format_float(value.real),
                                _format_float(value.imag))
        return '%20s' % val_str

    else:
        return ''


def _format_float(value):
    """Format a floating number to make sure it gets the decimal point."""

    value_str = '%.16G' % value
    if '.' not in value_str and 'E' not in value_str:
        value_str += '.0'
    elif 'E' in value_str:
        # On some platforms the exponent has three digits
        significand, exponent = value_str.split('E')
        if exponent[0] in ('+', '-'):
            sign = exponent[0]
            exponent = exponent[1:]
        else:
            sign = ''
        value_str = '%sE%s%02d' % (significand, sign, int(exponent))

    # Limit the value string to at most 20 characters.
    str_len = len(value_str)

    if str_len > 20:
        idx = value_str.find('E')

        if idx < 0:
            value_str = value_str[:20]
        else:
            value_str = value_str[:20 - (str_len - idx)] + value_str[idx:]

    return value_str


def _pad(input):
    """Pad blank space to the input string to be multiple of 80."""

    _len = len(input)
    if _len == Card.length:
        return input
    elif _len > Card.length:
        strlen = _len % Card.length
        if strlen == 0:
            return input
        else:
            return input + ' ' * (Card.length - strlen)

    # minimum length is 80
    else:
        strlen = _len % Card.length
        return input + ' ' * (Card.length - strlen)
