import io

import pytest

from tilefits import core
from tilefits.card import Card
from tilefits.errors import FormatError
from tilefits.header import Header
from tilefits.tests import TilefitsTestCase


class TestCard(TilefitsTestCase):
    def test_card_image(self):
        card = Card('NAXIS', 2, 'number of axes')
        assert str(card) == \
            ('NAXIS   = %20d / number of axes' % 2).ljust(80)

    def test_value_types(self):
        assert str(Card('FLAG', True)).startswith('FLAG    =' + ' ' * 20 +
                                                  'T')
        assert Card.fromstring("OBJECT  = 'M31     '").value == 'M31'
        assert Card.fromstring('EXPTIME =               1.5E+02').value == \
            150.0
        assert Card.fromstring('VALUE   = (1.0, -2.0)').value == \
            complex(1, -2)

    def test_float_keeps_decimal_point(self):
        assert '3.0' in str(Card('X', 3.0))

    def test_quote_escaping(self):
        card = Card('OBSERVER', "O'Hara")
        assert "'O''Hara '" in str(card)
        assert Card.fromstring(str(card)).value == "O'Hara"

    def test_illegal_keyword(self):
        with pytest.raises(FormatError):
            Card('TOOLONGKEYWORD', 1)

    def test_hierarch(self):
        core.set_enable_long_keywords(True)
        card = Card('ESO DET CHIP NAME', 'CCD1')
        assert str(card).startswith('HIERARCH ESO DET CHIP NAME = ')
        assert Card.fromstring(str(card)).keyword == 'ESO DET CHIP NAME'

    def test_non_ascii_value(self):
        with pytest.raises(FormatError):
            Card('OBJECT', 'caf\xe9')

    def test_long_string(self):
        value = 'abcdefghij' * 12
        card = Card('LONGSTR', value, 'a comment')
        image = str(card)
        assert len(image) % 80 == 0 and len(image) > 80
        assert image[80:88] == 'CONTINUE'
        parsed = Card.fromstring(image)
        assert parsed.value == value
        assert parsed.comment == 'a comment'

    def test_long_string_disabled(self):
        core.set_enable_long_strings(False)
        with pytest.raises(FormatError):
            Card('LONGSTR', 'x' * 100)


class TestHeader(TilefitsTestCase):
    def _header(self):
        return Header([Card('SIMPLE', True, 'conforms to FITS standard'),
                       Card('BITPIX', 16), Card('NAXIS', 1),
                       Card('NAXIS1', 10), Card('OBJECT', 'M31'),
                       Card('HISTORY', 'created')])

    def test_get_set_delete(self):
        header = self._header()
        assert header['object'] == 'M31'
        assert header[1] == 16
        header['OBJECT'] = ('M33', 'the target')
        assert header['OBJECT'] == 'M33'
        assert header.comments['OBJECT'] == 'the target'
        del header['OBJECT']
        assert 'OBJECT' not in header
        # deleting a missing keyword is not an error
        del header['OBJECT']
        assert header.get('OBJECT', 'none') == 'none'

    def test_append_before_commentary(self):
        header = self._header()
        header.append(Card('FILTER', 'V'))
        assert header.keys()[-2:] == ['FILTER', 'HISTORY']
        header.append(Card('LAST', 1), end=True)
        assert header.keys()[-1] == 'LAST'

    def test_update_positions(self):
        header = self._header()
        header.update('EXTEND', True, after='NAXIS1')
        assert header.index('EXTEND') == 4
        header.update('OBJECT', before='BITPIX')
        assert header.keys()[1] == 'OBJECT'
        assert header['OBJECT'] == 'M31'

    def test_commentary(self):
        header = self._header()
        header.add_history('x' * 100)
        assert header.count('HISTORY') == 3
        header.add_comment('note', after='NAXIS1')
        assert header.keys()[4] == 'COMMENT'

    def test_blank_card(self):
        header = self._header()
        header.add_blank(after='NAXIS1')
        assert header.keys()[4] == ''
        assert str(header.cards[4]) == ' ' * 80

        header.add_blank('section two')
        assert header.keys()[-1] == ''
        assert header.cards[-1].value == 'section two'

    def test_copy_strip(self):
        header = self._header()
        header['CHECKSUM'] = '0' * 16
        stripped = header.copy(strip=True)
        assert stripped.keys() == ['OBJECT', 'HISTORY']
        assert 'NAXIS' in header

    def test_string_round_trip(self):
        header = self._header()
        text = header.tostring()
        assert len(text) == 2880
        assert Header.fromstring(text[:80 * 7]) == header

    def test_fromfile(self):
        header = self._header()
        fileobj = io.BytesIO(header.tobytes() + b'\0' * 2880)
        assert Header.fromfile(fileobj) == header
        assert fileobj.tell() == 2880

    def test_fromfile_errors(self):
        with pytest.raises(EOFError):
            Header.fromfile(io.BytesIO(b''))
        with pytest.raises(FormatError):
            Header.fromfile(io.BytesIO(b' ' * 1000))
        with pytest.raises(FormatError):
            Header.fromfile(io.BytesIO(b' ' * 2880))

    def test_missing_end(self):
        with pytest.raises(FormatError):
            Header.fromstring(str(Card('SIMPLE', True)))

    def test_rename_key(self):
        header = self._header()
        header.rename_key('OBJECT', 'TARGET')
        assert header['TARGET'] == 'M31'
        with pytest.raises(ValueError):
            header.rename_key('TARGET', 'BITPIX')
