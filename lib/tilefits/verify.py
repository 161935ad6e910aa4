import warnings

from tilefits.errors import VerifyError


VERIFY_OPTIONS = ['fix', 'silentfix', 'ignore', 'warn', 'exception']


class _ErrList(list):
    """
    Verification errors list class.  It has a nested list structure
    constructed by error messages generated by verifications at
    different class levels.
    """

    def __init__(self, val=(), unit='Element'):
        super(_ErrList, self).__init__(val)
        self.unit = unit

    def __str__(self):
        return '\n'.join(self._iter_lines(0))

    def _iter_lines(self, tab):
        element = 0
        for item in self:
            if isinstance(item, _ErrList):
                lines = list(item._iter_lines(tab + 1))
                if lines:
                    if item.unit:
                        yield '%s%s %d:' % ('    ' * tab, item.unit, element)
                    for line in lines:
                        yield line
                element += 1
            elif item:
                yield '%s%s' % ('    ' * tab, item)


class _Verify(object):
    """
    Shared methods for verification.
    """

    def run_option(self, option='warn', err_text='', fix_text='Fixed.',
                   fix=None, fixable=True):
        """
        Execute the verification with selected option.
        """

        text = err_text
        if not fixable:
            option = 'unfixable'
        if option in ('warn', 'exception'):
            pass
        elif option == 'unfixable':
            text = 'Unfixable error: %s' % text
        else:
            if fix is not None:
                fix()
            text += '  ' + fix_text
        return text

    def verify(self, option='warn'):
        """
        Verify all values in the instance.

        Parameters
        ----------
        option : str
            Output verification option.  Must be one of ``"fix"``,
            ``"silentfix"``, ``"ignore"``, ``"warn"``, or
            ``"exception"``.
        """

        opt = option.lower()
        if opt not in VERIFY_OPTIONS:
            raise ValueError('Option %r not recognized.' % option)

        if opt == 'ignore':
            return

        x = str(self._verify(opt)).rstrip()
        if opt in ('fix', 'silentfix') and 'Unfixable' in x:
            raise VerifyError('\n' + x)
        if opt not in ('silentfix', 'exception') and x:
            warnings.warn('Verification reported errors:\n' + x)
        if opt == 'exception' and x:
            raise VerifyError('\n' + x)

    def _verify(self, option='warn'):
        return _ErrList([])
