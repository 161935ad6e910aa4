"""
Package-wide configuration.

Each setting is a module-level global whose default may be overridden by
an environment variable, plus a setter function.  `GLOBALS` records the
defaults so they can be restored (the test suite does so before every
test).
"""

import os


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 't', 'true', 'y', 'yes', 'on')


def _env_int(name, default):
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return max(1, int(value))
    except ValueError:
        return default


# Allow keywords longer than 8 characters, written as HIERARCH cards
ENABLE_LONG_KEYWORDS = _env_bool('TILEFITS_ENABLE_LONG_KEYWORDS', False)

# Allow string values longer than one card, written as CONTINUE cards
ENABLE_LONG_STRINGS = _env_bool('TILEFITS_ENABLE_LONG_STRINGS', True)

# Replace non-printable bytes in table strings with blanks (and warn)
CHECK_ASCII_STRINGS = _env_bool('TILEFITS_CHECK_ASCII_STRINGS', False)

# Size of the worker pool used for per-tile compression work
MAX_WORKERS = _env_int('TILEFITS_MAX_WORKERS', os.cpu_count() or 1)


GLOBALS = [(name, globals()[name]) for name in
           ('ENABLE_LONG_KEYWORDS', 'ENABLE_LONG_STRINGS',
            'CHECK_ASCII_STRINGS', 'MAX_WORKERS')]


def set_enable_long_keywords(value=True):
    global ENABLE_LONG_KEYWORDS
    ENABLE_LONG_KEYWORDS = bool(value)


def set_enable_long_strings(value=True):
    global ENABLE_LONG_STRINGS
    ENABLE_LONG_STRINGS = bool(value)


def set_check_ascii_strings(value=True):
    global CHECK_ASCII_STRINGS
    CHECK_ASCII_STRINGS = bool(value)


def set_max_workers(value=None):
    """
    Set the number of worker threads used for tiled compression.

    ``None`` restores the default of one worker per available CPU; ``1``
    runs every tile serially in the calling thread.
    """

    global MAX_WORKERS
    if value is None:
        value = os.cpu_count() or 1
    if int(value) < 1:
        raise ValueError('The worker count must be at least 1: %r' % value)
    MAX_WORKERS = int(value)


def restore_defaults():
    for name, value in GLOBALS:
        globals()[name] = value
