"""
        fitscheck: Verify and update the CHECKSUM and DATASUM keywords of
                FITS files.

        Usage:

                fitscheck [options] filename [filename ...]

                Every HDU of each file is checked.  HDUs without the
                checksum keywords are reported as missing, HDUs whose
                keywords do not match their contents as bad.  The exit
                status is the number of problems found.

                Options are one or more of:

                -w
                        write CHECKSUM and DATASUM keywords to the files
                        that have none, and update the bad ones
                -f
                        force writing the keywords to every file, even
                        those that verify correctly (implies -w)
                -i
                        do not report missing keywords as problems
                -h
                        print the help (this text)

        Example:

                fitscheck -w *.fits

                checks all FITS files in the current directory and stamps
                the ones lacking checksums.
"""

import getopt
import sys
import warnings

import tilefits
from tilefits.errors import FITSError


MISSING = 2


def verify_file(filename, ignore_missing=False, output=None):
    """
    Check the checksum keywords of every HDU in the file.

    Returns
    -------
    problems : int
        number of HDUs with a bad (or, unless ``ignore_missing``, a
        missing) ``CHECKSUM`` or ``DATASUM`` card
    """

    if output is None:
        output = sys.stdout

    problems = 0
    with tilefits.open(filename) as hdulist:
        for idx, (cs, ds) in enumerate(hdulist.verify_checksum()):
            for keyword, result in (('CHECKSUM', cs), ('DATASUM', ds)):
                if result == 1:
                    continue
                if result == MISSING:
                    if ignore_missing:
                        continue
                    state = 'missing'
                else:
                    state = 'bad'
                output.write('%s: HDU %d %s %s\n'
                             % (filename, idx, state, keyword))
                problems += 1
    return problems


def update_file(filename):
    """
    Write fresh ``CHECKSUM`` and ``DATASUM`` cards to every HDU of the
    file, in place.
    """

    with tilefits.open(filename, mode='update') as hdulist:
        hdulist.add_checksum()


def fitscheck(filenames, write=False, force=False, ignore_missing=False,
              output=None):
    """
    Verify the files in turn, writing checksums to those that need it.
    Returns the number of problems found.
    """

    if output is None:
        output = sys.stdout

    problems = 0
    for filename in filenames:
        try:
            found = verify_file(filename, ignore_missing, output)
        except (FITSError, EnvironmentError) as err:
            output.write('%s: %s\n' % (filename, err))
            problems += 1
            continue
        problems += found
        if force or (write and found):
            try:
                update_file(filename)
            except (FITSError, EnvironmentError) as err:
                output.write('%s: checksums not written: %s\n'
                             % (filename, err))
                problems += 1
    return problems


def main(args=None):
    if args is None:
        args = sys.argv[1:]

    try:
        optlist, args = getopt.getopt(args, 'wfih')
    except getopt.GetoptError as err:
        sys.stderr.write('%s\n%s' % (err, __doc__))
        return 2

    write = force = ignore_missing = False
    for opt, value in optlist:
        if opt == '-w':
            write = True
        elif opt == '-f':
            force = True
        elif opt == '-i':
            ignore_missing = True
        elif opt == '-h':
            sys.stdout.write(__doc__)
            return 0

    if not args:
        sys.stderr.write('Needs at least one input file.  Use -h for help\n')
        return 2

    # checksum mismatches are reported above, not as warnings
    with warnings.catch_warnings():
        warnings.simplefilter('ignore')
        problems = fitscheck(args, write, force, ignore_missing)
    return min(problems, 255)


if __name__ == '__main__':
    sys.exit(main())
