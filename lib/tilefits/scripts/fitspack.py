"""
        fitspack: Compress the images and binary tables of FITS files with
                tiled compression, or restore them.

        Usage:

                fitspack [options] filename [filename ...]

                Each image HDU with data is replaced by a compressed image
                HDU and each binary table by a compressed table.  Other
                HDUs, and tables that cannot be compressed, are copied
                unchanged.  The output of ``name`` is ``name.fz`` unless
                -o is given; with -u the ``.fz`` suffix is removed.

                Options are one or more of:

                -t  (compression type)
                        image compression algorithm: RICE_1, GZIP_1,
                        GZIP_2, PLIO_1, HCOMPRESS_1 or NOCOMPRESS
                        default = RICE_1
                -q  (number)
                        quantization level for floating point images
                        default = 16
                -r  (positive integer)
                        number of rows per tile of compressed tables
                        default = whole table in one tile
                -o  (file name)
                        output file name; only with a single input file
                -u
                        restore (uncompress) the files instead
                -c
                        add CHECKSUM and DATASUM keywords to the output
                -C
                        overwrite existing output files
                -h
                        print the help (this text)

        Example:

                fitspack -t GZIP_2 -c image.fits

                writes image.fits.fz with the image compressed by GZIP_2
                and checksums in every header.
"""

import getopt
import sys
import warnings

import tilefits
from tilefits.compression import DEFAULT_COMPRESSION_TYPE
from tilefits.compression.quantize import DEFAULT_QUANTIZE_LEVEL
from tilefits.errors import FITSError, UnsupportedFeatureError
from tilefits.hdu.compressed import CompImageHDU, CompTableHDU
from tilefits.hdu.hdulist import HDUList
from tilefits.hdu.image import PrimaryHDU, _ImageBaseHDU
from tilefits.hdu.table import BinTableHDU


SUFFIX = '.fz'


def pack_hdus(hdulist, compression_type=DEFAULT_COMPRESSION_TYPE,
              quantize_level=DEFAULT_QUANTIZE_LEVEL, tile_rows=None):
    """
    Returns a new `HDUList` with the images and tables of ``hdulist``
    compressed.
    """

    output = HDUList()
    for hdu in hdulist:
        if isinstance(hdu, (CompImageHDU, CompTableHDU)):
            output.append(hdu)
        elif isinstance(hdu, _ImageBaseHDU) and hdu.shape:
            if not len(output):
                # an image in the primary HDU moves to the first extension
                output.append(PrimaryHDU())
            output.append(CompImageHDU.from_image_hdu(
                hdu, compression_type=compression_type,
                quantize_level=quantize_level))
        elif isinstance(hdu, BinTableHDU):
            try:
                output.append(CompTableHDU.from_table_hdu(hdu, tile_rows))
            except UnsupportedFeatureError as err:
                warnings.warn('Table %r copied uncompressed: %s'
                              % (hdu.name, err))
                output.append(hdu)
        else:
            output.append(hdu)
    return output


def unpack_hdus(hdulist):
    """
    Returns a new `HDUList` with the compressed images and tables of
    ``hdulist`` restored.
    """

    output = HDUList()
    for idx, hdu in enumerate(hdulist):
        if isinstance(hdu, CompImageHDU):
            image = hdu.as_image_hdu()
            primary = any(card.keyword == 'ZSIMPLE'
                          for card in hdu._primary_cards)
            if idx == 1 and primary and len(output) == 1 and \
                    not output[0].shape:
                # the image came from the primary HDU
                header = image.header.copy()
                if header.get('EXTNAME') == 'COMPRESSED_IMAGE':
                    del header['EXTNAME']
                output[0] = PrimaryHDU(image.data, header)
            else:
                output.append(image)
        elif isinstance(hdu, CompTableHDU):
            output.append(hdu.as_table_hdu())
        else:
            output.append(hdu)
    return output


def output_name(filename, unpack=False):
    if not unpack:
        return filename + SUFFIX
    if filename.endswith(SUFFIX):
        return filename[:-len(SUFFIX)]
    raise ValueError("Cannot derive the output name of '%s'; use -o."
                     % filename)


def fitspack(filename, output=None, unpack=False, checksum=False,
             clobber=False, **kwargs):
    """
    Compress (or with ``unpack`` restore) one file; the keyword
    arguments are passed to `pack_hdus`.
    """

    if output is None:
        output = output_name(filename, unpack)
    with tilefits.open(filename) as hdulist:
        if unpack:
            result = unpack_hdus(hdulist)
        else:
            result = pack_hdus(hdulist, **kwargs)
        result.writeto(output, clobber=clobber, checksum=checksum)
    return output


def main(args=None):
    if args is None:
        args = sys.argv[1:]

    try:
        optlist, args = getopt.getopt(args, 't:q:r:o:ucCh')
    except getopt.GetoptError as err:
        sys.stderr.write('%s\n%s' % (err, __doc__))
        return 2

    kwargs = {}
    output = None
    unpack = checksum = clobber = False
    try:
        for opt, value in optlist:
            if opt == '-t':
                kwargs['compression_type'] = value.upper()
            elif opt == '-q':
                kwargs['quantize_level'] = float(value)
            elif opt == '-r':
                kwargs['tile_rows'] = int(value)
                if kwargs['tile_rows'] <= 0:
                    raise ValueError('-r needs a positive number of rows')
            elif opt == '-o':
                output = value
            elif opt == '-u':
                unpack = True
            elif opt == '-c':
                checksum = True
            elif opt == '-C':
                clobber = True
            elif opt == '-h':
                sys.stdout.write(__doc__)
                return 0
    except ValueError as err:
        sys.stderr.write('%s\n' % err)
        return 2

    if not args:
        sys.stderr.write('Needs at least one input file.  Use -h for help\n')
        return 2
    if output is not None and len(args) > 1:
        sys.stderr.write('-o can only be used with a single input file\n')
        return 2
    if unpack:
        kwargs = {}

    status = 0
    for filename in args:
        try:
            written = fitspack(filename, output, unpack, checksum, clobber,
                               **kwargs)
        except (FITSError, EnvironmentError, ValueError) as err:
            sys.stderr.write('%s: %s\n' % (filename, err))
            status = 1
        else:
            sys.stdout.write('%s -> %s\n' % (filename, written))
    return status


if __name__ == '__main__':
    sys.exit(main())
