from tilefits.hdu.base import DELAYED
from tilefits.hdu.compressed import CompImageHDU, CompImageTiler, \
     CompTableHDU
from tilefits.hdu.extension import _NonstandardExtHDU
from tilefits.hdu.hdulist import HDUList, fitsopen
from tilefits.hdu.image import ImageHDU, ImageTiler, PrimaryHDU
from tilefits.hdu.table import BinTableHDU, new_table

__all__ = ['HDUList', 'fitsopen', 'PrimaryHDU', 'ImageHDU', 'ImageTiler',
           'BinTableHDU', 'new_table', 'CompImageHDU', 'CompImageTiler',
           'CompTableHDU', 'DELAYED']
