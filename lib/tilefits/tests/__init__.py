import os
import shutil
import tempfile
import warnings

import numpy as np

from tilefits import core


class TilefitsTestCase(object):
    def setup_method(self, method):
        self.temp_dir = tempfile.mkdtemp(prefix='tilefits-test-')

        # Restore global settings to defaults
        core.restore_defaults()

        warnings.resetwarnings()
        warnings.simplefilter('ignore', DeprecationWarning)
        warnings.simplefilter('always', UserWarning)

    def teardown_method(self, method):
        shutil.rmtree(self.temp_dir)
        core.restore_defaults()

    def temp(self, filename):
        """ Returns the full path to a file in the test temp dir."""

        return os.path.join(self.temp_dir, filename)


def random_image(shape, dtype=np.int32, low=0, high=1000, seed=42):
    """Reproducible random test image."""

    rng = np.random.RandomState(seed)
    dtype = np.dtype(dtype)
    if dtype.kind == 'f':
        return (rng.normal(size=shape) * (high - low) / 10.0 +
                (high + low) / 2.0).astype(dtype)
    return rng.randint(low, high, size=shape).astype(dtype)
