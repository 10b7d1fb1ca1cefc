"""
Utility package setup.

Enables pandas Copy-on-Write so fold slicing and encoding steps do not
duplicate the candidate table unless they write to it. pandas 3 always
copies on write and deprecates the option, so it is only set on pandas 2.
"""

import pandas as pd

PANDAS_MAJOR = int(pd.__version__.split('.')[0])

if PANDAS_MAJOR < 3:
    pd.options.mode.copy_on_write = True
