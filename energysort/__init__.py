import importlib.metadata
try:
    __version__ = importlib.metadata.version('energysort')
except importlib.metadata.PackageNotFoundError:
    # package is not installed
    __version__ = 'unknown'

from .run_sort import run_sort, sort_electrode
from .parameters import DEFAULT_SETTINGS
