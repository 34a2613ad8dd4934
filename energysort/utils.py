import logging
import pprint
logger = logging.getLogger(__name__)

import psutil
import torch


def log_performance(log=None, level=None, header=None, device=None):
    """Log memory held by this process and, on a CUDA device, by PyTorch.

    Parameters
    ----------
    log : logging.Logger; optional.
        Logger object used to write the text. If not provided, the logger for
        `energysort.utils` will be used.
    level : str; optional.
        Logging level to use. By default, 'debug' will be used.
    header : str; optional.
        Text to output before usage information.
    device : torch.device; optional.
        Device used for sorting. GPU memory is only reported for CUDA devices.

    """

    if log is None:
        log = logger
    if level is None:
        level = 'debug'
    log_fn = getattr(log, level)
    if header is not None:
        log_fn(header)

    rss = psutil.Process().memory_info().rss / 2**30
    memory = psutil.virtual_memory()
    log_fn(f"Process memory: {rss:8.2f} GB, "
           f"{memory.available / 2**30:.2f} of {memory.total / 2**30:.2f} GB available")

    if device is not None and device.type == 'cuda':
        log_fn(f"GPU allocated:  {torch.cuda.memory_allocated(device) / 2**30:8.2f} GB, "
               f"max {torch.cuda.max_memory_allocated(device) / 2**30:.2f} GB")




def log_sorting_summary(results, runtime, log=None, level=None):
    """Log a table of spikes and clusters per electrode after sorting.

    Parameters
    ----------
    results : list of dict
        Per-electrode results as returned by `energysort.run_sort`.
    runtime : float
        Total sorting time in seconds.
    log : logging.Logger; optional.
        Logger object used to write the text. If not provided, the logger for
        `energysort.utils` will be used.
    level : str; optional.
        Logging level to use. By default, 'debug' will be used.

    """

    if log is None:
        log = logger
    if level is None:
        level = 'debug'
    log_fn = getattr(log, level)

    log_fn(' ')
    log_fn('*'*56)
    log_fn('Sorting summary')
    log_fn('-'*56)
    log_fn(f"{'electrode':>9}{'spikes':>10}{'kept':>10}{'initial':>9}"
           f"{'cutoff':>9}{'final':>9}")
    for i, r in enumerate(results):
        log_fn(f"{i:>9}{r['kept'].size:>10}{r['kept'].sum():>10}"
               f"{r['n_init'].size:>9}{r['cutoff']:>9.3f}{r['n_clusters']:>9}")
    log_fn('-'*56)
    log_fn(f"{'Total number of clusters:':<30}"
           f"{sum(r['n_clusters'] for r in results):>25}")
    log_fn(f"{'Total runtime':<30}{runtime:>24.2f}s")
    log_fn('*'*56)


def settings_as_string(settings):
    """Format settings dictionary as copy-pasteable-to-code string."""
    p = pprint.pformat(settings, indent=4, sort_dicts=False)
    # Put curly braces on separate lines
    return "settings = " + p[0] + '\n ' + p[1:-1] + '\n' + p[-1]
