import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
import logging
import platform
logger = logging.getLogger(__name__)

import numpy as np
import torch
from tqdm import tqdm

import energysort
from energysort import alignment, reduction, clustering, energy, cutoff, hierarchical
from energysort.errors import SizeMismatchError
from energysort.parameters import check_settings, compare_settings
from energysort.utils import (
    log_performance, log_sorting_summary, settings_as_string
    )


def run_sort(waveforms, thresholds, settings=None, results_dir=None,
             device=None, n_workers=1, progress_bar=True,
             verbose_console=False):
    """Run the automated spike sorting pipeline on every electrode.

    Parameters
    ----------
    waveforms : list of np.ndarray
        One S x N integer waveform matrix per electrode, samples along rows
        and spikes across columns.
    thresholds : array-like
        Threshold of each electrode. Only the sign is used, to decide whether
        waveform peaks are maxima (positive) or minima.
    settings : dict; optional.
        Configurable parameters, see `energysort/parameters.py` for a full
        list. Missing keys are set to their defaults.
    results_dir : str or Path; optional.
        If given, a debug-level log file `energysort.log` is written here.
    device : torch.device; optional.
        CPU or GPU device to use for PyTorch calculations. By default, PyTorch
        will use the first detected GPU. If no GPUs are detected, CPU will be
        used.
    n_workers : int; default=1.
        Number of electrodes sorted concurrently.
    progress_bar : bool; default=True.
        If True, show a tqdm progress bar over electrodes.
    verbose_console : bool; default=False.
        If True, set logging level for console output to `DEBUG` instead
        of `INFO`.

    Raises
    ------
    SizeMismatchError
        If the number of waveform matrices and thresholds differ.
    ConfigurationError
        If a setting is unrecognized or out of range.

    Returns
    -------
    results : list of dict
        One dictionary per electrode, see `sort_electrode`.

    """

    if len(waveforms) != len(thresholds):
        raise SizeMismatchError(
            f'Got {len(waveforms)} waveform matrices but {len(thresholds)} thresholds'
            )
    settings = check_settings(settings)
    setup_logger(results_dir, verbose_console=verbose_console)

    try:
        tic0 = time.time()
        logger.info(f"energysort version {energysort.__version__}")
        logger.info(f"Python version {platform.python_version()}")
        logger.info('-'*40)

        if device is None:
            if torch.cuda.is_available():
                logger.info('Using GPU for PyTorch computations. '
                            'Specify `device` to change this.')
                device = torch.device('cuda')
            else:
                logger.info('Using CPU for PyTorch computations. '
                            'Specify `device` to change this.')
                device = torch.device('cpu')

        modified, _ = compare_settings(settings)
        logger.info(f'Non-default settings: {modified}')
        logger.debug(f"\n\n{settings_as_string(settings)}\n")
        log_performance(logger, 'info', 'Resource usage before sorting', device)

        # Independent random streams so that electrodes can be sorted in any
        # order or concurrently with reproducible results.
        seeds = np.random.SeedSequence(settings['cluster_seed']).spawn(len(waveforms))
        rngs = [np.random.default_rng(s) for s in seeds]

        nelec = len(waveforms)
        logger.info(f'Sorting {nelec} electrodes')
        results = [None] * nelec
        if n_workers > 1:
            with ThreadPoolExecutor(max_workers=n_workers) as exe:
                futures = {
                    exe.submit(sort_electrode, waveforms[i], thresholds[i],
                               settings, rngs[i], device): i
                    for i in range(nelec)
                    }
                for f in tqdm(as_completed(futures), total=nelec,
                              disable=not progress_bar):
                    results[futures[f]] = f.result()
        else:
            for i in tqdm(range(nelec), disable=not progress_bar):
                results[i] = sort_electrode(
                    waveforms[i], thresholds[i], settings, rngs[i], device
                    )

        log_sorting_summary(results, time.time() - tic0, log=logger, level='info')
        log_performance(logger, 'info', 'Resource usage after sorting', device)

    except Exception:
        # This makes sure the full traceback is written to log file.
        logger.exception('Encountered error in `run_sort`:')
        raise

    finally:
        close_logger()

    return results


def sort_electrode(waveforms, threshold, settings, rng=None, device=None):
    """Sort the spikes of a single electrode.

    Parameters
    ----------
    waveforms : np.ndarray
        S x N integer waveform matrix.
    threshold : float
        Electrode threshold, its sign selects peak maxima or minima.
    settings : dict
        Validated settings, see `energysort.parameters.check_settings`.
    rng : np.random.Generator or int; optional.
        Random source for initial clustering and cutoff estimation.
    device : torch.device; optional.
        Device for spike to centre distances. CPU if not given.

    Returns
    -------
    result : dict
        With keys:
        'kept' : boolean mask of spikes below the noise threshold.
        'n_init', 'c_init', 'd0' : initial clustering of the kept spikes.
        'E_init' : initial raw interface-energy matrix.
        'cutoff' : connection strength cutoff used for merging.
        'n', 'c', 'E', 'mergers' : state after automated merging, using the
            initial cluster ids.
        'clustmap' : uint8 map from initial cluster id to final id, zero for
            clusters that were merged away.
        'labels' : uint8 final cluster of every spike, 1 to n_clusters, or
            zero for discarded spikes.
        'n_clusters' : number of final clusters.
        'runtime' : seconds spent on this electrode.

    """

    tic = time.time()
    rng = np.random.default_rng(rng)
    w = np.asarray(waveforms)
    if w.ndim != 2:
        raise SizeMismatchError(
            f'waveforms must be a 2D samples x spikes matrix, got shape {w.shape}'
            )

    kept = alignment.discard_noise(settings, w)
    # PCA needs at least two spikes even if minspk allows fewer.
    if kept.sum() < max(settings['minspk'], 2):
        logger.warning(f'Only {kept.sum()} spikes after noise removal, fewer '
                       f"than minspk={settings['minspk']}; electrode not sorted.")
        return _unsorted(kept, tic)

    aligned = alignment.align_spikes(settings, threshold, w[:, kept])
    aligned = alignment.zero_noise(settings, aligned)
    logger.debug(f'Alignment took {time.time() - tic:.2f}s')

    tic1 = time.time()
    p = settings['pcaprob'] if settings['pcawin'] else 0
    window = reduction.pca_window(aligned.shape[0], settings['prethr'], p)
    S = reduction.reduce(settings['percvar'], window[:, np.newaxis] * aligned)
    logger.debug(f'Dimensionality reduction took {time.time() - tic1:.2f}s')

    tic1 = time.time()
    n0, c0, d0 = clustering.cluster_spikes(settings, S, rng=rng, device=device)
    E0 = energy.energy_matrix(S, n0, c0, d0)
    logger.debug(f'Initial clustering took {time.time() - tic1:.2f}s')

    tic1 = time.time()
    if settings['defcut'] > 0:
        cut = settings['defcut']
    else:
        cut = cutoff.estimate_cutoff(settings, E0, n0, rng=rng)

    n, c, E, mergers = hierarchical.merge(n0, c0, E0, cut)
    clustmap, labels = final_labels(n, c, kept)
    logger.debug(f'Merging took {time.time() - tic1:.2f}s')

    result = {
        'kept': kept, 'n_init': n0, 'c_init': c0, 'd0': d0, 'E_init': E0,
        'cutoff': cut, 'n': n, 'c': c, 'E': E, 'mergers': mergers,
        'clustmap': clustmap, 'labels': labels,
        'n_clusters': int((n > 0).sum()), 'runtime': time.time() - tic
    }
    logger.debug(f"{w.shape[1]} spikes, {n0.size} initial clusters, "
                 f"cutoff {cut:.4f}, {result['n_clusters']} final clusters "
                 f"in {result['runtime']:.2f}s")

    return result


def final_labels(n, c, kept):
    """Relabel surviving clusters to 1..C and spread labels over all spikes."""
    survivors = np.flatnonzero(n > 0)
    clustmap = np.zeros(n.size, np.uint8)
    clustmap[survivors] = np.arange(1, survivors.size + 1)
    labels = np.zeros(kept.size, np.uint8)
    labels[kept] = clustmap[c]
    return clustmap, labels


def _unsorted(kept, tic):
    empty = np.zeros(0, 'int64')
    return {
        'kept': kept, 'n_init': empty, 'c_init': np.zeros(0, np.uint8),
        'd0': np.nan, 'E_init': np.zeros((0, 0)), 'cutoff': np.nan,
        'n': empty, 'c': np.zeros(0, np.uint8), 'E': np.zeros((0, 0)),
        'mergers': np.zeros((0, 2), np.uint8), 'clustmap': np.zeros(0, np.uint8),
        'labels': np.zeros(kept.size, np.uint8), 'n_clusters': 0,
        'runtime': time.time() - tic
    }


def setup_logger(results_dir=None, verbose_console=False):
    # Get root logger for energysort application
    es_log = logging.getLogger('energysort')
    es_log.setLevel(logging.DEBUG)

    text_format = '%(asctime)s %(name)-12s %(levelname)-8s %(message)s'
    file_formatter = logging.Formatter(text_format)

    # Skip this if the handlers were already added, like when running multiple
    # times in a single session.
    if not es_log.handlers:
        # Add console handler at info level with shorter messages,
        # unless verbose is requested.
        console = logging.StreamHandler()
        if verbose_console:
            console.setLevel(logging.DEBUG)
            console.setFormatter(file_formatter)
        else:
            console.setLevel(logging.INFO)
            console_formatter = logging.Formatter('%(name)-12s: %(message)s')
            console.setFormatter(console_formatter)
        es_log.addHandler(console)

    # Add file handler at debug level, include timestamps and logging level
    # in text output. Always added since log file might change locations.
    if results_dir is not None:
        results_dir = Path(results_dir)
        results_dir.mkdir(exist_ok=True, parents=True)
        file = logging.FileHandler(results_dir / 'energysort.log', mode='w')
        file.setLevel(logging.DEBUG)
        file.setFormatter(file_formatter)
        es_log.addHandler(file)


def close_logger():
    es_log = logging.getLogger('energysort')
    for handler in es_log.handlers.copy():
        es_log.removeHandler(handler)
        handler.close()
