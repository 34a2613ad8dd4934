import logging
import warnings
logger = logging.getLogger(__name__)

import numpy as np
from scipy.stats import bootstrap

from energysort.energy import connection_strength


def percentile_statistic(ptile):
    # 'hazen' matches the percentile definition used by Matlab's prctile.
    def statistic(x, axis=-1):
        return np.percentile(x, ptile, axis=axis, method='hazen')
    return statistic


def estimate_cutoff(settings, E, n, rng=None, batch=100):
    """Connection strength cutoff for automated cluster merging.

    Returns the upper bound of the bias-corrected and accelerated bootstrap
    confidence interval of the `ptile` percentile of connection strengths
    between different clusters. If there are two or fewer clusters, zero is
    returned.

    Parameters
    ----------
    settings : dict
        Needs `nboot`, `alpha` and `ptile`. See `energysort.parameters`.
    E : np.ndarray
        Raw interface-energy matrix.
    n : np.ndarray
        Number of spikes per cluster.
    rng : np.random.Generator or int; optional.
        Random source for bootstrap resampling.
    batch : int; default=100.
        Number of resamples evaluated at once, limits memory use.

    Returns
    -------
    cut : float

    Notes
    -----
    If the interval cannot be computed, for example because every
    connection strength is identical, or its upper bound falls below the
    percentile of the data itself, that percentile is returned instead.

    """
    n = np.asarray(n)
    live = n > 0
    if live.sum() <= 2:
        return 0.0

    J = connection_strength(E, n)
    x = J[np.triu(np.outer(live, live), 1)]
    statistic = percentile_statistic(settings['ptile'])
    point = float(statistic(x))

    rng = np.random.default_rng(rng)
    with warnings.catch_warnings():
        # Degenerate resamples give NaN intervals, handled below.
        warnings.simplefilter('ignore', category=RuntimeWarning)
        res = bootstrap(
            (x,), statistic, n_resamples=settings['nboot'], batch=batch,
            vectorized=True, confidence_level=1 - settings['alpha'],
            method='BCa', random_state=rng
            )

    cut = float(res.confidence_interval.high)
    if not np.isfinite(cut) or cut < point:
        logger.debug(f'Bootstrap upper bound {cut} replaced by percentile {point}')
        cut = point
    logger.debug(f'Connection strength cutoff {cut:.4f} from {x.size} pairs')

    return cut
