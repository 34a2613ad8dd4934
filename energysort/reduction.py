import logging
import warnings
logger = logging.getLogger(__name__)

import numpy as np
from scipy.stats import norm
from sklearn.decomposition import PCA

from energysort.errors import ConfigurationError, DegenerateInputError


def pca_window(n, m, p):
    """Gaussian-shaped weighting window of `n` samples with mean `m`.

    The standard deviation is chosen so that a fraction `p` of the area under
    the curve is reached by the nth sample. Sample coordinates run from 1 to
    `n`, so `m` is in the same units as `prethr`. The window is normalised to
    sum to `n`.

    If `p` is zero then a vector of ones is returned, and if `n` is zero
    then an empty vector. Otherwise `p` must lie in (0.5, 1), since at or
    below 0.5 the last sample does not lie after the mean.

    """
    if not p:
        return np.ones(n)
    elif not n:
        return np.zeros(0)

    if not 0.5 < p < 1:
        raise ConfigurationError(
            f'Window probability must be zero or in (0.5, 1), got {p}'
            )
    if m >= n:
        raise ConfigurationError(
            f'Window mean {m} must be less than the window length {n}'
            )

    s = (n - m) / norm.ppf(p)
    w = norm.pdf(np.arange(1, n + 1), m, s)
    w = w / w.sum() * n

    return w


def n_components(explained, percvar):
    """Smallest number of components whose cumulative variance exceeds `percvar`.

    `explained` holds the percentage of variance explained by each component
    in descending order. If rounding keeps every prefix at or below
    `percvar`, all components are kept.

    """
    above = np.flatnonzero(percvar < np.cumsum(explained))
    if above.size == 0:
        return len(explained)
    return int(above[0]) + 1


def reduce(percvar, waveforms):
    """Principal components of each waveform, enough to explain `percvar` %.

    Parameters
    ----------
    percvar : float
        Minimum percentage of variance to be captured by the returned
        components.
    waveforms : np.ndarray
        S x M matrix of M waveforms with S samples each.

    Returns
    -------
    components : np.ndarray
        N x M matrix, the first N components of each waveform. Waveforms are
        projected onto the principal axes without removing the mean.

    Raises
    ------
    DegenerateInputError
        If there are fewer than two waveforms, any value is non-finite, or the
        waveforms have no variance.

    """
    w = np.asarray(waveforms, dtype=np.float64)
    if w.ndim != 2 or w.shape[1] < 2 or w.shape[0] < 1:
        raise DegenerateInputError(
            f'PCA needs at least 2 waveforms with at least 1 sample, got shape {w.shape}'
            )
    if not np.isfinite(w).all():
        raise DegenerateInputError('Waveforms contain non-finite values')
    if w.var(axis=1).sum() == 0:
        raise DegenerateInputError('Waveforms have zero variance')

    # Collinear waveforms leave trailing components with zero variance,
    # which is expected here.
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', category=RuntimeWarning)
        model = PCA(svd_solver='full').fit(w.T)

    explained = 100 * model.explained_variance_ratio_
    n = n_components(explained, percvar)
    logger.debug(f'Keeping {n} of {len(explained)} components, '
                 f'{explained[:n].sum():.2f}% variance explained')

    coef = model.components_[:n]
    return (coef @ w).astype(np.float32)
