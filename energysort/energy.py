import logging
logger = logging.getLogger(__name__)

import math

from numba import njit
import numpy as np
from scipy.sparse import issparse

from energysort.errors import SizeMismatchError, DegenerateInputError


@njit("float64[:,:](float64[:,:], int64[:], int64, float64)")
def pair_energies(X, labels, nclust, d0):
    '''Sum exp(-distance / d0) over all unordered pairs of different spikes.

    Each pair is added to the upper-triangular entry of its two clusters, so
    the diagonal holds within-cluster sums and the off-diagonal entries hold
    between-cluster sums.
    '''
    nspk, ncmp = X.shape
    E = np.zeros((nclust, nclust))
    for s in range(nspk - 1):
        a = labels[s]
        for t in range(s + 1, nspk):
            d = 0.0
            for k in range(ncmp):
                x = X[s, k] - X[t, k]
                d += x * x
            e = math.exp(-math.sqrt(d) / d0)
            b = labels[t]
            if a <= b:
                E[a, b] += e
            else:
                E[b, a] += e
    return E


def energy_matrix(components, n, c, d0):
    """Raw interface-energy matrix between every pair of initial clusters.

    Follows Fee et al. (1996) and the `ss_energy` recipe of UltraMegaSort2000.
    The matrix is left un-normalised so that it can be updated by addition
    when clusters are merged; see `connection_strength`.

    Parameters
    ----------
    components : np.ndarray
        ncmp x nspk matrix of spike components.
    n : np.ndarray
        Number of spikes in each of C clusters.
    c : np.ndarray
        Cluster id of each spike, 0 to C-1.
    d0 : float
        Scaling term returned by `energysort.clustering.cluster_spikes`.

    Returns
    -------
    E : np.ndarray
        C x C matrix. E[i, j] for i < j is the interface energy between
        clusters i and j, E[i, i] the energy within cluster i. Entries below
        the diagonal are zero.

    """
    X = np.ascontiguousarray(np.asarray(components, dtype=np.float64).T)
    n = np.asarray(n)
    c = np.asarray(c).astype(np.int64)

    if X.shape[0] != c.size:
        raise SizeMismatchError(
            f'Got {X.shape[0]} spike components but {c.size} cluster labels'
            )
    if c.size and (c.min() < 0 or c.max() >= n.size):
        raise SizeMismatchError(
            f'Cluster labels must be in the range 0 to {n.size - 1}'
            )
    if not np.array_equal(np.bincount(c, minlength=n.size), n):
        raise SizeMismatchError('Cluster sizes n do not match labels c')
    if not np.isfinite(d0) or d0 <= 0:
        raise DegenerateInputError(f'd0 must be finite and positive, got {d0}')
    if not np.isfinite(X).all():
        raise DegenerateInputError('Spike components contain non-finite values')

    E = pair_energies(X, c, n.size, float(d0))
    logger.debug(f'Energy matrix for {n.size} clusters, {c.size} spikes')

    return E


def connection_strength(E, n):
    """Connection strength between every pair of clusters.

    Interface energies are normalised by the number of spike pairs that
    contribute to them. The connection strength of clusters i < j is then
    twice their normalised interface energy over the sum of their normalised
    self energies. Zero denominators are treated as one.

    Parameters
    ----------
    E : np.ndarray
        C x C raw interface-energy matrix, see `energy_matrix`.
    n : np.ndarray
        Number of spikes in each cluster.

    Returns
    -------
    J : np.ndarray
        C x C matrix, defined for i < j and zero on and below the diagonal.

    """
    if issparse(E):
        E = E.toarray()
    E = np.asarray(E, dtype=np.float64)
    n = np.asarray(n, dtype=np.float64)
    if E.ndim != 2 or E.shape != (n.size, n.size):
        raise SizeMismatchError(
            f'Energy matrix of shape {E.shape} does not match {n.size} clusters'
            )

    npairs = np.outer(n, n)
    np.fill_diagonal(npairs, (n**2 - n) / 2)
    npairs[npairs == 0] = 1
    En = E / npairs

    self_energy = np.diag(En)
    denom = self_energy[:, np.newaxis] + self_energy[np.newaxis, :]
    denom[denom == 0] = 1
    J = np.triu(2 * En / denom, 1)

    return J
