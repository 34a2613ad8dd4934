import logging
logger = logging.getLogger(__name__)

import numpy as np
import torch

from energysort.errors import (
    ConfigurationError, SizeMismatchError, DegenerateInputError
    )

# Cluster ids are stored as uint8.
MAX_CLUSTERS = np.iinfo(np.uint8).max


def mean_distance(S, rng, npairs=5000):
    """Estimate the mean distance between spikes from random pairs.

    Parameters
    ----------
    S : np.ndarray
        ncmp x nspk matrix of spike components.
    rng : np.random.Generator
        Source of the random spike pairs.
    npairs : int; default=5000.
        Number of pairs of different spikes to sample.

    Returns
    -------
    mdist : float
        Mean Euclidean distance over the sampled pairs.

    Notes
    -----
    Pairs that compare a spike with itself are dropped and redrawn. The number
    of redraw rounds is bounded by the number of spikes.

    """
    nspk = S.shape[1]
    if nspk < 2:
        raise DegenerateInputError(
            f'At least 2 spikes are needed to sample distances, got {nspk}'
            )

    d = np.zeros(npairs)
    ndist = 0
    max_rounds = 32 * nspk
    for _ in range(max_rounds):
        i = rng.integers(nspk, size=(2, npairs - ndist))
        i = i[:, i[0] != i[1]]
        nnew = i.shape[1]
        if nnew == 0:
            continue
        d[ndist : ndist+nnew] = np.sqrt(((S[:, i[0]] - S[:, i[1]])**2).sum(0))
        ndist += nnew
        if ndist == npairs:
            break
    else:
        raise DegenerateInputError(
            f'Only found {ndist} of {npairs} distinct spike pairs after '
            f'{max_rounds} rounds of sampling'
            )

    return d.mean()


def assign_nearest(Sg, cen, ci, device=torch.device('cpu')):
    """Distance of every spike to each live centre, and the nearest one."""
    cen_g = torch.from_numpy(cen[ci]).to(device)
    d = torch.cdist(Sg, cen_g, compute_mode='donot_use_mm_for_euclid_dist')
    d = d.cpu().numpy()
    c = ci[np.argmin(d, axis=1)]
    return d, c


def evict_small(d, c, n, ci, minspk):
    """Move spikes out of clusters with fewer than `minspk` spikes.

    Clusters are visited in id order. Each small cluster sends its spikes to
    their next-nearest cluster that has not itself been evicted, which may
    lift a later small cluster above `minspk`. `d`, `c` and `n` are modified
    in place.

    """
    for i in ci[n[ci] < minspk]:
        # May have received enough spikes from an earlier eviction.
        if n[i] >= minspk:
            continue
        s = np.flatnonzero(c == i)
        d[:, ci == i] = np.inf
        c[s] = ci[np.argmin(d[s], axis=1)]
        n[i] = 0
        n += np.bincount(c[s], minlength=n.size)


def cluster_spikes(settings, components, rng=None, device=None):
    """Over-cluster spikes by repeated bisection of cluster centres.

    Uses the initial clustering method of Fee et al. (1996) and Hill et al.
    (2011). Each bisection duplicates every cluster centre and perturbs both
    copies with random noise, then spikes are repeatedly assigned to the
    nearest centre and centres are moved to the mean of their spikes.

    Parameters
    ----------
    settings : dict
        Needs `bisecs`, `assign` and `minspk`. See `energysort.parameters`.
    components : np.ndarray
        ncmp x nspk matrix of spike components.
    rng : np.random.Generator or int; optional.
        Random source for centre perturbation and distance sampling. Passed
        through `np.random.default_rng`, so a seed can be given instead.
    device : torch.device; optional.
        Device used for spike to centre distances. CPU if not given.

    Returns
    -------
    n : np.ndarray
        int64 vector with the number of spikes in each of C clusters.
    c : np.ndarray
        uint8 vector with the cluster id, 0 to C-1, of each spike.
    d0 : float
        Scaling term for the interface energy, the residual within-cluster
        spread of the components divided by 10.

    Raises
    ------
    ConfigurationError
        If `bisecs`, `assign` or `minspk` is out of range, there are fewer
        than `minspk` spikes, or `bisecs` can produce more clusters than fit
        into uint8 ids.

    """
    S = np.asarray(components, dtype=np.float64)
    if S.ndim != 2:
        raise SizeMismatchError(
            f'components must be a 2D components x spikes matrix, got shape {S.shape}'
            )
    ncmp, nspk = S.shape
    bisecs, minspk = settings['bisecs'], settings['minspk']

    if bisecs < 0 or settings['assign'] < 1 or minspk < 1:
        raise ConfigurationError(
            f"Need bisecs >= 0, assign >= 1 and minspk >= 1, got bisecs={bisecs}, "
            f"assign={settings['assign']}, minspk={minspk}"
            )
    cmax = 2 ** bisecs

    if nspk < minspk:
        raise ConfigurationError(
            f'At least minspk={minspk} spikes are needed, got {nspk}'
            )
    elif cmax > MAX_CLUSTERS:
        raise ConfigurationError(
            f'Up to {cmax} clusters from {bisecs} bisections but at most '
            f'{MAX_CLUSTERS} clusters are supported'
            )
    if not np.isfinite(S).all():
        raise DegenerateInputError('Spike components contain non-finite values')

    rng = np.random.default_rng(rng)
    if device is None:
        device = torch.device('cpu')

    # Scale of randomness added to new cluster centres, heuristic factor
    # from UltraMegaSort2000.
    crnd = mean_distance(S, rng) / 100 / ncmp

    n = np.zeros(cmax, 'int64')
    c = np.zeros(nspk, 'int64')
    cen = np.zeros((cmax, ncmp))
    live = np.zeros(cmax, bool)

    n[0] = nspk
    cen[0] = S.mean(1)
    live[0] = True

    Sg = torch.from_numpy(np.ascontiguousarray(S.T)).to(device)

    for b in range(bisecs):
        ci = np.flatnonzero(live)
        cnum = 2 * ci.size
        cen[:cnum] = np.tile(cen[ci], (2, 1))
        cen[:cnum] += crnd * rng.standard_normal((cnum, ncmp))
        live[:] = False
        live[:cnum] = True

        oldc = None
        for k in range(settings['assign']):
            ci = np.flatnonzero(live)
            d, c = assign_nearest(Sg, cen, ci, device=device)
            n = np.bincount(c, minlength=cmax)
            evict_small(d, c, n, ci, minspk)
            live[ci[n[ci] == 0]] = False

            if oldc is not None and np.array_equal(oldc, c):
                break
            oldc = c.copy()

            for i in np.flatnonzero(live):
                cen[i] = S[:, c == i].mean(1)

        logger.debug(f'Bisection {b+1}: {live.sum()} clusters after '
                     f'{k+1} assignments')

    # Relabel live clusters to a dense range.
    ci = np.flatnonzero(live)
    relabel = np.zeros(cmax, 'int64')
    relabel[ci] = np.arange(ci.size)
    c = relabel[c]
    n = n[ci]
    cen = cen[ci]

    # Scaling term used by UltraMegaSort2000, W = T - B
    T = np.atleast_2d(np.cov(S))
    B = np.atleast_2d(np.cov(cen[c].T))
    d0 = np.sqrt(max(np.trace(T - B), 0)) / 10

    logger.debug(f'{ci.size} initial clusters from {nspk} spikes, d0 = {d0:.4f}')

    return n, c.astype(np.uint8), float(d0)
