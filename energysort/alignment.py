from concurrent.futures import ThreadPoolExecutor
import logging
logger = logging.getLogger(__name__)

import numpy as np
from scipy.interpolate import CubicSpline

from energysort.errors import (
    ConfigurationError, SizeMismatchError, DegenerateInputError
    )


def peak_window(settings, n_samples):
    """Sample indices searched for the waveform peak after threshold crossing.

    The window starts on the last sample before the threshold crossing and
    spans `round(peakwin * fs)` further samples.

    """
    jit = int(round(settings['peakwin'] * settings['fs']))
    start = settings['prethr'] - 1
    comwin = np.asarray(settings['comwin'], dtype=int)

    if start < 0:
        raise ConfigurationError(f"prethr must be at least 1, got {settings['prethr']}")
    if comwin.size == 0:
        raise ConfigurationError('comwin must contain at least one offset')
    if start + comwin.min() < 0 or start + jit + comwin.max() > n_samples - 1:
        raise ConfigurationError(
            f'Peak window of {jit + 1} samples starting at sample {start}, with '
            f'centre-of-mass offsets {comwin.tolist()}, does not fit into '
            f'waveforms of {n_samples} samples.'
            )

    return jit, np.arange(start, start + jit + 1)


def find_peaks(w, threshold, window):
    """Absolute sample index of each spike's peak within `window`."""
    if threshold > 0:
        ps = np.argmax(w[window], axis=0)
    else:
        ps = np.argmin(w[window], axis=0)
    return ps + window[0]


def centre_of_mass(w, ps, comwin):
    """Sub-sample offset of the true peak relative to peak sample `ps`.

    Computed as the centre of mass of the samples at `ps + comwin`. A flat
    window with zero mass gives an offset of zero, and offsets are clipped to
    the span of `comwin`.

    """
    comwin = np.asarray(comwin)
    v = w[ps[np.newaxis, :] + comwin[:, np.newaxis], np.arange(w.shape[1])]
    v = v.astype(np.float64)
    mass = v.sum(axis=0)
    moment = comwin @ v
    c = np.zeros_like(mass)
    nz = mass != 0
    c[nz] = moment[nz] / mass[nz]
    return np.clip(c, comwin.min(), comwin.max())


def _align_chunk(w, h, c, na):
    # Evaluate each spike's not-a-knot cubic spline at its own shifted
    # coordinates, using the piecewise polynomial coefficients directly.
    n_samples, nspk = w.shape
    spline = CubicSpline(np.arange(n_samples), w, axis=0)
    xq = h[np.newaxis, :] + np.arange(na)[:, np.newaxis] + c[np.newaxis, :]
    k = np.clip(np.floor(xq).astype(int), 0, n_samples - 2)
    dx = xq - k
    cols = np.broadcast_to(np.arange(nspk), xq.shape)
    coef = spline.c[:, k, cols]
    a = ((coef[0]*dx + coef[1])*dx + coef[2])*dx + coef[3]
    return a.astype(np.float32)


def align_spikes(settings, threshold, waveforms, n_workers=1, chunk_size=5000):
    """Convert waveforms to micro-volts and align them to their peaks.

    Parameters
    ----------
    settings : dict
        Needs `prethr`, `peakwin`, `fs`, `comwin` and `coef_int2uv`. See
        `energysort.parameters`.
    threshold : float
        Electrode threshold. Peaks are maxima if positive, minima otherwise.
    waveforms : np.ndarray
        S x N matrix of integer waveforms, samples along rows and spikes
        across columns.
    n_workers : int; default=1.
        Number of threads used to interpolate chunks of spikes.
    chunk_size : int; default=5000.
        Number of spikes interpolated by each task.

    Returns
    -------
    aligned : np.ndarray
        (S - j) x N float32 matrix of peak-aligned waveforms in micro-volts,
        where j is `round(peakwin * fs)`.

    Raises
    ------
    SizeMismatchError
        If `waveforms` is not 2-dimensional.
    ConfigurationError
        If the peak search window does not fit into the waveforms.

    """
    w = np.asarray(waveforms)
    if w.ndim != 2:
        raise SizeMismatchError(
            f'waveforms must be a 2D samples x spikes matrix, got shape {w.shape}'
            )

    n_samples, nspk = w.shape
    jit = int(round(settings['peakwin'] * settings['fs']))
    if w.size == 0:
        return np.zeros((max(n_samples - jit, 0), nspk), dtype=np.float32)

    if n_samples < 2:
        raise DegenerateInputError(
            f'waveforms need at least 2 samples for interpolation, got {n_samples}'
            )
    jit, window = peak_window(settings, n_samples)
    comwin = np.asarray(settings['comwin'], dtype=int)

    ps = find_peaks(w, threshold, window)
    w = w.astype(np.float32) * np.float32(settings['coef_int2uv'])
    c = centre_of_mass(w, ps, comwin)

    na = n_samples - jit
    h = ps - window[0]

    chunks = [slice(i, min(i + chunk_size, nspk)) for i in range(0, nspk, chunk_size)]
    if n_workers > 1 and len(chunks) > 1:
        with ThreadPoolExecutor(max_workers=n_workers) as exe:
            parts = list(exe.map(
                lambda s: _align_chunk(w[:, s], h[s], c[s], na), chunks
                ))
    else:
        parts = [_align_chunk(w[:, s], h[s], c[s], na) for s in chunks]

    aligned = np.concatenate(parts, axis=1)
    logger.debug(f'Aligned {nspk} spikes, {na} samples each, '
                 f'mean sub-sample offset {c.mean():.3f}')

    return aligned


def discard_noise(settings, waveforms):
    """Boolean mask of raw waveforms whose absolute peak is below `noise_thr_auv`.

    `noise_thr_auv` is given in micro-volts and is compared against the raw
    integer values after scaling by `coef_int2uv`.

    """
    w = np.asarray(waveforms)
    keep = np.ones(w.shape[1] if w.ndim == 2 else 0, dtype=bool)
    if np.isinf(settings['noise_thr_auv']) or w.size == 0:
        return keep
    thr = settings['noise_thr_auv'] / settings['coef_int2uv']
    keep = np.abs(w.astype(np.float64)).max(axis=0) < thr
    return keep


def zero_noise(settings, aligned):
    """Zero aligned waveforms that reach `noise_thr_auv` after interpolation.

    High-frequency noise can make the spline interpolation overshoot, giving
    new high-amplitude waveforms that were not pruned from the raw data.

    """
    if np.isinf(settings['noise_thr_auv']) or aligned.size == 0:
        return aligned
    j = np.abs(aligned).max(axis=0) >= settings['noise_thr_auv']
    if j.any():
        logger.debug(f'Zeroing {j.sum()} aligned waveforms above noise threshold')
        aligned = aligned.copy()
        aligned[:, j] = 0
    return aligned
