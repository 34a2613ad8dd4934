import numpy as np
from scipy.interpolate import interp1d
from scipy.ndimage import gaussian_filter1d


def gaussian_clouds(rng, centers, n_per, scale=1.0):
    """Isotropic Gaussian clouds of spike components around `centers`.

    Parameters
    ----------
    rng : np.random.Generator or int
        Random source, passed through `np.random.default_rng`.
    centers : array-like
        K x ncmp matrix of cloud centres.
    n_per : int or array-like
        Number of spikes per cloud, either one value or one per cloud.
    scale : float; default=1.0.
        Standard deviation of every cloud along each dimension.

    Returns
    -------
    components : np.ndarray
        ncmp x N matrix, spikes ordered by cloud.
    truth : np.ndarray
        Length N vector with the cloud index of each spike.

    """
    rng = np.random.default_rng(rng)
    centers = np.atleast_2d(np.asarray(centers, dtype=np.float64))
    n_per = np.broadcast_to(np.asarray(n_per, dtype=int), (centers.shape[0],))

    truth = np.repeat(np.arange(centers.shape[0]), n_per)
    X = centers[truth] + scale * rng.standard_normal((truth.size, centers.shape[1]))

    return X.T, truth


def spike_template(n_samples, peak, amplitude, width=1.5):
    """Biphasic spike shape with extreme value `amplitude` at sample `peak`.

    The main phase is followed by a broader, smaller rebound of the opposite
    sign, like an extracellular action potential.

    """
    t = np.arange(n_samples, dtype=np.float64)
    main = np.exp(-0.5 * ((t - peak) / width)**2)
    rebound = np.exp(-0.5 * ((t - peak - 3*width) / (2*width))**2)
    return amplitude * (main - 0.3 * rebound)


def synthetic_waveforms(rng, templates, n_per, jitter=0.5, noise=5.0,
                        coef_int2uv=0.25, smooth=1.0):
    """Integer waveform snippets built from templates, as recorded by an ADC.

    Parameters
    ----------
    rng : np.random.Generator or int
        Random source, passed through `np.random.default_rng`.
    templates : array-like
        S x K matrix of K template waveforms in micro-volts, see
        `spike_template`.
    n_per : int or array-like
        Number of spikes per template, either one value or one per template.
    jitter : float; default=0.5.
        Each spike is shifted by a uniform random sub-sample offset in
        [-jitter, jitter] samples.
    noise : float; default=5.0.
        Standard deviation of the additive noise in micro-volts.
    coef_int2uv : float; default=0.25.
        Micro-volts per integer unit, used to convert to int16.
    smooth : float; default=1.0.
        Width in samples of the Gaussian filter applied to the noise. Zero
        gives white noise.

    Returns
    -------
    waveforms : np.ndarray
        S x N int16 matrix, spikes ordered by template.
    truth : np.ndarray
        Length N vector with the template index of each spike.

    """
    rng = np.random.default_rng(rng)
    templates = np.asarray(templates, dtype=np.float64)
    if templates.ndim == 1:
        templates = templates[:, np.newaxis]
    n_samples, ntemp = templates.shape
    n_per = np.broadcast_to(np.asarray(n_per, dtype=int), (ntemp,))

    truth = np.repeat(np.arange(ntemp), n_per)
    t = np.arange(n_samples)
    shift = rng.uniform(-jitter, jitter, size=truth.size)

    W = np.zeros((n_samples, truth.size))
    for k in range(ntemp):
        f = interp1d(t, templates[:, k], kind='cubic', bounds_error=False,
                     fill_value=0.0)
        ik = np.flatnonzero(truth == k)
        W[:, ik] = f(t[:, np.newaxis] - shift[ik])

    eps = rng.standard_normal(W.shape)
    if smooth > 0:
        eps = gaussian_filter1d(eps, smooth, axis=0)
        eps /= eps.std()
    W += noise * eps

    waveforms = np.round(W / coef_int2uv)
    info = np.iinfo(np.int16)
    waveforms = np.clip(waveforms, info.min, info.max).astype(np.int16)

    return waveforms, truth
