import numpy as np

from energysort.errors import ConfigurationError


# Format for parameter specification:
# parameter: {
#     'type': callable datatype for this parameter, like int or float.
#     'min': minimum value allowed (inclusive).
#     'max': maximum value allowed (inclusive).
#     'exclude': list of individual values to exclude from allowed range.
#     'default': default value used by the API
#     'step': which step of the pipeline the parameter is used in, from:
#             ['alignment', 'reduction', 'clustering', 'merging']
#     'description': Explanation of parameter's use.
# }

MAIN_PARAMETERS = {
    'fs': {
        'type': float, 'min': 0, 'max': np.inf, 'exclude': [0],
        'default': 30000, 'step': 'alignment',
        'description':
            """
            Sampling rate of the spike waveform snippets, in Hertz.
            """
    },

    'coef_int2uv': {
        'type': float, 'min': 0, 'max': np.inf, 'exclude': [0],
        'default': 0.25, 'step': 'alignment',
        'description':
            """
            Unit conversion coefficient. Raw waveforms are integer ADC values;
            they are converted to floating point and multiplied by this
            coefficient to put them into micro-volts.
            """
    },

    'percvar': {
        'type': float, 'min': 0, 'max': 100, 'exclude': [100],
        'default': 95, 'step': 'reduction',
        'description':
            """
            Minimum percentage of waveform variance to be explained by the
            principal components. The first N components are kept when it
            takes N components to explain more than this much variance.
            """
    },

    'bisecs': {
        'type': int, 'min': 0, 'max': 7, 'exclude': [],
        'default': 6, 'step': 'clustering',
        'description':
            """
            Number of cluster bisections performed during initial clustering.
            Up to 2**bisecs clusters are produced, so at most 7 bisections fit
            into 8-bit cluster ids.
            """
    },

    'minspk': {
        'type': int, 'min': 1, 'max': np.inf, 'exclude': [],
        'default': 10, 'step': 'clustering',
        'description':
            """
            Minimum number of spikes required in each initial cluster. Spikes
            of smaller clusters are re-assigned to the next-nearest cluster.
            Electrodes with fewer spikes than this are not sorted.
            """
    },

    'defcut': {
        'type': float, 'min': 0, 'max': np.inf, 'exclude': [],
        'default': 0, 'step': 'merging',
        'description':
            """
            Fixed connection-strength cutoff used to stop automated cluster
            merging on every electrode. If zero, the cutoff is estimated for
            each electrode separately with `nboot`, `alpha` and `ptile`.
            """
    },
}


EXTRA_PARAMETERS = {
    ### ALIGNMENT
    'noise_thr_auv': {
        'type': float, 'min': 0, 'max': np.inf, 'exclude': [0],
        'default': 750, 'step': 'alignment',
        'description':
            """
            Noise detection threshold, in absolute micro-volts. Any waveform
            with an absolute peak that reaches this value is discarded before
            sorting, and aligned waveforms that reach it after interpolation
            are zeroed. Set to inf to keep all spikes.
            """
    },

    'prethr': {
        'type': int, 'min': 1, 'max': np.inf, 'exclude': [],
        'default': 12, 'step': 'alignment',
        'description':
            """
            Number of samples taken prior to the threshold crossing.
            """
    },

    'peakwin': {
        'type': float, 'min': 0, 'max': np.inf, 'exclude': [],
        'default': 2e-4, 'step': 'alignment',
        'description':
            """
            Duration of the window following the threshold crossing in which
            to look for the waveform peak, in seconds.
            """
    },

    'comwin': {
        'type': list, 'min': None, 'max': None, 'exclude': [],
        'default': [-2, -1, 0, 1, 2], 'step': 'alignment',
        'description':
            """
            Centre-of-mass window. Sample offsets relative to the peak sample
            used to estimate the sub-sample position of the true peak.
            """
    },

    ### REDUCTION
    'pcawin': {
        'type': bool, 'min': None, 'max': None, 'exclude': [],
        'default': True, 'step': 'reduction',
        'description':
            """
            If True, apply a Gaussian shaped window centred on the aligned
            peak to every waveform before principal component analysis. The
            weights sum to the number of samples in a waveform.
            """
    },

    'pcaprob': {
        'type': float, 'min': 0.5, 'max': 1, 'exclude': [0.5, 1],
        'default': 0.841, 'step': 'reduction',
        'description':
            """
            Fraction of the area under the Gaussian window that is reached by
            the last waveform sample. The default is roughly one standard
            deviation. Must be above 0.5 so that the last sample lies after
            the window mean; use `pcawin` to turn the window off.
            """
    },

    ### CLUSTERING
    'assign': {
        'type': int, 'min': 1, 'max': np.inf, 'exclude': [],
        'default': 5, 'step': 'clustering',
        'description':
            """
            Maximum number of times spikes are assigned to cluster centres
            following a bisection. Centres are recomputed after each
            assignment. Stops early once assignments no longer change.
            """
    },

    'cluster_seed': {
        'type': int, 'min': 0, 'max': np.inf, 'exclude': [],
        'default': 5, 'step': 'clustering',
        'description':
            """
            Seed for the random generators used by initial clustering and
            cutoff estimation. Each electrode gets an independent child
            generator spawned from this seed.
            """
    },

    ### MERGING
    'nboot': {
        'type': int, 'min': 2, 'max': np.inf, 'exclude': [],
        'default': 2000, 'step': 'merging',
        'description':
            """
            Number of bootstrap samples used to estimate the
            connection-strength cutoff.
            """
    },

    'alpha': {
        'type': float, 'min': 0, 'max': 1, 'exclude': [0, 1],
        'default': 0.01, 'step': 'merging',
        'description':
            """
            Alpha level of the bootstrap confidence interval used to estimate
            the connection-strength cutoff.
            """
    },

    'ptile': {
        'type': float, 'min': 0, 'max': 100, 'exclude': [],
        'default': 85, 'step': 'merging',
        'description':
            """
            Percentile of connection strengths taken from each bootstrap
            sample. The upper confidence bound of this percentile is the
            cutoff.
            """
    },
}

# Add default values to descriptions
for k, v in {**MAIN_PARAMETERS, **EXTRA_PARAMETERS}.items():
    s = f"""
        Default value: {str(v["default"])}
        Min, max: ({str(v['min'])}, {str(v['max'])})
        Type: {v['type'].__name__}
        """
    v['description'] += s

main_defaults = {k: v['default'] for k, v in MAIN_PARAMETERS.items()}
extra_defaults = {k: v['default'] for k, v in EXTRA_PARAMETERS.items()}
# In the format expected by `run_sort`
DEFAULT_SETTINGS = {**main_defaults, **extra_defaults}
PARAMETERS = {**MAIN_PARAMETERS, **EXTRA_PARAMETERS}


def compare_settings(settings):
    """Find settings values that differ from the defaults.

    Parameters
    ----------
    settings : dict
        Formatted the same as `DEFAULT_SETTINGS`.

    Returns
    -------
    modified_settings : dict
        Formatted as above, but only contains keys with values that differ
        from the defaults.
    extra_keys : list
        List of keys that appear in `settings` but not `DEFAULT_SETTINGS`.
        These keys are *not* included in `modified_settings`.

    """
    modified_settings = {}
    extra_keys = []

    for k, v in settings.items():
        if k in DEFAULT_SETTINGS:
            if v != DEFAULT_SETTINGS[k]:
                modified_settings[k] = v
        else:
            extra_keys.append(k)
    return modified_settings, extra_keys


def check_settings(settings=None):
    """Fill in defaults and validate every value against its specification.

    Parameters
    ----------
    settings : dict; optional.
        User settings. Missing keys are taken from `DEFAULT_SETTINGS`.

    Returns
    -------
    settings : dict
        A new dictionary with all recognized keys.

    Raises
    ------
    ConfigurationError
        If a key is not recognized, or a value has the wrong type, is out of
        range or is explicitly excluded.

    """
    settings = {} if settings is None else settings
    _, unrecognized = compare_settings(settings)
    if len(unrecognized) > 0:
        raise ConfigurationError(f'Unrecognized settings: {unrecognized}')

    settings = {**DEFAULT_SETTINGS, **settings}
    for k, v in settings.items():
        param = PARAMETERS[k]
        if param['type'] is list:
            v = np.atleast_1d(np.asarray(v))
            if v.size == 0 or not np.issubdtype(v.dtype, np.integer):
                raise ConfigurationError(
                    f'`{k}` must be a non-empty list of integers, got {v}'
                    )
            settings[k] = v.astype(int).tolist()
            continue

        try:
            v = param['type'](v)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"`{k}` must be of type {param['type'].__name__}, got {v!r}"
                )
        if param['type'] is not bool:
            if v < param['min'] or v > param['max'] or v in param['exclude']:
                raise ConfigurationError(
                    f"`{k}` = {v} is outside of the allowed range "
                    f"({param['min']}, {param['max']}), excluding {param['exclude']}"
                    )
        settings[k] = v

    return settings
