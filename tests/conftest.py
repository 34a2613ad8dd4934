import logging

import numpy as np
import pytest
import torch

from energysort.parameters import DEFAULT_SETTINGS
from energysort.run_sort import close_logger
from energysort.simulation import spike_template, synthetic_waveforms


@pytest.fixture(scope='session')
def gpu(request):
    return request.config.getoption('--gpu')

@pytest.fixture(scope='session')
def torch_device(gpu):
    if gpu:
        if not torch.cuda.is_available():
            raise ValueError('GPU tests requested, but no CUDA device available.')
        return torch.device('cuda')
    else:
        return torch.device('cpu')


### runslow flag configured according to response from Manu CJ here:
# https://stackoverflow.com/questions/47559524/pytest-how-to-skip-tests-unless-you-declare-an-option-flag
def pytest_addoption(parser):
    parser.addoption(
        "--gpu", action="store_true", default=False, help="use GPU for tests"
    )
    parser.addoption(
        "--runslow", action="store_true", default=False, help="run slow tests"
    )

def pytest_configure(config):
    config.addinivalue_line("markers", "slow: mark test as slow to run")

def pytest_collection_modifyitems(config, items):
    if config.getoption("--runslow"):
        # --runslow given in cli: do not skip slow tests
        return
    skip_slow = pytest.mark.skip(reason="need --runslow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)

### End


@pytest.fixture()
def settings():
    return DEFAULT_SETTINGS.copy()

@pytest.fixture()
def rng():
    return np.random.default_rng(0)

@pytest.fixture(autouse=True)
def reset_logger():
    yield
    close_logger()
    logging.getLogger('energysort').setLevel(logging.NOTSET)


@pytest.fixture(scope='session')
def two_unit_waveforms():
    """Two well separated negative units with 150 spikes each."""
    templates = np.stack([
        spike_template(40, 13, -120),
        spike_template(40, 14, -60, width=2.5),
        ], axis=1)
    waveforms, truth = synthetic_waveforms(
        np.random.default_rng(42), templates, 150, noise=4.0
        )
    return waveforms, truth
