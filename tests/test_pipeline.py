import numpy as np
import pytest

from energysort import clustering, energy, hierarchical, run_sort
from energysort.errors import ConfigurationError, SizeMismatchError
from energysort.run_sort import sort_electrode, final_labels
from energysort.parameters import check_settings
from energysort.simulation import gaussian_clouds, spike_template, synthetic_waveforms


# Far below any connection strength between neighbouring parts of one cloud,
# far above the strength between distant clouds.
TINY_CUT = 1e-6


@pytest.fixture()
def cluster_settings(settings):
    settings.update({'bisecs': 3, 'assign': 10, 'minspk': 5})
    return settings


def test_two_clouds(cluster_settings, torch_device):
    centers = np.array([[0, 0], [20, 0]])
    S, truth = gaussian_clouds(np.random.default_rng(11), centers, 100)

    n0, c0, d0 = clustering.cluster_spikes(
        cluster_settings, S, rng=np.random.default_rng(12), device=torch_device
        )
    assert (n0 > 0).sum() >= 2

    E0 = energy.energy_matrix(S, n0, c0, d0)
    n, c, E, merges = hierarchical.merge(n0, c0, E0, TINY_CUT)

    assert (n > 0).sum() == 2
    assert n.sum() == 200
    assert merges.shape[0] == n0.size - 2
    for i in np.flatnonzero(n):
        assert np.unique(truth[c == i]).size == 1


@pytest.mark.parametrize('bisecs', [0, 2, 4])
def test_single_cloud(cluster_settings, bisecs):
    cluster_settings.update({'bisecs': bisecs, 'minspk': 10})
    S, _ = gaussian_clouds(np.random.default_rng(13), np.zeros((1, 2)), 50)

    n0, c0, d0 = clustering.cluster_spikes(cluster_settings, S, rng=14)
    E0 = energy.energy_matrix(S, n0, c0, d0)
    n, c, E, merges = hierarchical.merge(n0, c0, E0, TINY_CUT)

    assert (n > 0).sum() == 1
    assert n.sum() == 50
    assert merges.shape[0] == n0.size - 1
    assert np.unique(c).size == 1


def test_final_labels():
    n = np.array([4, 0, 3, 0, 2])
    c = np.array([0, 0, 2, 4, 2, 0, 4, 2, 0], dtype=np.uint8)
    kept = np.array([True]*5 + [False] + [True]*4 + [False])
    clustmap, labels = final_labels(n, c, kept)
    assert clustmap.tolist() == [1, 0, 2, 0, 3]
    assert labels.tolist() == [1, 1, 2, 3, 2, 0, 1, 3, 2, 1, 0]
    assert labels.dtype == np.uint8


def test_sort_electrode(two_unit_waveforms, torch_device):
    waveforms, truth = two_unit_waveforms
    settings = check_settings({'nboot': 500})
    result = sort_electrode(waveforms, -1, settings, rng=0, device=torch_device)

    labels = result['labels']
    assert result['kept'].all()
    assert result['n'].sum() == waveforms.shape[1]
    assert result['n_clusters'] >= 2
    assert result['cutoff'] >= 0
    assert labels.min() >= 1
    assert labels.max() == result['n_clusters']
    assert np.array_equal(labels, result['clustmap'][result['c']])
    assert result['mergers'].shape[0] == result['n_init'].size - result['n_clusters']
    # No final cluster mixes the two units.
    for k in range(1, result['n_clusters'] + 1):
        assert np.unique(truth[labels == k]).size == 1


def test_fixed_cutoff(two_unit_waveforms, torch_device):
    waveforms, truth = two_unit_waveforms
    settings = check_settings({'defcut': TINY_CUT})
    result = sort_electrode(waveforms, -1, settings, rng=1, device=torch_device)

    assert result['cutoff'] == TINY_CUT
    assert result['n_clusters'] == 2
    # Same partition as the ground truth, up to relabelling.
    labels = result['labels']
    assert np.unique(labels[truth == 0]).size == 1
    assert np.unique(labels[truth == 1]).size == 1
    assert labels[truth == 0][0] != labels[truth == 1][0]


def test_noise_spikes_unlabelled(two_unit_waveforms, torch_device):
    waveforms, _ = two_unit_waveforms
    w = waveforms.copy()
    w[14, :3] = -4000
    settings = check_settings({'defcut': TINY_CUT})
    result = sort_electrode(w, -1, settings, rng=1, device=torch_device)

    assert not result['kept'][:3].any()
    assert result['kept'][3:].all()
    assert not result['labels'][:3].any()
    assert result['labels'][3:].min() >= 1


def test_window_probability_rejected(two_unit_waveforms, settings):
    # Unchecked settings still fail with the setting at fault, before PCA.
    waveforms, _ = two_unit_waveforms
    settings['pcaprob'] = 0.3
    with pytest.raises(ConfigurationError, match='Window probability'):
        sort_electrode(waveforms, -1, settings, rng=0)


def test_too_few_spikes(settings):
    w = synthetic_waveforms(0, spike_template(40, 13, -100), 5)[0]
    result = sort_electrode(w, -1, settings, rng=0)
    assert result['n_clusters'] == 0
    assert result['labels'].shape == (5,)
    assert not result['labels'].any()


def test_run_sort(two_unit_waveforms, torch_device, tmp_path):
    waveforms, truth = two_unit_waveforms
    small = synthetic_waveforms(0, spike_template(40, 13, -100), 5)[0]

    results = run_sort(
        [waveforms, small], [-30, -30], settings={'defcut': TINY_CUT},
        results_dir=tmp_path, device=torch_device, progress_bar=False
        )

    assert len(results) == 2
    assert results[0]['n_clusters'] == 2
    assert results[1]['n_clusters'] == 0
    assert (tmp_path / 'energysort.log').is_file()
    text = (tmp_path / 'energysort.log').read_text()
    assert 'Sorting summary' in text
    assert 'not sorted' in text


@pytest.mark.slow
def test_run_sort_workers(two_unit_waveforms, torch_device):
    waveforms, _ = two_unit_waveforms
    electrodes = [waveforms, waveforms[:, ::2], waveforms[:, 1::2]]
    kwargs = dict(settings={'nboot': 500}, device=torch_device,
                  progress_bar=False)

    serial = run_sort(electrodes, [-1]*3, n_workers=1, **kwargs)
    threaded = run_sort(electrodes, [-1]*3, n_workers=3, **kwargs)
    for r1, r2 in zip(serial, threaded):
        assert np.array_equal(r1['labels'], r2['labels'])
        assert r1['cutoff'] == r2['cutoff']


def test_run_sort_errors(two_unit_waveforms):
    waveforms, _ = two_unit_waveforms
    with pytest.raises(SizeMismatchError):
        run_sort([waveforms], [-1, -1], progress_bar=False)
    with pytest.raises(ConfigurationError):
        run_sort([waveforms], [-1], settings={'nonsense': 1}, progress_bar=False)
