import numpy as np
import pytest
from scipy.sparse import issparse

from energysort import energy, hierarchical
from energysort.errors import SizeMismatchError
from energysort.simulation import gaussian_clouds


@pytest.fixture(scope='module')
def split_clouds():
    """Two distant clouds, each cut in half into two initial clusters."""
    centers = np.array([[0, 0], [50, 0]])
    S, truth = gaussian_clouds(np.random.default_rng(0), centers, 60)
    c = 2 * truth + (S[1] > np.median(S[1]))
    # Shuffle ids so that merges are not simply between neighbours.
    c = np.array([0, 2, 1, 3])[c].astype(np.uint8)
    n = np.bincount(c, minlength=4)
    E = energy.energy_matrix(S, n, c, 1.0)
    return S, truth, n, c, E


def test_merge_halves(split_clouds):
    S, truth, n0, c0, E0 = split_clouds
    n, c, E, merges, strengths = hierarchical.merge(
        n0, c0, E0, 0.1, return_strengths=True
        )

    assert (n > 0).sum() == 2
    assert n.sum() == n0.sum()
    assert merges.dtype == np.uint8
    assert merges.shape == (2, 2)
    assert (merges[:, 0] < merges[:, 1]).all()
    assert (strengths >= 0.1).all()
    assert issparse(E)

    # Each final cluster is exactly one cloud, kept under its lowest id.
    assert sorted(merges.tolist()) == [[0, 2], [1, 3]]
    for i in np.flatnonzero(n):
        assert np.unique(truth[c == i]).size == 1


def test_inputs_not_modified(split_clouds):
    _, _, n0, c0, E0 = split_clouds
    n_copy, c_copy, E_copy = n0.copy(), c0.copy(), E0.copy()
    hierarchical.merge(n0, c0, E0, 0.1)
    assert np.array_equal(n0, n_copy)
    assert np.array_equal(c0, c_copy)
    assert np.array_equal(E0, E_copy)


def test_tombstones(split_clouds):
    _, _, n0, c0, E0 = split_clouds
    n, c, E, merges = hierarchical.merge(n0, c0, E0, 0.1)
    E = E.toarray()
    for i in merges[:, 1]:
        assert n[i] == 0
        assert E[i, i] == 1
        assert not np.delete(E[i], i).any()
        assert not np.delete(E[:, i], i).any()
        assert not (c == i).any()


def test_merged_energy_matches_recomputed(split_clouds):
    S, _, n0, c0, E0 = split_clouds
    state = hierarchical.InterfaceEnergy(E0, n0, c0)
    state.absorb(0, 2)
    state.reopen(0)

    E = energy.energy_matrix(S, state.n, state.c, 1.0)
    live = np.ix_(state.live, state.live)
    assert np.allclose(state.E[live], E[live])
    assert state.untested[0, 1] and state.untested[0, 3]
    assert not state.untested[:, 2].any() and not state.untested[2].any()


def test_no_merge_above_cut(split_clouds):
    _, _, n0, c0, E0 = split_clouds
    n, c, E, merges = hierarchical.merge(n0, c0, E0, np.inf)
    assert merges.shape == (0, 2)
    assert np.array_equal(n, n0)
    assert np.array_equal(c, c0)


def test_merge_everything(split_clouds):
    # Any cutoff at or below zero merges every cluster.
    _, _, n0, c0, E0 = split_clouds
    n, c, E, merges = hierarchical.merge(n0, c0, E0, 0)
    assert merges.shape == (3, 2)
    assert n.tolist() == [n0.sum(), 0, 0, 0]
    assert not c.any()


def test_single_cluster():
    n, c, E, merges = hierarchical.merge(
        np.array([5]), np.zeros(5, np.uint8), np.array([[3.0]]), 0.5
        )
    assert n.tolist() == [5]
    assert merges.shape == (0, 2)
    assert E.toarray()[0, 0] == 3.0


def test_size_mismatch():
    with pytest.raises(SizeMismatchError):
        hierarchical.merge(np.array([2, 2]), np.zeros(4), np.zeros((3, 3)), 0.5)
    with pytest.raises(SizeMismatchError):
        hierarchical.merge(np.array([2, 2]), np.zeros(3), np.zeros((2, 2)), 0.5)
