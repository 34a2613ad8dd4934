import logging
logger = logging.getLogger(__name__)

from scipy.sparse import csr_matrix, issparse
import numpy as np

from energysort.energy import connection_strength
from energysort.errors import SizeMismatchError


class InterfaceEnergy:
    """Cluster sizes, spike labels and raw interface energies during merging.

    Arrays keep one slot per initial cluster for the whole merge. A cluster
    that has been merged into another keeps its slot as a tombstone with zero
    spikes, a zeroed energy row and column and a self energy of 1, following
    the UltraMegaSort2000 convention.

    Parameters
    ----------
    E : np.ndarray
        C x C raw interface-energy matrix, upper triangle and diagonal.
    n : np.ndarray
        Number of spikes in each cluster.
    c : np.ndarray
        Cluster id of each spike.

    Attributes
    ----------
    untested : np.ndarray
        C x C boolean mask, True for pairs i < j of live clusters whose
        connection strength still needs to be compared against the cutoff.
    tested : np.ndarray
        C x C boolean mask of pairs that are excluded from merging, including
        the diagonal and lower triangle.

    """

    def __init__(self, E, n, c):
        if issparse(E):
            E = E.toarray()
        self.E = np.array(E, dtype=np.float64)
        self.n = np.array(n, dtype=np.int64)
        self.c = np.array(c)

        nclust = self.n.size
        if self.E.shape != (nclust, nclust):
            raise SizeMismatchError(
                f'Energy matrix of shape {self.E.shape} does not match '
                f'{nclust} clusters'
                )
        if self.c.size != self.n.sum():
            raise SizeMismatchError(
                f'{self.c.size} spike labels but {self.n.sum()} spikes in clusters'
                )

        self.untested = np.triu(np.outer(self.live, self.live), 1)
        self.tested = ~self.untested

    @property
    def live(self):
        return self.n > 0

    def strengths(self):
        """Connection strengths, zero for pairs that are already tested."""
        J = connection_strength(self.E, self.n)
        J[self.tested] = 0
        return J

    def best_pair(self):
        """Untested pair (c1, c2), c1 < c2, with the highest connection strength."""
        J = np.where(self.untested, self.strengths(), -np.inf)
        c1, c2 = np.unravel_index(np.argmax(J), J.shape)
        return J[c1, c2], int(c1), int(c2)

    def _others(self, c1, c2):
        ids = np.arange(self.n.size)
        return ids[(ids != c1) & (ids != c2)]

    def absorb(self, c1, c2):
        """Merge cluster c2 into cluster c1 and tombstone c2."""
        E = self.E
        j = self._others(c1, c2)
        # Index pairs into the upper triangle for (c1, j) and (c2, j).
        i1 = (np.minimum(c1, j), np.maximum(c1, j))
        i2 = (np.minimum(c2, j), np.maximum(c2, j))

        self.c[self.c == c2] = c1

        E[c1, c1] = E[c1, c1] + E[c2, c2] + E[c1, c2]
        E[i1] += E[i2]

        E[i2] = 0
        E[c1, c2] = 0
        E[c2, c2] = 1
        self.untested[i2] = False
        self.tested[i2] = True
        self.untested[c1, c2] = False
        self.tested[c1, c2] = True

        self.n[c1] += self.n[c2]
        self.n[c2] = 0

    def reopen(self, c1):
        """Mark every pair of c1 with another live cluster as untested."""
        j = np.flatnonzero(self.live)
        j = j[j != c1]
        self.untested[np.minimum(c1, j), np.maximum(c1, j)] = True


def merge(n, c, E, cut, return_strengths=False):
    """Greedily merge clusters by connection strength until below `cut`.

    Merging is done following these steps:

      1) Find the untested pair of clusters with the highest connection
         strength.
      2) Merge the higher-numbered cluster into the lower-numbered one and
         update the raw interface energies.
      3) Repeat 1 and 2 until the strongest connection falls below `cut`, or
         no untested pairs remain.

    Parameters
    ----------
    n : np.ndarray
        Number of spikes per cluster.
    c : np.ndarray
        Cluster id of each spike.
    E : np.ndarray or scipy.sparse matrix
        Raw interface-energy matrix, see `energysort.energy.energy_matrix`.
    cut : float
        Connection strength cutoff.
    return_strengths : bool; default=False.
        If True, also return the connection strength of every merge.

    Returns
    -------
    n : np.ndarray
        Final number of spikes per cluster, zero for merged clusters.
    c : np.ndarray
        Final cluster id of every spike. Initial ids are kept.
    E : scipy.sparse.csr_matrix
        Final raw interface-energy matrix.
    merges : np.ndarray
        M x 2 uint8 array of merges in the order they happened. The first
        column holds the lower cluster id, the second the higher.
    strengths : np.ndarray
        Length M, only returned if `return_strengths` is True.

    """
    state = InterfaceEnergy(E, n, c)

    merges = []
    strengths = []
    # A single cluster has no untested pairs and skips the loop.
    while state.untested.any():
        jmax, c1, c2 = state.best_pair()
        if jmax < cut:
            break

        state.absorb(c1, c2)
        state.reopen(c1)
        merges.append((c1, c2))
        strengths.append(jmax)
        logger.debug(f'Merged cluster {c2} into {c1}, connection strength '
                     f'{jmax:.4f}, {state.live.sum()} clusters remain')

    merges = np.array(merges, dtype=np.uint8).reshape(-1, 2)
    E = csr_matrix(state.E)

    if return_strengths:
        return state.n, state.c, E, merges, np.array(strengths)
    return state.n, state.c, E, merges
