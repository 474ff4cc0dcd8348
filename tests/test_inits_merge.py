"""
Init Routing and Chain Merging Tests

Run with: pytest tests/test_inits_merge.py -v
"""

import numpy as np
import pytest

from chainrun.error_handling import ConfigurationError
from chainrun.mcmc.inits import InitSource, assign_inits, build_identity_map, resolve_inits
from chainrun.mcmc.merge import merge_chains
from chainrun.mcmc.types import Chain, MergedChainSet, select_columns
from chainrun.test_models import random_normal_inits


class TestInitRouting:
    """Test that init set i always reaches worker i."""

    def test_identity_map(self):
        assert build_identity_map([4021, 4022, 4030]) == {4021: 0, 4022: 1, 4030: 2}

    def test_duplicate_identities(self):
        with pytest.raises(ConfigurationError, match="not unique"):
            build_identity_map([7, 7])

    def test_fixed_inits_in_worker_order(self, fixed_inits):
        sources = assign_inits([900, 310, 555], fixed_inits, random_inits=False)
        assert [s.values['mu'] for s in sources] == [-4.0, 4.0, 0.0]

    def test_inits_are_copied(self, fixed_inits):
        sources = assign_inits([1, 2], fixed_inits, random_inits=False)
        sources[0].values['mu'] = 99.0
        assert fixed_inits[0]['mu'] == -4.0

    def test_missing_init_set(self, fixed_inits):
        with pytest.raises(ConfigurationError, match="No initial values for worker 1"):
            assign_inits([1, 2], fixed_inits[:1], random_inits=False)

    def test_random_inits_resolved_per_worker(self):
        sources = assign_inits([1, 2], random_normal_inits, random_inits=True)
        assert all(s.generator is random_normal_inits for s in sources)
        values = resolve_inits(sources[0], data=None)
        assert set(values) == {'mu'}

    def test_resolve_fixed(self):
        assert resolve_inits(InitSource(values={'mu': 1.0}), data=None) == {'mu': 1.0}


class TestMerge:
    """Test merging per-worker chains."""

    def _chain(self, value, names=('mu',), n=5):
        return Chain(np.full((n, len(names)), value), tuple(names))

    def test_order_preserved(self):
        merged = merge_chains([self._chain(0.0), self._chain(1.0), self._chain(2.0)])
        assert len(merged) == 3
        assert [float(c.samples[0, 0]) for c in merged] == [0.0, 1.0, 2.0]

    def test_as_array_shape(self):
        merged = merge_chains([self._chain(0.0, n=5), self._chain(1.0, n=7)])
        history = merged.as_array()
        assert history.shape == (5, 2, 1)
        assert np.all(history[:, 1, 0] == 1.0)

    def test_empty(self):
        with pytest.raises(ValueError, match="empty"):
            merge_chains([])

    def test_mismatched_columns(self):
        with pytest.raises(ValueError):
            merge_chains([self._chain(0.0, ('mu',)), self._chain(0.0, ('sigma',))])

    def test_bad_chain_shape(self):
        with pytest.raises(ValueError, match="Chain samples"):
            Chain(np.zeros((4, 2)), ('mu',))


class TestColumnSelection:
    """Test parameter-name to column resolution."""

    NAMES = ('mu', 'beta[0]', 'beta[1]', 'S[0,1]', 'sigma')

    def test_base_name_expands(self):
        assert select_columns(self.NAMES, ['beta']) == [1, 2]

    def test_exact_name(self):
        assert select_columns(self.NAMES, ['beta[1]', 'mu']) == [0, 2]

    def test_matrix_entry(self):
        assert select_columns(self.NAMES, ['S']) == [3]

    def test_overlap_deduplicated(self):
        assert select_columns(self.NAMES, ['beta', 'beta[0]']) == [1, 2]

    def test_unknown(self):
        with pytest.raises(KeyError):
            select_columns(self.NAMES, ['tau'])

    def test_merged_select(self):
        chain = Chain(np.zeros((3, 5)), self.NAMES)
        assert MergedChainSet(chains=(chain,)).select(['sigma']) == [4]
