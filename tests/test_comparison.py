"""Tests for the hypergeometric module overlap and best match resolution."""

import numpy as np
import pandas as pd
import pytest
from scipy.stats import hypergeom

from multiWGCNA.comparison import computeOverlap, resolveBestMatches
from multiWGCNA.errors import InvalidInput
from multiWGCNA.utils import readComparison
from multiWGCNA.wgcna import WGCNA

GENES = [f"g{i}" for i in range(85)]


def networkOf(assignment, name, genes=GENES, seed=0):
    """network with a given gene -> module assignment and random expression"""
    rng = np.random.default_rng(seed)
    expr = pd.DataFrame(rng.normal(size=(10, len(genes))), index=[f"S{i}" for i in range(10)], columns=genes)
    colors = [assignment.get(gene, 'grey') for gene in genes]
    return WGCNA.networkFromModules(expr, colors, name=name)


@pytest.fixture
def networkA():
    # a1: g0-g49, a2: g50-g79, grey: g80-g84
    assignment = {f"g{i}": 'a1' for i in range(50)}
    assignment.update({f"g{i}": 'a2' for i in range(50, 80)})
    return networkOf(assignment, 'A')


@pytest.fixture
def networkB():
    # b1: 45 genes of a1, 2 of a2 and 1 grey; b2: 28 genes of a2 and 4 of a1; grey: the rest
    assignment = {f"g{i}": 'b1' for i in list(range(45)) + [50, 51, 80]}
    assignment.update({f"g{i}": 'b2' for i in list(range(52, 80)) + [45, 46, 47, 48]})
    return networkOf(assignment, 'B', seed=1)


class TestComputeOverlap:

    def test_counts_and_sizes(self, networkA, networkB):
        comparison = computeOverlap(networkA, networkB)
        assert comparison.universeSize == 85
        assert comparison.overlapCounts.loc['a1', 'b1'] == 45
        assert comparison.overlapCounts.loc['a2', 'b2'] == 28
        assert comparison.moduleSizes1['a1'] == 50
        assert comparison.moduleSizes2['b1'] == 48
        assert comparison.moduleSizes2['b2'] == 32

    def test_hypergeometric_tail(self, networkA, networkB):
        comparison = computeOverlap(networkA, networkB)
        expected = hypergeom.sf(45 - 1, 85, 48, 50)
        assert comparison.pValues.loc['a1', 'b1'] == pytest.approx(expected)
        assert comparison.pValues.loc['a1', 'b1'] < 1e-10
        assert comparison.pValues.loc['a1', 'b1'] < comparison.pValues.loc['a1', 'b2']

    def test_p_values_in_unit_interval(self, networkA, networkB):
        pValues = computeOverlap(networkA, networkB).pValues.values
        assert np.all((pValues >= 0) & (pValues <= 1))

    def test_grey_is_never_significant(self, networkA, networkB):
        comparison = computeOverlap(networkA, networkB)
        assert (comparison.pValues.loc['grey', :] == 1).all()
        assert (comparison.pValues.loc[:, 'grey'] == 1).all()

    def test_summary_table(self, networkA, networkB):
        table = computeOverlap(networkA, networkB).comparison
        assert table.shape[0] == 3 * 3
        row = table[(table['A'] == 'a1') & (table['B'] == 'b1')].iloc[0]
        assert row['number'] == 45
        assert row['fraction(%)'] == pytest.approx(45 / 48 * 100)

    def test_transpose(self, networkA, networkB):
        comparison = computeOverlap(networkA, networkB)
        reverse = computeOverlap(networkB, networkA)
        pd.testing.assert_frame_equal(comparison.transpose().pValues, reverse.pValues)

    def test_disjoint_genes(self, networkA):
        other = networkOf({'x0': 'c1'}, 'C', genes=[f"x{i}" for i in range(10)])
        with pytest.raises(InvalidInput):
            computeOverlap(networkA, other)

    def test_partially_shared_genes(self, networkA):
        # only g0-g59 are profiled in C, the universe is the shared genes
        genes = [f"g{i}" for i in range(60)]
        other = networkOf({gene: 'c1' for gene in genes[:30]}, 'C', genes=genes)
        comparison = computeOverlap(networkA, other)
        assert comparison.universeSize == 60
        assert comparison.moduleSizes1['a1'] == 50
        assert comparison.moduleSizes1['a2'] == 10

    def test_same_names(self, networkA):
        comparison = computeOverlap(networkA, networkA)
        assert (comparison.name1, comparison.name2) == ('A1', 'A2')

    def test_save_and_read(self, networkA, networkB, tmp_path):
        comparison = computeOverlap(networkA, networkB)
        comparison.saveComparison(str(tmp_path / "AB"))
        comparison2 = readComparison(str(tmp_path / "AB.p"))
        pd.testing.assert_frame_equal(comparison2.pValues, comparison.pValues)


class TestResolveBestMatches:

    def test_bidirectional_pairs(self, networkA, networkB):
        correspondence = resolveBestMatches(computeOverlap(networkA, networkB))
        assert set(correspondence.pairs()) == {('a1', 'b1'), ('a2', 'b2')}
        assert correspondence.bestMatch('a1') == 'b1'
        assert correspondence.bestMatch('b2', reverse=True) == 'a2'
        assert correspondence.method == "hypergeometric"
        assert len(correspondence) == 2

    def test_symmetry(self, networkA, networkB):
        forward = resolveBestMatches(computeOverlap(networkA, networkB))
        backward = resolveBestMatches(computeOverlap(networkB, networkA))
        assert {(b, a) for a, b in forward.pairs()} == set(backward.pairs())
        assert set(forward.inverse().pairs()) == set(backward.pairs())

    def test_grey_has_no_match(self, networkA, networkB):
        correspondence = resolveBestMatches(computeOverlap(networkA, networkB))
        assert correspondence.bestMatch('grey') is None
        assert 'grey' not in correspondence.bidirectional['B'].tolist()

    def test_no_overlap_no_match(self, networkA):
        # c1 only holds genes unassigned in A
        other = networkOf({f"g{i}": 'c1' for i in range(80, 85)}, 'C')
        correspondence = resolveBestMatches(computeOverlap(networkA, other))
        assert correspondence.bestMatch('c1', reverse=True) is None
        assert correspondence.pairs() == []

    def test_ties_broken_by_partner_name(self):
        genes = [f"g{i}" for i in range(20)]
        networkA = networkOf({gene: 'a1' for gene in genes[:10]}, 'A', genes=genes)
        # b1 and b2 both hold 5 genes of a1 with equal size, tie broken by name
        assignment = {gene: 'b1' for gene in genes[:5]}
        assignment.update({gene: 'b2' for gene in genes[5:10]})
        networkB = networkOf(assignment, 'B', genes=genes)
        correspondence = resolveBestMatches(computeOverlap(networkA, networkB))
        assert correspondence.bestMatch('a1') == 'b1'

    def test_needs_computed_comparison(self, networkA, networkB):
        from multiWGCNA.comparison import Comparison
        with pytest.raises(InvalidInput):
            resolveBestMatches(Comparison('A', 'B', networkA, networkB))
