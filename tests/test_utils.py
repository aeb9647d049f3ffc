"""Tests for the network set helpers: construction, all-pairs comparison and module tracing."""

import pytest

from conftest import PrefixBuilder
from multiWGCNA.errors import InvalidInput
from multiWGCNA.geneExp import GeneExp
from multiWGCNA.utils import constructNetworks, findBestMatches, overlapComparisons, traceModule


@pytest.fixture
def networks(geneExpression, sampleTable):
    return constructNetworks(geneExpression, sampleTable, 'Disease', 'Region', builder=PrefixBuilder(),
                             verbose=False)


class TestConstructNetworks:

    def test_one_network_per_level(self, networks):
        assert list(networks.keys()) == ['combined', 'EAE', 'WT', 'cortex', 'hippocampus']
        assert len(networks['combined'].samples) == 16
        assert len(networks['EAE'].samples) == 8
        assert networks['cortex'].samples == [f"S{i}" for i in range(0, 16, 2)]

    def test_from_geneExp(self, geneExpression, sampleTable):
        geneExp = GeneExp(geneExp=geneExpression, sampleTable=sampleTable)
        networks = constructNetworks(geneExp, sampleTable, 'Disease', builder=PrefixBuilder(), verbose=False)
        assert list(networks.keys()) == ['combined', 'EAE', 'WT']

    def test_params_need_default_builder(self, geneExpression, sampleTable):
        with pytest.raises(InvalidInput):
            constructNetworks(geneExpression, sampleTable, 'Disease', builder=PrefixBuilder(), power=6,
                              verbose=False)

    def test_missing_condition(self, geneExpression, sampleTable):
        with pytest.raises(InvalidInput):
            constructNetworks(geneExpression, sampleTable, 'Sex', builder=PrefixBuilder(), verbose=False)


class TestNetworkSet:

    def test_all_ordered_pairs(self, networks):
        comparisons = overlapComparisons(networks, verbose=False)
        assert len(comparisons) == 5 * 4
        assert comparisons[('EAE', 'WT')].name1 == 'EAE'
        assert comparisons[('WT', 'EAE')].name1 == 'WT'

    def test_best_matches(self, networks):
        correspondences = findBestMatches(overlapComparisons(networks, verbose=False))
        assert set(correspondences[('EAE', 'WT')].pairs()) == {('a', 'a'), ('b', 'b')}

    def test_list_of_networks(self, networks):
        comparisons = overlapComparisons(list(networks.values()), verbose=False)
        assert ('combined', 'cortex') in comparisons

    def test_trace_module(self, networks):
        trace = traceModule(networks, 'EAE', 'a')
        assert trace['network'].tolist() == ['combined', 'WT', 'cortex', 'hippocampus']
        assert (trace['module'] == 'a').all()
        assert trace['bidirectional'].all()
        assert (trace['number'] == 20).all()

    def test_trace_with_comparisons(self, networks):
        comparisons = overlapComparisons(networks, verbose=False)
        trace = traceModule(networks, 'WT', 'b', comparisons=comparisons)
        assert (trace['module'] == 'b').all()

    def test_trace_unknown_module(self, networks):
        with pytest.raises(InvalidInput):
            traceModule(networks, 'EAE', 'purple')
