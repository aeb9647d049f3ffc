"""Tests for leave-one-out outlier module detection."""

import numpy as np
import pandas as pd
import pytest

from conftest import makeExpression
from multiWGCNA.errors import InvalidInput
from multiWGCNA.outliers import detectOutliers, leaveOneOutCorrelation, meanIntramodularCorrelation
from multiWGCNA.wgcna import WGCNA


@pytest.fixture
def outlierNetwork():
    """module a is co-expressed, module o only through one extreme sample (S0)"""
    expr = makeExpression(nSamples=12, moduleSizes={'a': 10}, nGrey=5, seed=3)
    rng = np.random.default_rng(11)
    for i in range(10):
        values = rng.normal(size=12)
        values[0] = 20
        expr[f"o_{i}"] = values
    colors = [gene.split('_')[0] for gene in expr.columns]
    return WGCNA.networkFromModules(expr, colors, name='outliers')


class TestMeanCorrelation:

    def test_matches_correlation_matrix(self, expression):
        datModule = expression.filter(like='b_')
        cor = np.corrcoef(datModule.values, rowvar=False)
        expected = cor[np.triu_indices(cor.shape[0], k=1)].mean()
        assert meanIntramodularCorrelation(datModule) == pytest.approx(expected)

    def test_constant_gene_is_left_out(self, expression):
        datModule = expression.filter(like='b_').copy()
        expected = meanIntramodularCorrelation(datModule)
        datModule['flat'] = 1.0
        assert meanIntramodularCorrelation(datModule) == pytest.approx(expected)

    def test_single_gene(self):
        assert np.isnan(meanIntramodularCorrelation(np.ones((5, 1))))

    def test_leave_one_out(self, expression):
        datModule = expression.filter(like='a_')
        values = leaveOneOutCorrelation(datModule)
        assert len(values) == expression.shape[0]
        assert values[2] == pytest.approx(meanIntramodularCorrelation(datModule.drop(index='S2')))


class TestDetectOutliers:

    def test_flags_sample_driven_module(self, outlierNetwork):
        outliers = detectOutliers(outlierNetwork, threshold=0.1, verbose=False)
        assert outliers == {'o'}
        assert outlierNetwork.isOutlierModule('o')
        assert not outlierNetwork.isOutlierModule('a')
        table = outlierNetwork.outlierTable
        assert table.loc['o', 'outlierSample'] == 'S0'
        assert table.loc['o', 'maxChange'] > 0.5
        assert table.loc['a', 'maxChange'] < 0.1
        assert table['isOutlier'].dtype == bool

    def test_one_extreme_sample_makes_outlier(self):
        expr = makeExpression(nSamples=30, moduleSizes={'x': 10}, nGrey=5, noise=0.5, seed=4)
        colors = [gene.split('_')[0] for gene in expr.columns]
        clean = WGCNA.networkFromModules(expr, colors, name='clean')
        assert detectOutliers(clean, threshold=0.1, verbose=False) == set()
        assert clean.outlierTable.loc['x', 'maxChange'] < 0.1

        spiked = expr.copy()
        spiked.loc['S0', expr.columns.str.startswith('x_')] = 30
        spikedNetwork = WGCNA.networkFromModules(spiked, colors, name='spiked')
        assert detectOutliers(spikedNetwork, threshold=0.1, verbose=False) == {'x'}
        assert spikedNetwork.outlierTable.loc['x', 'outlierSample'] == 'S0'
        assert spikedNetwork.outlierTable.loc['x', 'maxChange'] > clean.outlierTable.loc['x', 'maxChange']

    def test_not_annotated_before_detection(self, outlierNetwork):
        assert outlierNetwork.outlierModules is None
        assert not outlierNetwork.isOutlierModule('o')

    def test_large_threshold(self, outlierNetwork):
        assert detectOutliers(outlierNetwork, threshold=5, verbose=False) == set()

    def test_invalid_threshold(self, outlierNetwork):
        with pytest.raises(InvalidInput):
            detectOutliers(outlierNetwork, threshold=0)

    def test_too_few_samples(self, expression):
        expr = expression.iloc[:3]
        colors = [gene.split('_')[0] for gene in expr.columns]
        network = WGCNA.networkFromModules(expr, colors, name='small')
        with pytest.raises(InvalidInput):
            detectOutliers(network)

    def test_table_rows(self, network):
        detectOutliers(network, verbose=False)
        assert list(network.outlierTable.index) == ['a', 'b']
        assert isinstance(network.outlierTable, pd.DataFrame)
