"""Tests for differential module expression."""

import numpy as np
import pandas as pd
import pytest

from conftest import makeSampleTable
from multiWGCNA.dme import _moduleANOVA, adjustPValues, runDME
from multiWGCNA.errors import DegenerateStatistic, InvalidInput
from multiWGCNA.network import WGCNANetwork
from multiWGCNA.wgcna import WGCNA


@pytest.fixture
def dmeData():
    """module up is higher in EAE, module flat does not change"""
    rng = np.random.default_rng(5)
    samples = [f"S{i}" for i in range(16)]
    table = makeSampleTable(samples)
    disease = (table['Disease'] == 'EAE').values.astype(float)
    columns = {}
    up = 2 * disease + 0.3 * rng.normal(size=16)
    flat = rng.normal(size=16)
    for i in range(10):
        columns[f"up_{i}"] = up + 0.2 * rng.normal(size=16)
        columns[f"flat_{i}"] = flat + 0.2 * rng.normal(size=16)
    expr = pd.DataFrame(columns, index=samples)
    colors = [gene.split('_')[0] for gene in expr.columns]
    return WGCNA.networkFromModules(expr, colors, name='combined'), table


class TestAdjustPValues:

    def test_bonferroni(self):
        pValues = pd.Series([0.01, 0.02, 0.5], index=['a', 'b', 'c'])
        adjusted = adjustPValues(pValues, method="bonferroni")
        assert adjusted.tolist() == pytest.approx([0.03, 0.06, 1.0])

    def test_nan_is_kept(self):
        pValues = pd.Series([0.01, np.nan, 0.04], index=['a', 'b', 'c'])
        adjusted = adjustPValues(pValues, method="BH")
        assert np.isnan(adjusted['b'])
        assert adjusted['a'] == pytest.approx(0.02)
        assert adjusted['c'] == pytest.approx(0.04)

    def test_none(self):
        pValues = pd.Series([0.01, 0.2], index=['a', 'b'])
        pd.testing.assert_series_equal(adjustPValues(pValues, method="none"), pValues)

    def test_unknown_method(self):
        with pytest.raises(InvalidInput):
            adjustPValues(pd.Series([0.1]), method="magic")


class TestRunDME:

    def test_finds_differential_module(self, dmeData):
        network, table = dmeData
        result = runDME(network, table, refCondition='Region', testCondition='Disease', verbose=False)
        assert list(result.pValues.columns) == ['Region', 'Disease']
        assert result.pValues.loc['up', 'Disease'] < 1e-4
        assert result.pValues.loc['flat', 'Disease'] > result.pValues.loc['up', 'Disease']
        assert 'up' in result.significantModules(alpha=0.05)
        assert result.groupMeans.loc['up', 'EAE'] > result.groupMeans.loc['up', 'WT']
        assert result.nDegenerate == 0

    def test_adjusted_not_smaller(self, dmeData):
        network, table = dmeData
        result = runDME(network, table, refCondition='Region', testCondition='Disease', verbose=False)
        assert (result.adjustedPValues['Disease'] >= result.pValues['Disease'] - 1e-12).all()

    def test_one_way(self, dmeData):
        network, table = dmeData
        result = runDME(network, table, testCondition='Disease', verbose=False)
        assert list(result.pValues.columns) == ['Disease']

    def test_interaction(self, dmeData):
        network, table = dmeData
        result = runDME(network, table, refCondition='Region', testCondition='Disease', interaction=True,
                        verbose=False)
        assert 'Region:Disease' in result.pValues.columns

    def test_summary(self, dmeData):
        network, table = dmeData
        summary = runDME(network, table, refCondition='Region', testCondition='Disease', verbose=False).summary()
        assert summary.index[0] == 'up'
        assert {'P_value', 'adj_P_value', 'EAE', 'WT'} <= set(summary.columns)

    def test_constant_eigengene_is_undefined(self, dmeData):
        network, table = dmeData
        datME = network.datME.copy()
        datME['MEconstant'] = 0.0
        colors = network.datExpr.var['moduleColors'].tolist()
        constantNetwork = WGCNANetwork('constant', network.datExpr.to_df(), colors, datME)
        result = runDME(constantNetwork, table, refCondition='Region', testCondition='Disease', verbose=False)
        assert result.degenerateModules == ['constant']
        assert np.isnan(result.pValues.loc['constant', 'Disease'])
        assert np.isnan(result.adjustedPValues.loc['constant', 'Disease'])
        assert not np.isnan(result.adjustedPValues.loc['up', 'Disease'])

    def test_missing_column(self, dmeData):
        network, table = dmeData
        with pytest.raises(InvalidInput):
            runDME(network, table, refCondition='Sex', testCondition='Disease', verbose=False)

    def test_missing_sample(self, dmeData):
        network, table = dmeData
        with pytest.raises(InvalidInput):
            runDME(network, table.iloc[1:], refCondition='Region', testCondition='Disease', verbose=False)

    def test_same_factor(self, dmeData):
        network, table = dmeData
        with pytest.raises(InvalidInput):
            runDME(network, table, refCondition='Disease', testCondition='Disease', verbose=False)

    def test_single_level_covariate(self, dmeData):
        network, table = dmeData
        table = table.copy()
        table['Disease'] = 'EAE'
        with pytest.raises(InvalidInput):
            runDME(network, table, refCondition='Disease', testCondition='Region', verbose=False)

    def test_single_level_term_is_undefined(self, dmeData):
        network, table = dmeData
        data = pd.DataFrame({'eigengene': network.datME['MEup'].values,
                             'test': table['Region'].values,
                             'ref': 'EAE'})
        with pytest.raises(DegenerateStatistic):
            _moduleANOVA(data, 'eigengene ~ C(ref) + C(test)', {'Disease': 'C(ref)', 'Region': 'C(test)'})

    def test_confounded_factors_are_undefined(self, dmeData):
        network, table = dmeData
        table = table.copy()
        table['Batch'] = table['Disease'].map({'EAE': 'b1', 'WT': 'b2'})
        result = runDME(network, table, refCondition='Batch', testCondition='Disease', verbose=False)
        assert sorted(result.degenerateModules) == ['flat', 'up']
        assert result.pValues.isna().all().all()
        assert result.adjustedPValues.isna().all().all()


class TestAdjustedPValueProperties:

    @pytest.fixture
    def manyModules(self, dmeData):
        """the two planted modules plus six random eigengenes"""
        network, table = dmeData
        rng = np.random.default_rng(11)
        datME = network.datME.copy()
        for i in range(6):
            datME[f"MEr{i}"] = rng.normal(size=datME.shape[0]) + 0.3 * i * (table['Disease'] == 'EAE').values
        colors = network.datExpr.var['moduleColors'].tolist()
        return network.datExpr.to_df(), colors, datME, table

    def test_module_order_does_not_matter(self, manyModules):
        expr, colors, datME, table = manyModules
        forward = runDME(WGCNANetwork('forward', expr, colors, datME), table,
                         refCondition='Region', testCondition='Disease', verbose=False)
        backward = runDME(WGCNANetwork('backward', expr, colors, datME[datME.columns[::-1]]), table,
                          refCondition='Region', testCondition='Disease', verbose=False)
        modules = sorted(forward.adjustedPValues.index)
        assert sorted(backward.adjustedPValues.index) == modules
        pd.testing.assert_frame_equal(forward.adjustedPValues.loc[modules], backward.adjustedPValues.loc[modules])
        pd.testing.assert_frame_equal(forward.pValues.loc[modules], backward.pValues.loc[modules])

    def test_bounded_and_monotonic(self, manyModules):
        expr, colors, datME, table = manyModules
        result = runDME(WGCNANetwork('many', expr, colors, datME), table,
                        refCondition='Region', testCondition='Disease', verbose=False)
        for factor in result.pValues.columns:
            adjusted = result.adjustedPValues[factor]
            assert ((adjusted >= 0) & (adjusted <= 1)).all()
            ordered = adjusted[result.pValues[factor].sort_values(kind='mergesort').index]
            assert (np.diff(ordered.values) >= -1e-12).all()

    @pytest.mark.parametrize("method", ["BH", "bonferroni", "holm", "BY"])
    def test_methods_bounded_and_monotonic(self, method):
        rng = np.random.default_rng(2)
        pValues = pd.Series(np.concatenate([rng.uniform(size=15), [1e-6, 1e-3, 0.9999]]),
                            index=[f"m{i}" for i in range(18)])
        adjusted = adjustPValues(pValues, method=method)
        assert ((adjusted >= 0) & (adjusted <= 1)).all()
        assert (adjusted >= pValues - 1e-12).all()
        ordered = adjusted[pValues.sort_values().index]
        assert (np.diff(ordered.values) >= -1e-12).all()
