"""
Shared fixtures: synthetic expression with planted modules, a sample table with a confound
and deterministic network builders.
"""

import threading

import numpy as np
import pandas as pd
import pytest

from multiWGCNA.errors import NetworkConstructionError
from multiWGCNA.wgcna import WGCNA


def makeExpression(nSamples=16, moduleSizes=None, nGrey=10, noise=0.3, seed=0):
    """
    samples x genes dataframe; genes of module m are named "m_<i>" and share one random factor,
    unassigned genes are named "grey_<i>" and are independent noise
    """
    if moduleSizes is None:
        moduleSizes = {'a': 20, 'b': 15}
    rng = np.random.default_rng(seed)
    columns = {}
    for module, size in moduleSizes.items():
        factor = rng.normal(size=nSamples)
        for i in range(size):
            columns[f"{module}_{i}"] = factor + noise * rng.normal(size=nSamples)
    for i in range(nGrey):
        columns[f"grey_{i}"] = rng.normal(size=nSamples)
    return pd.DataFrame(columns, index=[f"S{i}" for i in range(nSamples)])


def makeSampleTable(samples):
    """
    Disease (EAE / WT) crossed with Region (cortex / hippocampus), balanced
    """
    n = len(samples)
    return pd.DataFrame({'Sample': samples,
                         'Disease': ['EAE' if i < n // 2 else 'WT' for i in range(n)],
                         'Region': ['cortex' if i % 2 == 0 else 'hippocampus' for i in range(n)]})


class PrefixBuilder:
    """network builder which modules are the gene name prefixes"""

    def __init__(self):
        self.calls = 0
        self._lock = threading.Lock()

    def count(self):
        with self._lock:
            self.calls += 1

    def buildNetwork(self, datExpr, name='WGCNA'):
        self.count()
        colors = [gene.split('_')[0] for gene in datExpr.columns]
        return WGCNA.networkFromModules(datExpr, colors, name=name, naColor="grey", networkType="signed", power=6)


class FailingBuilder(PrefixBuilder):

    def buildNetwork(self, datExpr, name='WGCNA'):
        self.count()
        raise NetworkConstructionError(f"can not build {name}")


@pytest.fixture
def expression():
    return makeExpression()


@pytest.fixture
def geneExpression(expression):
    """genes in rows, samples in columns"""
    return expression.T


@pytest.fixture
def sampleTable(expression):
    return makeSampleTable(expression.index.tolist())


@pytest.fixture
def prefixBuilder():
    return PrefixBuilder()


@pytest.fixture
def network(expression, prefixBuilder):
    return prefixBuilder.buildNetwork(expression, name='combined')
