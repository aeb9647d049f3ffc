import numpy as np
import pandas as pd

from multiWGCNA.errors import InvalidInput
from multiWGCNA.geneExp import sampleByGene
from multiWGCNA.network import WGCNANetwork

# bcolors
OKBLUE = '\033[94m'
OKCYAN = '\033[96m'
WARNING = '\033[93m'
ENDC = '\033[0m'
BOLD = '\033[1m'

densityStatistics = ["meanCor", "meanAdj", "propVarExpl", "meanKME"]
connectivityStatistics = ["cor.kIM", "cor.kME", "cor.cor"]


def _standardize(datExpr):
    """
    center each gene and scale it to unit length, so that X.T @ X is the correlation matrix
    """
    centered = datExpr - datExpr.mean(axis=0)
    norm = np.sqrt((centered ** 2).sum(axis=0))
    norm[norm < 1e-12] = np.inf
    return centered / norm


def _adjacency(cor, networkType, power):
    if networkType == "unsigned":
        adj = np.abs(cor)
    elif networkType == "signed":
        adj = (1 + cor) / 2
    else:
        adj = np.where(cor > 0, cor, 0)
    return adj ** power


def _cor(x, y):
    if np.std(x) == 0 or np.std(y) == 0:
        return np.nan
    return np.corrcoef(x, y)[0, 1]


class _ModuleSide:
    """
    correlation, adjacency and eigengene based quantities of a gene set in one data set
    """

    def __init__(self, standardized, networkType, power):
        self.cor = standardized.T @ standardized
        np.fill_diagonal(self.cor, 1)
        adj = _adjacency(self.cor, networkType, power)
        np.fill_diagonal(adj, 0)
        self.adj = adj
        self.kIM = adj.sum(axis=1)

        u, d, vt = np.linalg.svd(standardized, full_matrices=False)
        eigengene = u[:, 0]
        average = standardized.mean(axis=1)
        if _cor(eigengene, average) < 0:
            eigengene = -eigengene
        self.propVarExpl = d[0] ** 2 / np.sum(d ** 2) if np.sum(d ** 2) > 0 else np.nan
        # correlation of each gene with the eigengene (standardized columns have unit length)
        self.kME = standardized.T @ (eigengene - eigengene.mean()) / np.linalg.norm(eigengene - eigengene.mean())


def _statistics(query, reference):
    """
    preservation statistics of a module (query side) evaluated on a gene set of the reference
    """
    upper = np.triu_indices(query.cor.shape[0], k=1)
    sign = np.sign(query.cor[upper])
    return {"meanCor": np.mean(sign * reference.cor[upper]),
            "meanAdj": np.mean(reference.adj[upper]),
            "propVarExpl": reference.propVarExpl,
            "meanKME": np.mean(np.sign(query.kME) * reference.kME),
            "cor.kIM": _cor(query.kIM, reference.kIM),
            "cor.kME": _cor(query.kME, reference.kME),
            "cor.cor": _cor(query.cor[upper], reference.cor[upper])}


def computePreservation(queryNetwork, referenceExpr, nPermutations=100, includeGrey=False,
                        randomState=None, verbose=True):
    """
    Module preservation Z-summary of each module of queryNetwork in the reference expression data.
    Observed density and connectivity statistics of each module are compared with the same statistics
    when the module is mapped onto random genes of the reference (permuted module labels).

    Zdensity = median Z of (meanCor, meanAdj, propVarExpl, meanKME),
    Zconnectivity = median Z of (cor.kIM, cor.kME, cor.cor),
    Zsummary = max(0, (Zdensity + Zconnectivity) / 2); a module scoring below its null is reported as 0.

    :param queryNetwork: network which modules are tested
    :type queryNetwork: WGCNANetwork
    :param referenceExpr: expression data the modules are evaluated in; WGCNANetwork, GeneExp, anndata (obs are samples) or dataframe with genes in rows
    :type referenceExpr: WGCNANetwork, GeneExp, anndata or pandas dataframe
    :param nPermutations: number of module label permutations to build the null of each statistic (default: 100)
    :type nPermutations: int
    :param includeGrey: if you want to evaluate unassigned genes as a module too (default: False)
    :type includeGrey: bool
    :param randomState: seed or numpy generator (default: None)
    :type randomState: int or numpy.random.Generator
    :param verbose: print progress (default: True)
    :type verbose: bool

    :return: preservation of each module (rows) with moduleSize, Zsummary, Zdensity, Zconnectivity, component Z scores and observed statistics
    :rtype: pandas dataframe
    """
    if nPermutations < 2:
        raise InvalidInput("nPermutations should be at least 2")
    if isinstance(referenceExpr, WGCNANetwork):
        reference = referenceExpr.datExpr.to_df()
    else:
        reference = sampleByGene(referenceExpr)
    query = queryNetwork.datExpr.to_df()

    genes = query.columns.intersection(reference.columns)
    if len(genes) == 0:
        raise InvalidInput(f"{queryNetwork.name} network and reference data share no genes!")
    if verbose:
        print(f"{BOLD}{OKBLUE}Calculating preservation of {queryNetwork.name} modules "
              f"({nPermutations} permutations)...{ENDC}")

    rng = np.random.default_rng(randomState)
    queryStd = _standardize(query[genes].values.astype(float))
    referenceStd = _standardize(reference[genes].values.astype(float))
    position = pd.Series(np.arange(len(genes)), index=genes)
    networkType, power = queryNetwork.networkType, queryNetwork.power

    columns = (["moduleSize", "Zsummary", "Zdensity", "Zconnectivity"] +
               ["Z." + stat for stat in densityStatistics + connectivityStatistics] +
               densityStatistics + connectivityStatistics)
    modules = queryNetwork.getModuleNames(includeGrey=includeGrey)
    result = pd.DataFrame(np.nan, index=pd.Index(modules, name="module"), columns=columns, dtype=float)
    degenerate = []
    for module in modules:
        index = position[[gene for gene in queryNetwork.getGeneModule(module) if gene in position.index]].values
        size = len(index)
        result.loc[module, "moduleSize"] = size
        if size < 3:
            degenerate.append(module)
            continue

        querySide = _ModuleSide(queryStd[:, index], networkType, power)
        observed = _statistics(querySide, _ModuleSide(referenceStd[:, index], networkType, power))
        null = pd.DataFrame([_statistics(querySide,
                                         _ModuleSide(referenceStd[:, rng.choice(len(genes), size, replace=False)],
                                                     networkType, power))
                             for _ in range(nPermutations)])

        spread = null.std(axis=0, ddof=1)
        Z = (pd.Series(observed) - null.mean(axis=0)) / spread.where(spread > 0)
        for stat, value in observed.items():
            result.loc[module, stat] = value
            result.loc[module, "Z." + stat] = Z[stat]
        Zdensity = np.nanmedian(Z[densityStatistics].values) if Z[densityStatistics].notna().any() else np.nan
        Zconnectivity = np.nanmedian(Z[connectivityStatistics].values) \
            if Z[connectivityStatistics].notna().any() else np.nan
        result.loc[module, "Zdensity"] = Zdensity
        result.loc[module, "Zconnectivity"] = Zconnectivity
        Zsummary = (Zdensity + Zconnectivity) / 2
        result.loc[module, "Zsummary"] = Zsummary if np.isnan(Zsummary) else max(0.0, Zsummary)
        if np.isnan(result.loc[module, "Zsummary"]):
            degenerate.append(module)

    result["moduleSize"] = result["moduleSize"].astype(int)
    if verbose:
        if len(degenerate) > 0:
            print(f"{WARNING}Preservation of {len(degenerate)} module(s) is undefined: {degenerate}{ENDC}")
        print("\tDone..\n")

    return result
