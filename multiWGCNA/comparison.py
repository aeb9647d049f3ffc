import pandas as pd
import numpy as np
from scipy.stats import hypergeom
import pickle

from multiWGCNA.errors import InvalidInput

# bcolors
OKBLUE = "\033[94m"
OKCYAN = "\033[96m"
ENDC = "\033[0m"
BOLD = "\033[1m"


class Comparison:
    """
    A class used to compare modules of two networks by hypergeometric overlap test

    :param name1: name of first network
    :type name1: str
    :param name2: name of second network
    :type name2: str
    :param network1: first network
    :type network1: WGCNANetwork
    :param network2: second network
    :type network2: WGCNANetwork
    :param pValues: one-sided hypergeometric p-value of each module pair (rows: modules of first network, columns: modules of second network)
    :type pValues: pandas dataframe
    :param overlapCounts: number of shared genes of each module pair
    :type overlapCounts: pandas dataframe
    :param moduleSizes1: size of each module of first network inside the gene universe
    :type moduleSizes1: pandas series
    :param moduleSizes2: size of each module of second network inside the gene universe
    :type moduleSizes2: pandas series
    :param universeSize: number of genes profiled in both networks
    :type universeSize: int
    :param comparison: Summary of comparison results, one row per module pair
    :type comparison: pandas dataframe

    """

    def __init__(self, name1="name1", name2="name2", network1=None, network2=None):
        if name1 == name2:
            name1 = name1 + "1"
            name2 = name2 + "2"
        self.name1 = name1
        self.name2 = name2
        self.network1 = network1
        self.network2 = network2
        self.grey1 = None if network1 is None else network1.naColor
        self.grey2 = None if network2 is None else network2.naColor

        self.pValues = None
        self.overlapCounts = None
        self.moduleSizes1 = None
        self.moduleSizes2 = None
        self.universeSize = None
        self.comparison = None

    def compareNetworks(self):
        """
        Compare the modules of the two networks

        :return: update comparison object
        :rtype: Comparison
        """
        universe = pd.Index(self.network1.genes).intersection(pd.Index(self.network2.genes))
        if len(universe) == 0:
            raise InvalidInput(f"{self.name1} and {self.name2} networks share no genes!")
        nGenes = len(universe)

        modules1 = self.network1.getModuleNames(includeGrey=True)
        modules2 = self.network2.getModuleNames(includeGrey=True)
        # gene x module indicator matrices restricted to the shared universe
        member1 = pd.get_dummies(pd.Categorical(self.network1.getModulesGene(universe), categories=modules1))
        member2 = pd.get_dummies(pd.Categorical(self.network2.getModulesGene(universe), categories=modules2))
        member1 = member1.values.astype(int)
        member2 = member2.values.astype(int)

        counts = member1.T @ member2
        size1 = member1.sum(axis=0)
        size2 = member2.sum(axis=0)

        # P(X >= x) with x overlap, n universe, K size2, k size1
        pValues = hypergeom.sf(counts - 1, nGenes, size2[np.newaxis, :], size1[:, np.newaxis])
        pValues = np.clip(np.nan_to_num(pValues, nan=1.0), 0, 1)
        pValues[counts == 0] = 1
        degenerate1 = (size1 == 0) | (np.asarray(modules1) == self.grey1)
        degenerate2 = (size2 == 0) | (np.asarray(modules2) == self.grey2)
        pValues[degenerate1, :] = 1
        pValues[:, degenerate2] = 1

        self.universeSize = nGenes
        self.moduleSizes1 = pd.Series(size1, index=modules1)
        self.moduleSizes2 = pd.Series(size2, index=modules2)
        self.overlapCounts = pd.DataFrame(counts, index=modules1, columns=modules2)
        self.pValues = pd.DataFrame(pValues, index=modules1, columns=modules2)
        self.comparison = self.summaryTable()

        return self

    def summaryTable(self):
        df = pd.DataFrame({self.name1: np.repeat(self.pValues.index, self.pValues.shape[1]),
                           self.name2: np.tile(self.pValues.columns, self.pValues.shape[0])})
        df[f"{self.name1}_size"] = self.moduleSizes1[df[self.name1]].values
        df[f"{self.name2}_size"] = self.moduleSizes2[df[self.name2]].values
        df['number'] = self.overlapCounts.values.flatten()
        with np.errstate(divide='ignore', invalid='ignore'):
            df['fraction(%)'] = np.where(df[f"{self.name2}_size"] > 0,
                                         df['number'] / df[f"{self.name2}_size"] * 100, 0)
        df['P_value'] = self.pValues.values.flatten()
        return df

    def transpose(self):
        """
        the same comparison seen from the second network

        :return: comparison which rows are modules of second network
        :rtype: Comparison
        """
        other = Comparison(name1=self.name2, name2=self.name1,
                           network1=self.network2, network2=self.network1)
        other.universeSize = self.universeSize
        other.moduleSizes1 = self.moduleSizes2
        other.moduleSizes2 = self.moduleSizes1
        other.overlapCounts = self.overlapCounts.T
        other.pValues = self.pValues.T
        other.comparison = other.summaryTable()
        return other

    def degenerateModules(self, axis=0):
        if axis == 0:
            sizes, grey = self.moduleSizes1, self.grey1
        else:
            sizes, grey = self.moduleSizes2, self.grey2
        return [module for module in sizes.index if sizes[module] == 0 or module == grey]

    def saveComparison(self, name="comparison"):
        """
        save comparison object as comparison.p near to the script

        :param name: name of the pickle file (default: comparison.p)
        :type name: str

        """
        print(f"{BOLD}{OKBLUE}Saving comparison as {name}.p{ENDC}")

        with open(f"{name}.p", 'wb') as picklefile:
            pickle.dump(self, picklefile)


class ModuleCorrespondence:
    """
    A class used to keep which module of one network corresponds to which module of another

    :param name1: name of first network
    :type name1: str
    :param name2: name of second network
    :type name2: str
    :param bestMatches: best match in second network for each module of first network (columns: bestMatch, P_value, number, size)
    :type bestMatches: pandas dataframe
    :param reverseBestMatches: best match in first network for each module of second network
    :type reverseBestMatches: pandas dataframe
    :param bidirectional: module pairs which are best match of each other (columns: name1, name2, P_value, number)
    :type bidirectional: pandas dataframe
    :param comparison: overlap test the correspondence derived from
    :type comparison: Comparison
    :param method: name of the overlap test (default: "hypergeometric")
    :type method: str
    """

    def __init__(self, name1, name2, bestMatches, reverseBestMatches, bidirectional,
                 comparison=None, method="hypergeometric"):
        self.name1 = name1
        self.name2 = name2
        self.bestMatches = bestMatches
        self.reverseBestMatches = reverseBestMatches
        self.bidirectional = bidirectional
        self.comparison = comparison
        self.method = method

    def __len__(self):
        return self.bidirectional.shape[0]

    def __repr__(self):
        return f"ModuleCorrespondence({self.name1!r} -> {self.name2!r}, " \
               f"{len(self)} bidirectional best match(es), method={self.method!r})"

    def bestMatch(self, module, reverse=False):
        """
        best match of a module (None when it shares no gene with any module)
        """
        table = self.reverseBestMatches if reverse else self.bestMatches
        if module not in table.index:
            return None
        match = table.loc[module, 'bestMatch']
        return None if pd.isna(match) else match

    def pairs(self):
        return list(zip(self.bidirectional[self.name1], self.bidirectional[self.name2]))

    def isBidirectional(self, module1, module2):
        return (module1, module2) in set(self.pairs())

    def inverse(self):
        """
        correspondence seen from the second network
        """
        bidirectional = self.bidirectional[[self.name2, self.name1, 'P_value', 'number']].copy()
        bidirectional = bidirectional.sort_values(self.name2).reset_index(drop=True)
        comparison = None if self.comparison is None else self.comparison.transpose()
        return ModuleCorrespondence(self.name2, self.name1, self.reverseBestMatches, self.bestMatches,
                                    bidirectional, comparison=comparison, method=self.method)


def _bestMatches(pValues, counts, partnerSizes, exclude=(), excludePartners=()):
    """
    best match for each row: smallest p-value, then larger overlap, then smaller partner, then partner name
    """
    candidates = [module for module in pValues.columns if module not in excludePartners]
    rows = []
    for module in pValues.index:
        best = None
        if module not in exclude:
            ranked = sorted(candidates, key=lambda partner: (pValues.loc[module, partner],
                                                            -counts.loc[module, partner],
                                                            partnerSizes[partner],
                                                            str(partner)))
            ranked = [partner for partner in ranked if counts.loc[module, partner] > 0]
            if len(ranked) > 0:
                best = ranked[0]
        rows.append({'module': module,
                     'bestMatch': best,
                     'P_value': np.nan if best is None else pValues.loc[module, best],
                     'number': 0 if best is None else int(counts.loc[module, best]),
                     'size': np.nan if best is None else int(partnerSizes[best])})
    return pd.DataFrame(rows, columns=['module', 'bestMatch', 'P_value', 'number', 'size']).set_index('module')


def computeOverlap(network1, network2):
    """
    Hypergeometric overlap test between every module of two networks

    :param network1: first network
    :type network1: WGCNANetwork
    :param network2: second network
    :type network2: WGCNANetwork

    :return: comparison object with p-value and overlap count matrices
    :rtype: Comparison
    """
    comparison = Comparison(name1=network1.name, name2=network2.name,
                            network1=network1, network2=network2)
    return comparison.compareNetworks()


def resolveBestMatches(comparison):
    """
    Find best match of each module in both directions and the bidirectional best matches

    :param comparison: result of overlap test
    :type comparison: Comparison

    :return: correspondence between modules of the two networks
    :rtype: ModuleCorrespondence
    """
    if comparison.pValues is None:
        raise InvalidInput("comparison has no result, run compareNetworks first!")
    degenerate1 = comparison.degenerateModules(axis=0)
    degenerate2 = comparison.degenerateModules(axis=1)

    forward = _bestMatches(comparison.pValues, comparison.overlapCounts, comparison.moduleSizes2,
                           exclude=degenerate1, excludePartners=degenerate2)
    backward = _bestMatches(comparison.pValues.T, comparison.overlapCounts.T, comparison.moduleSizes1,
                            exclude=degenerate2, excludePartners=degenerate1)

    rows = []
    for module, row in forward.iterrows():
        match = row['bestMatch']
        if match is None or pd.isna(match):
            continue
        if backward.loc[match, 'bestMatch'] == module:
            rows.append({comparison.name1: module, comparison.name2: match,
                         'P_value': row['P_value'], 'number': row['number']})
    bidirectional = pd.DataFrame(rows, columns=[comparison.name1, comparison.name2, 'P_value', 'number'])

    return ModuleCorrespondence(comparison.name1, comparison.name2, forward, backward, bidirectional,
                                comparison=comparison, method="hypergeometric")
