import pickle
import os
import itertools

import pandas as pd

from multiWGCNA.comparison import Comparison, computeOverlap, resolveBestMatches
from multiWGCNA.errors import InvalidInput
from multiWGCNA.geneExp import checkSampleTable, sampleByGene
from multiWGCNA.wgcna import WGCNA

# bcolors
OKBLUE = '\033[94m'
OKCYAN = '\033[96m'
OKGREEN = '\033[92m'
ENDC = '\033[0m'
BOLD = '\033[1m'


# read network obj
def readNetwork(file):
    """
    Read a network from a saved pickle file.

    :param file: Name / path of network object
    :type file: str

    :return: network object
    :rtype: WGCNANetwork
    """
    if not os.path.isfile(file):
        raise InvalidInput('Network object not found at given path!')

    with open(file, 'rb') as picklefile:
        network = pickle.load(picklefile)

    print(f"{BOLD}{OKBLUE}Reading {network.name} network done!{ENDC}")
    return network


# read comparison obj
def readComparison(file):
    """
    Read a comparison from a saved pickle file.

    :param file: Name / path of comparison object
    :type file: str

    :return: comparison object
    :rtype: Comparison
    """
    if not os.path.isfile(file):
        raise InvalidInput('Comparison object not found at given path!')

    with open(file, 'rb') as picklefile:
        comparison = pickle.load(picklefile)

    print(f"{BOLD}{OKBLUE}Reading comparison done!{ENDC}")
    return comparison


# compare two networks
def compareNetworks(network1, network2):
    """
    Compare modules of two networks

    :param network1: first network object
    :type network1: WGCNANetwork
    :param network2: second network object
    :type network2: WGCNANetwork

    :return: compare object
    :rtype: Comparison
    """
    return computeOverlap(network1, network2)


def _networkDict(networks):
    if isinstance(networks, dict):
        return networks
    networks = list(networks)
    names = [network.name for network in networks]
    if len(set(names)) != len(names):
        raise InvalidInput(f"Network names are not unique: {names}")
    return dict(zip(names, networks))


def constructNetworks(geneExp, sampleTable, conditions1, conditions2=None, builder=None, verbose=True, **params):
    """
    Construct the network of all samples ("combined") and one network for each level of the condition columns

    :param geneExp: expression data; GeneExp, anndata (obs are samples) or dataframe with genes in rows and samples in columns
    :type geneExp: GeneExp, anndata or pandas dataframe
    :param sampleTable: table which first column is sample id and other columns are conditions
    :type sampleTable: pandas dataframe
    :param conditions1: first condition column of sampleTable (e.g. "Disease")
    :type conditions1: str
    :param conditions2: second condition column of sampleTable (e.g. "Region")
    :type conditions2: str
    :param builder: network builder with a buildNetwork(datExpr, name) method (default: WGCNA(**params))
    :type builder: WGCNA
    :param verbose: print progress (default: True)
    :type verbose: bool
    :param params: parameters of WGCNA when no builder is given (e.g. power, minModuleSize)

    :return: networks by name, "combined" first and then the levels of conditions1 and conditions2
    :rtype: dict
    """
    datExpr = sampleByGene(geneExp)
    table = checkSampleTable(sampleTable, requiredColumns=[conditions1, conditions2], samples=datExpr.index)
    table = table.loc[datExpr.index]
    if builder is None:
        builder = WGCNA(verbose=verbose, **params)
    elif len(params) > 0:
        raise InvalidInput("params can only be used without builder!")

    subsets = {"combined": datExpr.index}
    for condition in [conditions1, conditions2]:
        if condition is None:
            continue
        for level in sorted(table[condition].unique()):
            if level in subsets:
                raise InvalidInput(f"Network name {level} is used twice, condition levels should be unique!")
            subsets[level] = table.index[table[condition] == level]

    if verbose:
        print(f"{BOLD}{OKBLUE}Constructing {len(subsets)} networks: {list(subsets.keys())}{ENDC}")
    networks = {}
    for name, samples in subsets.items():
        networks[name] = builder.buildNetwork(datExpr.loc[samples], name=name)
    if verbose:
        print(f"{OKGREEN}{len(networks)} networks constructed.{ENDC}")
        print("\tDone..\n")

    return networks


def overlapComparisons(networks, verbose=True):
    """
    Compare every pair of networks; each pair is tested once and its transpose is used for the other direction

    :param networks: networks by name, or a list of networks with unique names
    :type networks: dict or list

    :return: comparison of each ordered pair of network names
    :rtype: dict
    """
    networks = _networkDict(networks)
    comparisons = {}
    for name1, name2 in itertools.combinations(networks.keys(), 2):
        if verbose:
            print(f"{OKCYAN}Comparing {name1} and {name2} networks...{ENDC}")
        comparison = Comparison(name1=name1, name2=name2, network1=networks[name1], network2=networks[name2])
        comparison.compareNetworks()
        comparisons[(name1, name2)] = comparison
        comparisons[(name2, name1)] = comparison.transpose()
    if verbose:
        print("\tDone..\n")
    return comparisons


def findBestMatches(comparisons):
    """
    Module correspondence of each comparison

    :param comparisons: result of overlapComparisons or a list of comparisons
    :type comparisons: dict or list

    :return: correspondence for each ordered pair of network names
    :rtype: dict
    """
    if not isinstance(comparisons, dict):
        comparisons = {(comparison.name1, comparison.name2): comparison for comparison in comparisons}
    return {key: resolveBestMatches(comparison) for key, comparison in comparisons.items()}


def traceModule(networks, sourceName, module, comparisons=None):
    """
    Find the module corresponding to a module of one network in every other network

    :param networks: networks by name, or a list of networks with unique names
    :type networks: dict or list
    :param sourceName: name of the network the module belongs to
    :type sourceName: str
    :param module: name of module
    :type module: str
    :param comparisons: already computed overlapComparisons (default: None)
    :type comparisons: dict

    :return: best match, p-value, overlap and whether the match is bidirectional in each other network
    :rtype: pandas dataframe
    """
    networks = _networkDict(networks)
    if sourceName not in networks:
        raise InvalidInput(f"{sourceName} is not one of the networks!")
    if module not in networks[sourceName].getModuleNames(includeGrey=True):
        raise InvalidInput(f"Module {module} does not exist in {sourceName} network!")

    rows = []
    for name, network in networks.items():
        if name == sourceName:
            continue
        if comparisons is not None and (sourceName, name) in comparisons:
            comparison = comparisons[(sourceName, name)]
        else:
            comparison = computeOverlap(networks[sourceName], network)
        correspondence = resolveBestMatches(comparison)
        match = correspondence.bestMatch(module)
        rows.append({'network': name,
                     'module': match,
                     'P_value': correspondence.bestMatches.loc[module, 'P_value'],
                     'number': correspondence.bestMatches.loc[module, 'number'],
                     'bidirectional': match is not None and correspondence.isBidirectional(module, match)})

    return pd.DataFrame(rows, columns=['network', 'module', 'P_value', 'number', 'bidirectional'])
