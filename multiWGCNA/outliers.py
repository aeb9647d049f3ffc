import numpy as np
import pandas as pd

from multiWGCNA.errors import InvalidInput

# bcolors
OKCYAN = '\033[96m'
WARNING = '\033[93m'
ENDC = '\033[0m'


def _meanCorrelation(datModule):
    """
    mean off-diagonal Pearson correlation of the columns of datModule (samples x genes)

    Uses sum_{j,k} cor(j, k) = ||sum_j z_j||^2 with z_j the centered, unit length gene vectors.
    Genes without variance are left out.
    """
    centered = datModule - datModule.mean(axis=0)
    norm = np.sqrt((centered ** 2).sum(axis=0))
    valid = norm > 1e-12
    nGenes = np.count_nonzero(valid)
    if nGenes < 2:
        return np.nan
    summed = (centered[:, valid] / norm[valid]).sum(axis=1)
    return (np.sum(summed ** 2) - nGenes) / (nGenes * (nGenes - 1))


def meanIntramodularCorrelation(datModule):
    """
    Mean correlation between the genes of a module

    :param datModule: expression of module genes, samples in the rows
    :type datModule: pandas dataframe or ndarray

    :return: mean of the off-diagonal correlations (NaN if less than two genes vary)
    :rtype: float
    """
    return _meanCorrelation(np.asarray(datModule, dtype=float))


def leaveOneOutCorrelation(datModule):
    """
    Mean intramodular correlation recalculated after removing each sample once

    :param datModule: expression of module genes, samples in the rows
    :type datModule: pandas dataframe or ndarray

    :return: one mean correlation per removed sample
    :rtype: ndarray
    """
    values = np.asarray(datModule, dtype=float)
    nSamples = values.shape[0]
    keep = np.ones(nSamples, dtype=bool)
    result = np.empty(nSamples)
    for i in range(nSamples):
        keep[i] = False
        result[i] = _meanCorrelation(values[keep])
        keep[i] = True
    return result


def detectOutliers(network, threshold=0.1, minSamples=4, verbose=True):
    """
    Flag modules which co-expression is driven by one sample: removing a single sample changes
    the mean intramodular correlation by more than threshold.

    :param network: network to check
    :type network: WGCNANetwork
    :param threshold: largest accepted change of mean intramodular correlation (default: 0.1)
    :type threshold: float
    :param minSamples: minimum number of samples needed to run the leave-one-out (default: 4)
    :type minSamples: int
    :param verbose: print progress (default: True)
    :type verbose: bool

    :return: name of outlier modules, also kept in network.outlierModules with details in network.outlierTable
    :rtype: set
    """
    if threshold <= 0:
        raise InvalidInput("threshold must be positive")
    if len(network.samples) < minSamples:
        raise InvalidInput(f"At least {minSamples} samples are needed to detect outlier modules, "
                           f"{network.name} has {len(network.samples)}")
    if verbose:
        print(f"{OKCYAN}Detecting outlier modules in {network.name} network...{ENDC}")

    rows = []
    for module in network.getModuleNames():
        datModule = network.moduleExpression(module)
        baseline = meanIntramodularCorrelation(datModule)
        change = np.abs(baseline - leaveOneOutCorrelation(datModule))
        if np.all(np.isnan(change)):
            maxChange, sample = np.nan, None
        else:
            maxChange = np.nanmax(change)
            sample = datModule.index[np.nanargmax(change)]
        rows.append({'module': module,
                     'size': datModule.shape[1],
                     'meanCor': baseline,
                     'maxChange': maxChange,
                     'outlierSample': sample,
                     'isOutlier': bool(maxChange > threshold)})

    table = pd.DataFrame(rows, columns=['module', 'size', 'meanCor', 'maxChange', 'outlierSample', 'isOutlier'])
    table = table.set_index('module')
    network.outlierTable = table
    table['isOutlier'] = table['isOutlier'].astype(bool)
    network.outlierModules = set(table.index[table['isOutlier']])

    if verbose:
        if len(network.outlierModules) > 0:
            print(f"{WARNING}{len(network.outlierModules)} outlier module(s) found in {network.name}: "
                  f"{sorted(network.outlierModules)}{ENDC}")
        print("\tDone..\n")

    return set(network.outlierModules)
