import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed

import numpy as np
import pandas as pd

from multiWGCNA.errors import InvalidInput, InsufficientSamples, ReplicateFailure
from multiWGCNA.geneExp import checkSampleTable, sampleByGene
from multiWGCNA.outliers import detectOutliers
from multiWGCNA.preservation import computePreservation
from multiWGCNA.wgcna import WGCNA

# bcolors
OKBLUE = '\033[94m'
OKCYAN = '\033[96m'
OKGREEN = '\033[92m'
WARNING = '\033[93m'
ENDC = '\033[0m'
BOLD = '\033[1m'

# columns every null distribution table has, freshly computed or read from disk
nullDistributionColumns = ["Zsummary", "moduleSize", "isOutlierModule"]


def stratifiedAllocation(levelCounts, groupSize, minSamplesPerStratum=1):
    """
    Number of samples of each confound level which go to the first synthetic group, so that each level is
    represented in proportion to the group sizes. Quotas are rounded down and the remaining samples are
    given to the levels with the largest remainder; equal remainders are resolved by level name.

    :param levelCounts: number of samples in each confound level
    :type levelCounts: pandas series
    :param groupSize: size of the first synthetic group
    :type groupSize: int
    :param minSamplesPerStratum: minimum number of samples of each level in each synthetic group (default: 1)
    :type minSamplesPerStratum: int

    :return: number of samples of each level in the first group
    :rtype: pandas series
    """
    total = int(levelCounts.sum())
    if groupSize < 0 or groupSize > total:
        raise InvalidInput(f"group size {groupSize} is not between 0 and {total}")

    short = levelCounts[levelCounts < 2 * minSamplesPerStratum]
    if len(short) > 0:
        raise InsufficientSamples(f"Confound level(s) {short.index.tolist()} have {short.values.tolist()} "
                                  f"sample(s); {2 * minSamplesPerStratum} are needed to put "
                                  f"{minSamplesPerStratum} in each synthetic group.")

    levelCounts = levelCounts.sort_index()
    quota = levelCounts * groupSize / total
    allocation = np.floor(quota).astype(int)
    remainder = quota - allocation
    left = groupSize - int(allocation.sum())
    order = sorted(levelCounts.index, key=lambda level: (-remainder[level], str(level)))
    for level in order[:left]:
        allocation[level] += 1

    tooFew = allocation[(allocation < minSamplesPerStratum) |
                        (levelCounts - allocation < minSamplesPerStratum)]
    if len(tooFew) > 0:
        raise InsufficientSamples(f"Confound level(s) {tooFew.index.tolist()} can not be split with at least "
                                  f"{minSamplesPerStratum} sample(s) in each synthetic group.")
    return allocation


def stratifiedPermutation(confound, allocation, rng):
    """
    Randomly split samples into two synthetic groups keeping the confound allocation

    :param confound: confound level of each sample (index are sample ids)
    :type confound: pandas series
    :param allocation: number of samples of each level in the first group
    :type allocation: pandas series
    :param rng: random generator
    :type rng: numpy.random.Generator

    :return: sample ids of first and second group
    :rtype: tuple of list
    """
    group1, group2 = [], []
    for level in allocation.index:
        samples = confound.index[confound == level].tolist()
        shuffled = [samples[i] for i in rng.permutation(len(samples))]
        group1.extend(shuffled[:allocation[level]])
        group2.extend(shuffled[allocation[level]:])
    return group1, group2


class NullDistributionCollector:
    """
    thread safe, append only collection of replicate results
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._records = []
        self._failures = []
        self._successful = []

    def add(self, replicate, records):
        with self._lock:
            self._successful.append(replicate)
            self._records.append(records)

    def addFailure(self, failure):
        with self._lock:
            self._failures.append(failure)

    def nullDistribution(self):
        with self._lock:
            if len(self._records) == 0:
                return pd.DataFrame(columns=["replicate", "module", "moduleSize", "Zsummary", "isOutlierModule"])
            null = pd.concat(self._records, ignore_index=True)
        return null.sort_values(["replicate", "module"]).reset_index(drop=True)

    def failures(self):
        with self._lock:
            rows = [{'replicate': failure.replicate, 'reason': failure.reason} for failure in self._failures]
        return pd.DataFrame(rows, columns=['replicate', 'reason']).sort_values('replicate').reset_index(drop=True)

    @property
    def nSuccessful(self):
        return len(self._successful)


class PermutationTestResult:
    """
    A class used to keep the null distribution of preservation scores from the permutation test

    :param nullDistribution: one row per module of each successful replicate (replicate, module, moduleSize, Zsummary, isOutlierModule)
    :type nullDistribution: pandas dataframe
    :param nPermutations: number of replicates requested
    :type nPermutations: int
    :param nSuccessful: number of replicates which finished
    :type nSuccessful: int
    :param failures: dropped replicates and the reason
    :type failures: pandas dataframe
    :param constructNetworksIn: condition the networks are constructed in
    :type constructNetworksIn: str
    :param testPreservationIn: condition the preservation is tested in
    :type testPreservationIn: str
    :param confound: column of the sample table controlled for
    :type confound: str
    :param allocation: number of samples of each confound level in the construct group
    :type allocation: pandas series
    """

    def __init__(self, nullDistribution, nPermutations, nSuccessful, failures, constructNetworksIn=None,
                 testPreservationIn=None, confound=None, allocation=None):
        self.nullDistribution = nullDistribution
        self.nPermutations = nPermutations
        self.nSuccessful = nSuccessful
        self.failures = failures
        self.constructNetworksIn = constructNetworksIn
        self.testPreservationIn = testPreservationIn
        self.confound = confound
        self.allocation = allocation

    @property
    def nDropped(self):
        return self.failures.shape[0]

    @property
    def nOutlierModules(self):
        return int(self.nullDistribution['isOutlierModule'].astype(bool).sum())

    @property
    def nDegenerateModules(self):
        return int(self.nullDistribution['Zsummary'].isna().sum())

    def summary(self):
        return {'nPermutations': self.nPermutations,
                'nSuccessful': self.nSuccessful,
                'nDropped': self.nDropped,
                'nModules': self.nullDistribution.shape[0],
                'nOutlierModules': self.nOutlierModules,
                'nDegenerateModules': self.nDegenerateModules}

    def saveNullDistribution(self, path, sep='\t'):
        """
        save null distribution as a table, it can be read back by readNullDistribution

        :param path: path of the table
        :type path: str
        :param sep: separation symbol (default: '\t')
        :type sep: str
        """
        print(f"{BOLD}{OKBLUE}Saving null distribution as {path}{ENDC}")
        self.nullDistribution.to_csv(path, sep=sep, index=False)


def checkNullDistribution(nullDistribution):
    """
    check a null distribution table has the required columns and types

    :return: copy of the table with numeric scores and sizes and boolean outlier flags
    :rtype: pandas dataframe
    """
    if isinstance(nullDistribution, PermutationTestResult):
        nullDistribution = nullDistribution.nullDistribution
    if not isinstance(nullDistribution, pd.DataFrame):
        raise InvalidInput("null distribution should be pandas dataframe or PermutationTestResult!")
    missing = [column for column in nullDistributionColumns if column not in nullDistribution.columns]
    if len(missing) > 0:
        raise InvalidInput(f"Column(s) {missing} are missing in null distribution!")

    null = nullDistribution.copy()
    null['Zsummary'] = pd.to_numeric(null['Zsummary'], errors='raise').astype(float)
    null['moduleSize'] = pd.to_numeric(null['moduleSize'], errors='raise')
    if null['isOutlierModule'].dtype != bool:
        flags = null['isOutlierModule'].astype(str).str.lower()
        if not flags.isin(['true', 'false', '1', '0']).all():
            raise InvalidInput("isOutlierModule should only contain boolean values!")
        null['isOutlierModule'] = flags.isin(['true', '1'])
    return null


def readNullDistribution(path, sep='\t'):
    """
    Read a previously computed null distribution to skip the permutation test

    :param path: path of the table
    :type path: str
    :param sep: separation symbol (default: '\t')
    :type sep: str

    :return: null distribution with the same schema as a freshly computed one
    :rtype: pandas dataframe
    """
    if not os.path.isfile(path):
        raise InvalidInput('Null distribution not found at given path!')
    null = checkNullDistribution(pd.read_csv(path, sep=sep))
    print(f"{BOLD}{OKBLUE}Reading null distribution with {null.shape[0]} scores done!{ENDC}")
    return null


def _inferConditionColumn(table, constructNetworksIn, testPreservationIn):
    columns = [column for column in table.columns
               if table[column].isin([constructNetworksIn]).any() and table[column].isin([testPreservationIn]).any()]
    if len(columns) != 1:
        raise InvalidInput(f"Can not find one column of sampleTable containing both {constructNetworksIn} and "
                           f"{testPreservationIn} (found {columns}), please give conditionColumn!")
    return columns[0]


def _runReplicate(replicate, datExpr, confound, allocation, builder, nPresPermutations, flagOutliers,
                  outlierThreshold, seed):
    rng = np.random.default_rng(seed)
    constructSamples, testSamples = stratifiedPermutation(confound, allocation, rng)
    try:
        network = builder.buildNetwork(datExpr.loc[constructSamples], name=f"permutation{replicate}")
        if len(network.getModuleNames()) == 0:
            raise ReplicateFailure(replicate, "no module found in constructed network")
        testNetwork = builder.buildNetwork(datExpr.loc[testSamples], name=f"permutation{replicate}_test")
        preservation = computePreservation(network, testNetwork, nPermutations=nPresPermutations, randomState=rng,
                                           verbose=False)
        if flagOutliers:
            detectOutliers(network, threshold=outlierThreshold, minSamples=min(4, len(constructSamples)),
                           verbose=False)
    except ReplicateFailure:
        raise
    except Exception as e:
        raise ReplicateFailure(replicate, f"{type(e).__name__}: {e}") from e

    records = pd.DataFrame({'replicate': replicate,
                            'module': preservation.index,
                            'moduleSize': preservation['moduleSize'].values,
                            'Zsummary': preservation['Zsummary'].values,
                            'isOutlierModule': [network.isOutlierModule(module) for module in preservation.index]})
    return records


def runPermutationTest(geneExp, sampleTable, constructNetworksIn, testPreservationIn, confound=None,
                       conditionColumn=None, nPermutations=100, nPresPermutations=100, builder=None, nWorkers=1,
                       minSamplesPerStratum=1, flagOutliers=True, outlierThreshold=0.1, randomState=None,
                       verbose=True):
    """
    Preservation permutation test: samples of two conditions are repeatedly re-split into two synthetic groups
    of the real group sizes (stratified on a confound), a network is constructed in each group and the
    preservation of the modules of the first network is calculated in the second. The scores build a null distribution of
    preservation for modules of a given size.

    :param geneExp: expression data; GeneExp, anndata (obs are samples) or dataframe with genes in rows and samples in columns
    :type geneExp: GeneExp, anndata or pandas dataframe
    :param sampleTable: table which first column is sample id and other columns are conditions
    :type sampleTable: pandas dataframe
    :param constructNetworksIn: condition the modules are found in (e.g. "EAE")
    :type constructNetworksIn: str
    :param testPreservationIn: condition the preservation is tested in (e.g. "WT")
    :type testPreservationIn: str
    :param confound: column of sampleTable which distribution is kept in both synthetic groups (e.g. "Region"), None to not stratify
    :type confound: str
    :param conditionColumn: column of sampleTable containing constructNetworksIn and testPreservationIn, found automatically if None
    :type conditionColumn: str
    :param nPermutations: number of replicates (default: 100)
    :type nPermutations: int
    :param nPresPermutations: number of permutations used to calculate each preservation (default: 100)
    :type nPresPermutations: int
    :param builder: network builder with a buildNetwork(datExpr, name) method; must not keep state between calls (default: WGCNA())
    :type builder: WGCNA
    :param nWorkers: number of worker threads (default: 1)
    :type nWorkers: int
    :param minSamplesPerStratum: minimum number of samples of each confound level in each synthetic group (default: 1)
    :type minSamplesPerStratum: int
    :param flagOutliers: detect outlier modules in each constructed network (default: True)
    :type flagOutliers: bool
    :param outlierThreshold: threshold of detectOutliers (default: 0.1)
    :type outlierThreshold: float
    :param randomState: seed (default: None)
    :type randomState: int
    :param verbose: print progress (default: True)
    :type verbose: bool

    :return: null distribution and count of successful and dropped replicates
    :rtype: PermutationTestResult
    """
    if nPermutations < 1:
        raise InvalidInput("nPermutations should be at least 1")
    if nWorkers < 1:
        raise InvalidInput("nWorkers should be at least 1")
    if constructNetworksIn == testPreservationIn:
        raise InvalidInput("constructNetworksIn and testPreservationIn should be different conditions!")

    datExpr = sampleByGene(geneExp)
    table = checkSampleTable(sampleTable, requiredColumns=[conditionColumn, confound], samples=datExpr.index)
    if conditionColumn is None:
        conditionColumn = _inferConditionColumn(table, constructNetworksIn, testPreservationIn)
    table = table.loc[datExpr.index]

    nConstruct = int((table[conditionColumn] == constructNetworksIn).sum())
    nTest = int((table[conditionColumn] == testPreservationIn).sum())
    if nConstruct == 0 or nTest == 0:
        raise InvalidInput(f"No sample found for {constructNetworksIn if nConstruct == 0 else testPreservationIn} "
                           f"in column {conditionColumn}!")
    pooled = table.index[table[conditionColumn].isin([constructNetworksIn, testPreservationIn])]
    if confound is None:
        levels = pd.Series('all', index=pooled)
    else:
        levels = table.loc[pooled, confound]
    allocation = stratifiedAllocation(levels.value_counts(), nConstruct, minSamplesPerStratum=minSamplesPerStratum)
    datExpr = datExpr.loc[pooled]

    if builder is None:
        builder = WGCNA(verbose=False)
    if verbose:
        print(f"{BOLD}{OKBLUE}Running {nPermutations} preservation permutations: networks in "
              f"{constructNetworksIn} ({nConstruct} samples), preservation in {testPreservationIn} "
              f"({nTest} samples)...{ENDC}")
        if confound is not None:
            print(f"{OKCYAN}Samples of each {confound} level in the construct group: {allocation.to_dict()}{ENDC}")

    seeds = np.random.SeedSequence(randomState).spawn(nPermutations)
    collector = NullDistributionCollector()
    with ThreadPoolExecutor(max_workers=nWorkers) as executor:
        futures = {executor.submit(_runReplicate, replicate, datExpr, levels, allocation, builder,
                                   nPresPermutations, flagOutliers, outlierThreshold, seeds[replicate]): replicate
                   for replicate in range(nPermutations)}
        for future in as_completed(futures):
            replicate = futures[future]
            try:
                collector.add(replicate, future.result())
            except ReplicateFailure as failure:
                collector.addFailure(failure)
                if verbose:
                    print(f"{WARNING}Permutation {replicate} dropped: {failure.reason}{ENDC}")
                continue
            if verbose:
                print(f"\tPermutation {replicate} done..")

    result = PermutationTestResult(collector.nullDistribution(), nPermutations, collector.nSuccessful,
                                   collector.failures(), constructNetworksIn=constructNetworksIn,
                                   testPreservationIn=testPreservationIn, confound=confound, allocation=allocation)
    if verbose:
        print(f"{OKGREEN}{result.nSuccessful} permutation(s) succeeded, {result.nDropped} dropped, "
              f"{result.nOutlierModules} outlier module(s) in the null distribution.{ENDC}")
        print("\tDone..\n")

    return result


def extractSizeMatchedNull(nullDistribution, moduleOfInterestSize, tolerance=0.1, method="window",
                           excludeOutliers=True):
    """
    Preservation scores of the null distribution comparable to a module of the given size

    :param nullDistribution: result of runPermutationTest or a null distribution table
    :type nullDistribution: PermutationTestResult or pandas dataframe
    :param moduleOfInterestSize: number of genes of the module of interest
    :type moduleOfInterestSize: int
    :param tolerance: "window": relative size difference accepted (default: 0.1)
    :type tolerance: float
    :param method: "window" keeps scores of modules which size is within tolerance of the given size, "regression" predicts one score per replicate from a linear fit of Zsummary on module size
    :type method: str
    :param excludeOutliers: remove scores of outlier modules (default: True)
    :type excludeOutliers: bool

    :return: null scores
    :rtype: ndarray
    """
    null = checkNullDistribution(nullDistribution)
    if moduleOfInterestSize <= 0:
        raise InvalidInput("moduleOfInterestSize should be positive")
    if excludeOutliers:
        null = null[~null['isOutlierModule']]
    null = null[null['Zsummary'].notna()]

    if method == "window":
        distance = np.abs(null['moduleSize'] - moduleOfInterestSize)
        return null.loc[distance <= tolerance * moduleOfInterestSize, 'Zsummary'].values
    elif method == "regression":
        if 'replicate' not in null.columns:
            raise InvalidInput("regression needs the replicate column in null distribution!")
        scores = []
        for replicate, scoresOfReplicate in null.groupby('replicate'):
            if scoresOfReplicate['moduleSize'].nunique() < 2:
                continue
            slope, intercept = np.polyfit(scoresOfReplicate['moduleSize'].astype(float),
                                          scoresOfReplicate['Zsummary'], 1)
            scores.append(intercept + slope * moduleOfInterestSize)
        return np.asarray(scores, dtype=float)
    else:
        raise InvalidInput("method should be 'window' or 'regression'")


def empiricalPValue(nullScores, observedScore):
    """
    Fraction of null scores smaller than or equal to the observed score

    :return: empirical p-value, NaN when there is no null score
    :rtype: float
    """
    nullScores = np.asarray(nullScores, dtype=float)
    nullScores = nullScores[~np.isnan(nullScores)]
    if len(nullScores) == 0 or np.isnan(observedScore):
        return np.nan
    return np.count_nonzero(nullScores <= observedScore) / len(nullScores)


def compareToNull(observedPreservation, nullDistribution, tolerance=0.1, method="window", excludeOutliers=True):
    """
    empirical p-value of each observed module preservation against its size matched null

    :param observedPreservation: result of computePreservation on the real (non permuted) networks
    :type observedPreservation: pandas dataframe
    :param nullDistribution: result of runPermutationTest or a null distribution table
    :type nullDistribution: PermutationTestResult or pandas dataframe

    :return: moduleSize, Zsummary, size of the null and p-value of each module
    :rtype: pandas dataframe
    """
    null = checkNullDistribution(nullDistribution)
    rows = []
    for module, row in observedPreservation.iterrows():
        scores = extractSizeMatchedNull(null, int(row['moduleSize']), tolerance=tolerance, method=method,
                                        excludeOutliers=excludeOutliers)
        rows.append({'module': module,
                     'moduleSize': int(row['moduleSize']),
                     'Zsummary': row['Zsummary'],
                     'nNull': len(scores),
                     'P_value': empiricalPValue(scores, row['Zsummary'])})
    return pd.DataFrame(rows, columns=['module', 'moduleSize', 'Zsummary', 'nNull', 'P_value']).set_index('module')


PreservationPermutationTest = runPermutationTest
PreservationScoreDistribution = extractSizeMatchedNull
