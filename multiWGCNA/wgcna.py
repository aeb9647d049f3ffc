import math

import numpy as np
import pandas as pd
import psutil
from scipy.spatial.distance import squareform
from scipy.cluster.hierarchy import linkage, fcluster
from matplotlib import colors as mcolors
from sklearn.cluster import KMeans
from sklearn.impute import KNNImputer
from sklearn.preprocessing import scale

from multiWGCNA.errors import InvalidInput, NetworkConstructionError
from multiWGCNA.geneExp import sampleByGene, toAnnData
from multiWGCNA.network import WGCNANetwork

# remove runtime warning (divided by zero)
np.seterr(divide='ignore', invalid='ignore')

# public values
networkTypes = ["unsigned", "signed", "signed hybrid"]
adjacencyTypes = ["unsigned", "signed", "signed hybrid"]
TOMTypes = ["NA", "unsigned", "signed"]
TOMDenoms = ["min", "mean"]
# hybrid tree cut settings for deepSplit 0 to 4: maximum core scatter and minimum gap,
# as fractions of the height range between the 5th percentile merge and the cut height
deepSplitCoreScatter = [0.64, 0.73, 0.82, 0.91, 0.95]
deepSplitMinGap = [(1.0 - scatter) * 3.0 / 4.0 for scatter in deepSplitCoreScatter]

# bcolors
OKBLUE = '\033[94m'
OKCYAN = '\033[96m'
OKGREEN = '\033[92m'
WARNING = '\033[93m'
ENDC = '\033[0m'
BOLD = '\033[1m'


class WGCNA:
    """
    A class used to construct weighted gene co-expression networks and find modules in them.

    :param networkType: Type of network we can create including "unsigned", "signed" and "signed hybrid" (default: "signed")
    :type networkType: str
    :param TOMType: Type of topological overlap matrix(TOM) including "unsigned", "signed" (default: "unsigned")
    :type TOMType: str
    :param TOMDenom: denominator of TOM, "min" or "mean" (default: "min")
    :type TOMDenom: str
    :param power: soft thresholding power (default: 12)
    :type power: int
    :param minModuleSize: minimum number of genes in a module (default: 100)
    :type minModuleSize: int
    :param maxBlockSize: maximum number of genes in one block; bigger data is pre-clustered into blocks (default: 25000). If None it is calculated from available memory
    :type maxBlockSize: int
    :param MEDissThres: modules which eigengene dissimilarity is below this threshold are merged (default: 0.1)
    :type MEDissThres: float
    :param deepSplit: sensitivity of module splitting between 0 and 4, larger gives more and smaller modules (default: 4)
    :type deepSplit: int
    :param naColor: color we used to identify genes we don't find any cluster for them (default: "grey")
    :type naColor: str
    :param minSamples: minimum number of samples needed to build a network (default: 4)
    :type minSamples: int
    :param verbose: print progress (default: True)
    :type verbose: bool
    """

    def __init__(self, networkType="signed", TOMType="unsigned", TOMDenom="min", power=12,
                 minModuleSize=100, maxBlockSize=25000, MEDissThres=0.1, deepSplit=4,
                 naColor="grey", minSamples=4, verbose=True):
        if networkType not in networkTypes:
            raise InvalidInput(f"Unrecognized 'networkType'. Recognized values are {networkTypes}")
        if TOMType not in TOMTypes[1:]:
            raise InvalidInput(f"Invalid 'TOMType'. Recognized values are {TOMTypes[1:]}")
        if TOMDenom not in TOMDenoms:
            raise InvalidInput(f"Invalid 'TOMDenom'. Recognized values are {TOMDenoms}")
        if deepSplit < 0 or deepSplit > len(deepSplitCoreScatter) - 1:
            raise InvalidInput("deepSplit should be between 0 and 4")
        if power <= 0:
            raise InvalidInput("power must be positive")
        if minModuleSize < 1:
            raise InvalidInput("minModuleSize must be at least 1")
        if MEDissThres < 0 or MEDissThres > 1:
            raise InvalidInput("MEDissThres is out of sensible range between 0 and 1")

        self.networkType = networkType
        self.TOMType = TOMType
        self.TOMDenom = TOMDenom
        self.power = power
        self.minModuleSize = minModuleSize
        self.maxBlockSize = maxBlockSize
        self.MEDissThres = MEDissThres
        self.deepSplit = deepSplit
        self.naColor = naColor
        self.minSamples = minSamples
        self.verbose = verbose

    def buildNetwork(self, expr, name='WGCNA'):
        """
        Construct a network and find its modules and module eigengenes

        :param expr: expression data; dataframe which samples are in the rows and genes are columns, GeneExp or anndata
        :type expr: pandas dataframe
        :param name: name of the network
        :type name: str

        :return: network with its modules and eigengenes
        :rtype: WGCNANetwork
        """
        if self.verbose:
            print(f"{BOLD}{OKBLUE}Building {name} network...{ENDC}")
        if not isinstance(expr, pd.DataFrame):
            expr = sampleByGene(expr)

        nSamples, nGenes = expr.shape
        if nSamples < self.minSamples:
            raise NetworkConstructionError(f"Too few samples ({nSamples}) to build {name} network.")
        if expr.isnull().values.any():
            raise NetworkConstructionError(f"Expression data of {name} network contains missing values.")

        # drop genes with zero variance, they have no correlation
        variance = expr.var(axis=0)
        goodGenes = variance > 1e-10 * max(expr.abs().max().max(), 1)
        if np.count_nonzero(goodGenes) < max(3, self.minModuleSize):
            raise NetworkConstructionError(f"Too few genes with valid expression levels to build {name} network.")
        if self.verbose and np.count_nonzero(~goodGenes) > 0:
            print(f"{OKGREEN} {np.count_nonzero(~goodGenes)} gene(s) with zero variance removed!{ENDC}")
        expr = expr.loc[:, goodGenes]

        labels = np.zeros(expr.shape[1], dtype=int)
        nextLabel = 1
        for block in self.blockGenes(expr):
            if len(block) < 2:
                continue
            blockExpr = expr.iloc[:, block]
            adjacency = WGCNA.adjacency(blockExpr, adjacencyType=self.networkType, power=self.power)
            TOM = WGCNA.TOMsimilarity(adjacency, TOMType=self.TOMType, TOMDenom=self.TOMDenom)
            dissTOM = 1 - TOM
            np.fill_diagonal(dissTOM, 0)
            dissTOM = dissTOM.round(decimals=8)
            geneTree = linkage(squareform(dissTOM, checks=False), method="average")
            blockLabels = WGCNA.cutreeHybrid(geneTree, dissTOM, deepSplit=self.deepSplit,
                                             minClusterSize=self.minModuleSize, verbose=self.verbose)
            assigned = blockLabels > 0
            labels[np.asarray(block)[assigned]] = blockLabels[assigned] + nextLabel - 1
            nextLabel = labels.max() + 1

        colors = WGCNA.labels2colors(labels, naColor=self.naColor)
        colors = WGCNA.mergeCloseModules(expr, colors, cutHeight=self.MEDissThres, grey=self.naColor,
                                         verbose=self.verbose)

        network = WGCNA.networkFromModules(expr, colors, name=name, naColor=self.naColor,
                                           networkType=self.networkType, power=self.power)
        if self.verbose:
            print(f"{OKGREEN}Found {len(network.getModuleNames())} module(s) in {name} network.{ENDC}")
            print("\tDone..\n")

        return network

    def blockGenes(self, expr):
        """
        split genes into blocks not much bigger than maxBlockSize by k-means pre-clustering

        :return: list of column positions for each block
        :rtype: list of list of int
        """
        nGenes = expr.shape[1]
        maxBlockSize = self.maxBlockSize
        if maxBlockSize is None:
            maxBlockSize = WGCNA.calBlockSize(nGenes)
        if nGenes <= maxBlockSize:
            return [list(range(nGenes))]

        nBlocks = math.ceil(nGenes / maxBlockSize)
        if self.verbose:
            print(f"{OKCYAN}Pre-clustering {nGenes} genes into {nBlocks} blocks...{ENDC}")
        profiles = scale(expr.values).T
        clusters = KMeans(n_clusters=nBlocks, n_init=10, random_state=0).fit_predict(profiles)
        return [np.where(clusters == cluster)[0].tolist() for cluster in np.unique(clusters)]

    @staticmethod
    def calBlockSize(matrixSize, maxMemoryAllocation=None, overheadFactor=3):
        """
        largest block size which square matrix fits into memory
        """
        if maxMemoryAllocation is None:
            maxAlloc = psutil.virtual_memory().available / 8
        else:
            maxAlloc = maxMemoryAllocation / 8

        maxAlloc = maxAlloc / overheadFactor
        blockSz = math.floor(math.sqrt(maxAlloc))

        return min(matrixSize, blockSz)

    @staticmethod
    def adjacency(datExpr, adjacencyType="unsigned", power=6):
        """
        Calculates correlation network adjacency from given expression data (samples in the rows)
        """
        if adjacencyType not in adjacencyTypes:
            raise InvalidInput(f"Unrecognized 'type'. Recognized values are {adjacencyTypes}")

        cor_mat = np.corrcoef(np.asarray(datExpr, dtype=float).T)
        cor_mat = np.atleast_2d(np.nan_to_num(cor_mat, nan=0))

        if adjacencyType == "unsigned":
            cor_mat = abs(cor_mat)
        elif adjacencyType == "signed":
            cor_mat = (1 + cor_mat) / 2
        else:
            cor_mat[cor_mat < 0] = 0

        return cor_mat ** power

    @staticmethod
    def checkAdjMat(adjMat, min=0, max=1):
        shape = adjMat.shape
        if shape is None or len(shape) != 2:
            raise InvalidInput("adjacency is not two-dimensional")
        if not issubclass(adjMat.dtype.type, np.floating):
            raise InvalidInput("adjacency is not numeric")
        if shape[0] != shape[1]:
            raise InvalidInput("adjacency is not square")
        if np.max(np.fabs(np.subtract(adjMat, adjMat.T))) > 1e-12:
            raise InvalidInput("adjacency is not symmetric")
        if np.min(adjMat) < min or np.max(adjMat) > max:
            raise InvalidInput(f"some entries are not between {min} and {max}")

    @staticmethod
    def TOMsimilarity(adjMat, TOMType="unsigned", TOMDenom="min"):
        """
        Calculation of the topological overlap matrix from a given adjacency matrix
        """
        if TOMType not in TOMTypes[1:]:
            raise InvalidInput(f"Invalid 'TOMType'. Recognized values are {TOMTypes[1:]}")
        if TOMDenom not in TOMDenoms:
            raise InvalidInput(f"Invalid 'TOMDenom'. Recognized values are {TOMDenoms}")

        adjMat = np.array(adjMat, dtype=float)
        WGCNA.checkAdjMat(adjMat, min=-1 if TOMType == "signed" else 0, max=1)

        np.fill_diagonal(adjMat, 0)
        L = np.matmul(adjMat, adjMat)
        k = np.abs(adjMat).sum(axis=1)
        if TOMDenom == "min":
            denom = np.minimum.outer(k, k)
        else:
            denom = np.add.outer(k, k) / 2
        tom = np.fabs(L + adjMat) / (denom + 1 - np.fabs(adjMat))
        np.fill_diagonal(tom, 1)

        return tom

    @staticmethod
    def interpolate(data, index):
        i = int(math.floor(index))
        if i < 0:
            return data[0]
        if i >= len(data) - 1:
            return data[-1]
        r = index - i
        return data[i] * (1 - r) + data[i + 1] * r

    @staticmethod
    def coreSizeFunc(branchSize, minClusterSize):
        baseCoreSize = minClusterSize / 2 + 1
        if baseCoreSize < branchSize:
            return int(baseCoreSize + math.sqrt(branchSize - baseCoreSize))
        return branchSize

    @staticmethod
    def coreScatter(distM, singletons, minClusterSize):
        """
        average distance between the genes of the core of a branch (the genes which joined it first)
        """
        coreSize = WGCNA.coreSizeFunc(len(singletons), minClusterSize)
        core = singletons[:coreSize]
        return distM[np.ix_(core, core)].sum() / (coreSize * (coreSize - 1))

    @staticmethod
    def cutreeHybrid(dendro, distM, cutHeight=None, minClusterSize=20, deepSplit=2, pamStage=True,
                     maxPamDist=None, respectSmallClusters=True, verbose=False):
        """
        Detect modules in a gene tree by the hybrid dynamic tree cut.
        Branches are followed from the leaves to the root. When two branches meet they stay apart only if both
        are big enough, have a tight core and are separated from the merge by a large enough gap; the allowed
        core scatter and the minimum gap are set by deepSplit. In the PAM stage genes outside every module are
        assigned to the closest module if they are close enough.

        :param dendro: gene tree made by scipy linkage
        :type dendro: numpy array
        :param distM: dissimilarity matrix the tree was built from
        :type distM: numpy array
        :param cutHeight: maximum merge height considered (default: 99% of the height range of the tree)
        :type cutHeight: float
        :param minClusterSize: minimum number of genes in a module (default: 20)
        :type minClusterSize: int
        :param deepSplit: sensitivity of module splitting between 0 and 4, larger gives more and smaller modules (default: 2)
        :type deepSplit: int or float
        :param pamStage: assign genes outside modules to the closest module (default: True)
        :type pamStage: bool
        :param maxPamDist: maximum distance of a gene to the module it is assigned to in the PAM stage (default: cutHeight)
        :type maxPamDist: float
        :param respectSmallClusters: in the PAM stage branches too small to be a module are assigned as a whole (default: True)
        :type respectSmallClusters: bool
        :param verbose: print progress (default: False)
        :type verbose: bool

        :return: module label of each gene; 1, 2, ... by decreasing module size and 0 for unassigned genes
        :rtype: numpy array
        """
        dendro = np.asarray(dendro)
        nMerge = dendro.shape[0]
        nPoints = nMerge + 1
        if nMerge < 1:
            raise InvalidInput("The given dendrogram is suspicious: number of merges is zero.")
        distM = np.array(distM, dtype=float)
        if distM.shape != (nPoints, nPoints):
            raise InvalidInput("distM has incorrect dimensions.")
        if deepSplit < 0 or deepSplit > len(deepSplitCoreScatter) - 1:
            raise InvalidInput(f"deepSplit should be between 0 and {len(deepSplitCoreScatter) - 1}")
        np.fill_diagonal(distM, 0)

        if verbose:
            print(f"{OKCYAN}Going through the merge tree...{ENDC}")

        heights = dendro[:, 2]
        refMerge = max(int(round(nMerge * 0.05)) - 1, 0)
        refHeight = np.sort(heights)[refMerge]
        if cutHeight is None:
            cutHeight = 0.99 * (heights.max() - refHeight) + refHeight
            if verbose:
                print(f"..cutHeight not given, setting it to {round(cutHeight, 3)} "
                      f"===> 99% of the (truncated) height range in dendro.")
        else:
            cutHeight = min(cutHeight, heights.max())
        if maxPamDist is None:
            maxPamDist = cutHeight
        if np.count_nonzero(heights <= cutHeight) < minClusterSize:
            if verbose:
                print(f"{WARNING}cutHeight set too low: no merges below the cut.{ENDC}")
            return np.zeros(nPoints, dtype=int)

        maxAbsCoreScatter = refHeight + WGCNA.interpolate(deepSplitCoreScatter, deepSplit) * (cutHeight - refHeight)
        minAbsGap = WGCNA.interpolate(deepSplitMinGap, deepSplit) * (cutHeight - refHeight)
        minAbsSplitHeight = refHeight

        # basic branches keep their genes in merge order, composite branches keep the basic branches they hold
        branches = []
        mergeToBranch = np.repeat(-1, nMerge)
        for merge in range(nMerge):
            height = dendro[merge, 2]
            if height > cutHeight:
                continue
            left, right = int(dendro[merge, 0]), int(dendro[merge, 1])
            if left < nPoints and right < nPoints:
                branches.append({'isBasic': True, 'isTopBasic': True, 'failSize': False, 'size': 2,
                                 'singletons': [left, right], 'basicClusters': [], 'attachHeight': np.nan})
                mergeToBranch[merge] = len(branches) - 1
                continue
            if left < nPoints or right < nPoints:
                gene, child = (left, right) if left < nPoints else (right, left)
                clust = mergeToBranch[child - nPoints]
                if clust < 0:
                    raise InvalidInput("merge heights of the dendrogram are not monotonic.")
                if branches[clust]['isBasic']:
                    branches[clust]['singletons'].append(gene)
                branches[clust]['size'] += 1
                mergeToBranch[merge] = clust
                continue

            clusts = [mergeToBranch[left - nPoints], mergeToBranch[right - nPoints]]
            if min(clusts) < 0:
                raise InvalidInput("merge heights of the dendrogram are not monotonic.")
            small, large = sorted(clusts, key=lambda clust: branches[clust]['size'])

            doMerge = False
            for first, second in [(small, large), (large, small)]:
                if not branches[first]['isBasic']:
                    continue
                scatter = WGCNA.coreScatter(distM, branches[first]['singletons'], minClusterSize)
                failScatter = scatter > maxAbsCoreScatter
                failGap = height - scatter < minAbsGap
                if branches[first]['size'] < minClusterSize or failScatter or failGap or height < minAbsSplitHeight:
                    doMerge = True
                    failSize = not (failScatter or failGap)
                    small, large = first, second
                    break

            if doMerge:
                branches[small].update(failSize=failSize, isTopBasic=False, attachHeight=height)
                if branches[large]['isBasic']:
                    branches[large]['singletons'].extend(branches[small]['singletons'])
                branches[large]['size'] += branches[small]['size']
                mergeToBranch[merge] = large
                continue

            if branches[large]['isBasic'] and not branches[small]['isBasic']:
                small, large = large, small
            branches[small]['attachHeight'] = height
            if branches[large]['isBasic']:
                branches[large]['attachHeight'] = height
                branches.append({'isBasic': False, 'isTopBasic': False, 'failSize': False,
                                 'size': branches[small]['size'] + branches[large]['size'],
                                 'singletons': [], 'basicClusters': [small, large], 'attachHeight': np.nan})
                mergeToBranch[merge] = len(branches) - 1
            else:
                if branches[small]['isBasic']:
                    branches[large]['basicClusters'].append(small)
                else:
                    branches[large]['basicClusters'].extend(branches[small]['basicClusters'])
                branches[large]['size'] += branches[small]['size']
                mergeToBranch[merge] = large

        labels = np.zeros(nPoints, dtype=int)
        smallLabels = np.zeros(nPoints, dtype=int)
        nClusters = 0
        for clust, branch in enumerate(branches):
            if np.isnan(branch['attachHeight']):
                branch['attachHeight'] = cutHeight
            if branch['isTopBasic'] and branch['size'] >= minClusterSize:
                scatter = WGCNA.coreScatter(distM, branch['singletons'], minClusterSize)
                if scatter < maxAbsCoreScatter and branch['attachHeight'] - scatter > minAbsGap:
                    nClusters += 1
                    labels[branch['singletons']] = nClusters
            if branch['failSize'] and respectSmallClusters:
                smallLabels[branch['singletons']] = clust + 1
        smallLabels[labels > 0] = 0

        if pamStage and nClusters > 0 and np.any(labels == 0):
            if verbose:
                print(f"{OKCYAN}Assigning unlabeled genes to the closest module...{ENDC}")
            labels = WGCNA.assignToClosestModule(distM, labels, smallLabels, maxPamDist)

        # relabel by decreasing module size
        sizes = pd.Series(labels[labels > 0]).value_counts()
        order = sorted(sizes.index, key=lambda label: (-sizes[label], label))
        ordered = np.zeros(nPoints, dtype=int)
        for newLabel, label in enumerate(order, start=1):
            ordered[labels == label] = newLabel

        if verbose:
            print("\tDone..\n")

        return ordered

    @staticmethod
    def assignToClosestModule(distM, labels, smallLabels, maxPamDist):
        """
        PAM stage of the hybrid tree cut: a small branch, or a single gene, joins the module with the smallest
        average distance to it if that distance is below the module diameter or below maxPamDist
        """
        modules = np.unique(labels[labels > 0])
        members = [np.where(labels == module)[0] for module in modules]
        diameters = np.array([distM[np.ix_(genes, genes)].sum(axis=1).max() / (len(genes) - 1)
                              if len(genes) > 1 else 0 for genes in members])

        def closest(genes):
            meanDist = np.array([distM[np.ix_(genes, other)].mean() for other in members])
            nearest = np.argmin(meanDist)
            if meanDist[nearest] < diameters[nearest] or meanDist[nearest] < maxPamDist:
                return modules[nearest]
            return -1

        assigned = labels.copy()
        for small in np.unique(smallLabels[smallLabels > 0]):
            genes = np.where(smallLabels == small)[0]
            assigned[genes] = closest(genes)
        for gene in np.where(assigned == 0)[0]:
            assigned[gene] = closest([gene])
        assigned[assigned < 0] = 0

        return assigned

    @staticmethod
    def colorSequence(naColor="grey"):
        colors = dict(**mcolors.CSS4_COLORS)
        # Sort colors by hue, saturation, value and name.
        by_hsv = sorted((tuple(mcolors.rgb_to_hsv(mcolors.to_rgba(color)[:3])), name)
                        for name, color in colors.items())
        # grey-like names are easily confused with the unassigned module
        return [name for hsv, name in by_hsv
                if name != naColor and 'grey' not in name and 'gray' not in name]

    @staticmethod
    def labels2colors(labels, zeroIsGrey=True, colorSeq=None, naColor="grey"):
        """
        Converts a vector of numerical labels into a corresponding vector of colors.
        """
        if colorSeq is None:
            colorSeq = WGCNA.colorSequence(naColor)

        labels = np.asarray(labels, dtype=int)
        colors = np.empty(len(labels), dtype=object)
        colors[:] = naColor
        start = 1 if zeroIsGrey else 0
        for label in np.unique(labels):
            if zeroIsGrey and label == 0:
                continue
            index = label - start
            rep = index // len(colorSeq)
            color = colorSeq[index % len(colorSeq)]
            if rep > 0:
                color = f"{color}.{rep}"
            colors[labels == label] = color

        return colors

    @staticmethod
    def moduleEigengenes(expr, colors, impute=True, excludeGrey=False, grey="grey", verbose=False):
        """
        Calculates module eigengenes (1st principal component) of modules in a given single dataset.

        :param expr: expression data, samples in the rows and genes in the columns
        :type expr: pandas dataframe
        :param colors: module of each gene
        :type colors: list

        :return: eigengenes (samples x "ME" + module), average expression of each module and variance explained by each eigengene
        :rtype: dict
        """
        colors = np.asarray(colors, dtype=object)
        if expr.shape[1] != len(colors):
            raise InvalidInput("moduleEigengenes: ncol(expr) and length(colors) must be equal (one color per gene).")
        modlevels = pd.Categorical(colors).categories
        if excludeGrey:
            modlevels = modlevels[modlevels != grey]
        if verbose:
            print(f"{OKCYAN}Calculating {len(modlevels)} module eigengenes in given set...{ENDC}")

        PrinComps = pd.DataFrame(index=expr.index, columns=["ME" + str(m) for m in modlevels], dtype=float)
        averExpr = pd.DataFrame(index=expr.index, columns=["AE" + str(m) for m in modlevels], dtype=float)
        varExpl = pd.Series(index=["ME" + str(m) for m in modlevels], dtype=float)
        for modulename in modlevels:
            datModule = np.asarray(expr.loc[:, colors == modulename], dtype=float)
            if impute and np.isnan(datModule).any() and datModule.shape[1] > 1:
                imputer = KNNImputer(n_neighbors=min(10, datModule.shape[1] - 1))
                datModule = imputer.fit_transform(datModule.T).T
            datModule = scale(datModule)
            u, d, vt = np.linalg.svd(datModule, full_matrices=False)
            pc = u[:, 0]
            average = datModule.mean(axis=1)
            corAve = np.corrcoef(average, pc)[0, 1]
            if np.isfinite(corAve) and corAve < 0:
                pc = -pc
            PrinComps["ME" + str(modulename)] = pc
            averExpr["AE" + str(modulename)] = average
            varExpl["ME" + str(modulename)] = d[0] ** 2 / np.sum(d ** 2) if np.sum(d ** 2) > 0 else np.nan

        return {"eigengenes": PrinComps, "averageExpr": averExpr, "varExplained": varExpl}

    @staticmethod
    def mergeCloseModules(exprData, colors, cutHeight=0.2, grey="grey", verbose=False):
        """
        Merges modules that are too close as measured by the correlation of their eigengenes.
        Merged modules take the color of their largest member.

        :return: merged module colors
        :rtype: ndarray
        """
        if cutHeight < 0 or cutHeight > 1:
            raise InvalidInput("Given cutHeight is out of sensible range between 0 and 1")
        if verbose:
            print(f"mergeCloseModules: Merging modules whose distance is less than {cutHeight}", flush=True)

        colors = np.asarray(colors, dtype=object).copy()
        while True:
            MEs = WGCNA.moduleEigengenes(exprData, colors, excludeGrey=True, grey=grey)['eigengenes']
            if MEs.shape[1] < 2:
                break
            MEDiss = 1 - np.corrcoef(MEs.values, rowvar=False)
            MEDiss = np.clip(np.nan_to_num(MEDiss, nan=1), 0, 2)
            np.fill_diagonal(MEDiss, 0)
            METree = linkage(squareform(MEDiss, checks=False), method="average")
            branches = fcluster(METree, t=cutHeight, criterion="distance")

            merged = False
            for branch in np.unique(branches):
                modules = [MEs.columns[i][2:] for i in np.where(branches == branch)[0]]
                if len(modules) < 2:
                    continue
                target = max(modules, key=lambda m: (np.count_nonzero(colors == m), m))
                for module in modules:
                    colors[colors == module] = target
                merged = True
            if not merged:
                break

        return colors

    @staticmethod
    def networkFromModules(expr, colors, name='WGCNA', naColor="grey", networkType="signed", power=12):
        """
        Build a network result from an already known module assignment (e.g. from an external tool)

        :param expr: expression data, samples in the rows and genes in the columns
        :type expr: pandas dataframe
        :param colors: module of each gene (same order as columns of expr)
        :type colors: list

        :return: network with eigengenes calculated for each module except unassigned genes
        :rtype: WGCNANetwork
        """
        if not isinstance(expr, pd.DataFrame):
            expr = sampleByGene(expr)
        MEList = WGCNA.moduleEigengenes(expr, colors, excludeGrey=True, grey=naColor)
        datExpr = toAnnData(expr)
        MEs = MEList['eigengenes']
        MEs.index = datExpr.obs_names

        return WGCNANetwork(name=name, datExpr=datExpr, moduleColors=colors, datME=MEs,
                            naColor=naColor, networkType=networkType, power=power,
                            varExplained=MEList['varExplained'])
