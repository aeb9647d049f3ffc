from multiWGCNA.errors import InvalidInput, InsufficientSamples, DegenerateStatistic, NetworkConstructionError, \
    ReplicateFailure
from multiWGCNA.geneExp import GeneExp, checkSampleTable
from multiWGCNA.network import WGCNANetwork
from multiWGCNA.wgcna import WGCNA
from multiWGCNA.comparison import Comparison, ModuleCorrespondence, computeOverlap, resolveBestMatches
from multiWGCNA.outliers import detectOutliers
from multiWGCNA.dme import DMEResult, runDME, adjustPValues
from multiWGCNA.preservation import computePreservation
from multiWGCNA.permutation import runPermutationTest, PreservationPermutationTest, PermutationTestResult, \
    extractSizeMatchedNull, PreservationScoreDistribution, empiricalPValue, compareToNull, readNullDistribution
from multiWGCNA.utils import readNetwork, readComparison, compareNetworks, constructNetworks, overlapComparisons, \
    findBestMatches, traceModule
