import numpy as np
import pandas as pd
import pickle
import anndata as ad

from multiWGCNA.errors import InvalidInput
from multiWGCNA.geneExp import checkSampleTable, toAnnData

# bcolors
OKBLUE = '\033[94m'
WARNING = '\033[93m'
ENDC = '\033[0m'
BOLD = '\033[1m'


class WGCNANetwork:
    """
    A class used to keep the result of one co-expression network (one condition subset of samples).

    :param name: name of the network i.e. "combined" or the condition the network is constructed in
    :type name: str
    :param datExpr: expression data used to build the network, obs are samples and var are genes. var keeps the module of each gene in the 'moduleColors' column
    :type datExpr: anndata
    :param datME: module eigengenes, samples in the rows and "ME" + module name in the columns
    :type datME: pandas dataframe
    :param naColor: module name of genes that are not assigned to any module (default: "grey")
    :type naColor: str
    :param networkType: type of network the modules are found in (default: "signed")
    :type networkType: str
    :param power: soft thresholding power used to build the network (default: 12)
    :type power: int
    :param varExplained: variance explained by each module eigengene
    :type varExplained: pandas series
    :param outlierModules: modules flagged as driven by few samples; None until outliers are detected
    :type outlierModules: set
    :param outlierTable: leave-one-out summary of each module
    :type outlierTable: pandas dataframe
    """

    def __init__(self, name, datExpr, moduleColors, datME, naColor="grey",
                 networkType="signed", power=12, varExplained=None):
        if isinstance(datExpr, pd.DataFrame):
            datExpr = toAnnData(datExpr)
        if not isinstance(datExpr, ad.AnnData):
            raise InvalidInput("datExpr should be anndata or pandas dataframe!")
        if len(moduleColors) != datExpr.shape[1]:
            raise InvalidInput("Number of module colors and number of genes in datExpr differ!")

        self.name = name
        self.datExpr = datExpr
        self.datExpr.var['moduleColors'] = [str(color) for color in moduleColors]
        self.datME = datME
        self.naColor = naColor
        self.networkType = networkType
        self.power = power
        self.varExplained = varExplained

        self.outlierModules = None
        self.outlierTable = None

        missing = [sample for sample in self.datME.index if sample not in self.datExpr.obs_names]
        if len(missing) > 0:
            raise InvalidInput(f"Eigengene samples {missing[:10]} are not in the expression data of {name}!")

        # gene -> module and module -> genes indexes
        self.geneModule = dict(zip(self.datExpr.var_names, self.datExpr.var['moduleColors']))
        self.moduleGenes = {}
        for gene, module in self.geneModule.items():
            self.moduleGenes.setdefault(module, []).append(gene)

    def __repr__(self):
        return f"WGCNANetwork(name={self.name!r}, nGenes={len(self.genes)}, nSamples={len(self.samples)}, " \
               f"nModules={len(self.getModuleNames())})"

    @property
    def genes(self):
        return self.datExpr.var_names.tolist()

    @property
    def samples(self):
        return self.datExpr.obs_names.tolist()

    def getModuleNames(self, includeGrey=False):
        """
        name of modules in the network

        :param includeGrey: if you want to keep the unassigned module (default: False)
        :type includeGrey: bool

        :return: sorted module names
        :rtype: list of str
        """
        modules = sorted(self.moduleGenes.keys())
        if not includeGrey:
            modules = [module for module in modules if module != self.naColor]
        return modules

    def getGeneModule(self, moduleName):
        """
        genes assigned to the given module

        :param moduleName: name of module
        :type moduleName: str

        :return: gene ids, empty if module does not exist
        :rtype: list of str
        """
        return list(self.moduleGenes.get(moduleName, []))

    def getModulesGene(self, geneIds):
        """
        module of each given gene (None for genes not in the network)
        """
        if isinstance(geneIds, str):
            return self.geneModule.get(geneIds)
        return [self.geneModule.get(gene) for gene in geneIds]

    def moduleSizes(self, includeGrey=False):
        sizes = pd.Series({module: len(self.moduleGenes[module])
                           for module in self.getModuleNames(includeGrey=includeGrey)}, dtype=int)
        return sizes.sort_values(ascending=False)

    def moduleEigengene(self, moduleName):
        if "ME" + moduleName not in self.datME.columns:
            raise InvalidInput(f"Module {moduleName} has no eigengene in {self.name}!")
        return self.datME["ME" + moduleName]

    def moduleExpression(self, moduleName):
        """
        expression of the genes of a module, samples in the rows
        """
        return self.datExpr[:, self.getGeneModule(moduleName)].to_df()

    def isOutlierModule(self, moduleName):
        if self.outlierModules is None:
            return False
        return moduleName in self.outlierModules

    def checkSamples(self, sampleTable, requiredColumns=None):
        """
        check every sample of the network is described once in the sample table

        :return: sample table indexed by sample id, restricted to the samples of the network
        :rtype: pandas dataframe
        """
        table = checkSampleTable(sampleTable, requiredColumns=requiredColumns, samples=self.samples)
        return table.loc[self.samples]

    def topNGenes(self, moduleName, n=10):
        """
        find top n hub genes based on intramodular connectivity in given module

        :param moduleName: name of module you want to top n hub genes
        :type moduleName: str
        :param n: number of top hub genes
        :type n: int

        :return: dataframe contains top n hub genes along with connectivity and module membership (kME)
        :rtype: pandas dataframe
        """
        if moduleName not in self.getModuleNames():
            print(f"{WARNING}Module name does not exist in {self.name}{ENDC}")
            return None
        # imported here since wgcna imports this module
        from multiWGCNA.wgcna import WGCNA

        datExpr = self.moduleExpression(moduleName)
        adj = WGCNA.adjacency(datExpr, power=self.power, adjacencyType=self.networkType)
        np.fill_diagonal(adj, 0)
        hub_genes = pd.DataFrame({'connectivity': adj.sum(axis=0)}, index=datExpr.columns)
        if "ME" + moduleName in self.datME.columns:
            ME = self.datME.loc[datExpr.index, "ME" + moduleName]
            hub_genes['kME'] = datExpr.corrwith(ME)
        hub_genes = hub_genes.sort_values('connectivity', ascending=False)

        return hub_genes.iloc[:n, :]

    def saveNetwork(self, path=None):
        """
        Saves the current network in pickle format with the .p extension

        :param path: path of the pickle file (default: name of the network + '.p')
        :type path: str
        """
        if path is None:
            path = self.name + '.p'
        print(f"{BOLD}{OKBLUE}Saving network as {path}{ENDC}")

        with open(path, 'wb') as picklefile:
            pickle.dump(self, picklefile)
