import numpy as np
import pandas as pd
import os
import anndata as ad

from multiWGCNA.errors import InvalidInput


# remove runtime warning (divided by zero)
np.seterr(divide='ignore', invalid='ignore')


def checkSampleTable(sampleTable, requiredColumns=None, samples=None):
    """
    Validate a sample table and index it by sample id.

    :param sampleTable: table which first column is the unique sample identifier and other columns are categorical conditions
    :type sampleTable: pandas dataframe
    :param requiredColumns: condition columns that must exist in the table
    :type requiredColumns: list of str
    :param samples: sample ids which all must be described by the table
    :type samples: list

    :return: copy of the sample table indexed by sample id with conditions as strings
    :rtype: pandas dataframe
    """
    if not isinstance(sampleTable, pd.DataFrame):
        raise InvalidInput("sampleTable is not pandas dataframe!")
    if sampleTable.shape[1] < 1:
        raise InvalidInput("sampleTable needs at least one column (sample id)!")

    ids = sampleTable.iloc[:, 0].astype(str)
    if ids.duplicated().any():
        raise InvalidInput(f"Sample ids are not unique in sampleTable: {ids[ids.duplicated()].unique().tolist()}")

    table = sampleTable.iloc[:, 1:].copy()
    table.index = pd.Index(ids.values, name=sampleTable.columns[0])

    if requiredColumns is not None:
        required = [col for col in requiredColumns if col is not None]
        missing = [col for col in required if col not in table.columns]
        if len(missing) > 0:
            raise InvalidInput(f"Column(s) {missing} not found in sampleTable!")
        empty = [col for col in required if table[col].isna().any()]
        if len(empty) > 0:
            raise InvalidInput(f"Column(s) {empty} of sampleTable have missing values!")

    table = table.astype(str)

    if samples is not None:
        missing = [str(sample) for sample in samples if str(sample) not in table.index]
        if len(missing) > 0:
            raise InvalidInput(f"{len(missing)} sample(s) are not described in sampleTable: {missing[:10]}")

    return table


def sampleByGene(expr):
    """
    Return the expression as a samples x genes dataframe.

    :param expr: GeneExp object, anndata (obs are samples) or dataframe with genes in rows and samples in columns
    :type expr: GeneExp, anndata or pandas dataframe

    :return: expression matrix which samples are in the rows and genes are columns
    :rtype: pandas dataframe
    """
    if isinstance(expr, GeneExp):
        return expr.geneExpr.to_df()
    if isinstance(expr, ad.AnnData):
        return expr.to_df()
    if isinstance(expr, pd.DataFrame):
        df = expr.T.copy()
        df.index = df.index.astype(str)
        df.columns = df.columns.astype(str)
        return df.astype(float)
    raise InvalidInput("expression should be GeneExp, anndata or pandas dataframe!")


def toAnnData(datExpr):
    """
    wrap a samples x genes dataframe into anndata
    """
    return ad.AnnData(X=np.asarray(datExpr.values, dtype=float),
                      obs=pd.DataFrame(index=datExpr.index.astype(str)),
                      var=pd.DataFrame(index=datExpr.columns.astype(str)))


class GeneExp:
    """
    A class used to create gene expression anndata along with sample information (conditions of each sample).

    :param anndata: if the expression data is in anndata format you should pass it through this parameter. X should be expression matrix, obs is a sample information and var is a gene information.
    :type anndata: anndata
    :param geneExp: expression matrix which genes are in the rows and samples are columns
    :type geneExp: pandas dataframe
    :param geneExpPath: path of expression matrix (first column is gene id)
    :type geneExpPath: str
    :param sep: separation symbol to use for reading data in geneExpPath properly
    :type sep: str
    :param geneInfo: dataframe that contains genes information it should have a same index as gene expression index (gene/transcript ID)
    :type geneInfo: pandas dataframe
    :param sampleTable: table which first column is sample id and other columns are conditions
    :type sampleTable: pandas dataframe
    """

    def __init__(self,
                 anndata=None,
                 geneExp=None,
                 geneExpPath=None,
                 sep=',',
                 geneInfo=None,
                 sampleTable=None):
        if geneExpPath is not None:
            if not os.path.isfile(geneExpPath):
                raise InvalidInput("file does not exist!")
            expressionList = pd.read_csv(geneExpPath, sep=sep, index_col=0)
        elif geneExp is not None:
            if isinstance(geneExp, pd.DataFrame):
                expressionList = geneExp
            else:
                raise InvalidInput("geneExp is not data frame!")
        elif anndata is not None:
            if isinstance(anndata, ad.AnnData):
                self.geneExpr = anndata
                if sampleTable is not None:
                    self.updateSampleInfo(sampleTable=sampleTable)
                return
            else:
                raise InvalidInput("anndata is not anndata object!")
        else:
            raise InvalidInput("all type of input can not be empty at the same time!")

        datExpr = sampleByGene(expressionList)
        self.geneExpr = toAnnData(datExpr)

        if geneInfo is not None:
            self.updateGeneInfo(geneInfo=geneInfo)
        if sampleTable is not None:
            self.updateSampleInfo(sampleTable=sampleTable)

    @property
    def samples(self):
        return self.geneExpr.obs_names.tolist()

    @property
    def genes(self):
        return self.geneExpr.var_names.tolist()

    def updateGeneInfo(self, geneInfo=None, path=None, sep=','):
        """
        add/update genes info in expr anndata

        :param geneInfo: gene information table you want to add to your data
        :type geneInfo: pandas dataframe
        :param path: path of geneInfo
        :type path: str
        :param sep: separation symbol to use for reading data in path properly (default: ',')
        :type sep: str
        """
        if path is not None:
            if not os.path.isfile(path):
                raise InvalidInput("path does not exist!")
            geneInfo = pd.read_csv(path, sep=sep, index_col=0)
        elif geneInfo is not None:
            if not isinstance(geneInfo, pd.DataFrame):
                raise InvalidInput("geneInfo is not pandas dataframe!")
        else:
            raise InvalidInput("path and geneInfo can not be empty at the same time!")

        geneInfo = geneInfo.copy()
        geneInfo.index = geneInfo.index.astype(str)
        var = self.geneExpr.var.drop(columns=self.geneExpr.var.columns.intersection(geneInfo.columns))
        self.geneExpr.var = pd.concat([var, geneInfo.reindex(var.index)], axis=1)

    def updateSampleInfo(self, sampleTable=None, path=None, sep=','):
        """
        add/update sample table (conditions) in expr anndata

        :param sampleTable: table which first column is sample id and other columns are conditions
        :type sampleTable: pandas dataframe
        :param path: path of sample table
        :type path: str
        :param sep: separation symbol to use for reading data in path properly (default: ',')
        :type sep: str
        """
        if path is not None:
            if not os.path.isfile(path):
                raise InvalidInput("path does not exist!")
            sampleTable = pd.read_csv(path, sep=sep)
        elif sampleTable is None:
            raise InvalidInput("path and sampleTable can not be empty at the same time!")

        table = checkSampleTable(sampleTable, samples=self.samples)
        obs = self.geneExpr.obs.drop(columns=self.geneExpr.obs.columns.intersection(table.columns))
        self.geneExpr.obs = pd.concat([obs, table.reindex(obs.index)], axis=1)

    def subset(self, samples):
        """
        expression of given samples

        :param samples: sample ids to keep
        :type samples: list

        :return: expression matrix which samples are in the rows and genes are columns
        :rtype: pandas dataframe
        """
        return self.geneExpr[list(samples), :].to_df()
