import numpy as np
import pandas as pd
import statsmodels.api as sm
from statsmodels.formula.api import ols
from statsmodels.stats.multitest import multipletests

from multiWGCNA.errors import InvalidInput, DegenerateStatistic

# bcolors
OKBLUE = '\033[94m'
OKCYAN = '\033[96m'
WARNING = '\033[93m'
ENDC = '\033[0m'
BOLD = '\033[1m'

# R style names of p-value adjustments and their statsmodels counterpart
pAdjustMethods = {"fdr": "fdr_bh",
                  "BH": "fdr_bh",
                  "BY": "fdr_by",
                  "bonferroni": "bonferroni",
                  "holm": "holm",
                  "hochberg": "simes-hochberg",
                  "hommel": "hommel",
                  "none": None}
multipletestsMethods = ["bonferroni", "sidak", "holm-sidak", "holm", "simes-hochberg", "hommel",
                        "fdr_bh", "fdr_by", "fdr_tsbh", "fdr_tsbky"]


def adjustPValues(pValues, method="fdr"):
    """
    Multiple testing correction which leaves undefined (NaN) p-values untouched

    :param pValues: raw p-values
    :type pValues: pandas series
    :param method: correction method, R style name ("fdr", "BH", "BY", "bonferroni", "holm", "hochberg", "hommel", "none") or any method of statsmodels multipletests (default: "fdr")
    :type method: str

    :return: adjusted p-values
    :rtype: pandas series
    """
    if method in pAdjustMethods:
        method = pAdjustMethods[method]
    elif method not in multipletestsMethods:
        raise InvalidInput(f"Unrecognized correction method {method}. Recognized values are "
                           f"{list(pAdjustMethods.keys()) + multipletestsMethods}")

    adjusted = pd.Series(np.nan, index=pValues.index, dtype=float)
    valid = pValues.notna()
    if method is None:
        adjusted[valid] = pValues[valid]
    elif valid.sum() > 0:
        adjusted[valid] = multipletests(pValues[valid].astype(float).values, method=method)[1]
    return adjusted


class DMEResult:
    """
    A class used to keep differential module expression results

    :param name: name of the network tested
    :type name: str
    :param refCondition: condition used as covariate
    :type refCondition: str
    :param testCondition: condition of interest
    :type testCondition: str
    :param pValues: ANOVA p-value of each factor (columns) for each module (rows)
    :type pValues: pandas dataframe
    :param adjustedPValues: p-values corrected across modules, for each factor independently
    :type adjustedPValues: pandas dataframe
    :param groupMeans: fitted mean eigengene of each module (rows) in each level of testCondition (columns)
    :type groupMeans: pandas dataframe
    :param correctionMethod: multiple testing correction used
    :type correctionMethod: str
    :param degenerateModules: modules which p-values are undefined (e.g. constant eigengene)
    :type degenerateModules: list
    """

    def __init__(self, name, refCondition, testCondition, pValues, adjustedPValues, groupMeans,
                 correctionMethod, degenerateModules):
        self.name = name
        self.refCondition = refCondition
        self.testCondition = testCondition
        self.pValues = pValues
        self.adjustedPValues = adjustedPValues
        self.groupMeans = groupMeans
        self.correctionMethod = correctionMethod
        self.degenerateModules = degenerateModules

    @property
    def nDegenerate(self):
        return len(self.degenerateModules)

    def summary(self, factor=None):
        """
        one table with raw and adjusted p-value of a factor and the group means, sorted by p-value

        :param factor: factor to report (default: testCondition)
        :type factor: str

        :return: summary table, undefined p-values are kept at the end
        :rtype: pandas dataframe
        """
        if factor is None:
            factor = self.testCondition
        if factor not in self.pValues.columns:
            raise InvalidInput(f"{factor} was not tested!")
        table = pd.DataFrame({'P_value': self.pValues[factor],
                              'adj_P_value': self.adjustedPValues[factor]})
        table = pd.concat([table, self.groupMeans], axis=1)
        return table.sort_values('P_value', na_position='last')

    def significantModules(self, alpha=0.05, factor=None):
        if factor is None:
            factor = self.testCondition
        adjusted = self.adjustedPValues[factor]
        return adjusted.index[adjusted < alpha].tolist()


def _moduleANOVA(data, formula, terms):
    """
    type II ANOVA p-value of each term for one eigengene
    """
    values = data['eigengene'].values
    if np.nanvar(values) <= 1e-20 * max(np.nanmax(np.abs(values)), 1):
        raise DegenerateStatistic("eigengene has zero variance")
    try:
        model = ols(formula=formula, data=data).fit()
    except (ValueError, np.linalg.LinAlgError) as e:
        raise DegenerateStatistic(f"linear model can not be fitted: {e}") from e
    exog = model.model.exog
    # confounded factors give identical columns in the design matrix
    if np.linalg.matrix_rank(exog) < exog.shape[1]:
        raise DegenerateStatistic("design matrix is rank deficient, factors are confounded")
    if model.df_resid <= 0:
        raise DegenerateStatistic("no residual degrees of freedom")
    try:
        table = sm.stats.anova_lm(model, typ=2)
    except (ValueError, np.linalg.LinAlgError) as e:
        raise DegenerateStatistic(f"ANOVA table can not be computed: {e}") from e
    pValues = {name: table.loc[term, 'PR(>F)'] for name, term in terms.items()}
    means = model.fittedvalues.groupby(data['test']).mean()
    return pValues, means


def runDME(network, sampleTable, refCondition=None, testCondition=None, correctionMethod="fdr",
           interaction=False, verbose=True):
    """
    Differential module expression: linear model of each module eigengene on refCondition (covariate)
    and testCondition, with an ANOVA F-test for each factor.

    :param network: network which module eigengenes are tested
    :type network: WGCNANetwork
    :param sampleTable: table which first column is sample id and other columns are conditions
    :type sampleTable: pandas dataframe
    :param refCondition: column of sampleTable used as covariate, None for a one-way ANOVA (default: None)
    :type refCondition: str
    :param testCondition: column of sampleTable of interest
    :type testCondition: str
    :param correctionMethod: multiple testing correction, see adjustPValues (default: "fdr")
    :type correctionMethod: str
    :param interaction: add refCondition:testCondition interaction term (default: False)
    :type interaction: bool
    :param verbose: print progress (default: True)
    :type verbose: bool

    :return: p-values of each module for each factor
    :rtype: DMEResult
    """
    if testCondition is None:
        raise InvalidInput("testCondition can not be empty!")
    if refCondition == testCondition:
        raise InvalidInput("refCondition and testCondition should be different columns!")
    if interaction and refCondition is None:
        raise InvalidInput("interaction needs a refCondition!")

    table = network.checkSamples(sampleTable, requiredColumns=[refCondition, testCondition])
    samples = network.datME.index
    table = table.loc[samples]
    if table[testCondition].nunique() < 2:
        raise InvalidInput(f"{testCondition} needs at least two levels among samples of {network.name}!")
    if refCondition is not None and table[refCondition].nunique() < 2:
        raise InvalidInput(f"{refCondition} needs at least two levels among samples of {network.name}, "
                           f"use refCondition=None for a one-way ANOVA!")

    if verbose:
        print(f"{BOLD}{OKBLUE}Running differential module expression on {network.name}...{ENDC}")

    terms = {testCondition: 'C(test)'}
    formula = 'eigengene ~ C(test)'
    if refCondition is not None:
        terms = {refCondition: 'C(ref)', testCondition: 'C(test)'}
        formula = 'eigengene ~ C(ref) + C(test)'
        if interaction:
            terms[f"{refCondition}:{testCondition}"] = 'C(ref):C(test)'
            formula = formula + ' + C(ref):C(test)'

    levels = sorted(table[testCondition].unique())
    modules = [column[2:] for column in network.datME.columns]
    pValues = pd.DataFrame(np.nan, index=modules, columns=list(terms.keys()), dtype=float)
    groupMeans = pd.DataFrame(np.nan, index=modules, columns=levels, dtype=float)
    degenerate = []
    for module in modules:
        data = pd.DataFrame({'eigengene': network.datME["ME" + module].values.astype(float),
                             'test': table[testCondition].values}, index=samples)
        if refCondition is not None:
            data['ref'] = table[refCondition].values
        groupMeans.loc[module, :] = data.groupby('test')['eigengene'].mean()
        try:
            modulePValues, means = _moduleANOVA(data, formula, terms)
        except DegenerateStatistic as e:
            degenerate.append(module)
            if verbose:
                print(f"{WARNING}P-value of module {module} is undefined: {e}{ENDC}")
            continue
        pValues.loc[module, :] = pd.Series(modulePValues)
        groupMeans.loc[module, :] = means
        if pValues.loc[module, :].isna().any():
            degenerate.append(module)

    adjusted = pd.DataFrame({factor: adjustPValues(pValues[factor], method=correctionMethod)
                             for factor in pValues.columns})

    if verbose:
        print(f"{OKCYAN}{len(modules)} module(s) tested, {len(degenerate)} with undefined p-value.{ENDC}")
        print("\tDone..\n")

    return DMEResult(network.name, refCondition, testCondition, pValues, adjusted, groupMeans,
                     correctionMethod, degenerate)
