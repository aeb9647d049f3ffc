class InvalidInput(ValueError):
    """
    Structural problem with the given input (disjoint gene universes, malformed sample table,
    missing columns). Raised before any computation starts.
    """


class InsufficientSamples(ValueError):
    """
    Stratified permutation is not feasible because a confound level does not have enough samples.
    """


class DegenerateStatistic(ArithmeticError):
    """
    A statistic is undefined for one module (e.g. constant eigengene). Callers record it as NaN.
    """


class NetworkConstructionError(RuntimeError):
    """
    The network builder could not produce a network from the given expression data.
    """


class ReplicateFailure(RuntimeError):
    """
    A single permutation replicate failed. It is recorded as dropped, not propagated.

    :param replicate: index of the failed replicate
    :type replicate: int
    :param reason: description of the underlying error
    :type reason: str
    """

    def __init__(self, replicate, reason):
        super().__init__(f"replicate {replicate} failed: {reason}")
        self.replicate = replicate
        self.reason = reason
