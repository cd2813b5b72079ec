"""
Helpers operating on the basic types
"""
import math
from typing import List, Tuple

import numpy as np
from scipy.stats import t, sem

from .base_utilities import PROBABILITY_TOL
from .exceptions import ValidationError
from .typedefinitions import SDDPModel, Subproblem, Storage, Cut, Sense, AbstractRiskMeasure


def constructcut(m: SDDPModel, sp: Subproblem, storage: Storage = None) -> Cut:
    """
    theta >=/<= E[(y - πᵀx̄) + πᵀx], the expectation taken with the risk-adjusted probabilities
    """
    if storage is None:
        storage = m.storage
    xbar = m.stages[sp.stage].state
    intercept = 0.0
    coefficients = np.zeros(sp.nstates)
    for i in range(storage.n):
        duals = np.asarray(storage.duals[i], dtype=float)
        intercept += storage.modifiedprobability[i] * (storage.objective[i] - float(np.dot(duals, xbar)))
        # E[πᵀ]=a1π1ᵀ+a2π2ᵀ...anπnᵀ
        coefficients += storage.modifiedprobability[i] * duals
    return Cut(intercept, coefficients.tolist(), nstates=sp.nstates)


def modifyprobability(riskmeasure: AbstractRiskMeasure, original_distribution: List[float],
                      observations: List[float], sense: Sense) -> List[float]:
    """
    Apply ``riskmeasure`` and check that the result is a distribution of the
    same length. A single outcome is returned unchanged.
    """
    if len(original_distribution) != len(observations):
        raise ValidationError("%d probabilities for %d observations" % (
            len(original_distribution), len(observations)))
    if len(original_distribution) == 1:
        return list(original_distribution)
    modified = [float(q) for q in riskmeasure.modifyprobability(
        list(original_distribution), list(observations), sense)]
    if len(modified) != len(original_distribution):
        raise ValidationError("%s returned %d probabilities, expected %d" % (
            type(riskmeasure).__name__, len(modified), len(original_distribution)))
    if any(q < -PROBABILITY_TOL for q in modified) or abs(sum(modified) - 1.0) > PROBABILITY_TOL:
        raise ValidationError("%s returned malformed probabilities %s" % (type(riskmeasure).__name__, modified))
    return modified


def applicable(iteration: int, frequency: int):
    """
    True if ``iteration`` is a multiple of ``frequency`` (never for frequency 0)
    """
    return frequency > 0 and np.mod(iteration, frequency) == 0


def confidenceinterval(x: List[float], conf_level=0.95) -> Tuple[float, float]:
    """
    Student-t confidence interval of the mean of ``x``
    """
    a = 1.0 * np.array(x)
    n = len(a)
    m, se = np.mean(a), sem(a)
    h = se * t.ppf((1 + conf_level) / 2., n - 1)
    return float(m - h), float(m + h)


def isapprox(a, b, atol):
    """
    relative error of a with respect to b is at most atol
    """
    return abs(a - b) / abs(b) <= atol


def dominates(sense: Sense, trial: float, incumbent: float):
    """
    True if ``trial`` is a worse outcome than ``incumbent``
    """
    if sense == Sense.Min:
        return trial > incumbent
    elif sense == Sense.Max:
        return trial < incumbent
    raise ValidationError("unknown sense %s" % sense)


def worstcase(sense: Sense) -> float:
    """worst possible objective value for ``sense``"""
    if sense == Sense.Min:
        return math.inf
    elif sense == Sense.Max:
        return -math.inf
    raise ValidationError("unknown sense %s" % sense)


def rtol(x, y):
    return abs(x - y) / (1 + abs(y))
