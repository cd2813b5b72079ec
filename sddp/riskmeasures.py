#  Copyright 2017, Oscar Dowson, Zhao Zhipeng
#  This Source Code Form is subject to the terms of the Mozilla Public
#  License, v. 2.0. If a copy of the MPL was not distributed with this
#  file, You can obtain one at http://mozilla.org/MPL/2.0/.
#############################################################################

import math
from typing import List, Tuple

import numpy as np

from sddp.exceptions import ValidationError
from sddp.typedefinitions import AbstractRiskMeasure, Sense
from sddp.utilities import dominates, worstcase


class Expectation(AbstractRiskMeasure):
    def __init__(self):
        pass

    def modifyprobability(self, original_distribution: List[float], observations: List[float],
                          sense: Sense):
        return [d for d in original_distribution]


class WorstCase(AbstractRiskMeasure):
    """
    All the probability on the worst observation with a positive nominal probability
    """

    def __init__(self):
        pass

    def modifyprobability(self, original_distribution: List[float], observations: List[float],
                          sense: Sense):
        riskadjusted_distribution = [0.0] * len(original_distribution)
        worst_idx = 0
        worst_observation = -worstcase(sense)
        for idx, (probability, observation) in enumerate(zip(original_distribution, observations)):
            if probability > 0 and dominates(sense, observation, worst_observation):
                worst_idx = idx
                worst_observation = observation
        riskadjusted_distribution[worst_idx] = 1.0
        return riskadjusted_distribution


class AVaR(AbstractRiskMeasure):
    """
    Average value at risk of the worst ``beta`` fraction of outcomes.
    """

    def __init__(self, beta: float):
        if beta > 1.0 or beta < 0:
            raise ValidationError(
                "Beta must be in the range [0, 1]. Increasing values of beta are less risk averse. "
                "beta=1 is identical to taking the expectation.")
        self.beta = beta

    def modifyprobability(self, original_distribution: List[float], observations: List[float],
                          sense: Sense):
        if self.beta < 1e-8:
            return WorstCase().modifyprobability(original_distribution, observations, sense)
        elif self.beta > 1.0 - 1e-8:
            return Expectation().modifyprobability(original_distribution, observations, sense)
        riskadjusted_distribution = [0.0] * len(original_distribution)
        q = 0.0
        # worst observations first
        idx = np.argsort(observations, kind="stable")
        if sense == Sense.Min:
            idx = idx[::-1]
        for i in idx:
            if q >= self.beta:
                break
            avar_prob = min(original_distribution[i], self.beta - q) / self.beta
            riskadjusted_distribution[i] = avar_prob
            q += avar_prob * self.beta
        return riskadjusted_distribution


class ConvexCombination(AbstractRiskMeasure):
    def __init__(self, riskmeasures: List[Tuple[float, AbstractRiskMeasure]]):
        weights = [weight for weight, _ in riskmeasures]
        if any(w < 0 for w in weights) or abs(sum(weights) - 1.0) > 1e-6:
            raise ValidationError("convex combination weights must be non-negative and sum to 1, got %s" % weights)
        self.measures = riskmeasures  # type:List[Tuple[float,AbstractRiskMeasure]]

    def modifyprobability(self, original_distribution: List[float], observations: List[float],
                          sense: Sense):
        riskadjusted_distribution = np.zeros(len(original_distribution))
        for weight, measure in self.measures:
            y = measure.modifyprobability(original_distribution, observations, sense)
            riskadjusted_distribution += weight * np.asarray(y, dtype=float)
        return riskadjusted_distribution.tolist()


class EAVaR(ConvexCombination):
    """
    lamb * E[x] + (1 - lamb) * AV@R(beta)[x]
    """

    def __init__(self, lamb: float = 1.0, beta: float = 0.0):
        if lamb > 1.0 or lamb < 0.0:
            raise ValidationError(
                "Lambda must be in the range [0, 1]. Increasing values of lambda are less risk averse. "
                "lambda=1 is identical to taking the expectation.")
        super().__init__([
            (lamb, Expectation()),
            (1 - lamb, AVaR(beta))
        ])


class DRO(AbstractRiskMeasure):
    """
    Distributionally robust measure over a chi-squared ball of ``radius``
    around the nominal distribution (Philpott, de Matos and Kapelevich, 2017).
    """

    def __init__(self, radius: float):
        if radius < 0:
            raise ValidationError("DRO radius must be >= 0, got %s" % radius)
        self.radius = radius  # type:float

    @staticmethod
    def popvar(x: List[float]) -> float:
        ninv = 1 / len(x)
        return ninv * sum(_x ** 2 for _x in x) - (ninv * sum(x)) ** 2

    def popstd(self, x: List[float]) -> float:
        # clamp the round-off below zero
        return math.sqrt(max(self.popvar(x), 0.0))

    def is_dro_applicable(self, radius: float, observations: List[float]):
        if abs(radius) < 1e-9:
            return False
        elif abs(self.popstd(observations)) < 1e-9:
            return False
        return True

    def getconstfactor(self, S: int, k: int, radius: float, permuted_observations: List[float]):
        stdz = self.popstd(permuted_observations[k:S])
        return math.sqrt((S - k) * radius ** 2 - k / S) / (stdz * (S - k))

    @staticmethod
    def getconstadditive(S: int, k: int, const_factor: float, permuted_observations: List[float]):
        avgz = np.mean(permuted_observations[k:S])
        return 1 / (S - k) + const_factor * avgz

    def modifyprobability(self, original_distribution: List[float], observations: List[float],
                          sense: Sense):
        """
        The ball is centred on ``original_distribution``, which must be
        uniform over its outcomes with positive probability. Outcomes with
        zero probability keep zero weight.
        """
        support = [i for i, p in enumerate(original_distribution) if p > 0.0]
        supported_observations = [observations[i] for i in support]
        r = self.radius
        if len(support) < 2 or not self.is_dro_applicable(r, supported_observations):
            return list(original_distribution)
        nominal = [original_distribution[i] for i in support]
        if max(nominal) - min(nominal) > 1e-6:
            raise ValidationError("DRO needs a uniform distribution over its support, got %s"
                                  % list(original_distribution))

        S = len(support)
        riskadjusted_distribution = [0.0] * S
        if sense == Sense.Min:
            perm = np.argsort(supported_observations, kind="stable").tolist()
            permuted_observations = [-supported_observations[i] for i in perm]
        else:
            perm = np.argsort(supported_observations, kind="stable")[::-1].tolist()
            permuted_observations = [supported_observations[i] for i in perm]

        for k in range(S - 1):
            if k > 0:
                riskadjusted_distribution[perm[k - 1]] = 0.0
            const_factor = self.getconstfactor(S, k, r, permuted_observations)
            const_additive = self.getconstadditive(S, k, const_factor, permuted_observations)
            for i in range(k + 1, S + 1):
                riskadjusted_distribution[perm[i - 1]] = const_additive - const_factor * permuted_observations[i - 1]
            if riskadjusted_distribution[perm[k]] >= 0.0:
                break

        q = [0.0] * len(original_distribution)
        for i, p in zip(support, riskadjusted_distribution):
            q[i] = p
        return q
