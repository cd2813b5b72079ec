#  Copyright 2017, Oscar Dowson, Zhao Zhipeng
#  This Source Code Form is subject to the terms of the Mozilla Public
#  License, v. 2.0. If a copy of the MPL was not distributed with this
#  file, You can obtain one at http://mozilla.org/MPL/2.0/.
#############################################################################

from typing import List

import numpy as np

from sddp.exceptions import ValidationError

# tolerance on the sum of a probability vector
PROBABILITY_TOL = 1e-6


def checkprobability(x: List[float], name: str = "probability distribution"):
    """
    Raise ValidationError unless ``x`` is a non-empty, non-negative vector summing to one.
    Distributions are never normalised silently.
    """
    p = np.asarray(x, dtype=float)
    if p.ndim != 1 or len(p) == 0:
        raise ValidationError("%s must be a non-empty vector, got %s" % (name, list(x)))
    if np.any(p < -PROBABILITY_TOL):
        raise ValidationError("%s has negative entries: %s" % (name, p.tolist()))
    if abs(float(p.sum()) - 1.0) > PROBABILITY_TOL:
        raise ValidationError("%s must sum to 1.0, sums to %f: %s" % (name, float(p.sum()), p.tolist()))
    return p


def sample(x: List[float], rng: np.random.RandomState = None) -> int:
    """
    Draw an index from the distribution ``x`` with one uniform number compared
    against the cumulative sum.
    """
    p = checkprobability(x)
    if rng is None:
        rng = np.random
    r = rng.uniform()
    cumulative = 0.0
    for i, pi in enumerate(p):
        cumulative += pi
        if r < cumulative:
            return i
    # r landed in the rounding gap above the last cumulative value
    return int(np.flatnonzero(p > 0)[-1])
