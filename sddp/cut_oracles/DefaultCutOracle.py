#  Copyright 2017, Oscar Dowson
#  This Source Code Form is subject to the terms of the Mozilla Public
#  License, v. 2.0. If a copy of the MPL was not distributed with this
#  file, You can obtain one at http://mozilla.org/MPL/2.0/.
#############################################################################


from typing import List

from sddp.typedefinitions import AbstractCutOracle, CachedVector, Cut


class DefaultCutOracle(AbstractCutOracle):
    """Keeps every cut, all of them are valid."""

    def __init__(self, cuts: List[Cut] = None):
        super().__init__()
        self.cuts = CachedVector([] if cuts is None else list(cuts))  # type:CachedVector[Cut]

    def storecut(self, m: 'SDDPModel', sp: 'Subproblem', cut: 'Cut'):
        self.checkcut(sp, cut)
        with self._lock:
            self.cuts.append(cut)

    def validcuts(self):
        with self._lock:
            return self.cuts.tolist()

    def allcuts(self):
        return self.validcuts()

    def reset(self):
        with self._lock:
            self.cuts.reset()
