#  Copyright 2017, Oscar Dowson
#  This Source Code Form is subject to the terms of the Mozilla Public
#  License, v. 2.0. If a copy of the MPL was not distributed with this
#  file, You can obtain one at http://mozilla.org/MPL/2.0/.
#############################################################################

from typing import List

import numpy as np

from sddp.typedefinitions import AbstractCutOracle, CachedVector, Cut
from sddp.utilities import dominates


class StoredCut:
    def __init__(self, cut: Cut, non_dominated_count: int):
        self.non_dominated_count = non_dominated_count  # type:int
        self.cut = cut  # type:Cut


class SampledState:
    def __init__(self, state: List[float], best_objective: float, best_cut_index: int):
        self.best_cut_index = best_cut_index
        self.best_objective = best_objective
        self.state = state


class LevelOneCutOracle(AbstractCutOracle):
    """
    Level one cut selection (de Matos, Philpott and Finardi, 2015).

    Every state visited on a forward pass remembers the cut that is tightest
    there. A cut is valid while it is the tightest one at some visited state.
    """

    def __init__(self):
        super().__init__()
        self.cuts = CachedVector()  # type:CachedVector[StoredCut]
        self.states = []  # type:List[SampledState]
        self.sampled_states = set()

    def storecut(self, m: 'SDDPModel', sp: 'Subproblem', cut: 'Cut'):
        self.checkcut(sp, cut)
        sense = sp.sense
        current_state = tuple(m.stages[sp.stage].state)
        with self._lock:
            self.cuts.append(StoredCut(cut, 0))
            cut_index = len(self.cuts) - 1
            for state in self.states:
                y = cut.evaluate(state.state)
                if dominates(sense, y, state.best_objective):
                    self.cuts[state.best_cut_index].non_dominated_count -= 1
                    self.cuts[cut_index].non_dominated_count += 1
                    state.best_cut_index = cut_index
                    state.best_objective = y

            # no forward pass yet (e.g. loading cuts from a file)
            if len(current_state) != sp.nstates:
                return
            if current_state in self.sampled_states:
                return
            self.sampled_states.add(current_state)

            # assume that the new cut is the best
            sampled_state = SampledState(list(current_state), cut.evaluate(current_state), cut_index)
            self.states.append(sampled_state)
            self.cuts[cut_index].non_dominated_count += 1
            for i, stored_cut in enumerate(self.cuts):
                y = stored_cut.cut.intercept + float(np.dot(stored_cut.cut.coefficients, sampled_state.state))
                if dominates(sense, y, sampled_state.best_objective):
                    # if new cut is strictly better
                    # decrement the counter at the old cut
                    self.cuts[sampled_state.best_cut_index].non_dominated_count -= 1
                    # increment the counter at the new cut
                    self.cuts[i].non_dominated_count += 1
                    sampled_state.best_cut_index = i
                    sampled_state.best_objective = y

    def validcuts(self):
        with self._lock:
            return [stored_cut.cut for stored_cut in self.cuts
                    if stored_cut.non_dominated_count > 0]

    def allcuts(self):
        with self._lock:
            return [stored_cut.cut for stored_cut in self.cuts]

    def reset(self):
        with self._lock:
            self.cuts.reset()
            self.states.clear()
            self.sampled_states.clear()
