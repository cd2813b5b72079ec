#  Copyright 2017, Oscar Dowson, Zhao Zhipeng
#  This Source Code Form is subject to the terms of the Mozilla Public
#  License, v. 2.0. If a copy of the MPL was not distributed with this
#  file, You can obtain one at http://mozilla.org/MPL/2.0/.
#############################################################################

from typing import TypeVar, List

from sddp.SDDP import solvesubproblem
from sddp.cut_oracles.DefaultCutOracle import DefaultCutOracle
from sddp.state import incomingstate
from sddp.typedefinitions import AbstractValueFunction, AbstractCutOracle, Direction, Sense, Cut, \
    SDDPModel, Settings, Subproblem
from sddp.utilities import constructcut, modifyprobability

T = TypeVar('T')


class DefaultValueFunction(AbstractValueFunction[T]):
    """
    Future cost of a subproblem as the maximum (Min) or minimum (Max) of the
    cuts held by its oracle. ``_installed`` remembers which cuts are already
    part of the subproblem's relaxation.
    """

    def __init__(self, cutmanager: T = None):
        super().__init__()
        if cutmanager is None:
            cutmanager = DefaultCutOracle()
        self._cutmanager = cutmanager
        self._installed = set()

    @property
    def cutoracle(self) -> AbstractCutOracle:
        return self._cutmanager

    def shareoracle(self, other: 'DefaultValueFunction'):
        """use the oracle of ``other``, the relaxation keeps its own cuts"""
        self._cutmanager = other.cutoracle
        self._installed = set()

    def initializevaluefunction(self, sp: Subproblem, sense: Sense, bound: float):
        sp.solver.initializevaluefunction(sp)

    @staticmethod
    def backwardpass(m: SDDPModel, settings: Settings) -> float:
        for t in reversed(range(1, m.nstages)):
            m.storage.reset()
            for sp in m.stages[t].subproblems:
                solvesubproblem(Direction.backwardpass, m, sp, incomingstate(m, sp))
            for sp in m.stages[t - 1].subproblems:
                modifyvaluefunction(m, settings, sp)

        m.storage.reset()
        first = m.stages[0]
        for i, sp in enumerate(first.subproblems):
            solvesubproblem(Direction.backwardpass, m, sp, incomingstate(m, sp),
                            incoming_probability=first.transitionprobabilities[0][i])
        return sum(m.storage.probability[i] * m.storage.objective[i] for i in range(m.storage.n))

    def addcut(self, m: SDDPModel, sp: Subproblem, cut: Cut):
        self.cutoracle.storecut(m, sp, cut)
        self.addcuttomodel(sp, cut)
        if m.cutwriter is not None:
            m.cutwriter.write(sp.stage, sp.markov_state, cut)

    def addcuttomodel(self, sp: Subproblem, cut: Cut):
        sp.solver.addcuttomodel(sp, cut)
        self._installed.add(id(cut))

    def synchronise(self, sp: Subproblem) -> int:
        """
        Install the cuts other replicas added to the shared oracle since the
        last call, returns how many were installed.
        """
        n = 0
        for cut in self.cutoracle.allcuts():
            if id(cut) not in self._installed:
                self.addcuttomodel(sp, cut)
                n += 1
        return n

    def rebuildsubproblem(self, m: SDDPModel, sp: Subproblem):
        """
        Rebuild the relaxation of ``sp`` with the valid cuts only
        """
        allcuts = self.cutoracle.allcuts()  # type:List[Cut]
        valid = self.cutoracle.validcuts()  # type:List[Cut]
        sp.solver.rebuildsubproblem(sp, valid)
        # dropped cuts must not come back with the next synchronise
        self._installed = {id(cut) for cut in allcuts} | {id(cut) for cut in valid}

    def reset(self):
        self.cutoracle.reset()
        self._installed = set()


def modifyvaluefunction(m: SDDPModel, settings: Settings, sp: Subproblem):
    """
    Add a cut to ``sp`` from the solutions of the next stage held in ``m.storage``
    """
    storage = m.storage
    index = list(range(storage.n))
    nominal = storage.probability.range(index)
    transition = m.stages[sp.stage + 1].transitionprobabilities[sp.markov_state]
    for i in index:
        storage.probability[i] *= transition[storage.markov[i]]
    modified = modifyprobability(sp.riskmeasure, storage.probability.range(index),
                                 storage.objective.range(index), sp.sense)
    storage.modifiedprobability.put_range(index, modified)
    cut = constructcut(m, sp)
    sp.valueoracle.addcut(m, sp, cut)
    storage.probability.put_range(index, nominal)
