#  Copyright 2017, Oscar Dowson, Zhao Zhipeng
#  This Source Code Form is subject to the terms of the Mozilla Public
#  License, v. 2.0. If a copy of the MPL was not distributed with this
#  file, You can obtain one at http://mozilla.org/MPL/2.0/.
#############################################################################
"""
A small LP solve service on top of scipy.optimize.linprog (HiGHS), so the
solver loop can be tested without a solver binary.
"""

from typing import Dict, List, Optional

import numpy as np
from scipy.optimize import linprog

from sddp.typedefinitions import AbstractSolveService, Subproblem, State, Noise, Cut, Sense, SolveResult, \
    SolveStatus


class LinearState(State):
    def __init__(self, name: str, initial: float = 0.0):
        super().__init__(initial=initial, name=name)
        self.incoming = name + "0"


class LinearSubproblem(Subproblem):
    """
    Variables are referred to by name. ``addstate("x")`` adds the outgoing
    variable ``x`` and the incoming copy ``x0``.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.variables = []  # type:List[str]
        self.bounds = {}
        self.constraints = []  # (coefficients, sense, rhs)
        self.objective = {}  # type:Dict[str, float]
        self.cuts = []  # type:List[Cut]
        self.hastheta = False

    def addvariable(self, name: str, lb: Optional[float] = 0.0, ub: Optional[float] = None):
        self.variables.append(name)
        self.bounds[name] = (lb, ub)
        return name

    def addstate(self, name: str, initial: float = 0.0, lb: Optional[float] = 0.0, ub: Optional[float] = None):
        self.addvariable(name, lb, ub)
        self.addvariable(name + "0", None, None)
        self.states.append(LinearState(name, initial))
        return name

    def addconstraint(self, coefficients: Dict[str, float], sense: str, rhs: float) -> int:
        if sense not in ("<=", ">=", "=="):
            raise ValueError("unknown constraint sense %s" % sense)
        self.constraints.append((dict(coefficients), sense, float(rhs)))
        return len(self.constraints) - 1

    def setobjective(self, coefficients: Dict[str, float]):
        self.objective = dict(coefficients)

    def _extendnoises(self, values: List[float], add):
        current = self.noises if self.hasnoises else [Noise() for _ in values]
        if len(current) != len(values):
            raise ValueError("%d noises, got %d values" % (len(current), len(values)))
        self.noises = [add(noise, v) for noise, v in zip(current, values)]

    def addrhsnoise(self, row: int, values: List[float]):
        self._extendnoises(values, lambda noise, v: noise.withrhs(row, v))

    def addobjectivenoise(self, name: str, values: List[float]):
        self._extendnoises(values, lambda noise, v: noise.withobjective(name, v))


class LinprogSolveService(AbstractSolveService):
    def newsubproblem(self, **kwargs) -> LinearSubproblem:
        return LinearSubproblem(solver=self, **kwargs)

    def initializevaluefunction(self, sp: LinearSubproblem):
        sp.hastheta = not sp.finalstage

    def addcuttomodel(self, sp: LinearSubproblem, cut: Cut):
        sp.cuts.append(cut)

    def rebuildsubproblem(self, sp: LinearSubproblem, cuts: List[Cut]):
        sp.cuts = list(cuts)

    def solve(self, sp: LinearSubproblem, state: List[float], noise: Optional[Noise]) -> SolveResult:
        names = list(sp.variables)
        if sp.hastheta:
            names.append("theta")
        column = {name: j for j, name in enumerate(names)}
        sign = 1.0 if sp.sense == Sense.Min else -1.0

        costs = dict(sp.objective)
        rhs = {}
        if noise is not None:
            costs.update(dict(noise.objective))
            rhs.update(dict(noise.rhs))
        c = np.zeros(len(names))
        for name, coef in costs.items():
            c[column[name]] = sign * coef
        if sp.hastheta:
            c[column["theta"]] = sign

        def row(coefficients):
            a = np.zeros(len(names))
            for name, coef in coefficients.items():
                a[column[name]] = coef
            return a

        # the linking rows come first, their duals are the cut slopes
        A_eq = [row({s.incoming: 1.0}) for s in sp.states]
        b_eq = list(state)
        A_ub, b_ub = [], []
        for i, (coefficients, sense, b) in enumerate(sp.constraints):
            b = rhs.get(i, b)
            if sense == "==":
                A_eq.append(row(coefficients))
                b_eq.append(b)
            elif sense == "<=":
                A_ub.append(row(coefficients))
                b_ub.append(b)
            else:
                A_ub.append(-row(coefficients))
                b_ub.append(-b)
        for cut in sp.cuts:
            a = row({s.name: coef for s, coef in zip(sp.states, cut.coefficients)})
            a[column["theta"]] = -1.0
            if sp.sense == Sense.Min:
                A_ub.append(a)
                b_ub.append(-cut.intercept)
            else:
                A_ub.append(-a)
                b_ub.append(cut.intercept)

        bounds = [sp.bounds[name] for name in sp.variables]
        if sp.hastheta:
            bounds.append((sp.problembound, None) if sp.sense == Sense.Min else (None, sp.problembound))

        res = linprog(c,
                      A_ub=np.array(A_ub) if A_ub else None,
                      b_ub=np.array(b_ub) if b_ub else None,
                      A_eq=np.array(A_eq) if A_eq else None,
                      b_eq=np.array(b_eq) if b_eq else None,
                      bounds=bounds, method="highs")
        if res.status == 2:
            return SolveResult(SolveStatus.infeasible, message=res.message)
        if res.status != 0:
            return SolveResult(SolveStatus.error, message=res.message)

        objective = sign * res.fun
        stageobjective = objective - res.x[column["theta"]] if sp.hastheta else objective
        duals = [sign * d for d in res.eqlin.marginals[:sp.nstates]]
        return SolveResult(SolveStatus.optimal,
                           objective=float(objective),
                           stageobjective=float(stageobjective),
                           duals=[float(d) for d in duals],
                           state=[float(res.x[column[s.name]]) for s in sp.states])


def inventorymodel(demands=(1.0, 3.0), purchase=2.0, penalty=3.0, sense=Sense.Min, markov_transition=None,
                   initial=0.0, **kwargs):
    """
    Buy stock in the first stage at ``purchase`` per unit, pay ``penalty`` per
    unit of demand left unmet in the second. ``demands`` may hold one list per
    markov state of the second stage.
    """
    from sddp.SDDP import createSDDPModel

    sign = 1.0 if sense == Sense.Min else -1.0

    def build(sp: LinearSubproblem, stage: int, markov_state: int):
        sp.addstate("x", initial=initial)
        if stage == 0:
            sp.addvariable("buy")
            sp.addconstraint({"x": 1.0, "x0": -1.0, "buy": -1.0}, "==", 0.0)
            sp.setobjective({"buy": sign * purchase})
        else:
            sp.addvariable("short")
            row = sp.addconstraint({"short": 1.0, "x0": 1.0}, ">=", 0.0)
            d = demands[markov_state] if isinstance(demands[0], (list, tuple)) else demands
            sp.addrhsnoise(row, d)
            sp.addconstraint({"x": 1.0}, "==", 0.0)
            sp.setobjective({"short": sign * penalty})

    kwargs.setdefault("objective_bound", 0.0)
    return createSDDPModel(build, sense=sense, stages=2, markov_transition=markov_transition,
                           solver=LinprogSolveService(), **kwargs)
