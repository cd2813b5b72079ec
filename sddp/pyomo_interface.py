#  Copyright 2017, Oscar Dowson, Zhao Zhipeng
#  This Source Code Form is subject to the terms of the Mozilla Public
#  License, v. 2.0. If a copy of the MPL was not distributed with this
#  file, You can obtain one at http://mozilla.org/MPL/2.0/.
#############################################################################

import threading
from typing import List, Optional

from pyomo.environ import ConcreteModel, ConstraintList, Constraint, Objective, Suffix, Var, value
from pyomo.opt import TerminationCondition
from strgen import StringGenerator as SG

from pyomotools.tools import unique_component_name, solverfactory, writemodel
from sddp.exceptions import ValidationError
from sddp.typedefinitions import AbstractSolveService, Subproblem, State, Noise, Cut, Sense, SolveResult, \
    SolveStatus


class PyomoState(State):
    """
    ``variable`` is the outgoing state, ``variable_in`` the incoming copy fixed
    to ``param`` by ``constraint``. The dual of ``constraint`` is the cut slope.
    """

    def __init__(self, variable, variable_in, constraint, param):
        super().__init__(initial=value(param), name=variable.name)
        self.variable = variable
        self.variable_in = variable_in
        self.constraint = constraint
        self.param = param


class PyomoSubproblem(Subproblem):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.theta = None
        self.model = None  # type:ConcreteModel
        self._anonymous = None
        self.reset_mod()

    def reset_mod(self):
        self.model = ConcreteModel()
        # duals of the linking constraints
        self.model.dual = Suffix(direction=Suffix.IMPORT)
        self.model.cuts = ConstraintList()

    def add_state(self, state: Var, state0: Var, param, cons: Constraint = None):
        """
        Link ``state0`` to the previous stage through the mutable ``param``.
        Without ``cons`` the constraint ``state0 == param`` is added for every index.
        """
        if cons is None:
            if param.is_indexed():
                cons = Constraint(param.index_set(), rule=lambda m, i: state0[i] == param[i])
            else:
                cons = Constraint(expr=state0 == param)
            self.anonymous = cons
        for i in param.index_set():
            self.states.append(PyomoState(state[i], state0[i], cons[i], param[i]))

    def _extendnoises(self, noises: List[float], param, objective: bool):
        if self.hasnoises and len(noises) != len(self.noises):
            raise ValidationError("subproblem (stage=%d, markov_state=%d) has %d noises, got %d values" % (
                self.stage, self.markov_state, len(self.noises), len(noises)))
        current = self.noises if self.hasnoises else [Noise() for _ in noises]
        if objective:
            self.noises = [noise.withobjective(param, v) for noise, v in zip(current, noises)]
        else:
            self.noises = [noise.withrhs(param, v) for noise, v in zip(current, noises)]

    def add_noise_constraint(self, noises: List[float], param):
        """
        ``param`` is a mutable, unindexed Param used by the constraints; noise k
        sets it to ``noises[k]``
        """
        self._extendnoises(noises, param, objective=False)

    def add_noise_objective(self, noises: List[float], param):
        self._extendnoises(noises, param, objective=True)

    def getobjectivevalue(self):
        return value(self.model.obj)

    def getstageobjective(self):
        if self.finalstage:
            return self.getobjectivevalue()
        return self.getobjectivevalue() - value(self.theta)

    def _del_com(self, name: str):
        if hasattr(self.model, name):
            self.model.del_component(name)

    @property
    def obj(self):
        return self.model.obj

    @obj.setter
    def obj(self, expr):
        """stage objective, the future cost is added for all but the last stage"""
        self._del_com("obj")
        if self.finalstage:
            self.model.obj = Objective(expr=expr, sense=self.sense.value)
        else:
            self.model.obj = Objective(expr=expr + self.theta, sense=self.sense.value)

    @property
    def anonymous(self):
        return self._anonymous

    @anonymous.setter
    def anonymous(self, value):
        """
        add anonymous component to model
        """
        random_name = SG(r"[\w]{3}").render()
        random_name = unique_component_name(self.model, random_name)
        setattr(self.model, random_name, value)
        self._anonymous = value


class PyomoSolveService(AbstractSolveService):
    """
    Solves PyomoSubproblems with a pyomo solver plugin, one plugin per thread.
    """

    def __init__(self, solver: str = "glpk", executable: str = None, options: dict = None,
                 infeasible_model_file: str = "infeasible_subproblem.lp"):
        self.solver = solver
        self.executable = executable
        self.options = {} if options is None else dict(options)
        self.infeasible_model_file = infeasible_model_file
        self._local = threading.local()

    @property
    def plugin(self):
        plugin = getattr(self._local, "plugin", None)
        if plugin is None:
            plugin = solverfactory(self.solver, self.executable)
            self._local.plugin = plugin
        return plugin

    def newsubproblem(self, **kwargs) -> PyomoSubproblem:
        return PyomoSubproblem(solver=self, **kwargs)

    def initializevaluefunction(self, sp: PyomoSubproblem):
        if sp.sense == Sense.Min:
            sp.model.theta = Var(bounds=(sp.problembound, None))
        else:
            sp.model.theta = Var(bounds=(None, sp.problembound))
        sp.theta = sp.model.theta

    def addcuttomodel(self, sp: PyomoSubproblem, cut: Cut):
        expr = cut.intercept + sum(c * s.variable for c, s in zip(cut.coefficients, sp.states))
        if sp.sense == Sense.Min:
            sp.model.cuts.add(sp.theta >= expr)
        else:
            sp.model.cuts.add(sp.theta <= expr)

    def rebuildsubproblem(self, sp: PyomoSubproblem, cuts: List[Cut]):
        sp._del_com("cuts")
        sp.model.cuts = ConstraintList()
        for cut in cuts:
            self.addcuttomodel(sp, cut)

    def solve(self, sp: PyomoSubproblem, state: List[float], noise: Optional[Noise]) -> SolveResult:
        for s, x in zip(sp.states, state):
            s.param.set_value(x)
        if noise is not None:
            for param, v in noise.rhs + noise.objective:
                param.set_value(v)

        results = self.plugin.solve(sp.model, load_solutions=False, options=self.options)
        condition = results.solver.termination_condition
        if condition in (TerminationCondition.infeasible, TerminationCondition.infeasibleOrUnbounded):
            modelfile = writemodel(sp.model, self.infeasible_model_file)
            return SolveResult(SolveStatus.infeasible, modelfile=modelfile, message=str(condition))
        if condition != TerminationCondition.optimal:
            return SolveResult(SolveStatus.error, message="termination condition %s" % condition)
        sp.model.solutions.load_from(results)

        duals = [sp.model.dual.get(s.constraint) for s in sp.states]
        if any(d is None for d in duals):
            return SolveResult(SolveStatus.error, message="the solver returned no duals for the state constraints")
        return SolveResult(SolveStatus.optimal,
                           objective=sp.getobjectivevalue(),
                           stageobjective=sp.getstageobjective(),
                           duals=duals,
                           state=[value(s.variable) for s in sp.states])
