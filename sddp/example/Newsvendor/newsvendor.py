from pyomo.environ import Var, Param, Constraint, NonNegativeReals

from sddp.SDDP import createSDDPModel
from sddp.cut_oracles.DefaultCutOracle import DefaultCutOracle
from sddp.pyomo_interface import PyomoSolveService, PyomoSubproblem
from sddp.riskmeasures import Expectation
from sddp.typedefinitions import Sense


def newsvendormodel(oracle=None, riskmeasure=None, solver="glpk"):
    if oracle is None:
        oracle = DefaultCutOracle()
    if riskmeasure is None:
        riskmeasure = Expectation()
    Demand = [
        [10.0, 15.0],
        [12.0, 20.0],
        [8.0, 20.0]
    ]

    # Markov state purchase prices
    PurchasePrice = [5.0, 8.0]
    RetailPrice = 7.0
    # one, two and two markov states
    Transition = [
        [[1.0]],
        [[0.6, 0.4]],
        [[0.3, 0.7], [0.3, 0.7]]
    ]

    def build(sp: PyomoSubproblem, stage: int, markov_state: int):
        model = sp.model
        # state
        model.stock = Var(bounds=(0, 100))
        model.stock0 = Var()
        model.initP = Param(initialize=5, mutable=True)
        model.stock0c = Constraint(expr=model.stock0 == model.initP)
        sp.add_state(model.stock, model.stock0, model.initP, model.stock0c)
        # other variables
        model.buy = Var(domain=NonNegativeReals)
        model.sell = Var(domain=NonNegativeReals)
        # demand noise
        model.D = Param(initialize=0, mutable=True)
        model.cs0 = Constraint(expr=model.sell <= model.D)
        model.cs1 = Constraint(expr=model.sell >= 0.5 * model.D)
        sp.add_noise_constraint(Demand[stage], model.D)

        model.dc = Constraint(expr=model.stock == model.stock0 + model.buy - model.sell)
        sp.obj = -model.sell * RetailPrice + model.buy * PurchasePrice[markov_state]

    m = createSDDPModel(build,
                        sense=Sense.Min,
                        stages=3,
                        objective_bound=-1000,
                        markov_transition=Transition,
                        solver=PyomoSolveService(solver),
                        cut_oracle=oracle,
                        risk_measure=riskmeasure
                        )
    return m
