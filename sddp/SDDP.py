#  Copyright 2017, Oscar Dowson, Zhao Zhipeng
#  This Source Code Form is subject to the terms of the Mozilla Public
#  License, v. 2.0. If a copy of the MPL was not distributed with this
#  file, You can obtain one at http://mozilla.org/MPL/2.0/.
#############################################################################

import copy
import functools
import math
import time
from typing import List, Optional

import numpy as np

from sddp.cut_oracles.DefaultCutOracle import DefaultCutOracle
from sddp.cutio import CutWriter
from sddp.exceptions import ValidationError, InfeasibleSubproblemError, SolverFailure
from sddp.print import outputs, printmessage, printheader, print_solutionLog, printfooter
from sddp.riskmeasures import Expectation
from sddp.state import incomingstate
from sddp.typedefinitions import SDDPModel, Stage, Subproblem, Settings, SolutionLog, Sense, Status, \
    Direction, SolveStatus, SolveType, SolveResult, MonteCarloSimulation, BoundStalling, Noise
from sddp.utilities import applicable, confidenceinterval


def getel(x, t: int, i: int):
    """
    ``x`` may be a scalar, one value per stage or one value per stage and markov state
    """
    if isinstance(x, (list, tuple)):
        x = x[t]
        if isinstance(x, (list, tuple)):
            return x[i]
    return x


def createSDDPModel(build_,  # Callable[[Subproblem, int, int], None]
                    sense: Sense = Sense.Min,
                    stages: int = 1,
                    objective_bound=None,
                    markov_transition: List[List[List[float]]] = None,
                    risk_measure=None,
                    cut_oracle=None,
                    solver=None,
                    value_function=None
                    ) -> SDDPModel:
    """
    Build a model with one subproblem per stage and markov state, calling
    ``build_(sp, stage, markov_state)`` on each of them.

    :param objective_bound: bound on the future cost (lower bound under Min)
    :param markov_transition: one matrix per stage, the first one has a single row
    :param solver: the solve service creating and solving the subproblems
    """
    if objective_bound is None:
        raise ValidationError("You must specify the objective_bound keyword")
    if solver is None:
        raise ValidationError("You must specify the solver keyword")
    if stages < 1:
        raise ValidationError("a model needs at least one stage, got %s" % stages)
    if risk_measure is None:
        risk_measure = Expectation()
    if markov_transition is None:
        markov_transition = [[[1.0]] for _ in range(stages)]
    if len(markov_transition) != stages:
        raise ValidationError("%d transition matrices for %d stages" % (len(markov_transition), stages))

    factory = functools.partial(createSDDPModel, build_, sense=sense, stages=stages,
                                objective_bound=objective_bound, markov_transition=markov_transition,
                                risk_measure=risk_measure, cut_oracle=cut_oracle, solver=solver,
                                value_function=value_function)
    if value_function is None:
        from sddp.defaultvaluefunction import DefaultValueFunction
        value_function = DefaultValueFunction(DefaultCutOracle() if cut_oracle is None else cut_oracle)

    m = SDDPModel(sense=sense, build=build_, factory=factory)
    for t in range(stages):
        matrix = markov_transition[t]
        if len(matrix) == 0:
            raise ValidationError("transition matrix of stage %d is empty" % t)
        stage = Stage.create(t=t, markov_transition=matrix)
        for i in range(len(matrix[0])):
            sp = getel(solver, t, i).newsubproblem(
                finalstage=t == stages - 1,
                stage=t,
                markov_state=i,
                sense=sense,
                bound=getel(objective_bound, t, i),
                risk_measure=getel(risk_measure, t, i),
                # every subproblem owns its cuts
                value_function=copy.deepcopy(getel(value_function, t, i))
            )
            sp.valueoracle.initializevaluefunction(sp, sense, sp.problembound)
            build_(sp, t, i)
            stage.subproblems.append(sp)
        m.stages.append(stage)
    m.validate()
    return m


def checkedsolve(sp: Subproblem, state: List[float], noise: Optional[Noise]) -> SolveResult:
    result = sp.solver.solve(sp, state, noise)
    if result.status == SolveStatus.infeasible:
        raise InfeasibleSubproblemError(sp.stage, sp.markov_state, state, result.modelfile)
    if result.status != SolveStatus.optimal:
        raise SolverFailure(sp.stage, sp.markov_state, result.message)
    if len(result.duals) != sp.nstates:
        raise SolverFailure(sp.stage, sp.markov_state, "expected %d duals, got %d" % (
            sp.nstates, len(result.duals)))
    return result


def solvesubproblem(direction: Direction, m: SDDPModel, sp: Subproblem, state: List[float],
                    incoming_probability: float = 1.0, noiseidx: int = None) -> SolveResult:
    """
    On the forward pass solve ``sp`` for a single noise. On the backward pass
    solve every noise and push each solution to ``m.storage``.
    """
    if direction == Direction.forwardpass:
        noise = sp.noises[noiseidx] if sp.hasnoises else None
        return checkedsolve(sp, state, noise)

    if not sp.hasnoises:
        result = checkedsolve(sp, state, None)
        m.storage.push(0, sp.markov_state, list(result.duals), result.objective, incoming_probability)
        return result
    result = None
    for k, noise in enumerate(sp.noises):
        result = checkedsolve(sp, state, noise)
        m.storage.push(k, sp.markov_state, list(result.duals), result.objective,
                       incoming_probability * sp.noiseprobability[k])
    return result


def forwardpass(m: SDDPModel, settings: Optional[Settings], rng: np.random.RandomState = None,
                record: dict = None) -> float:
    """
    Sample one scenario, solve along it and return the sum of the stage objectives
    """
    m.storage.reset()
    last_markov_state = 0
    obj = 0.0
    for t, stage in enumerate(m.stages):
        last_markov_state, sp = stage.samplesubproblem(last_markov_state, rng)
        noiseidx, probability = 0, 1.0
        if sp.hasnoises:
            noiseidx, _ = sp.samplenoise(rng)
            probability = sp.noiseprobability[noiseidx]
        result = solvesubproblem(Direction.forwardpass, m, sp, incomingstate(m, sp), noiseidx=noiseidx)
        m.storage.push(noiseidx, last_markov_state, list(result.duals), result.objective, probability)
        stage.savestates(result.state)
        obj += result.stageobjective
        if record is not None:
            record["markov"].append(last_markov_state)
            record["noise"].append(noiseidx)
            record["stageobjective"].append(result.stageobjective)
            record["state"].append(list(result.state))
    return obj


def iteration_fun(m: SDDPModel, settings: Settings, rng: np.random.RandomState = None):
    """
    One forward and one backward pass
    """
    t = time.time()
    simulation_objective = forwardpass(m, settings, rng)
    time_forwards = time.time() - t
    vf = m.stages[0].subproblems[0].valueoracle
    objective_bound = vf.backwardpass(m, settings)
    time_backwards = time.time() - time_forwards - t
    if settings.reduce_memory_footprint:
        resetoracles(m)
    return objective_bound, time_backwards, simulation_objective, time_forwards


def rebuild(m: SDDPModel):
    for stage in m.stages[:-1]:
        for sp in stage.subproblems:
            sp.valueoracle.rebuildsubproblem(m, sp)


def resetoracles(m: SDDPModel):
    for sp in m.subproblems():
        sp.valueoracle.reset()


def synchronise(m: SDDPModel) -> int:
    return sum(sp.valueoracle.synchronise(sp) for sp in m.subproblems())


def testboundstall(log: List[SolutionLog], bound_stalling: BoundStalling) -> bool:
    n = bound_stalling.iterations
    if n == 0 or len(log) < n:
        return False
    last_n = np.array([l.bound for l in log[-n:]])
    mean = np.mean(last_n)
    dev = np.max(np.abs(last_n - mean))
    return bool(dev <= bound_stalling.atol or dev <= bound_stalling.rtol * abs(mean))


def montecarlo(m: SDDPModel, settings: Settings, rng: np.random.RandomState, bound: float):
    """
    Simulate the policy until the bound leaves the confidence interval or the
    schedule ends. Returns (lower, upper, simulations, converged).
    """
    simulation = settings.simulation
    objectives = []
    lower, upper = -math.inf, math.inf
    for n in simulation.steps:
        while len(objectives) < n:
            objectives.append(forwardpass(m, settings, rng))
        lower, upper = confidenceinterval(objectives, simulation.confidence)
        if not lower <= bound <= upper:
            return lower, upper, len(objectives), False
    return lower, upper, len(objectives), simulation.terminate


class SolveProgress:
    def __init__(self):
        self.start_time = time.time()
        self.time_cutting = 0.0
        self.time_simulating = 0.0
        self.nsimulations = 0

    @property
    def elapsed(self):
        return time.time() - self.start_time


def checkstopping(m: SDDPModel, settings: Settings, status: Status, iteration: int, elapsed: float) -> Status:
    if status != Status.solving:
        return status
    if testboundstall(m.log, settings.bound_stalling):
        return Status.bound_stalling
    if elapsed >= settings.time_limit:
        return Status.time_limit
    if iteration >= settings.iteration_limit:
        return Status.iteration_limit
    return Status.solving


def endofiteration(m: SDDPModel, settings: Settings, rng: np.random.RandomState, ios, progress: SolveProgress,
                   iteration: int, objective_bound: float, simulation_objective: float,
                   cutselection=rebuild) -> Status:
    """
    Cut selection, Monte-Carlo simulation, log and stopping rules after the
    cuts of ``iteration`` have been added
    """
    status = Status.solving
    lower, upper = simulation_objective, simulation_objective
    if applicable(iteration, settings.cut_selection_frequency):
        if settings.print_level > 1:
            printmessage(ios, "Running Cut Selection")
        cutselection(m)
    simulated = applicable(iteration, settings.simulation.frequency)
    if simulated:
        if settings.print_level > 1:
            printmessage(ios, "Running Monte-Carlo Simulation")
        t = time.time()
        lower, upper, n, converged = montecarlo(m, settings, rng, objective_bound)
        progress.nsimulations += n
        progress.time_simulating += time.time() - t
        if converged:
            status = Status.converged
    m.log.append(SolutionLog(iteration, objective_bound, lower, upper, progress.time_cutting,
                             progress.nsimulations, progress.time_simulating, progress.elapsed))
    print_solutionLog(ios, m.log[-1], not simulated, m.sense == Sense.Min)
    return checkstopping(m, settings, status, iteration, m.log[-1].timetotal)


def serialsolve(m: SDDPModel, settings: Settings, rng: np.random.RandomState, ios) -> Status:
    progress = SolveProgress()
    status, iteration = Status.solving, 0
    while status == Status.solving:
        iteration += 1
        objective_bound, time_backwards, simulation_objective, time_forwards = iteration_fun(m, settings, rng)
        progress.time_cutting += time_backwards + time_forwards
        status = endofiteration(m, settings, rng, ios, progress, iteration, objective_bound, simulation_objective)
    return status


def solve(m: SDDPModel, settings: Settings = None, seed: int = None) -> Status:
    """
    Run SDDP on ``m`` until a stopping rule fires and return its Status.
    Errors set ``m.status`` to ``Status.error`` and are re-raised.
    """
    if settings is None:
        settings = Settings()
    m.validate()
    logfile = open(settings.log_file, "a") if settings.log_file else None
    ios = outputs(settings, logfile)
    m.status = Status.solving
    try:
        if settings.cut_output_file:
            m.cutwriter = CutWriter(settings.cut_output_file)
        if settings.is_asynchronous:
            from sddp.asynchronous import solve_asynchronous
            printheader(ios, m, SolveType.Asynchronous.value)
            m.status = solve_asynchronous(m, settings, seed, ios)
        else:
            printheader(ios, m, SolveType.Serial.value)
            m.status = serialsolve(m, settings, np.random.RandomState(seed), ios)
    except Exception:
        m.status = Status.error
        printfooter(ios, m, m.status)
        raise
    else:
        printfooter(ios, m, m.status)
    finally:
        if m.cutwriter is not None:
            m.cutwriter.close()
            m.cutwriter = None
        if logfile is not None:
            logfile.close()
    return m.status


def solve_default(m: SDDPModel,
                  iteration_limit: int = 10 ** 9,
                  time_limit: float = math.inf,
                  simulation: MonteCarloSimulation = None,
                  bound_stalling: BoundStalling = None,
                  cut_selection_frequency: int = 0,
                  print_level: int = 1,
                  log_file: str = "",
                  solve_type: SolveType = SolveType.Serial,
                  workers: int = 1,
                  reduce_memory_footprint: bool = False,
                  cut_output_file: str = "",
                  seed: int = None
                  ) -> Status:
    settings = Settings(
        iteration_limit=iteration_limit,
        time_limit=time_limit,
        simulation=simulation,
        bound_stalling=bound_stalling,
        cut_selection_frequency=cut_selection_frequency,
        print_level=print_level,
        log_file=log_file,
        reduce_memory_footprint=reduce_memory_footprint,
        cut_output_file=cut_output_file,
        is_asynchronous=solve_type == SolveType.Asynchronous,
        workers=workers
    )
    return solve(m, settings, seed)


def simulate(m: SDDPModel, replications: int = 1, seed: int = None) -> List[dict]:
    """
    Simulate the current policy. Each record holds the total ``objective`` and
    per stage the ``markov`` state, ``noise`` index, ``stageobjective`` and outgoing ``state``.
    """
    rng = np.random.RandomState(seed)
    records = []
    for _ in range(replications):
        record = {"objective": 0.0, "markov": [], "noise": [], "stageobjective": [], "state": []}
        record["objective"] = forwardpass(m, None, rng, record)
        records.append(record)
    return records
