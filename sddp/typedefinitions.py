#  Copyright 2017, Oscar Dowson
#  This Source Code Form is subject to the terms of the Mozilla Public
#  License, v. 2.0. If a copy of the MPL was not distributed with this
#  file, You can obtain one at http://mozilla.org/MPL/2.0/.
#############################################################################

import math
import threading
from enum import Enum
from typing import List, TypeVar, Generic, Tuple, NamedTuple, Any, Optional, Iterator

import numpy as np
from pyomo.core import minimize, maximize

from .base_utilities import sample, checkprobability
from .exceptions import ValidationError

T = TypeVar('T')


class Direction(Enum):
    forwardpass = "forwardpass"
    backwardpass = "backwardpass"


class Status(Enum):
    solving = "solving"
    converged = "converged"
    bound_stalling = "bound_stalling"
    time_limit = "time_limit"
    iteration_limit = "iteration_limit"
    error = "error"


class Sense(Enum):
    Min = minimize
    Max = maximize


class SolveType(Enum):
    Asynchronous = "Asynchronous"
    Serial = "Serial"


class SolveStatus(Enum):
    optimal = "optimal"
    infeasible = "infeasible"
    error = "error"


class CachedVector(Generic[T]):
    """
    Growable buffer with a logical length ``n`` kept apart from the backing list.

    ``reset`` only sets ``n`` to zero, later appends overwrite the old slots
    until the previous high-water mark is reached.
    """

    def __init__(self, data: List[T] = None, n: int = None):
        if data is None: data = []
        if n is None: n = len(data)
        if n < 0 or n > len(data):
            raise ValidationError("logical length %d outside [0, %d]" % (n, len(data)))
        self.data = data
        self.n = n

    def _index(self, key: int) -> int:
        if key < 0:
            key += self.n
        if not 0 <= key < self.n:
            raise IndexError("CachedVector index out of range")
        return key

    def __setitem__(self, key, value):
        self.data[self._index(key)] = value

    def __getitem__(self, key):
        if isinstance(key, slice):
            return self.data[:self.n][key]
        return self.data[self._index(key)]

    def __len__(self):
        return self.n

    def __iter__(self) -> Iterator[T]:
        for i in range(self.n):
            yield self.data[i]

    def range(self, index_list: List[int]) -> List[T]:
        return [self[i] for i in index_list]

    def put_range(self, index_list: List[int], lst: List[T]):
        for index, datum in zip(index_list, lst):
            self[index] = datum

    def reset(self):
        self.n = 0

    def append(self, v: T):
        if self.n < len(self.data):
            self.data[self.n] = v
        else:
            self.data.append(v)
        self.n += 1

    def tolist(self) -> List[T]:
        return self.data[:self.n]

    @property
    def capacity(self):
        return len(self.data)

    @property
    def len(self):
        return self.n


class Cut:
    """
    Affine bound ``intercept + coefficients . x`` on a value function.
    Under Min it is a lower bound (theta >= cut), under Max an upper bound.
    """

    def __init__(self, intercept: float, coefficients: List[float], nstates: int = None):
        if nstates is not None and len(coefficients) != nstates:
            raise ValidationError("cut has %d coefficients but the subproblem has %d states" % (
                len(coefficients), nstates))
        self.intercept = float(intercept)
        self.coefficients = tuple(float(c) for c in coefficients)

    def evaluate(self, state: List[float]) -> float:
        return self.intercept + float(np.dot(self.coefficients, state))

    def __repr__(self):
        return "Cut(%r, %r)" % (self.intercept, list(self.coefficients))


class State:
    """
    A state variable linking a stage to the next one. ``initial`` is the
    incoming value used by the first stage.
    """

    def __init__(self, initial: float = 0.0, name: str = None):
        self.initial = float(initial)
        self.name = name


class Noise:
    """
    One discrete outcome of the stagewise-independent noise.

    ``rhs`` and ``objective`` are tuples of ``(handle, value)`` pairs; what a
    handle is depends on the solve service. Noises never change once they are
    attached to a subproblem, ``withrhs`` and ``withobjective`` return copies.
    """

    def __init__(self, rhs: Tuple[Tuple[Any, float], ...] = (),
                 objective: Tuple[Tuple[Any, float], ...] = ()):
        self._rhs = tuple(rhs)
        self._objective = tuple(objective)

    @property
    def rhs(self):
        return self._rhs

    @property
    def objective(self):
        return self._objective

    @property
    def has_objective_noise(self):
        return len(self._objective) > 0

    def withrhs(self, handle, value: float) -> 'Noise':
        return Noise(self._rhs + ((handle, float(value)),), self._objective)

    def withobjective(self, handle, value: float) -> 'Noise':
        return Noise(self._rhs, self._objective + ((handle, float(value)),))


class SolveResult:
    def __init__(self, status: SolveStatus, objective: float = math.nan, stageobjective: float = math.nan,
                 duals: List[float] = None, state: List[float] = None, modelfile: str = None,
                 message: str = ""):
        self.status = status
        self.objective = objective
        self.stageobjective = stageobjective
        self.duals = [] if duals is None else duals
        self.state = [] if state is None else state
        self.modelfile = modelfile
        self.message = message


class AbstractCutOracle:
    """
    Stores the cuts of one subproblem and decides which of them are active.

    Oracles may be shared by several asynchronous workers, so appends and reads
    go through ``self._lock``. The lock is dropped when an oracle is copied.
    """

    def __init__(self):
        self._lock = threading.RLock()

    def __getstate__(self):
        state = self.__dict__.copy()
        state.pop("_lock", None)
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        self._lock = threading.RLock()

    @staticmethod
    def checkcut(sp: 'Subproblem', cut: Cut):
        if len(cut.coefficients) != sp.nstates:
            raise ValidationError("cut has %d coefficients but subproblem (stage=%d, markov_state=%d) has %d states" % (
                len(cut.coefficients), sp.stage, sp.markov_state, sp.nstates))

    def storecut(self, m: 'SDDPModel', sp: 'Subproblem', cut: 'Cut'):
        raise NotImplementedError

    def validcuts(self) -> List[Cut]:
        raise NotImplementedError

    def allcuts(self) -> List[Cut]:
        raise NotImplementedError

    def reset(self):
        raise NotImplementedError


class AbstractValueFunction(Generic[T]):
    def __init__(self):
        pass

    @property
    def cutoracle(self) -> AbstractCutOracle:
        raise NotImplementedError

    def initializevaluefunction(self, sp: 'Subproblem', sense: Sense, bound: float):
        raise NotImplementedError

    @staticmethod
    def backwardpass(m: 'SDDPModel', settings: 'Settings') -> float:
        raise NotImplementedError

    def addcut(self, m: 'SDDPModel', sp: 'Subproblem', cut: Cut):
        raise NotImplementedError

    def rebuildsubproblem(self, m: 'SDDPModel', sp: 'Subproblem'):
        raise NotImplementedError

    def shareoracle(self, other: 'AbstractValueFunction'):
        raise NotImplementedError

    def synchronise(self, sp: 'Subproblem') -> int:
        raise NotImplementedError

    def reset(self):
        raise NotImplementedError


class AbstractRiskMeasure:
    def __init__(self):
        pass

    def modifyprobability(self, original_distribution: List[float], observations: List[float],
                          sense: Sense) -> List[float]:
        """
        Return the risk-adjusted distribution. ``sense`` decides which
        observations are worse: larger ones under Min, smaller ones under Max.
        """
        raise NotImplementedError


class AbstractSolveService:
    """
    The solver-side collaborator: builds subproblems, keeps the future cost
    term and the installed cuts of their relaxations and solves them.
    """

    def newsubproblem(self, **kwargs) -> 'Subproblem':
        return Subproblem(solver=self, **kwargs)

    def initializevaluefunction(self, sp: 'Subproblem'):
        raise NotImplementedError

    def addcuttomodel(self, sp: 'Subproblem', cut: Cut):
        raise NotImplementedError

    def rebuildsubproblem(self, sp: 'Subproblem', cuts: List[Cut]):
        raise NotImplementedError

    def solve(self, sp: 'Subproblem', state: List[float], noise: Optional[Noise]) -> SolveResult:
        raise NotImplementedError


class Subproblem:
    def __init__(self, finalstage=False, stage=0, markov_state=0, sense: Sense = Sense.Min,
                 bound: float = -1e6,
                 states: List[State] = None,
                 noises: List[Noise] = None,
                 value_function: AbstractValueFunction = None,
                 noiseprobability: List[float] = None,
                 risk_measure: AbstractRiskMeasure = None,
                 solver: AbstractSolveService = None
                 ):
        if states is None: states = []
        if noises is None: noises = []
        if noiseprobability is None: noiseprobability = []

        self.finalstage = finalstage
        self.stage = stage
        self.markov_state = markov_state
        self.problembound = bound
        self.sense = sense
        self.states = states  # type:List[State]
        self.valueoracle = value_function  # type:AbstractValueFunction
        self.noises = noises  # type:List[Noise]
        self.noiseprobability = noiseprobability
        self.riskmeasure = risk_measure  # type:AbstractRiskMeasure
        self.solver = solver  # type:AbstractSolveService

    @property
    def nstates(self):
        return len(self.states)

    @property
    def initialstate(self) -> List[float]:
        return [s.initial for s in self.states]

    @property
    def hasnoises(self):
        return len(self.noises) > 0

    def setnoiseprobability(self, noise_probability: List[float]):
        self.noiseprobability = list(noise_probability)

    def samplenoise(self, rng: np.random.RandomState = None) -> Tuple[int, Noise]:
        noiseidx = sample(self.noiseprobability, rng)
        return noiseidx, self.noises[noiseidx]

    def validate(self):
        if not self.hasnoises:
            if len(self.noiseprobability) > 0:
                raise ValidationError("subproblem (stage=%d, markov_state=%d) has noise probabilities "
                                      "but no noises" % (self.stage, self.markov_state))
            return
        if len(self.noiseprobability) == 0:
            self.noiseprobability = [1 / len(self.noises)] * len(self.noises)
        if len(self.noiseprobability) != len(self.noises):
            raise ValidationError("subproblem (stage=%d, markov_state=%d) has %d noises but %d noise "
                                  "probabilities" % (self.stage, self.markov_state, len(self.noises),
                                                     len(self.noiseprobability)))
        checkprobability(self.noiseprobability, "noise probability of subproblem (stage=%d, markov_state=%d)" % (
            self.stage, self.markov_state))


class Stage:
    def __init__(self, t: int = 0, subproblems: List[Subproblem] = None,
                 transitionprobabilities: List[List[float]] = None, state: List[float] = None):
        if subproblems is None: subproblems = []
        if transitionprobabilities is None: transitionprobabilities = []
        if state is None: state = []

        self._state = state  # type:List[float]
        self.transitionprobabilities = transitionprobabilities
        self.subproblems = subproblems
        self.t = t

    def savestates(self, state: List[float]):
        """outgoing state of the subproblem visited on the last forward pass"""
        self._state = list(state)

    @property
    def state(self):
        return self._state

    def samplesubproblem(self, last_markov_state: int,
                         rng: np.random.RandomState = None) -> Tuple[int, Subproblem]:
        newidx = sample(self.transitionprobabilities[last_markov_state], rng)
        return newidx, self.subproblems[newidx]

    def validate(self, nprevious: int):
        """
        ``transitionprobabilities`` needs one row per subproblem of the previous
        stage (a single row for the first stage) and one column per subproblem here.
        """
        rows = self.transitionprobabilities
        if len(rows) != nprevious:
            raise ValidationError("transition matrix of stage %d has %d rows, expected %d" % (
                self.t, len(rows), nprevious))
        for i, row in enumerate(rows):
            if len(row) != len(self.subproblems):
                raise ValidationError("row %d of the transition matrix of stage %d has %d columns, "
                                      "expected %d" % (i, self.t, len(row), len(self.subproblems)))
            checkprobability(row, "row %d of the transition matrix of stage %d" % (i, self.t))

    @staticmethod
    def create(t: int, markov_transition=None) -> 'Stage':
        if markov_transition is None: markov_transition = [[1.0]]
        return Stage(t=t, transitionprobabilities=[list(row) for row in markov_transition])


class Storage:
    def __init__(self,
                 noise: CachedVector[int],
                 markov: CachedVector[int],
                 duals: CachedVector[List[float]],
                 objective: CachedVector[float],
                 probability: CachedVector[float],
                 modifiedprobability: CachedVector[float]):
        """
        Scratch arrays of one forward or backward pass. One slot per visited
        stage on the forward pass, one slot per (markov state, noise) branch on
        the backward pass.
        """
        self.modifiedprobability = modifiedprobability
        self.probability = probability
        self.objective = objective
        self.duals = duals
        self.markov = markov
        self.noise = noise

    def reset(self):
        self.modifiedprobability.reset()
        self.probability.reset()
        self.objective.reset()
        self.duals.reset()
        self.markov.reset()
        self.noise.reset()

    def push(self, noise: int, markov: int, duals: List[float], objective: float, probability: float,
             modifiedprobability: float = None):
        if modifiedprobability is None:
            modifiedprobability = probability
        self.noise.append(noise)
        self.markov.append(markov)
        self.duals.append(duals)
        self.objective.append(objective)
        self.probability.append(probability)
        self.modifiedprobability.append(modifiedprobability)

    @property
    def n(self):
        return self.objective.len

    @staticmethod
    def create():
        return Storage(CachedVector(), CachedVector(), CachedVector(),
                       CachedVector(), CachedVector(), CachedVector())


class SolutionLog(NamedTuple):
    iteration: int
    bound: float
    lower_statistical_bound: float
    upper_statistical_bound: float
    timecuts: float
    simulations: int
    timesimulations: float
    timetotal: float


class SDDPModel:
    def __init__(self, sense: Sense, build,
                 stages: List[Stage] = None,
                 storage: Storage = None, log: List[SolutionLog] = None, factory=None):
        if stages is None: stages = []
        if log is None: log = []
        if storage is None: storage = Storage.create()

        self.log = log  # type:List[SolutionLog]
        self.build = build
        self.storage = storage
        self.stages = stages  # type:List[Stage]
        self.sense = sense
        self.status = Status.solving
        # rebuilds an identical model, used for asynchronous replicas
        self.factory = factory
        self.cutwriter = None

    @property
    def nstages(self):
        return len(self.stages)

    def subproblems(self) -> Iterator[Subproblem]:
        for stage in self.stages:
            for sp in stage.subproblems:
                yield sp

    def getbound(self):
        if len(self.log) > 0:
            return self.log[-1].bound
        else:
            raise RuntimeError("The model has not been solved yet")

    def validate(self):
        if self.nstages < 1:
            raise ValidationError("a model needs at least one stage")
        nprevious = 1
        nstates = None
        for stage in self.stages:
            stage.validate(nprevious)
            for sp in stage.subproblems:
                sp.validate()
                if nstates is None:
                    nstates = sp.nstates
                elif sp.nstates != nstates:
                    raise ValidationError("subproblem (stage=%d, markov_state=%d) has %d states, expected %d" % (
                        sp.stage, sp.markov_state, sp.nstates, nstates))
            nprevious = len(stage.subproblems)

    def replicate(self) -> 'SDDPModel':
        """
        Build a new model from the same recipe whose subproblems share this
        model's cut oracles.
        """
        if self.factory is None:
            raise RuntimeError("model was not created by createSDDPModel and cannot be replicated")
        replica = self.factory()
        for stage, replica_stage in zip(self.stages, replica.stages):
            for sp, replica_sp in zip(stage.subproblems, replica_stage.subproblems):
                replica_sp.valueoracle.shareoracle(sp.valueoracle)
        replica.cutwriter = self.cutwriter
        return replica


class BoundStalling:
    def __init__(self, iterations: int = 0, rtol: float = 0.0, atol: float = 0.0):
        """
        Terminate once the deterministic bound of the last ``iterations``
        iterations deviates from its mean by at most ``atol`` (absolute) or
        ``rtol`` (relative to the mean). ``iterations == 0`` disables the test.
        """
        if iterations < 0:
            raise ValidationError("BoundStalling.iterations must be >= 0, got %s" % iterations)
        if rtol < 0 or atol < 0:
            raise ValidationError("BoundStalling tolerances must be >= 0, got rtol=%s atol=%s" % (rtol, atol))
        self._iterations = int(iterations)
        self._rtol = float(rtol)
        self._atol = float(atol)

    @property
    def iterations(self) -> int:
        return self._iterations

    @property
    def rtol(self) -> float:
        return self._rtol

    @property
    def atol(self) -> float:
        return self._atol


class MonteCarloSimulation:
    def __init__(self, frequency: int = 0, min: int = 20, max: int = None, step: int = 1,
                 confidence: float = 0.95, terminate: bool = False, steps: List[int] = None):
        """
        :param frequency: run the simulation every ``frequency`` iterations, 0 never runs it
        :param min: simulations before the first confidence interval
        :param max: largest number of simulations, defaults to ``min``
        :param step: simulations between two confidence intervals
        :param confidence: level of the confidence interval
        :param terminate: report convergence if the bound lies inside the interval after ``max`` simulations
        :param steps: explicit schedule, overrides min/max/step
        """
        if frequency < 0:
            raise ValidationError("simulation frequency must be >= 0, got %s" % frequency)
        if not 0.0 < confidence < 1.0:
            raise ValidationError("confidence must be in (0, 1), got %s" % confidence)
        if steps is None:
            if max is None:
                max = min
            if step < 1:
                raise ValidationError("simulation step must be >= 1, got %s" % step)
            steps = list(range(min, max + 1, step))
        steps = [int(s) for s in steps]
        if len(steps) == 0:
            raise ValidationError("the simulation schedule is empty")
        if steps[0] < 2:
            raise ValidationError("at least two simulations are needed for a confidence interval")
        if any(b <= a for a, b in zip(steps, steps[1:])):
            raise ValidationError("the simulation schedule must be increasing: %s" % steps)
        self._frequency = int(frequency)
        self._steps = tuple(steps)
        self._confidence = float(confidence)
        self._terminate = terminate

    @property
    def frequency(self) -> int:
        return self._frequency

    @property
    def steps(self) -> Tuple[int, ...]:
        return self._steps

    @property
    def confidence(self) -> float:
        return self._confidence

    @property
    def terminate(self) -> bool:
        return self._terminate


class Settings:
    def __init__(self,
                 iteration_limit: int = 10 ** 9,
                 time_limit: float = math.inf,
                 simulation: MonteCarloSimulation = None,
                 bound_stalling: BoundStalling = None,
                 cut_selection_frequency: int = 0,
                 print_level: int = 0,
                 log_file: str = "",
                 reduce_memory_footprint: bool = False,
                 cut_output_file: str = "",
                 is_asynchronous: bool = False,
                 workers: int = 1):
        if simulation is None: simulation = MonteCarloSimulation()
        if bound_stalling is None: bound_stalling = BoundStalling()
        if iteration_limit < 1:
            raise ValidationError("iteration_limit must be >= 1, got %s" % iteration_limit)
        if time_limit < 0:
            raise ValidationError("time_limit must be >= 0, got %s" % time_limit)
        if cut_selection_frequency < 0:
            raise ValidationError("cut_selection_frequency must be >= 0, got %s" % cut_selection_frequency)
        if workers < 1:
            raise ValidationError("workers must be >= 1, got %s" % workers)
        if reduce_memory_footprint and cut_selection_frequency > 0:
            raise ValidationError("reduce_memory_footprint discards the cuts that cut selection needs")
        if reduce_memory_footprint and is_asynchronous:
            raise ValidationError("reduce_memory_footprint discards the cuts shared by asynchronous workers")
        self._iteration_limit = int(iteration_limit)
        self._time_limit = float(time_limit)
        self._simulation = simulation
        self._bound_stalling = bound_stalling
        self._cut_selection_frequency = int(cut_selection_frequency)
        self._print_level = print_level
        self._log_file = log_file
        self._reduce_memory_footprint = reduce_memory_footprint
        self._cut_output_file = cut_output_file
        self._is_asynchronous = is_asynchronous
        self._workers = int(workers)

    @property
    def iteration_limit(self) -> int:
        return self._iteration_limit

    @property
    def time_limit(self) -> float:
        return self._time_limit

    @property
    def simulation(self) -> MonteCarloSimulation:
        return self._simulation

    @property
    def bound_stalling(self) -> BoundStalling:
        return self._bound_stalling

    @property
    def cut_selection_frequency(self) -> int:
        return self._cut_selection_frequency

    @property
    def print_level(self) -> int:
        return self._print_level

    @property
    def log_file(self) -> str:
        return self._log_file

    @property
    def reduce_memory_footprint(self) -> bool:
        return self._reduce_memory_footprint

    @property
    def cut_output_file(self) -> str:
        return self._cut_output_file

    @property
    def is_asynchronous(self) -> bool:
        return self._is_asynchronous

    @property
    def workers(self) -> int:
        return self._workers
