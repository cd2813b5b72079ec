#  Copyright 2017, Oscar Dowson, Zhao Zhipeng
#  This Source Code Form is subject to the terms of the Mozilla Public
#  License, v. 2.0. If a copy of the MPL was not distributed with this
#  file, You can obtain one at http://mozilla.org/MPL/2.0/.
#############################################################################

import os
import tempfile
import unittest

from sddp.SDDP import createSDDPModel, solve, solve_default, simulate, forwardpass
from sddp.cut_oracles.LevelOneCutOracle import LevelOneCutOracle
from sddp.exceptions import InfeasibleSubproblemError
from sddp.riskmeasures import WorstCase, DRO
from sddp.test.linear import inventorymodel, LinprogSolveService
from sddp.typedefinitions import Sense, Status, Settings, BoundStalling, MonteCarloSimulation


class InventoryTestCase(unittest.TestCase):
    def test_expectation(self):
        m = inventorymodel()
        status = solve_default(m, iteration_limit=5, print_level=0, seed=1)
        self.assertEqual(status, Status.iteration_limit)
        self.assertEqual(m.status, Status.iteration_limit)
        self.assertAlmostEqual(m.log[0].bound, 4.0)
        self.assertAlmostEqual(m.getbound(), 5.0)

    def test_bound_is_monotone(self):
        m = inventorymodel()
        solve_default(m, iteration_limit=8, print_level=0, seed=2)
        bounds = [l.bound for l in m.log]
        for previous, current in zip(bounds, bounds[1:]):
            self.assertGreaterEqual(current, previous - 1e-9)

    def test_worst_case(self):
        m = inventorymodel(risk_measure=WorstCase())
        solve_default(m, iteration_limit=5, print_level=0, seed=1)
        self.assertAlmostEqual(m.getbound(), 6.0)

    def test_maximise(self):
        m = inventorymodel(sense=Sense.Max)
        solve_default(m, iteration_limit=5, print_level=0, seed=1)
        self.assertAlmostEqual(m.getbound(), -5.0)

    def test_markov(self):
        m = inventorymodel(demands=[(0.0, 2.0), (2.0, 4.0)], purchase=1.0,
                           markov_transition=[[[1.0]], [[0.5, 0.5]]])
        self.assertEqual(len(m.stages[1].subproblems), 2)
        solve_default(m, iteration_limit=10, print_level=0, seed=3)
        self.assertAlmostEqual(m.getbound(), 3.5)

    def test_dro_unreachable_markov_state(self):
        m = inventorymodel(demands=[(1.0, 3.0), (100.0, 100.0)], markov_transition=[[[1.0]], [[1.0, 0.0]]],
                           risk_measure=DRO(0.0))
        solve_default(m, iteration_limit=5, print_level=0, seed=1)
        self.assertAlmostEqual(m.getbound(), 5.0)

    def test_single_stage(self):
        def build(sp, stage, markov_state):
            sp.addstate("x", initial=1.0)
            sp.addvariable("buy")
            sp.addconstraint({"x": 1.0, "x0": -1.0, "buy": -1.0}, "==", 0.0)
            sp.addconstraint({"x": 1.0}, ">=", 3.0)
            sp.setobjective({"buy": 2.0})

        m = createSDDPModel(build, stages=1, objective_bound=0.0, solver=LinprogSolveService())
        solve_default(m, iteration_limit=1, print_level=0)
        self.assertAlmostEqual(m.getbound(), 4.0)

    def test_negative_objective_bound(self):
        def build(sp, stage, markov_state):
            sp.addstate("x", initial=1.0)
            sp.addvariable("buy")
            sp.addconstraint({"x": 1.0, "x0": -1.0, "buy": -1.0}, "==", 0.0)
            sp.addconstraint({"x": 1.0}, ">=", 3.0)
            sp.setobjective({"buy": 2.0})

        m = createSDDPModel(build, stages=1, objective_bound=-1e6, solver=LinprogSolveService())
        solve_default(m, iteration_limit=1, print_level=0)
        self.assertGreaterEqual(m.getbound(), -1e6)
        self.assertLessEqual(m.getbound(), 4.0 + 1e-9)
        self.assertAlmostEqual(m.getbound(), 4.0)

        m = inventorymodel(objective_bound=-1e6)
        solve_default(m, iteration_limit=1, print_level=0, seed=1)
        self.assertGreaterEqual(m.log[0].bound, -1e6)
        self.assertLessEqual(m.log[0].bound, 5.0 + 1e-9)

    def test_infeasible(self):
        def build(sp, stage, markov_state):
            sp.addstate("x")
            sp.addconstraint({"x": 1.0}, "<=", -1.0)
            sp.setobjective({"x": 1.0})

        m = createSDDPModel(build, sense=Sense.Max, stages=1, objective_bound=0.0, solver=LinprogSolveService())
        with self.assertRaises(InfeasibleSubproblemError) as cm:
            solve_default(m, iteration_limit=1, print_level=0)
        self.assertEqual(cm.exception.stage, 0)
        self.assertEqual(m.status, Status.error)


class StoppingRulesTestCase(unittest.TestCase):
    def test_iteration_limit(self):
        m = inventorymodel()
        self.assertEqual(solve(m, Settings(iteration_limit=3), seed=1), Status.iteration_limit)
        self.assertEqual(len(m.log), 3)
        self.assertEqual(m.log[-1].iteration, 3)

    def test_time_limit(self):
        m = inventorymodel()
        self.assertEqual(solve(m, Settings(time_limit=0.0), seed=1), Status.time_limit)
        self.assertEqual(len(m.log), 1)

    def test_bound_stalling(self):
        m = inventorymodel()
        status = solve(m, Settings(iteration_limit=50, bound_stalling=BoundStalling(3, atol=1e-6)), seed=1)
        self.assertEqual(status, Status.bound_stalling)
        self.assertEqual(len(m.log), 4)

    def test_statistical_convergence(self):
        m = inventorymodel()
        settings = Settings(iteration_limit=100,
                            simulation=MonteCarloSimulation(frequency=5, min=50, confidence=0.999,
                                                            terminate=True))
        self.assertEqual(solve(m, settings, seed=4), Status.converged)
        last = m.log[-1]
        self.assertEqual(last.iteration % 5, 0)
        self.assertGreaterEqual(last.simulations, 50)
        self.assertLessEqual(last.lower_statistical_bound, last.bound)
        self.assertGreaterEqual(last.upper_statistical_bound, last.bound)

    def test_simulation_without_terminate(self):
        m = inventorymodel()
        settings = Settings(iteration_limit=10,
                            simulation=MonteCarloSimulation(frequency=5, min=20, max=40, step=10))
        self.assertEqual(solve(m, settings, seed=4), Status.iteration_limit)
        self.assertGreater(m.log[-1].simulations, 0)


class CutManagementTestCase(unittest.TestCase):
    def test_level_one(self):
        m = inventorymodel(cut_oracle=LevelOneCutOracle())
        solve_default(m, iteration_limit=10, cut_selection_frequency=2, print_level=0, seed=5)
        self.assertAlmostEqual(m.getbound(), 5.0)
        oracle = m.stages[0].subproblems[0].valueoracle.cutoracle
        self.assertIsInstance(oracle, LevelOneCutOracle)
        self.assertLessEqual(len(oracle.validcuts()), len(oracle.allcuts()))
        self.assertEqual(len(oracle.allcuts()), 10)

    def test_oracles_are_not_shared(self):
        m = inventorymodel(markov_transition=[[[1.0]], [[0.5, 0.5]]], demands=[(1.0, 3.0), (1.0, 3.0)])
        oracles = [sp.valueoracle.cutoracle for sp in m.subproblems()]
        self.assertEqual(len({id(o) for o in oracles}), len(oracles))

    def test_reduce_memory_footprint(self):
        m = inventorymodel()
        solve_default(m, iteration_limit=5, reduce_memory_footprint=True, print_level=0, seed=1)
        self.assertAlmostEqual(m.getbound(), 5.0)
        oracle = m.stages[0].subproblems[0].valueoracle.cutoracle
        self.assertEqual(oracle.allcuts(), [])
        self.assertGreater(oracle.cuts.capacity, 0)
        # the relaxation keeps every cut
        self.assertEqual(len(m.stages[0].subproblems[0].cuts), 5)


class SimulationTestCase(unittest.TestCase):
    def test_same_seed(self):
        results = []
        for _ in range(2):
            m = inventorymodel(demands=[(0.0, 2.0), (2.0, 4.0)], purchase=1.0,
                               markov_transition=[[[1.0]], [[0.5, 0.5]]])
            solve_default(m, iteration_limit=5, print_level=0, seed=11)
            results.append(([l.bound for l in m.log], simulate(m, 20, seed=3)))
        self.assertEqual(results[0], results[1])

    def test_records(self):
        m = inventorymodel()
        solve_default(m, iteration_limit=5, print_level=0, seed=1)
        records = simulate(m, 10, seed=2)
        self.assertEqual(len(records), 10)
        for record in records:
            self.assertEqual(len(record["markov"]), 2)
            self.assertEqual(len(record["state"]), 2)
            self.assertIn(record["noise"][1], (0, 1))
            self.assertAlmostEqual(record["objective"], sum(record["stageobjective"]))
            # buy one unit, pay the penalty on the remaining demand
            self.assertAlmostEqual(record["state"][0][0], 1.0)

    def test_forwardpass_fills_storage(self):
        m = inventorymodel()
        forwardpass(m, Settings())
        self.assertEqual(m.storage.n, 2)
        self.assertEqual(m.stages[0].state, [0.0])


class OutputTestCase(unittest.TestCase):
    def test_log_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            filename = os.path.join(tmp, "sddp.log")
            m = inventorymodel()
            solve_default(m, iteration_limit=3, print_level=0, log_file=filename, seed=1)
            with open(filename) as io:
                text = io.read()
        self.assertIn("SDDP", text)
        self.assertIn("iteration_limit", text)
        self.assertEqual(len([line for line in text.splitlines() if "|" in line]), 5)


if __name__ == '__main__':
    unittest.main()
