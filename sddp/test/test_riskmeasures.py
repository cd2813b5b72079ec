#  Copyright 2017, Oscar Dowson, Zhao Zhipeng
#  This Source Code Form is subject to the terms of the Mozilla Public
#  License, v. 2.0. If a copy of the MPL was not distributed with this
#  file, You can obtain one at http://mozilla.org/MPL/2.0/.
#############################################################################

import unittest

import numpy as np

from sddp.exceptions import ValidationError
from sddp.riskmeasures import Expectation, WorstCase, AVaR, ConvexCombination, EAVaR, DRO
from sddp.typedefinitions import Sense
from sddp.utilities import modifyprobability


class ExpectationTestCase(unittest.TestCase):
    def test_unchanged(self):
        p = [0.1, 0.2, 0.3, 0.4]
        self.assertEqual(Expectation().modifyprobability(p, [4.0, 3.0, 2.0, 1.0], Sense.Min), p)


class WorstCaseTestCase(unittest.TestCase):
    def test_min(self):
        q = WorstCase().modifyprobability([0.5, 0.5], [1.0, 3.0], Sense.Min)
        self.assertEqual(q, [0.0, 1.0])

    def test_max(self):
        q = WorstCase().modifyprobability([0.5, 0.5], [1.0, 3.0], Sense.Max)
        self.assertEqual(q, [1.0, 0.0])

    def test_zero_probability_is_ignored(self):
        q = WorstCase().modifyprobability([0.5, 0.0, 0.5], [1.0, 10.0, 3.0], Sense.Min)
        self.assertEqual(q, [0.0, 0.0, 1.0])


class AVaRTestCase(unittest.TestCase):
    def test_bad_beta(self):
        with self.assertRaises(ValidationError):
            AVaR(1.5)
        with self.assertRaises(ValidationError):
            AVaR(-0.1)

    def test_limits(self):
        p, z = [0.25, 0.25, 0.5], [1.0, 2.0, 3.0]
        self.assertEqual(AVaR(1.0).modifyprobability(p, z, Sense.Min), p)
        self.assertEqual(AVaR(0.0).modifyprobability(p, z, Sense.Min), [0.0, 0.0, 1.0])

    def test_min(self):
        q = AVaR(0.5).modifyprobability([0.25, 0.25, 0.25, 0.25], [1.0, 2.0, 3.0, 4.0], Sense.Min)
        np.testing.assert_allclose(q, [0.0, 0.0, 0.5, 0.5])

    def test_max(self):
        q = AVaR(0.5).modifyprobability([0.25, 0.25, 0.25, 0.25], [1.0, 2.0, 3.0, 4.0], Sense.Max)
        np.testing.assert_allclose(q, [0.5, 0.5, 0.0, 0.0])

    def test_partial_atom(self):
        q = AVaR(0.4).modifyprobability([0.25, 0.25, 0.25, 0.25], [1.0, 2.0, 3.0, 4.0], Sense.Min)
        np.testing.assert_allclose(q, [0.0, 0.0, 0.375, 0.625])


class ConvexCombinationTestCase(unittest.TestCase):
    def test_weights(self):
        with self.assertRaises(ValidationError):
            ConvexCombination([(0.5, Expectation()), (0.6, WorstCase())])

    def test_combination(self):
        measure = ConvexCombination([(0.5, Expectation()), (0.5, WorstCase())])
        q = measure.modifyprobability([0.5, 0.5], [1.0, 3.0], Sense.Min)
        np.testing.assert_allclose(q, [0.25, 0.75])

    def test_eavar(self):
        q = EAVaR(lamb=0.5, beta=0.0).modifyprobability([0.5, 0.5], [1.0, 3.0], Sense.Min)
        np.testing.assert_allclose(q, [0.25, 0.75])
        with self.assertRaises(ValidationError):
            EAVaR(lamb=2.0)


class DROTestCase(unittest.TestCase):
    def test_bad_radius(self):
        with self.assertRaises(ValidationError):
            DRO(-1.0)

    def test_zero_radius_is_nominal(self):
        q = DRO(0.0).modifyprobability([0.5, 0.5], [1.0, 3.0], Sense.Min)
        self.assertEqual(q, [0.5, 0.5])
        q = DRO(0.0).modifyprobability([0.9, 0.1], [1.0, 3.0], Sense.Min)
        self.assertEqual(q, [0.9, 0.1])

    def test_constant_observations_are_uniform(self):
        q = DRO(0.5).modifyprobability([0.5, 0.5], [2.0, 2.0], Sense.Min)
        self.assertEqual(q, [0.5, 0.5])

    def test_shifts_to_worse_outcome(self):
        for sense, worse in ((Sense.Min, 1), (Sense.Max, 0)):
            q = DRO(0.25).modifyprobability([0.5, 0.5], [1.0, 3.0], sense)
            self.assertAlmostEqual(sum(q), 1.0)
            self.assertTrue(all(x >= -1e-9 for x in q))
            self.assertGreater(q[worse], 0.5)

    def test_three_outcomes(self):
        q = DRO(0.2).modifyprobability([1 / 3] * 3, [1.0, 2.0, 3.0], Sense.Min)
        np.testing.assert_allclose(q, [1 / 3 - 0.2 / np.sqrt(2), 1 / 3, 1 / 3 + 0.2 / np.sqrt(2)], atol=1e-9)

    def test_zero_probability_outcomes(self):
        # an unreachable markov state contributes zero-probability outcomes
        q = DRO(0.25).modifyprobability([0.5, 0.0, 0.5], [1.0, 100.0, 3.0], Sense.Min)
        np.testing.assert_allclose(q, [0.5 - 0.25 / np.sqrt(8), 0.0, 0.5 + 0.25 / np.sqrt(8)], atol=1e-9)
        q = DRO(0.25).modifyprobability([0.0, 1.0], [100.0, 3.0], Sense.Min)
        self.assertEqual(q, [0.0, 1.0])

    def test_non_uniform(self):
        with self.assertRaises(ValidationError):
            DRO(0.25).modifyprobability([0.9, 0.1], [1.0, 3.0], Sense.Min)
        # constant observations leave any distribution alone
        self.assertEqual(DRO(0.25).modifyprobability([0.9, 0.1], [2.0, 2.0], Sense.Min), [0.9, 0.1])


class ModifyProbabilityTestCase(unittest.TestCase):
    def test_single_outcome(self):
        self.assertEqual(modifyprobability(WorstCase(), [1.0], [5.0], Sense.Min), [1.0])

    def test_length_mismatch(self):
        with self.assertRaises(ValidationError):
            modifyprobability(Expectation(), [0.5, 0.5], [1.0], Sense.Min)

    def test_malformed_result(self):
        class Broken(Expectation):
            def modifyprobability(self, original_distribution, observations, sense):
                return [0.7, 0.7]

        with self.assertRaises(ValidationError):
            modifyprobability(Broken(), [0.5, 0.5], [1.0, 2.0], Sense.Min)


if __name__ == '__main__':
    unittest.main()
