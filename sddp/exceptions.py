#  Copyright 2017, Oscar Dowson, Zhao Zhipeng
#  This Source Code Form is subject to the terms of the Mozilla Public
#  License, v. 2.0. If a copy of the MPL was not distributed with this
#  file, You can obtain one at http://mozilla.org/MPL/2.0/.
#############################################################################
"""
Exceptions raised by the SDDP solver.

Convergence is not an error: a finished solve returns a ``Status``.
"""

from typing import List, Optional


class SDDPError(Exception):
    """Base exception for all SDDP errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(SDDPError):
    """
    Raised before (or instead of) solving when input data is malformed.

    Examples: probabilities that do not sum to one, a cut whose coefficient
    vector does not match the number of states, negative time limits.
    """

    def __init__(self, message: str) -> None:
        super().__init__("Invalid input: %s" % message)


class InfeasibleSubproblemError(SDDPError):
    """
    Raised when a subproblem is infeasible at a reachable state.

    A correctly specified model is feasible for every state and noise that
    the policy can reach, so this always aborts the solve.
    """

    def __init__(self, stage: int, markov_state: int, state: List[float],
                 modelfile: Optional[str] = None) -> None:
        self.stage = stage
        self.markov_state = markov_state
        self.state = list(state)
        self.modelfile = modelfile
        message = "Subproblem (stage=%d, markov_state=%d) is infeasible at incoming state %s" % (
            stage, markov_state, self.state)
        if modelfile:
            message += ". The model was written to %s" % modelfile
        super().__init__(message)


class SolverFailure(SDDPError):
    """
    Raised when the solve service itself fails (not an infeasibility).
    Retrying is left to the solve service.
    """

    def __init__(self, stage: int, markov_state: int, message: str = "") -> None:
        self.stage = stage
        self.markov_state = markov_state
        super().__init__("Solver failed on subproblem (stage=%d, markov_state=%d): %s" % (
            stage, markov_state, message))
