# @version : python3.5
# @Time    : 2018/7/2 9:34
# @Author  : zzp
# @FileName: state.py
from typing import List

from sddp.exceptions import ValidationError
from sddp.typedefinitions import SDDPModel, Subproblem


def incomingstate(m: SDDPModel, sp: Subproblem) -> List[float]:
    """
    The state a subproblem starts from: the initial values in the first
    stage, otherwise the outgoing state of the previous stage on the last
    forward pass.
    """
    if sp.stage == 0:
        return sp.initialstate
    state = list(m.stages[sp.stage - 1].state)
    if len(state) != sp.nstates:
        raise ValidationError("stage %d passes %d state values to subproblem (stage=%d, markov_state=%d) "
                              "which has %d states" % (sp.stage - 1, len(state), sp.stage, sp.markov_state,
                                                       sp.nstates))
    return state
