"""
Flat cut files: one line per cut, ``stage, markov_state, intercept, coefficients...``
"""
import csv
import threading
from typing import Iterator, TextIO, Tuple

from sddp.exceptions import ValidationError
from sddp.typedefinitions import Cut, SDDPModel


def writecut(io: TextIO, stage: int, markov_state: int, cut: Cut):
    csv.writer(io).writerow([stage, markov_state, cut.intercept] + list(cut.coefficients))


def readcuts(filename: str) -> Iterator[Tuple[int, int, Cut]]:
    with open(filename, newline="") as io:
        for lineno, row in enumerate(csv.reader(io), start=1):
            if len(row) == 0:
                continue
            if len(row) < 3:
                raise ValidationError("%s:%d: expected stage, markov state and intercept" % (filename, lineno))
            try:
                yield int(row[0]), int(row[1]), Cut(float(row[2]), [float(c) for c in row[3:]])
            except ValueError as err:
                raise ValidationError("%s:%d: %s" % (filename, lineno, err)) from err


def loadcuts(m: SDDPModel, filename: str) -> int:
    """
    Add the cuts of ``filename`` to the subproblems of ``m``, returns the number of cuts.
    """
    n = 0
    for stage, markov_state, cut in readcuts(filename):
        if not 0 <= stage < m.nstages or not 0 <= markov_state < len(m.stages[stage].subproblems):
            raise ValidationError("%s refers to subproblem (stage=%d, markov_state=%d) which does not exist" % (
                filename, stage, markov_state))
        sp = m.stages[stage].subproblems[markov_state]
        sp.valueoracle.addcut(m, sp, Cut(cut.intercept, cut.coefficients, nstates=sp.nstates))
        n += 1
    return n


class CutWriter:
    """Appends cuts to a file while solving, shared by asynchronous workers."""

    def __init__(self, filename: str):
        self.filename = filename
        self._io = open(filename, "w", newline="")
        self._lock = threading.Lock()

    def write(self, stage: int, markov_state: int, cut: Cut):
        with self._lock:
            writecut(self._io, stage, markov_state, cut)
            self._io.flush()

    def close(self):
        with self._lock:
            self._io.close()
