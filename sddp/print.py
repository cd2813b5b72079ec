# @version : python3.5
# @Time    : 2018/7/5 11:11
# @Author  : zzp
# @FileName: print.py
import re
import sys
from typing import List, TextIO

from sddp.exceptions import ValidationError
from sddp.typedefinitions import SDDPModel, Settings, SolutionLog, Status
from sddp.utilities import rtol


def humanize(value: float, fmt: str = None) -> str:
    """
    Five character wide number, large values get a K/M/G suffix. A float
    ``fmt`` must leave room for a sign and an integer digit before the point.
    """
    if fmt is None:
        fmt = "5d" if -1000 < value < 1000 else "5.1f"
    match = re.fullmatch(r"(\d+)(?:\.(\d+))?([df])", fmt)
    if match is None:
        raise ValidationError("unsupported number format %r" % fmt)
    width, precision, kind = match.groups()
    if kind == "f" and int(precision or 6) + 3 > int(width):
        raise ValidationError("format %r does not fit %s characters" % (fmt, width))
    for divisor, suffix in ((1e9, "G"), (1e6, "M"), (1e3, "K")):
        if abs(value) >= divisor:
            return ("%" + fmt) % (value / divisor) + suffix
    return ("%" + fmt) % value


def outputs(settings: Settings, logfile: TextIO = None) -> List[TextIO]:
    """stdout when print_level > 0, plus the log file if one is open"""
    ios = []
    if settings.print_level > 0:
        ios.append(sys.stdout)
    if logfile is not None:
        ios.append(logfile)
    return ios


def printmessage(ios: List[TextIO], message: str):
    for io in ios:
        print(message, file=io)


def printheader(ios: List[TextIO], m: SDDPModel, solve_type="Serial"):
    header = """-------------------------------------------------------------------------------
                                  SDDP
-------------------------------------------------------------------------------
    Solver:
        %s
    Model:
        Stages:         %d
        States:         %d
        Subproblems:    %d
        Value Function: Default
-------------------------------------------------------------------------------
              Objective              |  Cut  Passes    Simulations   Total
     Simulation       Bound   %% Gap  |   #     Time     #    Time    Time
-------------------------------------------------------------------------------""" % (
        solve_type,
        m.nstages,
        m.stages[0].subproblems[0].nstates,
        sum(len(s.subproblems) for s in m.stages))
    printmessage(ios, header)


def solutionlog_str(l: SolutionLog, printmean: bool = False, is_min=True) -> str:
    if printmean:
        bound_string = "     " + "%8.3f" % (0.5 * (l.lower_statistical_bound + l.upper_statistical_bound)) + "     "
        rtol_string = "      "
    else:
        bound_string = "%8.3f" % l.lower_statistical_bound + "  " + "%8.3f" % l.upper_statistical_bound
        if is_min:
            tol = 100 * rtol(l.lower_statistical_bound, l.bound)
        else:
            tol = -100 * rtol(l.upper_statistical_bound, l.bound)
        rtol_string = " %5.1f" % tol

    return "%s %8.3f %s   | %s %8.1f %s %8.1f %8.1f" % (bound_string,
                                                       l.bound,
                                                       rtol_string,
                                                       humanize(l.iteration),
                                                       l.timecuts,
                                                       humanize(l.simulations),
                                                       l.timesimulations,
                                                       l.timetotal)


def print_solutionLog(ios: List[TextIO], l: SolutionLog, printmean: bool = False, is_min=True):
    printmessage(ios, solutionlog_str(l, printmean, is_min))


def printfooter(ios: List[TextIO], m: SDDPModel, status: Status):
    iterations = m.log[-1].iteration if len(m.log) > 0 else 0
    printmessage(ios, """-------------------------------------------------------------------------------
    Other Statistics:
        Iterations:         %d
        Termination Status: %s
===============================================================================""" % (iterations, status.value))
