from random import random

from pyomo.environ import ConcreteModel, SolverFactory


def randint(a, b):
    """Our implementation of random.randint.

    The Python random.randint is not consistent between python versions
    and produces a series that is different in 3.x than 2.x.  So that we
    can support deterministic testing (i.e., setting the random.seed and
    expecting the same sequence), we will implement a simple, but stable
    version of randint()."""
    return a + int((b - a + 1) * random())


def unique_component_name(instance, name):
    # test if this name already exists in model. If not, we're good.
    # Else, we add random numbers until it doesn't
    if instance.component(name) is None:
        return name
    name += '_%d' % (randint(0, 9),)
    while True:
        if instance.component(name) is None:
            return name
        else:
            name += str(randint(0, 9))


def solverfactory(name: str, executable: str = None):
    """
    A pyomo solver plugin, ``executable`` overrides the binary found on the PATH
    """
    if executable is None:
        return SolverFactory(name)
    return SolverFactory(name, executable=executable)


def solveravailable(name: str) -> bool:
    return bool(SolverFactory(name).available(exception_flag=False))


def writemodel(model: ConcreteModel, filename: str) -> str:
    """write ``model`` with its component names, returns the file name"""
    model.write(filename, io_options={"symbolic_solver_labels": True})
    return filename
