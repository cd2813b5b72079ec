#  Copyright 2017, Oscar Dowson, Zhao Zhipeng
#  This Source Code Form is subject to the terms of the Mozilla Public
#  License, v. 2.0. If a copy of the MPL was not distributed with this
#  file, You can obtain one at http://mozilla.org/MPL/2.0/.
#############################################################################

import functools
import queue
import threading

import numpy as np

from sddp.SDDP import iteration_fun, rebuild, synchronise, endofiteration, SolveProgress
from sddp.exceptions import SDDPError
from sddp.typedefinitions import SDDPModel, Settings, Status


class AsynchronousControl:
    """
    Signals from the coordinating thread to the workers. Workers rebuild their
    subproblems whenever ``epoch`` changes.
    """

    def __init__(self):
        self.stop = threading.Event()
        self.epoch = 0


def selectcuts(m: SDDPModel, control: AsynchronousControl):
    rebuild(m)
    control.epoch += 1


def runworker(w: int, replica: SDDPModel, settings: Settings, rng: np.random.RandomState,
              results: queue.Queue, control: AsynchronousControl):
    """
    Iterate on ``replica`` until told to stop. Each iteration puts
    ``(worker, bound, simulation objective, time, error)`` on ``results``.
    """
    epoch = control.epoch
    try:
        while not control.stop.is_set():
            if control.epoch != epoch:
                epoch = control.epoch
                rebuild(replica)
            synchronise(replica)
            objective_bound, time_backwards, simulation_objective, time_forwards = iteration_fun(
                replica, settings, rng)
            results.put((w, objective_bound, simulation_objective, time_backwards + time_forwards, None))
    except Exception as err:
        results.put((w, None, None, 0.0, err))


def solve_asynchronous(m: SDDPModel, settings: Settings, seed: int = None, ios=None) -> Status:
    """
    Solve with ``settings.workers`` threads, each iterating on its own replica of
    ``m``. The replicas share the cut oracles of ``m``; this thread owns the log.
    """
    if ios is None:
        ios = []
    if seed is None:
        seed = np.random.randint(0, 2 ** 31 - 1)
    replicas = [m.replicate() for _ in range(settings.workers)]
    results = queue.Queue()
    control = AsynchronousControl()
    threads = [threading.Thread(target=runworker, name="sddp-worker-%d" % w, daemon=True,
                                args=(w, replica, settings, np.random.RandomState([seed, w]), results, control))
               for w, replica in enumerate(replicas)]
    rng = np.random.RandomState([seed, settings.workers])
    cutselection = functools.partial(selectcuts, control=control)

    progress = SolveProgress()
    status, iteration = Status.solving, 0
    error = None
    for thread in threads:
        thread.start()
    try:
        while status == Status.solving:
            try:
                w, objective_bound, simulation_objective, time_cutting, err = results.get(timeout=0.1)
            except queue.Empty:
                if not any(thread.is_alive() for thread in threads):
                    raise SDDPError("all asynchronous workers stopped")
                continue
            if err is not None:
                error = err
                break
            iteration += 1
            progress.time_cutting += time_cutting
            synchronise(m)
            status = endofiteration(m, settings, rng, ios, progress, iteration, objective_bound,
                                    simulation_objective, cutselection=cutselection)
    finally:
        control.stop.set()
        for thread in threads:
            thread.join()
    if error is not None:
        raise error
    synchronise(m)
    return status
