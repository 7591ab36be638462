# -*- coding: utf-8 -*-
#
# This file is part of TreeRank.
#
# TreeRank is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# TreeRank is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# along with TreeRank.  If not, see <http://www.gnu.org/licenses/>.

import pickle as _pickle

import numpy as np

from joblib import Parallel, delayed, cpu_count


def pickle(obj, filepath, protocol=-1):
    '''
    Pickle the object into the specified file.

    Parameters:
    -----------
    obj: object
        The object that should be serialized.

    filepath:
        The location of the resulting pickle file.
    '''
    with open(filepath, 'wb') as fout:
        _pickle.dump(obj, fout, protocol=protocol)


def unpickle(filepath):
    '''
    Unpicle the object serialized in the specified file.

    Parameters:
    -----------
    filepath:
        The location of the file to unpickle.
    '''
    with open(filepath, 'rb') as fin:
        return _pickle.load(fin)


def _get_n_jobs(n_jobs):
    '''
    Resolve the number of workers. Negative values are counted
    back from the number of CPUs, i.e. -1 means all of them.
    '''
    if n_jobs < 0:
        return max(cpu_count() + 1 + n_jobs, 1)
    elif n_jobs == 0:
        raise ValueError('the number of jobs cannot be 0')
    return n_jobs


def _get_partition_indices(start, end, n_jobs):
    '''
    Split the index range [start, end) into at most `n_jobs`
    contiguous chunks whose sizes differ by at most one. The
    first `(end - start) % n_parts` chunks get the extra item.

    Returns
    -------
    indices: array of ints, shape = (n_parts + 1,)
        The chunk boundaries, i.e. i-th chunk spans the range
        indices[i]:indices[i + 1].
    '''
    if end < start:
        raise ValueError('invalid range: end (%d) < start (%d)' % (end, start))

    if n_jobs < 1:
        raise ValueError('the number of jobs must be positive (%d was given)'
                         % n_jobs)

    n_parts = min(n_jobs, end - start)

    if n_parts == 0:
        return np.array([start, start], dtype=np.intp)

    size, mod = divmod(end - start, n_parts)

    sizes = np.empty(n_parts + 1, dtype=np.intp)
    sizes[0] = start
    sizes[1:] = size
    sizes[1:mod + 1] += 1

    return np.cumsum(sizes)


def worker_pool(n_jobs):
    '''
    Create the thread pool shared by all fan-outs of a training run.

    The returned object is meant to be entered with the `with` statement,
    which keeps its workers alive until the block exits:

        with worker_pool(n_jobs) as parallel:
            parallel_for(function, n_items, parallel)

    Parameters:
    -----------
    n_jobs: int
        The number of worker threads, see `_get_n_jobs`.
    '''
    return Parallel(n_jobs=_get_n_jobs(n_jobs), backend='threading')


def parallel_for(function, n_items, parallel, *args, serial=False):
    '''
    Run `function(start, end, *args)` for every chunk of the index range
    [0, n_items) and wait until all of them finish. The chunks are obtained
    with `_get_partition_indices`, so the same chunk boundaries are used for
    a given number of jobs, including a single one.

    Tasks are expected to write only to disjoint slices of shared arrays.
    An exception raised by any task is propagated to the caller.

    Parameters:
    -----------
    parallel: joblib.Parallel or int
        The pool created by `worker_pool` (preferably already entered),
        or the number of workers of a pool used for this call only.

    serial: bool, optional (default is False)
        If True, the chunks are processed one after another in the calling
        thread. The chunk boundaries, and hence the results, stay the same.

    Returns
    -------
    results: list
        The values returned by the tasks in the order of the chunks.
    '''
    if isinstance(parallel, Parallel):
        n_jobs = parallel.n_jobs
    else:
        n_jobs = parallel

    indices = _get_partition_indices(0, n_items, n_jobs)

    if indices[0] == indices[-1]:
        return []

    n_parts = indices.shape[0] - 1

    if serial or n_parts == 1:
        return [function(indices[i], indices[i + 1], *args)
                for i in range(n_parts)]

    if not isinstance(parallel, Parallel):
        parallel = Parallel(n_jobs=n_jobs, backend='threading')

    return parallel(delayed(function)(indices[i], indices[i + 1], *args)
                    for i in range(n_parts))


def format_number(value):
    '''
    Format the number for a model file: integral values are written
    with a single decimal place, everything else with the shortest
    representation that reads back to the same double.
    '''
    value = float(value)
    if value.is_integer():
        return '%.1f' % value
    return repr(value)
