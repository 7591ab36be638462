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

import logging

import numpy as np

from collections import namedtuple

from ..utils import parallel_for


logger = logging.getLogger(__name__)


# The value of the last threshold of every feature, which
# makes sure every sample falls into some bin.
THRESHOLD_SENTINEL = np.finfo(np.float32).max


SplitCandidate = namedtuple('SplitCandidate', ['feature', 'threshold_index',
                                               'threshold', 'score'])


# Fan-outs over fewer (sample or bin, feature) cells than this
# run in the calling thread.
MIN_PARALLEL_CELLS = 2**16


def _check_features(feature_vectors, features):
    if features is None:
        return np.arange(feature_vectors.shape[1], dtype=np.intp)
    return np.asarray(features, dtype=np.intp)


def sort_samples_by_features(feature_vectors, features=None, parallel=1):
    '''
    Return the indices that sort the samples by each feature value.

    Parameters:
    -----------
    feature_vectors: array, shape = (n_samples, n_columns)
        The feature values of the samples.

    features: array of ints, optional (default is None)
        The columns to sort by. If None, all columns are used.

    parallel: joblib.Parallel or int, optional (default is 1)
        The worker pool (or the number of workers), see `parallel_for`.

    Returns
    -------
    sorted_indices: array of ints, shape = (n_features, n_samples)
        The i-th row holds the sample indices ordered by the value
        of the feature in the column `features[i]`.
    '''
    features = _check_features(feature_vectors, features)

    sorted_indices = np.empty((features.shape[0], feature_vectors.shape[0]),
                              dtype=np.intp)

    def sort_features(start, end):
        for f in range(start, end):
            sorted_indices[f] = np.argsort(feature_vectors[:, features[f]],
                                           kind='mergesort')

    parallel_for(sort_features, features.shape[0], parallel,
                 serial=sorted_indices.size < MIN_PARALLEL_CELLS)

    return sorted_indices


def compute_thresholds(sorted_values, n_thresholds=256):
    '''
    Compute the threshold candidates of a single feature.

    If the feature has at most `n_thresholds` unique values (or
    `n_thresholds` is -1), every unique value becomes a threshold.
    Otherwise, `n_thresholds` evenly spaced values starting at the
    minimum value are used. The last threshold is always the sentinel
    (float32 max).

    Parameters:
    -----------
    sorted_values: array of floats, shape = (n_samples,)
        The feature values in ascending order.

    n_thresholds: int, optional (default is 256)
        The maximum number of threshold candidates (not counting
        the sentinel), or -1 for no limit.
    '''
    if n_thresholds == 0 or n_thresholds < -1:
        raise ValueError('the number of threshold candidates must be '
                         'positive or -1 (%d was given)' % n_thresholds)

    values = np.unique(np.asarray(sorted_values, dtype=np.float32))

    if n_thresholds == -1 or values.shape[0] <= n_thresholds:
        return np.append(values, np.float32(THRESHOLD_SENTINEL))

    fmin, fmax = values[0], values[-1]
    step = np.float32(abs(fmax - fmin) / np.float32(n_thresholds))

    thresholds = np.empty(n_thresholds + 1, dtype=np.float32)
    thresholds[0] = fmin
    thresholds[1:n_thresholds] = step
    np.cumsum(thresholds[:n_thresholds], out=thresholds[:n_thresholds])
    thresholds[n_thresholds] = THRESHOLD_SENTINEL

    return thresholds


class FeatureHistogram(object):
    '''
    Per-feature cumulative statistics of the pseudo-responses over
    threshold bins of a sample set.

    A sample falls into the first bin `t` with `value <= thresholds[t]`.
    For every feature `f` and bin `t`, `sums[f, t]` and `counts[f, t]`
    hold the sum of the responses and the number of the samples in bins
    0..t (inclusive).

    The histogram of the full training set is created by `construct`.
    Histograms of tree nodes are derived from it: the left child by
    `construct_child` over its sample subset, the right child as the
    difference of the parent and the left child (`subtract`, or `consume`,
    which reuses the storage of the parent and makes the parent unusable).

    Do not call the initializer directly.
    '''
    def __init__(self, features, thresholds, sample_to_threshold_map,
                 sums, counts, n_samples, sum_response, sq_sum_response):
        self.features = features
        self.thresholds = thresholds
        self.sample_to_threshold_map = sample_to_threshold_map
        self.n_samples = n_samples
        self.sum_response = sum_response
        self.sq_sum_response = sq_sum_response
        self._sums = sums
        self._counts = counts
        self._consumed = False

    @property
    def sums(self):
        if self._consumed:
            raise RuntimeError('the histogram storage was handed over '
                               'to another histogram')
        return self._sums

    @property
    def counts(self):
        if self._consumed:
            raise RuntimeError('the histogram storage was handed over '
                               'to another histogram')
        return self._counts

    @property
    def consumed(self):
        return self._consumed

    @property
    def n_features(self):
        return self.features.shape[0]

    @property
    def deviance(self):
        '''
        The sum of squared deviations of the responses from their mean.
        '''
        if self.n_samples == 0:
            return 0.0
        return (self.sq_sum_response -
                self.sum_response * self.sum_response / self.n_samples)

    @classmethod
    def construct(cls, feature_vectors, labels, sorted_indices, thresholds,
                  features=None, parallel=1):
        '''
        Build the histogram of all samples.

        Parameters:
        -----------
        feature_vectors: array, shape = (n_samples, n_columns)
            The feature values of the samples.

        labels: array, shape = (n_samples,)
            The pseudo-responses of the samples.

        sorted_indices: array of ints, shape = (n_features, n_samples)
            The sample indices sorted by the value of each of `features`,
            see `sort_samples_by_features`.

        thresholds: list of arrays
            The threshold table of each of `features`, see
            `compute_thresholds`.

        features: array of ints, optional (default is None)
            The columns the histogram is built for. If None, all columns
            are used.

        parallel: joblib.Parallel or int, optional (default is 1)
            The worker pool (or the number of workers) the features
            are distributed to, see `parallel_for`.
        '''
        labels = np.asarray(labels, dtype=np.float64)

        n_samples = feature_vectors.shape[0]

        features = _check_features(feature_vectors, features)
        thresholds = list(thresholds)

        if len(thresholds) != features.shape[0]:
            raise ValueError('the number of threshold tables (%d) != the '
                             'number of features (%d)' % (len(thresholds),
                                                          features.shape[0]))

        n_features = features.shape[0]
        n_bins = max(t.shape[0] for t in thresholds)

        sample_to_threshold_map = np.empty((n_features, n_samples),
                                           dtype=np.intp)
        sums = np.empty((n_features, n_bins), dtype=np.float64)
        counts = np.empty((n_features, n_bins), dtype=np.intp)

        def construct_features(start, end):
            for f in range(start, end):
                order = sorted_indices[f]
                bins = np.searchsorted(thresholds[f],
                                       feature_vectors[order, features[f]],
                                       side='left')
                np.minimum(bins, thresholds[f].shape[0] - 1, out=bins)
                sample_to_threshold_map[f, order] = bins
                np.cumsum(np.bincount(bins, labels[order], n_bins), out=sums[f])
                np.cumsum(np.bincount(bins, minlength=n_bins), out=counts[f])

        parallel_for(construct_features, n_features, parallel,
                     serial=sample_to_threshold_map.size < MIN_PARALLEL_CELLS)

        logger.debug('Constructed histogram of %d features over %d samples.'
                     % (n_features, n_samples))

        return cls(features, thresholds, sample_to_threshold_map, sums,
                   counts, n_samples, labels.sum(), np.dot(labels, labels))

    def update(self, labels, parallel=1):
        '''
        Recompute the cumulative sums for new responses of the same
        samples. The assignment of the samples to the bins is reused.
        '''
        labels = np.asarray(labels, dtype=np.float64)

        if labels.shape[0] != self.n_samples:
            raise ValueError('the number of responses (%d) != the number of '
                             'samples (%d)' % (labels.shape[0],
                                               self.n_samples))

        sums = self.sums
        n_bins = sums.shape[1]

        def update_features(start, end):
            for f in range(start, end):
                np.cumsum(np.bincount(self.sample_to_threshold_map[f],
                                      labels, n_bins), out=sums[f])

        parallel_for(update_features, self.n_features, parallel,
                     serial=(self.sample_to_threshold_map.size <
                             MIN_PARALLEL_CELLS))

        self.sum_response = labels.sum()
        self.sq_sum_response = np.dot(labels, labels)

    def construct_child(self, sample_indices, labels, parallel=1):
        '''
        Build the histogram of the given subset of the samples of this
        histogram, `labels` being the responses of all the samples.
        '''
        labels = np.asarray(labels, dtype=np.float64)
        sample_indices = np.asarray(sample_indices, dtype=np.intp)

        n_bins = self.sums.shape[1]
        sample_labels = labels[sample_indices]

        sums = np.empty((self.n_features, n_bins), dtype=np.float64)
        counts = np.empty((self.n_features, n_bins), dtype=np.intp)

        def construct_features(start, end):
            for f in range(start, end):
                bins = self.sample_to_threshold_map[f, sample_indices]
                np.cumsum(np.bincount(bins, sample_labels, n_bins), out=sums[f])
                np.cumsum(np.bincount(bins, minlength=n_bins), out=counts[f])

        parallel_for(construct_features, self.n_features, parallel,
                     serial=(sample_indices.shape[0] * self.n_features <
                             MIN_PARALLEL_CELLS))

        return FeatureHistogram(self.features, self.thresholds,
                                self.sample_to_threshold_map, sums, counts,
                                sample_indices.shape[0], sample_labels.sum(),
                                np.dot(sample_labels, sample_labels))

    def subtract(self, left):
        '''
        Return the histogram of the samples of this histogram that are
        not covered by `left` (a histogram of a subset of the samples).
        This histogram is left intact.
        '''
        return FeatureHistogram(self.features, self.thresholds,
                                self.sample_to_threshold_map,
                                self.sums - left.sums,
                                self.counts - left.counts,
                                self.n_samples - left.n_samples,
                                self.sum_response - left.sum_response,
                                self.sq_sum_response - left.sq_sum_response)

    def consume(self, left):
        '''
        Same as `subtract`, but the result is computed in the storage
        of this histogram, which cannot be used afterwards (reading its
        bins raises RuntimeError).
        '''
        sums, counts = self.sums, self.counts

        sums -= left.sums
        counts -= left.counts

        self._sums = None
        self._counts = None
        self._consumed = True

        return FeatureHistogram(self.features, self.thresholds,
                                self.sample_to_threshold_map, sums, counts,
                                self.n_samples - left.n_samples,
                                self.sum_response - left.sum_response,
                                self.sq_sum_response - left.sq_sum_response)

    def sample_features(self, sampling_rate=1.0, random_state=None):
        '''
        Return the positions of the features considered for splitting:
        all of them if `sampling_rate` >= 1, otherwise a uniformly random
        subset (without replacement) of `int(sampling_rate * n_features)`
        features in the order they were drawn.
        '''
        if sampling_rate >= 1.0:
            return np.arange(self.n_features, dtype=np.intp)

        size = max(int(sampling_rate * self.n_features), 1)

        return random_state.choice(self.n_features, size=size, replace=False)

    def _find_best_split(self, start, end, candidates, min_samples_leaf):
        positions = candidates[start:end]

        sums_left = self.sums[positions]
        counts_left = self.counts[positions]
        sums_right = self.sum_response - sums_left
        counts_right = self.n_samples - counts_left

        valid = ((counts_left >= min_samples_leaf) &
                 (counts_right >= min_samples_leaf))

        if not valid.any():
            return None

        with np.errstate(divide='ignore', invalid='ignore'):
            scores = (sums_left * sums_left / counts_left +
                      sums_right * sums_right / counts_right)

        scores[~valid] = -np.inf

        # The first maximum in row-major order, i.e. the earliest
        # candidate feature and then the lowest bin wins.
        i, t = np.unravel_index(np.argmax(scores), scores.shape)

        return scores[i, t], positions[i], t

    def find_best_split(self, min_samples_leaf=1, sampling_rate=1.0,
                        random_state=None, parallel=1):
        '''
        Find the feature and the threshold maximizing

            sum_left^2 / count_left + sum_right^2 / count_right

        among the bins leaving at least `min_samples_leaf` samples on both
        sides. Ties are resolved in favor of the candidate feature seen
        first.

        Parameters:
        -----------
        min_samples_leaf: int, optional (default is 1)
            The minimum number of samples in each child.

        sampling_rate: float, optional (default is 1.0)
            If less than 1, only a random subset of the features
            is considered (see `sample_features`).

        random_state: RandomState instance
            The random number generator used for feature sampling.

        parallel: joblib.Parallel or int, optional (default is 1)
            The worker pool (or the number of workers) the candidate
            features are distributed to, see `parallel_for`.

        Returns
        -------
        candidate: SplitCandidate or None
            The best split, None if the responses do not vary or no bin
            satisfies the minimum leaf support.
        '''
        if self.deviance == 0.0:
            return None

        candidates = self.sample_features(sampling_rate, random_state)

        best = None

        n_cells = candidates.shape[0] * self.sums.shape[1]

        for result in parallel_for(self._find_best_split, candidates.shape[0],
                                   parallel, candidates, min_samples_leaf,
                                   serial=n_cells < MIN_PARALLEL_CELLS):
            if result is not None and (best is None or result[0] > best[0]):
                best = result

        if best is None:
            return None

        score, f, t = best

        return SplitCandidate(f, t, self.thresholds[f][t], score)

    def split_samples(self, sample_indices, candidate):
        '''
        Partition the samples by the given split candidate, preserving
        their order.

        Returns
        -------
        left, right: arrays of ints
            The samples with bins <= candidate.threshold_index and the rest.
        '''
        mask = (self.sample_to_threshold_map[candidate.feature, sample_indices]
                <= candidate.threshold_index)
        return sample_indices[mask], sample_indices[~mask]
