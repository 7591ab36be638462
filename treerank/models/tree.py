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

import heapq
import logging

import numpy as np

from itertools import count


logger = logging.getLogger(__name__)


class Split(object):
    '''
    A node of a regression tree: either a leaf carrying the output
    value, or an internal node sending a sample to the left child
    iff its value of the feature `feature` (id starting from 1) is
    less than or equal to `threshold`.

    While the tree is trained, the node also holds the indices of its
    samples and their histogram (see `clear_samples`).
    '''
    def __init__(self, feature=None, threshold=None, output=0.0,
                 left=None, right=None, deviance=0.0):
        self.feature = feature
        self.threshold = threshold
        self.output = output
        self.left = left
        self.right = right
        self.deviance = deviance
        self.samples = None
        self.histogram = None
        self.is_root = False

    def is_leaf(self):
        return self.feature is None

    def set_split(self, feature, threshold, left, right):
        self.feature = feature
        self.threshold = threshold
        self.left = left
        self.right = right

    def eval(self, point, missing_zero=False):
        '''
        Return the output of the leaf the data point falls into.
        '''
        node = self
        while node.feature is not None:
            value = point.get_feature_value(node.feature, missing_zero)
            node = node.left if value <= node.threshold else node.right
        return node.output

    def predict(self, feature_vectors, indices, output):
        '''
        Write the leaf outputs of the rows `indices` of the feature
        matrix (column `j` holds the feature id `j + 1`) into `output`.
        '''
        if self.feature is None:
            output[indices] = self.output
            return

        mask = feature_vectors[indices, self.feature - 1] <= self.threshold

        self.left.predict(feature_vectors, indices[mask], output)
        self.right.predict(feature_vectors, indices[~mask], output)

    def leaves(self):
        '''
        Return the leaves of the subtree from left to right.
        '''
        if self.feature is None:
            return [self]
        return self.left.leaves() + self.right.leaves()

    def features(self):
        '''
        Return the set of feature ids used in the subtree.
        '''
        if self.feature is None:
            return set()
        return ({self.feature} | self.left.features() |
                self.right.features())

    def clear_samples(self):
        '''
        Discard the training-only state of the subtree.
        '''
        self.samples = None
        self.histogram = None
        if self.feature is not None:
            self.left.clear_samples()
            self.right.clear_samples()


class RegressionTree(object):
    '''
    Regression tree grown best-first: the leaf with the highest deviance
    is split next until the number of leaves reaches `n_leaves`, or no
    leaf can be split.

    Parameters:
    -----------
    n_leaves: int, optional (default is 10)
        The maximum number of leaves. If -1, the size of the tree is
        limited only by `min_samples_leaf`.

    min_samples_leaf: int, optional (default is 1)
        The minimum number of samples required to be at a leaf node.

    sampling_rate: float, optional (default is 1.0)
        The portion of features considered for each split.

    random_state: RandomState instance or None
        The random number generator used for feature sampling.
    '''
    def __init__(self, n_leaves=10, min_samples_leaf=1, sampling_rate=1.0,
                 random_state=None, root=None):
        if n_leaves == 0 or n_leaves < -1:
            raise ValueError('the number of leaves must be positive or -1 '
                             '(%d was given)' % n_leaves)

        if min_samples_leaf < 1:
            raise ValueError('min_samples_leaf must be positive (%d was '
                             'given)' % min_samples_leaf)

        self.n_leaves = n_leaves
        self.min_samples_leaf = min_samples_leaf
        self.sampling_rate = sampling_rate
        self.random_state = random_state
        self.root = root
        self.impacts = None

    def _try_split(self, node, labels, parallel):
        histogram = node.histogram

        candidate = histogram.find_best_split(self.min_samples_leaf,
                                              self.sampling_rate,
                                              self.random_state, parallel)
        if candidate is None:
            return False

        left_samples, right_samples = histogram.split_samples(node.samples,
                                                              candidate)

        left_histogram = histogram.construct_child(left_samples, labels,
                                                   parallel)

        # The histogram of the root is kept for the next tree.
        if node.is_root:
            right_histogram = histogram.subtract(left_histogram)
        else:
            right_histogram = histogram.consume(left_histogram)

        left = Split(deviance=left_histogram.deviance)
        left.samples = left_samples
        left.histogram = left_histogram

        right = Split(deviance=right_histogram.deviance)
        right.samples = right_samples
        right.histogram = right_histogram

        node.set_split(histogram.features[candidate.feature] + 1,
                       float(candidate.threshold), left, right)

        self.impacts[candidate.feature] += (
            candidate.score -
            histogram.sum_response * histogram.sum_response /
            histogram.n_samples)

        node.samples = None
        node.histogram = None

        return True

    def fit(self, histogram, labels, sample_indices=None, parallel=1):
        '''
        Grow the tree on the samples covered by the histogram.

        Parameters:
        -----------
        histogram: FeatureHistogram
            The histogram of all the samples, updated with `labels`.
            It is not modified.

        labels: array, shape = (n_samples,)
            The pseudo-responses of the samples.

        sample_indices: array of ints, optional (default is None)
            The samples the histogram was built from. If None, all
            samples are assumed.

        parallel: joblib.Parallel or int, optional (default is 1)
            The worker pool (or the number of workers) used for the
            histogram computations, see `treerank.utils.parallel_for`.
        '''
        if sample_indices is None:
            sample_indices = np.arange(histogram.n_samples, dtype=np.intp)

        self.impacts = np.zeros(histogram.n_features, dtype=np.float64)

        self.root = Split(deviance=histogram.deviance)
        self.root.is_root = True
        self.root.samples = sample_indices
        self.root.histogram = histogram

        # Ties in deviance are resolved in favor of the latest node.
        frontier = []
        counter = count()

        def push(node):
            heapq.heappush(frontier, (-node.deviance, -next(counter), node))

        if self.n_leaves != 1 and self._try_split(self.root, labels, parallel):
            push(self.root.left)
            push(self.root.right)

        taken = 0

        while ((self.n_leaves == -1 or taken + len(frontier) < self.n_leaves)
               and len(frontier) > 0):
            _, _, node = heapq.heappop(frontier)

            if (node.samples.shape[0] < 2 * self.min_samples_leaf or
                    not self._try_split(node, labels, parallel)):
                taken += 1
            else:
                push(node.left)
                push(node.right)

        logger.debug('Fitted regression tree with %d leaves.'
                     % len(self.leaves()))

        return self

    def leaves(self):
        return self.root.leaves()

    def features(self):
        return self.root.features()

    def eval(self, point, missing_zero=False):
        '''
        Return the output of the tree for the given DataPoint.
        '''
        return self.root.eval(point, missing_zero)

    def predict(self, feature_vectors, missing_zero=False):
        '''
        Return the output of the tree for each row of the feature matrix
        (column `j` holds the feature id `j + 1`).

        Parameters:
        -----------
        missing_zero: bool, optional (default is False)
            If True, the features the matrix does not have columns for
            read as 0, otherwise IndexError is raised.
        '''
        feature_vectors = np.asarray(feature_vectors)

        max_feature = max(self.features(), default=0)

        if max_feature > feature_vectors.shape[1]:
            if not missing_zero:
                raise IndexError('feature id %d is out of range [1, %d]'
                                 % (max_feature, feature_vectors.shape[1]))
            padded = np.zeros((feature_vectors.shape[0], max_feature),
                              dtype=feature_vectors.dtype)
            padded[:, :feature_vectors.shape[1]] = feature_vectors
            feature_vectors = padded

        output = np.empty(feature_vectors.shape[0], dtype=np.float64)

        self.root.predict(feature_vectors,
                          np.arange(feature_vectors.shape[0]), output)

        return output

    def clear_samples(self):
        '''
        Discard the samples and histograms held by the nodes.
        '''
        self.root.clear_samples()

    def variance(self):
        '''
        Return the sum of the deviances of the leaves.
        '''
        return sum(leaf.deviance for leaf in self.leaves())
