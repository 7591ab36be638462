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

import unittest

import numpy as np

from treerank.models.histogram import FeatureHistogram
from treerank.models.histogram import compute_thresholds
from treerank.models.histogram import sort_samples_by_features
from treerank.models.tree import RegressionTree, Split
from treerank.queries import DataPoint


def internal_nodes(node):
    if node.is_leaf():
        return []
    return [node] + internal_nodes(node.left) + internal_nodes(node.right)


class TestRegressionTree(unittest.TestCase):
    def setUp(self):
        random_state = np.random.RandomState(13)
        self.feature_vectors = random_state.rand(200, 5).astype(np.float32)
        self.labels = (self.feature_vectors[:, 0] * 2.0 +
                       random_state.randn(200) * 0.1)

        sorted_indices = sort_samples_by_features(self.feature_vectors)
        thresholds = [compute_thresholds(
                          self.feature_vectors[sorted_indices[f], f], 32)
                      for f in range(5)]

        self.histogram = FeatureHistogram.construct(self.feature_vectors,
                                                    self.labels,
                                                    sorted_indices,
                                                    thresholds)

    def fit_tree(self, **kwargs):
        tree = RegressionTree(**kwargs)
        tree.fit(self.histogram, self.labels)
        for leaf in tree.leaves():
            leaf.output = self.labels[leaf.samples].mean()
        return tree

    def test_leaf_support(self):
        tree = self.fit_tree(n_leaves=-1, min_samples_leaf=5)

        leaves = tree.leaves()
        self.assertGreater(len(leaves), 2)

        for leaf in leaves:
            self.assertGreaterEqual(leaf.samples.shape[0], 5)

        np.testing.assert_array_equal(
            np.sort(np.concatenate([leaf.samples for leaf in leaves])),
            np.arange(200))

    def test_number_of_leaves(self):
        tree = self.fit_tree(n_leaves=7)
        self.assertEqual(len(tree.leaves()), 7)

        tree = self.fit_tree(n_leaves=1)
        self.assertTrue(tree.root.is_leaf())

    def test_deviance_does_not_grow(self):
        tree = self.fit_tree(n_leaves=12)

        self.assertAlmostEqual(tree.root.deviance, self.histogram.deviance)

        for node in internal_nodes(tree.root):
            self.assertLessEqual(node.left.deviance, node.deviance + 1e-9)
            self.assertLessEqual(node.right.deviance, node.deviance + 1e-9)

        self.assertLess(tree.variance(), tree.root.deviance)

    def test_informative_feature_is_used_first(self):
        tree = self.fit_tree(n_leaves=4)
        self.assertEqual(tree.root.feature, 1)
        self.assertGreater(tree.impacts[0], tree.impacts[1:].max())

    def test_excluded_features_are_never_split_on(self):
        columns = np.array([2, 4])
        sorted_indices = sort_samples_by_features(self.feature_vectors,
                                                  columns)
        thresholds = [compute_thresholds(
                          self.feature_vectors[sorted_indices[f], c], 32)
                      for f, c in enumerate(columns)]
        histogram = FeatureHistogram.construct(self.feature_vectors,
                                               self.labels, sorted_indices,
                                               thresholds, columns)

        tree = RegressionTree(n_leaves=-1).fit(histogram, self.labels)

        self.assertGreater(len(tree.leaves()), 1)
        self.assertTrue(tree.features() <= {3, 5})
        self.assertEqual(tree.impacts.shape[0], 2)

    def test_root_histogram_is_kept(self):
        sums = self.histogram.sums.copy()
        self.fit_tree(n_leaves=10)

        self.assertFalse(self.histogram.consumed)
        np.testing.assert_array_equal(self.histogram.sums, sums)

    def test_predict_matches_training_partition(self):
        tree = self.fit_tree(n_leaves=8)
        predictions = tree.predict(self.feature_vectors)

        for leaf in tree.leaves():
            np.testing.assert_array_equal(predictions[leaf.samples],
                                          leaf.output)

        for i in range(0, 200, 17):
            point = DataPoint(0, 1, self.feature_vectors[i])
            self.assertEqual(tree.eval(point), predictions[i])

    def test_clear_samples(self):
        tree = self.fit_tree(n_leaves=5)
        tree.clear_samples()

        for node in internal_nodes(tree.root) + tree.leaves():
            self.assertIsNone(node.samples)
            self.assertIsNone(node.histogram)

    def test_invalid_parameters(self):
        with self.assertRaises(ValueError):
            RegressionTree(n_leaves=0)
        with self.assertRaises(ValueError):
            RegressionTree(n_leaves=-2)
        with self.assertRaises(ValueError):
            RegressionTree(min_samples_leaf=0)


class TestPredictMissingFeatures(unittest.TestCase):
    def setUp(self):
        self.tree = RegressionTree(root=Split(3, 0.5,
                                              left=Split(output=1.0),
                                              right=Split(output=2.0)))

    def test_narrow_matrix(self):
        feature_vectors = np.array([[0.0, 0.0], [1.0, 1.0]])

        with self.assertRaises(IndexError):
            self.tree.predict(feature_vectors)

        np.testing.assert_array_equal(
            self.tree.predict(feature_vectors, missing_zero=True), [1.0, 1.0])

    def test_data_point(self):
        point = DataPoint(0, 1, [0.0, 0.0])

        with self.assertRaises(IndexError):
            self.tree.eval(point)

        self.assertEqual(self.tree.eval(point, missing_zero=True), 1.0)
        self.assertEqual(self.tree.eval(DataPoint(0, 1, {3: 0.7})), 2.0)

    def test_features(self):
        self.assertEqual(self.tree.features(), {3})


if __name__ == '__main__':
    unittest.main()
