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

import os
import shutil
import tempfile
import unittest

import numpy as np

from treerank.metrics import NormalizedDiscountedCumulativeGain
from treerank.models import LambdaMART, MART
from treerank.models import LambdaObjective, ResidualObjective
from treerank.models import ModelFormatError
from treerank.models import load_model_from_text
from treerank.models.lambdamart import compute_lambdas_and_weights
from treerank.queries import Queries


def make_queries(n_queries, n_documents, n_features, seed):
    random_state = np.random.RandomState(seed)
    n_samples = n_queries * n_documents
    return Queries(random_state.rand(n_samples, n_features),
                   random_state.randint(0, 3, size=n_samples),
                   np.arange(0, n_samples + 1, n_documents))


def make_separable_queries(n_queries, seed):
    random_state = np.random.RandomState(seed)
    feature_vectors = np.empty((2 * n_queries, 2))
    feature_vectors[0::2, 0] = random_state.uniform(0.6, 1.0, n_queries)
    feature_vectors[1::2, 0] = random_state.uniform(0.0, 0.4, n_queries)
    feature_vectors[:, 1] = random_state.rand(2 * n_queries)
    relevance_scores = np.tile([1.0, 0.0], n_queries)
    return Queries(feature_vectors, relevance_scores,
                   np.arange(0, 2 * n_queries + 1, 2))


class PlateauMetric(NormalizedDiscountedCumulativeGain):
    '''
    NDCG@10 on training queries, 1, 2, ..., `plateau`, `plateau`, ...
    on the validation queries in the subsequent calls.
    '''
    def __init__(self, validation, plateau):
        super(PlateauMetric, self).__init__(10)
        self.validation = validation
        self.plateau = plateau
        self.n_calls = 0

    def evaluate_queries(self, queries, scores, scale=None):
        if queries is self.validation:
            self.n_calls += 1
            return float(min(self.n_calls, self.plateau))
        return super(PlateauMetric, self).evaluate_queries(queries, scores,
                                                           scale)


class TestLambdas(unittest.TestCase):
    def setUp(self):
        self.queries = Queries(np.zeros((5, 1)), [2, 0, 1, 0, 1],
                               [0, 3, 5])
        self.metric = NormalizedDiscountedCumulativeGain(10)

    def compute(self, scores):
        lambdas = np.empty(5)
        weights = np.empty(5)
        LambdaObjective().compute_pseudo_responses(
            self.queries, scores, self.metric, lambdas, weights,
            self.metric.compute_scale(self.queries))
        return lambdas, weights

    def test_lambdas_sum_to_zero_per_query(self):
        lambdas, weights = self.compute(np.array([0.3, 1.0, -0.2, 0.5, 0.1]))

        self.assertAlmostEqual(lambdas[:3].sum(), 0.0)
        self.assertAlmostEqual(lambdas[3:].sum(), 0.0)
        self.assertTrue((weights >= 0.0).all())

    def test_lambdas_push_relevant_documents_up(self):
        lambdas, _ = self.compute(np.zeros(5))

        self.assertGreater(lambdas[0], 0.0)
        self.assertLess(lambdas[1], 0.0)
        self.assertGreater(lambdas[4], 0.0)
        self.assertLess(lambdas[3], 0.0)

    def test_does_not_depend_on_n_jobs(self):
        queries = make_queries(30, 7, 1, 5)
        scores = np.random.RandomState(1).randn(queries.document_count())

        outputs = []
        for n_jobs in (1, 4):
            lambdas = np.zeros(queries.document_count())
            weights = np.zeros(queries.document_count())
            compute_lambdas_and_weights(queries, scores, self.metric,
                                        lambdas, weights,
                                        self.metric.compute_scale(queries),
                                        n_jobs)
            outputs.append((lambdas, weights))

        np.testing.assert_array_equal(outputs[0][0], outputs[1][0])
        np.testing.assert_array_equal(outputs[0][1], outputs[1][1])

    def test_residuals(self):
        scores = np.array([0.5, 0.0, 1.0, 2.0, 0.0])
        residuals = np.empty(5)

        ResidualObjective().compute_pseudo_responses(
            self.queries, scores, self.metric, residuals, np.empty(5))

        np.testing.assert_array_equal(residuals, [1.5, 0.0, 0.0, -2.0, 1.0])
        self.assertFalse(np.allclose(residuals, self.compute(scores)[0]))

    def test_leaf_outputs(self):
        lambdas = np.array([1.0, -2.0, 3.0])
        weights = np.array([0.5, 0.5, 1.0])
        samples = np.array([0, 2])

        self.assertAlmostEqual(
            LambdaObjective().leaf_output(lambdas, weights, samples),
            4.0 / 1.5)
        self.assertEqual(
            LambdaObjective().leaf_output(lambdas, np.zeros(3), samples), 0.0)
        self.assertAlmostEqual(
            ResidualObjective().leaf_output(lambdas, weights, samples), 2.0)


class TestLambdaMART(unittest.TestCase):
    def test_separable_queries(self):
        queries = make_separable_queries(100, 3)

        model = LambdaMART(n_estimators=10, n_leaves=2, n_jobs=1,
                           random_state=0)
        model.fit(queries)

        self.assertEqual(len(model.ensemble_), 10)
        self.assertEqual(model.ensemble_.tree(0).root.feature, 1)

        rankings = model.predict_rankings(queries)
        correct = sum(ranking[0] == 0 for ranking in rankings)
        self.assertGreaterEqual(correct, 95)

        self.assertAlmostEqual(model.evaluate(queries), 1.0)

        importances = model.feature_importances()
        self.assertGreater(importances[0], importances[1])

        rank_list = model.rank(queries.rank_list(0))
        self.assertEqual(rank_list[0].label, 1.0)

    def test_result_does_not_depend_on_n_jobs(self):
        queries = make_queries(20, 10, 5, 11)

        texts = []
        for n_jobs in (1, 8):
            model = LambdaMART(n_estimators=10, n_leaves=7, max_features=0.6,
                               n_jobs=n_jobs, random_state=1)
            model.fit(queries)
            texts.append(model.to_text())

        self.assertEqual(texts[0], texts[1])

    def test_threaded_training_matches_single_thread(self):
        # Large enough for the histogram fan-outs to use the worker threads.
        queries = make_queries(40, 150, 12, 13)

        models = []
        for n_jobs in (1, 8):
            model = MART(n_estimators=3, n_leaves=7, n_jobs=n_jobs)
            model.fit(queries)
            models.append(model)

        self.assertEqual(models[0].to_text(), models[1].to_text())
        np.testing.assert_array_equal(models[0].feature_importances(),
                                      models[1].feature_importances())

    def test_feature_subset(self):
        queries = make_separable_queries(100, 3)

        model = LambdaMART(n_estimators=5, n_leaves=4, n_jobs=1,
                           random_state=0, features=[2])
        model.fit(queries)

        for tree in model.ensemble_.trees:
            self.assertTrue(tree.features() <= {2})
        self.assertTrue(set(model.ensemble_.features) <= {2})

        importances = model.feature_importances()
        self.assertEqual(importances.shape[0], 2)
        self.assertEqual(importances[0], 0.0)

        full = LambdaMART(n_estimators=5, n_leaves=4, n_jobs=1,
                          random_state=0, features=[1, 2])
        full.fit(queries)
        self.assertIn(1, full.ensemble_.features)

    def test_invalid_feature_subset(self):
        queries = make_queries(5, 4, 3, 0)

        for features in ([0], [4], [1, 5], []):
            with self.assertRaises(ValueError):
                LambdaMART(n_estimators=1, n_jobs=1,
                           features=features).fit(queries)

    def test_early_stopping(self):
        queries = make_queries(20, 5, 3, 7)
        validation = make_queries(10, 5, 3, 8)

        model = LambdaMART(metric=PlateauMetric(validation, 4),
                           n_estimators=50, n_leaves=3, estopping=3,
                           n_jobs=1, random_state=0)
        model.fit(queries, validation)

        self.assertEqual(model.n_iterations_, 7)
        self.assertEqual(len(model.training_performance), 7)
        np.testing.assert_array_equal(model.validation_performance,
                                      [1, 2, 3, 4, 4, 4, 4])
        self.assertEqual(len(model.ensemble_), 4)
        self.assertEqual(model.best_performance, 4.0)

    def test_no_early_stopping_without_validation(self):
        queries = make_queries(10, 5, 3, 7)

        model = LambdaMART(n_estimators=8, n_leaves=3, estopping=1,
                           n_jobs=1, random_state=0)
        model.fit(queries)

        self.assertEqual(len(model.ensemble_), 8)
        self.assertIsNone(model.validation_performance)
        self.assertEqual(model.best_performance,
                         model.training_performance.max())

    def test_mart_shares_the_training_procedure(self):
        self.assertIs(MART.fit, LambdaMART.fit)

        queries = make_queries(10, 6, 3, 2)

        model = MART(n_estimators=1, n_leaves=2, shrinkage=1.0, n_jobs=1)
        model.fit(queries)

        self.assertIsInstance(model.objective, ResidualObjective)
        # The leaf outputs are the mean residuals of their samples.
        self.assertAlmostEqual(model.predict(queries).sum(),
                               queries.relevance_scores.sum())

    def test_text_round_trip(self):
        queries = make_queries(10, 8, 4, 21)

        model = LambdaMART(n_estimators=5, n_leaves=4, n_jobs=1,
                           random_state=0)
        model.fit(queries)

        text = model.to_text()
        loaded = load_model_from_text(text)

        self.assertIsInstance(loaded, LambdaMART)
        self.assertEqual(loaded.to_text(), text)
        self.assertEqual(loaded.n_leaves, 4)
        np.testing.assert_array_equal(loaded.ensemble_.features,
                                      model.ensemble_.features)
        np.testing.assert_allclose(loaded.predict(queries),
                                   model.predict(queries))

        point = queries.rank_list(3)[2]
        self.assertAlmostEqual(loaded.eval(point), model.eval(point))

    def test_mart_text_round_trip(self):
        queries = make_queries(10, 8, 4, 22)

        model = MART(n_estimators=3, n_leaves=3, estopping=None, n_jobs=1)
        model.fit(queries)

        loaded = load_model_from_text(model.to_text())

        self.assertIsInstance(loaded, MART)
        self.assertIsInstance(loaded.objective, ResidualObjective)
        self.assertIsNone(loaded.estopping)
        np.testing.assert_allclose(loaded.predict(queries),
                                   model.predict(queries))

    def test_text_of_the_other_model_is_rejected(self):
        queries = make_queries(10, 8, 4, 25)

        lambdamart = LambdaMART(n_estimators=2, n_leaves=3, n_jobs=1)
        lambdamart.fit(queries)

        mart = MART(n_estimators=2, n_leaves=3, n_jobs=1)
        mart.fit(queries)

        with self.assertRaises(ModelFormatError):
            MART.from_text(lambdamart.to_text())
        with self.assertRaises(ModelFormatError):
            LambdaMART.from_text(mart.to_text())

        self.assertIsInstance(MART.from_text(mart.to_text()).objective,
                              ResidualObjective)

    def test_save_and_load(self):
        queries = make_queries(10, 8, 4, 23)

        model = LambdaMART(n_estimators=3, n_leaves=3, n_jobs=1)
        model.fit(queries)

        directory = tempfile.mkdtemp()
        try:
            filepath = os.path.join(directory, 'model.pkl')
            model.save(filepath)
            np.testing.assert_array_equal(LambdaMART.load(filepath).predict(
                                              queries),
                                          model.predict(queries))

            filepath = os.path.join(directory, 'model.txt')
            model.save_as_text(filepath)
            np.testing.assert_allclose(LambdaMART.load_from_text(filepath)
                                       .predict(queries),
                                       model.predict(queries))
        finally:
            shutil.rmtree(directory)

    def test_missing_features(self):
        queries = make_queries(10, 8, 4, 24)
        narrow = Queries(queries.feature_vectors[:, :1],
                         queries.relevance_scores, queries.query_indptr)

        model = LambdaMART(n_estimators=5, n_leaves=4, n_jobs=1)
        model.fit(queries)

        if model.ensemble_.features.max() > 1:
            with self.assertRaises(IndexError):
                model.predict(narrow)

        model.missing_zero = True
        self.assertEqual(model.predict(narrow).shape[0], 80)

    def test_untrained_model(self):
        queries = make_queries(2, 3, 2, 0)

        with self.assertRaises(ValueError):
            LambdaMART().predict(queries)
        with self.assertRaises(ValueError):
            LambdaMART().to_text()

    def test_invalid_parameters(self):
        with self.assertRaises(ValueError):
            LambdaMART(n_estimators=0)
        with self.assertRaises(ValueError):
            LambdaMART(max_features=0.0)
        with self.assertRaises(ValueError):
            LambdaMART(min_samples_leaf=0)
        with self.assertRaises(ValueError):
            LambdaMART(n_thresholds=0)
        with self.assertRaises(ValueError):
            LambdaMART(n_thresholds=-2)
        with self.assertRaises(ValueError):
            LambdaMART(shrinkage=0.0)
        with self.assertRaises(ValueError):
            MART(shrinkage=-0.1)

        LambdaMART(n_thresholds=-1)


if __name__ == '__main__':
    unittest.main()
