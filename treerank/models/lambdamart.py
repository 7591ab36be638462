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

from scipy.special import expit

from sklearn.utils import check_random_state

from .tree import RegressionTree
from .ensemble import Ensemble, ModelFormatError
from .ensemble import parse_header, header_value
from .histogram import FeatureHistogram
from .histogram import compute_thresholds, sort_samples_by_features

from ..metrics import MetricFactory, ranksort
from ..utils import pickle, unpickle
from ..utils import parallel_for, worker_pool, format_number
from ..utils import _get_n_jobs


logger = logging.getLogger(__name__)


def compute_lambdas_and_weights(queries, ranking_scores, metric,
                                output_lambdas, output_weights,
                                scale_values=None, parallel=1):
    '''
    Compute the first derivatives (`lambdas`) and the second derivatives
    (`weights`) of an implicit cost function from the given metric and
    rankings of query documents derived from ranking scores.

    For every pair of documents (j, k) of a query, where j is more relevant
    than k, the lambda `rho * |delta|` is added to the lambda of j and
    subtracted from the lambda of k, where `rho = 1 / (1 + exp(s_j - s_k))`
    and `delta` is the change in the metric after swapping the documents in
    the ranking. Both weights get `rho * (1 - rho) * |delta|`. Pairs of
    documents ranked both beyond the metric cutoff are skipped.

    Parameters:
    -----------
    queries: Queries
        The set of queries with documents.

    ranking_scores: array, shape = (n_documents,)
        A ranking score for each document in the set of queries.

    metric: Metric
        The evaluation metric, from which the lambdas and the weights
        are to be computed.

    output_lambdas: array, shape=(n_documents,)
        Computed lambdas for every document.

    output_weights: array, shape=(n_documents,)
        Computed weights for every document.

    scale_values: array, shape=(n_queries,) or None
        The precomputed metric scale value for every query.

    parallel: joblib.Parallel or int, optional (default is 1)
        The worker pool (or the number of workers), which is used to
        compute the lambdas and weights in parallel.
    '''
    cutoff = metric.cutoff

    def compute(start, end):
        for i in range(start, end):
            s, e = queries.query_indptr[i], queries.query_indptr[i + 1]

            ranking = ranksort(ranking_scores[s:e])
            labels = queries.relevance_scores[s:e][ranking]
            scores = ranking_scores[s:e][ranking]

            deltas = np.absolute(metric.swap_change(
                         labels, None if scale_values is None
                         else scale_values[i]))

            pairs = np.greater.outer(labels, labels)
            pairs &= (deltas > 0.0)

            if cutoff > 0:
                pairs[cutoff + 1:, cutoff + 1:] = False

            rho = expit(-np.subtract.outer(scores, scores))

            lambdas = np.where(pairs, rho * deltas, 0.0)
            weights = np.where(pairs, rho * (1.0 - rho) * deltas, 0.0)

            output_lambdas[s + ranking] = lambdas.sum(axis=1) - lambdas.sum(axis=0)
            output_weights[s + ranking] = weights.sum(axis=1) + weights.sum(axis=0)

    parallel_for(compute, len(queries), parallel)


class LambdaObjective(object):
    '''
    The pseudo-responses are the LambdaMART lambdas and the leaf outputs
    are Newton steps: the sum of the lambdas over the sum of the weights.
    '''
    name = 'LambdaMART'

    def compute_pseudo_responses(self, queries, ranking_scores, metric,
                                 output_lambdas, output_weights,
                                 scale_values=None, parallel=1):
        output_lambdas.fill(0.0)
        output_weights.fill(0.0)
        compute_lambdas_and_weights(queries, ranking_scores, metric,
                                    output_lambdas, output_weights,
                                    scale_values, parallel)

    def leaf_output(self, lambdas, weights, samples):
        denominator = weights[samples].sum()
        if denominator == 0.0:
            return 0.0
        return lambdas[samples].sum() / denominator


class ResidualObjective(object):
    '''
    The pseudo-responses are the residuals (relevance minus the current
    score) and the leaf outputs are the mean residuals.
    '''
    name = 'MART'

    def compute_pseudo_responses(self, queries, ranking_scores, metric,
                                 output_lambdas, output_weights,
                                 scale_values=None, parallel=1):
        np.subtract(queries.relevance_scores, ranking_scores,
                    out=output_lambdas)

    def leaf_output(self, lambdas, weights, samples):
        if samples.shape[0] == 0:
            return 0.0
        return lambdas[samples].mean()


class LambdaMART(object):
    '''
    LambdaMART learning to rank model: gradient boosted regression trees
    fitted to the pseudo-responses computed by the objective.

    Arguments:
    ----------
    metric: string or Metric, optional (default is 'NDCG@10')
        The evaluation metric optimized by the model and used to measure
        its performance on training and validation queries.

    n_estimators: int, optional (default is 1000)
        The number of regression trees that will compose this ensemble model.

    n_leaves: int, optional (default is 10)
        The maximum number of leaves of each tree, -1 for no limit.

    shrinkage: float, optional (default is 0.1)
        The learning rate (a.k.a. shrinkage factor) that will
        be used to regularize the predictors (prevent them
        from making the full (optimal) Newton step.

    n_thresholds: int, optional (default is 256)
        The maximum number of threshold candidates of each feature,
        -1 for no limit.

    min_samples_leaf : int, optional (default is 1)
        The minimum number of samples required to be at a leaf node.

    estopping: int or None, optional (default is 100)
        The number of subsequent iterations after which the training is
        stopped early if no improvement is observed on the validation
        queries. None disables early stopping.

    max_features: float, optional (default is 1.0)
        The portion of the features considered for each split.

    missing_zero: bool, optional (default is False)
        If True, features missing in the queries (or documents) the model
        is applied to read as 0, otherwise IndexError is raised.

    n_jobs: int, optional (default is -1)
        The number of working threads used in training. If -1, the number
        of CPUs will be used. The resulting model does not depend on it.

    random_state: int or RandomState instance, optional (default is None)
        The random number generator used for feature sampling.

    features: list of ints, optional (default is None)
        The ids (starting from 1) of the features the trees are trained
        on. If None, all features of the training queries are used.

    objective: LambdaObjective or ResidualObjective, optional
        The computation of the pseudo-responses and the leaf outputs.

    Attributes:
    -----------
    ensemble_: Ensemble
        The trained trees.

    training_performance: array of doubles
        The performance of the model measured after training each
        tree on training queries.

    validation_performance: array of doubles
        The performance of the model measured after training each
        tree on validation queries.
    '''
    def __init__(self, metric='NDCG@10', n_estimators=1000, n_leaves=10,
                 shrinkage=0.1, n_thresholds=256, min_samples_leaf=1,
                 estopping=100, max_features=1.0, missing_zero=False,
                 n_jobs=-1, random_state=None, features=None,
                 objective=None):
        if n_estimators < 1:
            raise ValueError('the number of trees must be positive (%d was '
                             'given)' % n_estimators)

        if not 0.0 < max_features <= 1.0:
            raise ValueError('max_features must be in (0, 1] (%r was given)'
                             % max_features)

        if min_samples_leaf < 1:
            raise ValueError('min_samples_leaf must be positive (%d was '
                             'given)' % min_samples_leaf)

        if n_thresholds == 0 or n_thresholds < -1:
            raise ValueError('the number of threshold candidates must be '
                             'positive or -1 (%d was given)' % n_thresholds)

        if shrinkage <= 0.0:
            raise ValueError('shrinkage must be positive (%r was given)'
                             % shrinkage)

        self.metric = metric
        self.n_estimators = n_estimators
        self.n_leaves = n_leaves
        self.shrinkage = shrinkage
        self.n_thresholds = n_thresholds
        self.min_samples_leaf = min_samples_leaf
        self.estopping = estopping
        self.max_features = max_features
        self.missing_zero = missing_zero
        self.n_jobs = n_jobs
        self.random_state = random_state
        self.features = features
        self.objective = LambdaObjective() if objective is None else objective
        self.ensemble_ = None
        self.training_performance = None
        self.validation_performance = None
        self.best_performance = None
        self.feature_importances_ = None

    def fit(self, queries, validation=None):
        '''
        Train the model on the specified queries. Optionally, use the
        validation queries for finding an optimal number of trees.

        Parameters:
        -----------
        queries: Queries instance
            The set of queries from which the model will be trained.

        validation: Queries instance
            The set of queries used in validation for early stopping.
        '''
        if queries.feature_count() == 0:
            raise ValueError('the queries have no features')

        # One pool of worker threads serves all the fan-outs of the run.
        with worker_pool(self.n_jobs) as parallel:
            return self._fit(queries, validation, parallel)

    def _get_feature_columns(self, queries):
        '''
        Return the columns of the feature matrix the model is trained on.
        '''
        if self.features is None:
            return np.arange(queries.feature_count(), dtype=np.intp)

        features = np.unique(np.asarray(self.features, dtype=np.intp))

        if features.shape[0] == 0:
            raise ValueError('the list of features is empty')

        if features[0] < 1 or features[-1] > queries.feature_count():
            raise ValueError('feature ids must be in [1, %d] (%r were given)'
                             % (queries.feature_count(), self.features))

        return features - 1

    def _fit(self, queries, validation, parallel):
        metric = MetricFactory(self.metric)
        random_state = check_random_state(self.random_state)

        feature_vectors = queries.feature_vectors
        columns = self._get_feature_columns(queries)

        logger.info('Initializing %s: %s (training on %d features).'
                    % (self.objective.name, queries, columns.shape[0]))

        sorted_indices = sort_samples_by_features(feature_vectors, columns,
                                                  parallel)

        thresholds = [compute_thresholds(feature_vectors[sorted_indices[f], c],
                                         self.n_thresholds)
                      for f, c in enumerate(columns)]

        # The pseudo-responses (lambdas) for each document.
        training_lambdas = np.zeros(queries.document_count(), dtype='float64')

        # The optimal gradient descent step sizes for each document.
        training_weights = np.zeros(queries.document_count(), dtype='float64')

        training_scores = np.zeros(queries.document_count(), dtype='float64')

        histogram = FeatureHistogram.construct(feature_vectors,
                                               training_lambdas,
                                               sorted_indices, thresholds,
                                               columns, parallel)
        del sorted_indices

        # If the metric used for training is normalized, it is advantageous
        # to precompute the scaling factor for each query in advance.
        training_scale_values = metric.compute_scale(queries)

        self.training_performance = np.empty(self.n_estimators,
                                             dtype='float64')

        if validation is not None:
            validation_scale_values = metric.compute_scale(validation)
            validation_scores = np.zeros(validation.document_count(),
                                         dtype='float64')
            self.validation_performance = np.empty(self.n_estimators,
                                                   dtype='float64')
        else:
            self.validation_performance = None

        self.ensemble_ = Ensemble()

        impacts = np.zeros(feature_vectors.shape[1], dtype='float64')

        # The best iteration index and performance value
        # on validation (or training) queries.
        best_performance = -np.inf
        best_performance_k = -1

        # How many iterations the performance has not improved
        # on validation queries.
        performance_not_improved = 0

        logger.info('Training of %s model has started.' % self.objective.name)

        # Iteratively build a sequence of regression trees.
        for k in range(self.n_estimators):
            self.objective.compute_pseudo_responses(queries, training_scores,
                                                    metric, training_lambdas,
                                                    training_weights,
                                                    training_scale_values,
                                                    parallel)

            histogram.update(training_lambdas, parallel)

            tree = RegressionTree(self.n_leaves, self.min_samples_leaf,
                                  self.max_features, random_state)

            tree.fit(histogram, training_lambdas, parallel=parallel)

            for leaf in tree.leaves():
                leaf.output = self.objective.leaf_output(training_lambdas,
                                                         training_weights,
                                                         leaf.samples)
                training_scores[leaf.samples] += self.shrinkage * leaf.output

            impacts[histogram.features] += tree.impacts

            tree.clear_samples()

            self.ensemble_.add(tree, self.shrinkage)

            self.training_performance[k] = metric.evaluate_queries(
                                               queries, training_scores,
                                               training_scale_values)

            if validation is None:
                logger.info('#%08d: %s (training): %11.8f'
                            % (k + 1, metric, self.training_performance[k]))

                if self.training_performance[k] > best_performance:
                    best_performance = self.training_performance[k]
                    best_performance_k = k

                continue

            # If validation queries have been given, estimate the model
            # performance on them and decide whether the training should
            # not be stopped early due to no performance improvements.
            validation_scores += self.shrinkage * tree.predict(
                                     validation.feature_vectors,
                                     self.missing_zero)

            self.validation_performance[k] = metric.evaluate_queries(
                                                 validation,
                                                 validation_scores,
                                                 validation_scale_values)

            logger.info('#%08d: %s (training):   %11.8f  |  '
                        '(validation):   %11.8f'
                        % (k + 1, metric, self.training_performance[k],
                           self.validation_performance[k]))

            if self.validation_performance[k] > best_performance:
                best_performance = self.validation_performance[k]
                best_performance_k = k
                performance_not_improved = 0
            else:
                performance_not_improved += 1

            if (self.estopping is not None and
                    performance_not_improved >= self.estopping):
                logger.info('Stopping early since no improvement on '
                            'validation queries has been observed for '
                            '%d iterations (since iteration %d)'
                            % (self.estopping, best_performance_k + 1))
                break

        logger.info('Final model performance (%s) on %s queries: %11.8f'
                    % (metric,
                       'training' if validation is None else 'validation',
                       best_performance))

        # Leave the trees that led to the best performance on validation.
        if validation is not None and len(self.ensemble_) > best_performance_k + 1:
            self.ensemble_.truncate(best_performance_k + 1)
            logger.info('Setting the number of trees of the model to %d.'
                        % len(self.ensemble_))

        self.ensemble_.features = np.array(
            sorted(set().union(*[tree.features()
                                 for tree in self.ensemble_.trees])),
            dtype=np.intp)

        # Set these for further inspection.
        self.n_iterations_ = k + 1
        self.training_performance = self.training_performance[:k + 1]

        if validation is not None:
            self.validation_performance = self.validation_performance[:k + 1]

        self.best_performance = best_performance
        self.feature_importances_ = impacts

        logger.info('-- FEATURE IMPACTS')
        for f in np.argsort(-impacts, kind='mergesort'):
            logger.info('Feature %d reduced error %11.8f' % (f + 1, impacts[f]))

        logger.info('Training of %s model has finished.' % self.objective.name)

        return self

    def feature_importances(self):
        '''
        Return the error reduction attributed to each feature
        (the i-th item belongs to feature id i + 1).
        '''
        if self.feature_importances_ is None:
            raise ValueError('the model has not been trained yet')
        return self.feature_importances_

    def predict(self, queries, n_jobs=1):
        '''
        Predict the ranking score for each individual document
        in the given queries.

        n_jobs: int, optional (default is 1)
            The number of working threads that will be spawned to compute
            the ranking scores. If -1, the current number of CPUs will be used.
        '''
        if self.ensemble_ is None:
            raise ValueError('the model has not been trained yet')

        predictions = np.zeros(queries.document_count(), dtype='float64')

        def predict_documents(start, end):
            predictions[start:end] = self.ensemble_.predict(
                                         queries.feature_vectors[start:end],
                                         self.missing_zero)

        parallel_for(predict_documents, queries.document_count(),
                     _get_n_jobs(n_jobs))

        return predictions

    def predict_rankings(self, queries, n_jobs=1):
        '''
        Predict rankings of the documents for the given queries.

        Returns
        -------
        rankings: list of arrays
            The i-th array holds the indices of the documents of the
            i-th query (relative to the query) in the order of decreasing
            ranking score.
        '''
        predictions = self.predict(queries, n_jobs)
        return [ranksort(predictions[queries.query_indptr[i]:
                                     queries.query_indptr[i + 1]])
                for i in range(len(queries))]

    def evaluate(self, queries, metric=None, n_jobs=1):
        '''
        Evaluate the model on the queries with the given metric
        (by default the metric the model was trained with).
        '''
        metric = MetricFactory(self.metric if metric is None else metric)
        return metric.evaluate_queries(queries, self.predict(queries, n_jobs),
                                       metric.compute_scale(queries))

    def eval(self, point):
        '''
        Return the ranking score of the DataPoint.
        '''
        if self.ensemble_ is None:
            raise ValueError('the model has not been trained yet')
        return self.ensemble_.eval(point, self.missing_zero)

    def rank(self, rank_list):
        '''
        Return a new RankList with the documents ordered by decreasing
        ranking score.
        '''
        scores = [self.eval(point) for point in rank_list]
        return rank_list.permute(ranksort(scores))

    def to_text(self):
        '''
        Return the model in the text format.
        '''
        if self.ensemble_ is None:
            raise ValueError('the model has not been trained yet')

        header = ['## %s' % self.objective.name,
                  '## No. of trees = %d' % self.n_estimators,
                  '## No. of leaves = %d' % self.n_leaves,
                  '## No. of threshold candidates = %d' % self.n_thresholds,
                  '## Learning rate = %s' % format_number(self.shrinkage),
                  '## Stop early = %d' % (-1 if self.estopping is None
                                          else self.estopping),
                  '']

        return '\n'.join(header) + '\n' + self.ensemble_.to_text()

    def save_as_text(self, filepath):
        '''
        Save the model into the file in the text format.
        '''
        logger.info('Saving %s model into %s' % (self.objective.name,
                                                 filepath))
        with open(filepath, 'w') as ofile:
            ofile.write(self.to_text())

    @classmethod
    def from_text(cls, text, **kwargs):
        '''
        Create the model from its text representation (see `to_text`).
        The keyword arguments are passed to the initializer.
        '''
        name, params = parse_header(text)

        if name not in ('LambdaMART', 'MART'):
            raise ModelFormatError('unexpected model type: %s' % name)

        estopping = header_value(params, 'Stop early', int, 100)

        model = cls(n_estimators=header_value(params, 'No. of trees', int, 1000),
                    n_leaves=header_value(params, 'No. of leaves', int, 10),
                    n_thresholds=header_value(params,
                                              'No. of threshold candidates',
                                              int, 256),
                    shrinkage=header_value(params, 'Learning rate', float, 0.1),
                    estopping=None if estopping < 0 else estopping,
                    **kwargs)

        if model.objective.name != name:
            raise ModelFormatError('cannot load %s model into %s'
                                   % (name, model.objective.name))

        model.ensemble_ = Ensemble.parse(text)

        return model

    @classmethod
    def load_from_text(cls, filepath, **kwargs):
        '''
        Load the model from the file in the text format.
        '''
        logger.info('Loading %s object from %s' % (cls.__name__, filepath))
        with open(filepath, 'r') as ifile:
            return cls.from_text(ifile.read(), **kwargs)

    @classmethod
    def load(cls, filepath):
        '''
        Load the previously saved model from the specified file.

        Parameters:
        -----------
        filepath: string
            The filepath, from which the model will be loaded.
        '''
        logger.info('Loading %s object from %s' % (cls.__name__, filepath))
        return unpickle(filepath)

    def save(self, filepath):
        '''
        Save the model into the specified file.

        Parameters:
        -----------
        filepath: string
            The filepath where this object will be saved.
        '''
        logger.info('Saving %s object into %s' % (self.__class__.__name__,
                                                  filepath))
        pickle(self, filepath)

    def __str__(self):
        return '%s (%s trees, %d leaves, shrinkage %s)' % (
            self.objective.name,
            'untrained' if self.ensemble_ is None else len(self.ensemble_),
            self.n_leaves, format_number(self.shrinkage))


class MART(LambdaMART):
    '''
    MART learning to rank model: gradient boosted regression trees fitted
    to the residuals of the relevance scores. It takes the same arguments
    as LambdaMART, except for the objective.
    '''
    def __init__(self, metric='NDCG@10', n_estimators=1000, n_leaves=10,
                 shrinkage=0.1, n_thresholds=256, min_samples_leaf=1,
                 estopping=100, max_features=1.0, missing_zero=False,
                 n_jobs=-1, random_state=None, features=None,
                 objective=None):
        super(MART, self).__init__(metric, n_estimators, n_leaves, shrinkage,
                                   n_thresholds, min_samples_leaf, estopping,
                                   max_features, missing_zero, n_jobs,
                                   random_state, features,
                                   (ResidualObjective() if objective is None
                                    else objective))
