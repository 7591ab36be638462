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

from sklearn.utils import check_random_state

from .lambdamart import LambdaMART, MART
from .ensemble import ModelFormatError
from .ensemble import parse_ensembles, parse_header, header_value

from ..metrics import MetricFactory, ranksort
from ..queries import bootstrap_queries
from ..utils import pickle, unpickle
from ..utils import parallel_for, format_number
from ..utils import _get_n_jobs


logger = logging.getLogger(__name__)


BOOSTERS = {'LambdaMART': LambdaMART, 'MART': MART}


class RandomForests(object):
    '''
    Random Forests learning to rank model: the average of the ensembles
    of boosted models trained on bootstrap samples of the queries, with
    feature sampling and without early stopping.

    Arguments:
    ----------
    booster: string, optional (default is 'MART')
        The model trained in each bag: 'MART' or 'LambdaMART'.

    n_bags: int, optional (default is 300)
        The number of bags.

    subsample: float, optional (default is 1.0)
        The number of queries in each bag relative to the number
        of training queries (drawn with replacement).

    max_features: float, optional (default is 0.3)
        The portion of the features considered for each split.

    n_estimators: int, optional (default is 1)
        The number of trees trained in each bag.

    n_leaves: int, optional (default is 100)
        The maximum number of leaves of each tree.

    shrinkage: float, optional (default is 0.1)
        The learning rate of the boosted models.

    n_thresholds: int, optional (default is 256)
        The maximum number of threshold candidates of each feature.

    min_samples_leaf : int, optional (default is 1)
        The minimum number of samples required to be at a leaf node.

    metric: string or Metric, optional (default is 'NDCG@10')
        The evaluation metric.

    missing_zero: bool, optional (default is False)
        If True, missing features read as 0, otherwise IndexError is raised.

    n_jobs: int, optional (default is -1)
        The number of working threads used by each bag.

    random_state: int or RandomState instance, optional (default is None)
        The random number generator used for bagging and feature sampling.

    features: list of ints, optional (default is None)
        The ids (starting from 1) of the features the trees are trained
        on. If None, all features of the training queries are used.

    Attributes:
    -----------
    ensembles_: list of Ensemble
        The ensemble of each bag.

    oob_indices_: list of arrays
        The indices of the training queries left out of each bag.
    '''
    def __init__(self, booster='MART', n_bags=300, subsample=1.0,
                 max_features=0.3, n_estimators=1, n_leaves=100,
                 shrinkage=0.1, n_thresholds=256, min_samples_leaf=1,
                 metric='NDCG@10', missing_zero=False, n_jobs=-1,
                 random_state=None, features=None):
        if booster not in BOOSTERS:
            raise ValueError('unknown booster: %s' % booster)

        if n_bags < 1:
            raise ValueError('the number of bags must be positive (%d was '
                             'given)' % n_bags)

        if subsample <= 0.0:
            raise ValueError('subsample must be positive (%r was given)'
                             % subsample)

        self.booster = booster
        self.n_bags = n_bags
        self.subsample = subsample
        self.max_features = max_features
        self.n_estimators = n_estimators
        self.n_leaves = n_leaves
        self.shrinkage = shrinkage
        self.n_thresholds = n_thresholds
        self.min_samples_leaf = min_samples_leaf
        self.metric = metric
        self.missing_zero = missing_zero
        self.n_jobs = n_jobs
        self.random_state = random_state
        self.features = features
        self.ensembles_ = None
        self.oob_indices_ = None
        self.feature_importances_ = None

    def _make_booster(self, seed):
        return BOOSTERS[self.booster](metric=self.metric,
                                      n_estimators=self.n_estimators,
                                      n_leaves=self.n_leaves,
                                      shrinkage=self.shrinkage,
                                      n_thresholds=self.n_thresholds,
                                      min_samples_leaf=self.min_samples_leaf,
                                      estopping=None,
                                      max_features=self.max_features,
                                      missing_zero=self.missing_zero,
                                      n_jobs=self.n_jobs, random_state=seed,
                                      features=self.features)

    def fit(self, queries, validation=None):
        '''
        Train the bags sequentially on bootstrap samples of the queries.

        Parameters:
        -----------
        queries: Queries instance
            The set of training queries.

        validation: Queries instance, optional (default is None)
            The queries the final model is evaluated on (not used
            in training).
        '''
        random_state = check_random_state(self.random_state)
        metric = MetricFactory(self.metric)

        self.ensembles_ = []
        self.oob_indices_ = []

        impacts = np.zeros(queries.feature_count(), dtype='float64')

        logger.info('Training of Random Forests (%d bags of %s) has started.'
                    % (self.n_bags, self.booster))

        for b in range(self.n_bags):
            bag_indices, oob_indices = bootstrap_queries(len(queries),
                                                         self.subsample,
                                                         random_state)

            booster = self._make_booster(random_state.randint(np.iinfo(np.int32).max))
            booster.fit(queries.subset(bag_indices))

            impacts += booster.feature_importances()

            self.ensembles_.append(booster.ensemble_)
            self.oob_indices_.append(oob_indices)

            logger.info('b[%d]: %s (bag): %11.8f'
                        % (b + 1, metric, booster.training_performance[-1]))

        self.feature_importances_ = impacts

        logger.info('Training of Random Forests has finished - %s on '
                    'training queries: %11.8f' % (metric,
                                                  self.evaluate(queries)))

        if validation is not None:
            logger.info('%s on validation queries: %11.8f'
                        % (metric, self.evaluate(validation)))

        logger.info('-- FEATURE IMPACTS')
        for f in np.argsort(-impacts, kind='mergesort'):
            logger.info('Feature %d reduced error %11.8f' % (f + 1, impacts[f]))

        return self

    def feature_importances(self):
        '''
        Return the error reduction attributed to each feature summed over
        the bags (the i-th item belongs to feature id i + 1).
        '''
        if self.feature_importances_ is None:
            raise ValueError('the model has not been trained yet')
        return self.feature_importances_

    def predict(self, queries, n_jobs=1):
        '''
        Predict the ranking score for each document in the given queries
        as the average of the outputs of the bag ensembles.
        '''
        if self.ensembles_ is None:
            raise ValueError('the model has not been trained yet')

        predictions = np.zeros(queries.document_count(), dtype='float64')

        def predict_documents(start, end):
            for ensemble in self.ensembles_:
                predictions[start:end] += ensemble.predict(
                                              queries.feature_vectors[start:end],
                                              self.missing_zero)
            predictions[start:end] /= len(self.ensembles_)

        parallel_for(predict_documents, queries.document_count(),
                     _get_n_jobs(n_jobs))

        return predictions

    def predict_rankings(self, queries, n_jobs=1):
        '''
        Predict rankings of the documents for the given queries (see
        `LambdaMART.predict_rankings`).
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
        if self.ensembles_ is None:
            raise ValueError('the model has not been trained yet')
        return (sum(ensemble.eval(point, self.missing_zero)
                    for ensemble in self.ensembles_) / len(self.ensembles_))

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
        if self.ensembles_ is None:
            raise ValueError('the model has not been trained yet')

        header = ['## Random Forests',
                  '## No. of bags = %d' % self.n_bags,
                  '## Sub-sampling = %s' % format_number(self.subsample),
                  '## Feature-sampling = %s' % format_number(self.max_features),
                  '## No. of trees = %d' % self.n_estimators,
                  '## No. of leaves = %d' % self.n_leaves,
                  '## No. of threshold candidates = %d' % self.n_thresholds,
                  '## Learning rate = %s' % format_number(self.shrinkage),
                  '']

        return ('\n'.join(header) + '\n' +
                ''.join(ensemble.to_text() for ensemble in self.ensembles_))

    def save_as_text(self, filepath):
        '''
        Save the model into the file in the text format.
        '''
        logger.info('Saving Random Forests model into %s' % filepath)
        with open(filepath, 'w') as ofile:
            ofile.write(self.to_text())

    @classmethod
    def from_text(cls, text, **kwargs):
        '''
        Create the model from its text representation (see `to_text`).
        The keyword arguments are passed to the initializer.
        '''
        name, params = parse_header(text)

        if name != 'Random Forests':
            raise ModelFormatError('unexpected model type: %s' % name)

        ensembles = parse_ensembles(text)

        model = cls(n_bags=len(ensembles),
                    subsample=header_value(params, 'Sub-sampling', float, 1.0),
                    max_features=header_value(params, 'Feature-sampling',
                                              float, 0.3),
                    n_estimators=header_value(params, 'No. of trees', int, 1),
                    n_leaves=header_value(params, 'No. of leaves', int, 100),
                    n_thresholds=header_value(params,
                                              'No. of threshold candidates',
                                              int, 256),
                    shrinkage=header_value(params, 'Learning rate', float, 0.1),
                    **kwargs)

        model.ensembles_ = ensembles

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
        '''
        logger.info('Loading %s object from %s' % (cls.__name__, filepath))
        return unpickle(filepath)

    def save(self, filepath):
        '''
        Save the model into the specified file.
        '''
        logger.info('Saving %s object into %s' % (self.__class__.__name__,
                                                  filepath))
        pickle(self, filepath)

    def used_features(self):
        '''
        Return the sorted feature ids used by any of the bags.
        '''
        if self.ensembles_ is None:
            raise ValueError('the model has not been trained yet')
        return np.array(sorted(set().union(*[set(ensemble.features)
                                             for ensemble in self.ensembles_])),
                        dtype=np.intp)
