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
import scipy.sparse as sp

from collections.abc import Mapping

from sklearn.utils import check_random_state

from .utils import pickle, unpickle


logger = logging.getLogger(__name__)


class DataPoint(object):
    '''
    A single query-document pair: the relevance label, the query
    identifier, and the document feature values.

    Feature identifiers start from 1. Internally, the values are kept
    in a dense array whose 0-th slot is never used. Values that were
    not given (for sparse input) are stored as NaN and read as 0.

    Parameters:
    -----------
    label: float
        The (non-negative) relevance label of the document.

    qid: int or string
        The identifier of the query the document belongs to.

    features: dict or sequence of floats
        Either a mapping from feature identifiers to values, or
        a sequence of values where i-th item is the value of
        feature i + 1.

    description: string, optional (default is None)
        Free text description (e.g. the trailing svmlight comment).
    '''
    def __init__(self, label, qid, features, description=None):
        if label < 0:
            raise ValueError('relevance label cannot be negative: %r' % label)

        self.label = float(label)
        self.qid = qid
        self.description = description

        if isinstance(features, Mapping):
            n_features = max(features) if len(features) > 0 else 0
            values = np.empty(n_features + 1, dtype=np.float32)
            values.fill(np.nan)
            for fid, value in features.items():
                if fid < 1:
                    raise ValueError('feature id must be positive: %r' % fid)
                values[fid] = value
        else:
            values = np.empty(len(features) + 1, dtype=np.float32)
            values[0] = np.nan
            values[1:] = features

        self.feature_values = values

    def feature_count(self):
        '''
        Return the highest feature id the document has a slot for.
        '''
        return self.feature_values.shape[0] - 1

    def get_feature_value(self, fid, missing_zero=False):
        '''
        Return the value of the feature with the given id.

        Parameters:
        -----------
        fid: int
            The feature identifier (starting from 1).

        missing_zero: bool, optional (default is False)
            If True, feature ids beyond the document feature count
            read as 0, otherwise IndexError is raised.
        '''
        if fid < 1 or fid >= self.feature_values.shape[0]:
            if missing_zero:
                return 0.0
            raise IndexError('feature id %d is out of range [1, %d]'
                             % (fid, self.feature_count()))

        value = self.feature_values[fid]

        if np.isnan(value):
            return 0.0

        return float(value)

    def to_vector(self, n_features):
        '''
        Return the dense vector of the first `n_features` feature values
        (unknown values are 0).
        '''
        vector = np.zeros(n_features, dtype=np.float32)
        n = min(n_features, self.feature_count())
        vector[:n] = np.nan_to_num(self.feature_values[1:n + 1])
        return vector

    def __str__(self):
        features = ' '.join('%d:%s' % (fid, repr(float(value)))
                            for fid, value in enumerate(self.feature_values)
                            if fid > 0 and not np.isnan(value))
        line = '%s qid:%s %s' % (repr(self.label), self.qid, features)
        if self.description:
            line += ' # ' + self.description
        return line


class RankList(object):
    '''
    An ordered list of documents (DataPoint objects) sharing the same
    query. The list cannot be empty. Derived lists (see `permute`)
    own their sequence of documents, the document objects are shared.

    Parameters:
    -----------
    points: iterable of DataPoint
        The documents of the list.
    '''
    def __init__(self, points):
        points = list(points)

        if len(points) == 0:
            raise ValueError('rank list must contain at least one document')

        qid = points[0].qid

        for point in points:
            if point.qid != qid:
                raise ValueError('documents of a rank list must share the '
                                 'query id (%r != %r)' % (point.qid, qid))

        self.qid = qid
        self._points = points

    def __len__(self):
        return len(self._points)

    def __getitem__(self, i):
        return self._points[i]

    def __iter__(self):
        return iter(self._points)

    def labels(self):
        '''
        Return the relevance labels of the documents in list order.
        '''
        return np.array([point.label for point in self._points],
                        dtype=np.float64)

    def feature_count(self):
        '''
        Return the highest feature id of the documents.
        '''
        return max(point.feature_count() for point in self._points)

    def permute(self, indices):
        '''
        Return a new rank list with the documents in the given order.
        '''
        return RankList([self._points[i] for i in indices])

    def __str__(self):
        return 'RankList (qid: %s, documents: %d)' % (self.qid, len(self))


class Queries(object):
    '''
    Data structure representing queries used for training learning to
    rank algorithms. It is created from query-document feature vectors,
    corresponding relevance scores, and index mapping from queries to
    associated query-document feature vectors.

    Column j of the feature vectors holds the value of feature id j + 1.

    Parameters:
    -----------
    feature_vectors: array, shape = (# of query-document pairs, # of features)
        The feature vectors for query-document pairs.

    relevance_scores: array, shape = (# of query-document pairs,)
        The relevance scores correspoding to the feature vectors.

    query_indptr: array
        The query index pointer into the feature_vectors and relevance_scores
        array, i.e. the document feature vectors,
        feature_vectors[query_indptr[i]:query_indptr[i + 1]], and the
        corresponding relevance scores,
        relevance_scores[query_indptr[i]:query_indptr[i + 1]],
        are the feature vectors and relevance scores for the i-th query
        documents.

    query_ids: array, shape = (# of queries,), optional (default is None)
        The query identifiers. If None, the queries are numbered from 0.
    '''
    def __init__(self, feature_vectors, relevance_scores, query_indptr,
                 query_ids=None):
        self.feature_vectors = np.asarray(feature_vectors, dtype=np.float32)
        self.relevance_scores = np.asarray(relevance_scores,
                                           dtype=np.float64).ravel()
        self.query_indptr = np.asarray(query_indptr, dtype=np.intp).ravel()

        if self.feature_vectors.ndim != 2:
            raise ValueError('feature vectors must be a 2D array')

        self.n_queries = self.query_indptr.shape[0] - 1
        self.n_feature_vectors = self.feature_vectors.shape[0]

        if self.n_queries < 1:
            raise ValueError('there must be at least one query')

        if self.n_feature_vectors != self.relevance_scores.shape[0]:
            raise ValueError('the number of documents (%d) does not equal '
                             'the number of relevance scores (%d)'
                             % (self.n_feature_vectors,
                                self.relevance_scores.shape[0]))

        if (self.query_indptr[0] != 0 or
                self.query_indptr[-1] != self.n_feature_vectors):
            raise ValueError('the query index pointer is not correct (number '
                             'of indexed items is not the same as the number '
                             'of documents)')

        if (np.diff(self.query_indptr) <= 0).any():
            raise ValueError('every query must have at least one document')

        if (self.relevance_scores < 0).any():
            raise ValueError('relevance scores cannot be negative')

        if query_ids is None:
            query_ids = np.arange(self.n_queries)

        self.query_ids = np.asarray(query_ids).ravel()

        if self.query_ids.shape[0] != self.n_queries:
            raise ValueError('the number of queries (%d) != the number of '
                             'query ids (%d)' % (self.n_queries,
                                                 self.query_ids.shape[0]))

        self.max_score = self.relevance_scores.max()

    def __str__(self):
        return ('Queries (%d queries, %d documents, %d features, '
                '%g max. relevance)' % (self.n_queries,
                                         self.n_feature_vectors,
                                         self.feature_count(),
                                         self.max_score))

    def __len__(self):
        return self.n_queries

    @classmethod
    def from_rank_lists(cls, rank_lists, n_features=None):
        '''
        Create queries from the given sequence of RankList objects.

        Parameters:
        -----------
        rank_lists: list of RankList
            The document lists, one per query.

        n_features: int, optional (default is None)
            The number of feature columns. If None, the highest
            feature id of the documents is used.
        '''
        rank_lists = list(rank_lists)

        if n_features is None:
            n_features = max(rank_list.feature_count()
                             for rank_list in rank_lists)

        feature_vectors = np.array([point.to_vector(n_features)
                                    for rank_list in rank_lists
                                    for point in rank_list],
                                   dtype=np.float32).reshape(-1, n_features)

        relevance_scores = np.concatenate([rank_list.labels()
                                           for rank_list in rank_lists])

        query_indptr = np.r_[0, np.cumsum([len(rank_list)
                                           for rank_list in rank_lists])]

        query_ids = np.array([rank_list.qid for rank_list in rank_lists])

        return cls(feature_vectors, relevance_scores, query_indptr, query_ids)

    def rank_list(self, i):
        '''
        Return the documents of the i-th query as a RankList.
        '''
        if i < 0 or i >= self.n_queries:
            raise IndexError('query index out of range: %d' % i)

        s, e = self.query_indptr[i], self.query_indptr[i + 1]
        qid = self.query_ids[i]

        return RankList([DataPoint(label, qid, vector)
                         for label, vector in zip(self.relevance_scores[s:e],
                                                  self.feature_vectors[s:e])])

    def subset(self, indices):
        '''
        Return new queries made of the queries with the given indices
        (in the given order, repetitions allowed). The arrays of the
        new object are copies.
        '''
        indices = np.asarray(indices, dtype=np.intp).ravel()

        if indices.shape[0] == 0:
            raise ValueError('cannot create queries from an empty subset')

        document_indices = np.concatenate(
            [np.arange(self.query_indptr[i], self.query_indptr[i + 1])
             for i in indices])

        query_indptr = np.r_[0, np.cumsum(np.diff(self.query_indptr)[indices])]

        return Queries(self.feature_vectors[document_indices],
                       self.relevance_scores[document_indices],
                       query_indptr, self.query_ids[indices])

    @staticmethod
    def load_from_text(filepaths, dtype=np.float32):
        '''
        Load queries in the svmlight format from the specified file(s).

        SVMlight format example (one line):

            5[\\s]qid:8[\\s]103:1.0[\\s]110:-1.0[\\s]...[\\s]982:1.0 # comment[\\n]

        Feature id `i` ends up in column `i - 1`, missing values are 0.

        Parameters:
        -----------
        filepath: string or list of strings
            The location of the dataset file(s).

        dtype: data-type, optional (default is np.float32)
            The desired data-type for the document feature vectors.
        '''
        # Arrays used to build CSR matrix of query-document vectors.
        data, indices, indptr = [], [], [0]

        relevances = []

        query_ids = []
        query_indptr = [0]
        prev_qid = None

        # If only single filepath is given, not a list.
        if isinstance(filepaths, str):
            filepaths = [filepaths]

        n_feature_vectors = 0

        for filepath in filepaths:
            logger.info('Reading queries from %s.' % filepath)

            with open(filepath, 'r') as ifile:
                # Loop through every line containing query-document pair.
                for lineno, pair in enumerate(ifile, start=1):
                    comment_start = pair.find('#')

                    # Remove the line comment first.
                    if comment_start >= 0:
                        pair = pair[:comment_start]

                    pair = pair.strip()

                    # Skip comments and empty lines.
                    if not pair:
                        continue

                    items = pair.split()

                    try:
                        # Relevance is the first number on the line.
                        relevance = float(items[0])

                        # Query ID follows the second item on the line,
                        # which is 'qid:'.
                        key, qid = items[1].split(':')

                        if key != 'qid':
                            raise ValueError('missing qid')

                        features = [(int(fid), dtype(fval)) for fid, fval in
                                    (item.split(':') for item in items[2:])]
                    except (ValueError, IndexError) as e:
                        raise ValueError('ill-formated line %d in %s: %s'
                                         % (lineno, filepath, e)) from e

                    relevances.append(relevance)

                    if qid != prev_qid:
                        query_ids.append(qid)
                        query_indptr.append(query_indptr[-1] + 1)
                        prev_qid = qid
                    else:
                        query_indptr[-1] += 1

                    # Load the feature vector into CSR arrays.
                    for fid, fval in features:
                        if fid < 1:
                            raise ValueError('ill-formated line %d in %s: '
                                             'feature id must be positive'
                                             % (lineno, filepath))
                        data.append(fval)
                        indices.append(fid - 1)
                    indptr.append(len(indices))

                    n_feature_vectors += 1

                    if n_feature_vectors % 10000 == 0:
                        logger.info('Read %d queries and %d documents so far.'
                                    % (len(query_indptr) - 1,
                                       n_feature_vectors))

            logger.info('Read %d queries and %d documents in total.'
                        % (len(query_indptr) - 1, n_feature_vectors))

        n_features = max(indices) + 1 if len(indices) > 0 else 0

        feature_vectors = sp.csr_matrix((data, indices, indptr), dtype=dtype,
                                        shape=(n_feature_vectors, n_features))

        return Queries(feature_vectors.toarray(), relevances, query_indptr,
                       query_ids=query_ids)

    def save_as_text(self, filepath):
        '''
        Save queries into the specified file in svmlight format.

        Parameters:
        -----------
        filepath: string
            The filepath where this object will be saved.
        '''
        with open(filepath, 'w') as ofile:
            for i in range(self.n_queries):
                s, e = self.query_indptr[i], self.query_indptr[i + 1]
                for score, feature_vector in zip(self.relevance_scores[s:e],
                                                 self.feature_vectors[s:e]):
                    ofile.write('%g qid:%s' % (score, self.query_ids[i]))
                    for fid, value in enumerate(feature_vector, start=1):
                        ofile.write(' %d:%s' % (fid, repr(float(value))))
                    ofile.write('\n')

    @classmethod
    def load(cls, filepath):
        '''
        Load the previously saved Queries object from the specified file.

        Parameters:
        -----------
        filepath: string
            The filepath, from which a Queries object will be loaded.
        '''
        logger.info('Loading queries from %s.' % filepath)
        queries = unpickle(filepath)
        logger.info('Loaded %d queries with %d documents in total.'
                    % (queries.query_count(), queries.document_count()))
        return queries

    def save(self, filepath):
        '''
        Save this Queries object into the specified file.

        Parameters:
        -----------
        filepath: string
            The filepath where this object will be saved.
        '''
        pickle(self, filepath)

    def document_count(self, i=None):
        '''
        Return the number of documents for the i-th query. If i is None
        than the total number of "documents" is returned.
        '''
        if i is None:
            return self.n_feature_vectors
        else:
            return self.query_indptr[i + 1] - self.query_indptr[i]

    def feature_count(self):
        '''
        Return the number of feature columns.
        '''
        return self.feature_vectors.shape[1]

    def query_count(self):
        '''
        Return the number of queries in this Queries.
        '''
        return self.n_queries

    def highest_relevance(self):
        '''
        Return the maximum relevance score of a document.
        '''
        return self.max_score

    def longest_document_list(self):
        '''
        Return the maximum number of documents query can have.
        '''
        return np.diff(self.query_indptr).max()


def bootstrap_queries(n_queries, rate, random_state=None):
    '''
    Draw a bag of `int(rate * n_queries)` query indices with replacement.

    Returns
    -------
    bag_indices: array of ints
        The sampled query indices (in the order they were drawn).

    oob_indices: array of ints
        The indices of the queries that were never drawn.
    '''
    if rate <= 0.0:
        raise ValueError('sub-sampling rate must be positive (%r was given)'
                         % rate)

    random_state = check_random_state(random_state)

    n_samples = max(int(rate * n_queries), 1)

    bag_indices = random_state.randint(0, n_queries, size=n_samples)

    in_bag = np.zeros(n_queries, dtype=bool)
    in_bag[bag_indices] = True

    return bag_indices, np.flatnonzero(~in_bag)
