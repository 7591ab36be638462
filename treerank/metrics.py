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

import numpy as np


def ranksort(scores):
    '''
    Return the indices that order the documents by decreasing score.
    Documents with equal scores keep their original relative order.
    '''
    return np.argsort(-np.asarray(scores, dtype=np.float64), kind='mergesort')


def _check_labels(ranked_labels):
    ranked_labels = np.asarray(ranked_labels, dtype=np.float64).ravel()
    if ranked_labels.shape[0] == 0:
        raise ValueError('cannot evaluate an empty document list')
    return ranked_labels


class AbstractMetric(object):
    '''
    The base class for information retrieval kind of evaluation metric.

    Every evaluation metric should implement this class interface.

    Arguments:
    ----------
    cutoff: int, optional (default is -1)
        If positive, it denotes the maximum rank of a document
        that will be considered for evaluation. If 0 is given
        ValueError is raised.
    '''
    def __init__(self, cutoff=-1):
        self.cutoff = cutoff
        if cutoff == 0:
            raise ValueError('cutoff has to be positive integer'
                             ' or (-1) but 0 was given')

    def _get_cutoff(self, n_documents):
        if self.cutoff < 0:
            return n_documents
        return min(self.cutoff, n_documents)

    def evaluate(self, ranked_labels, scale=None):
        '''
        Evaluate the metric on the specified ranked list of document
        relevance scores.

        This method has to be implemented by each metric object.

        Parameters:
        -----------
        ranked_labels: array, shape = (n_documents,)
            Relevance scores of the ranked documents.

        scale: float, optional (default is None)
            If the metric value are scaled (e.g. its values need to be scaled
            by the ideal metric value), then it may be computationally more
            convenient to precalculate the normalization factors in advance
            (by using `compute_scale` method) and use its output values for
            this parameter.
        '''
        raise NotImplementedError()

    def swap_change(self, ranked_labels, scale=None):
        '''
        Compute the change in the metric value of the ranked document list
        after swapping the documents at ranks i and j, for every pair (i, j).

        This method has to be implemented by each metric object.

        Returns
        -------
        changes: array, shape = (n_documents, n_documents)
            The symmetric matrix of metric changes.
        '''
        raise NotImplementedError()

    def score(self, rank_list):
        '''
        Evaluate the metric on the documents of the RankList
        in their list order.
        '''
        return self.evaluate(rank_list.labels())

    def evaluate_queries(self, queries, scores, scale=None):
        '''
        Evaluate the metric on the specified set of queries (`queries`).
        The documents are sorted by corresponding ranking scores (`scores`)
        and the metric is then computed as the average of the metric values
        evaluated on each query document list.

        Parameters:
        -----------
        queries: treerank.queries.Queries
            The set of queries for which the metric will be computed.

        scores: array, shape=(n_documents,)
            The ranking scores for each document in the queries.

        scale: array, shape=(n_queries,)
            The scale factor for each query, e.g. ideal metric value for DCG
            metric, which allows to compute NDCG metric in the end.
        '''
        scores = np.asarray(scores, dtype=np.float64).ravel()

        if scores.shape[0] != queries.document_count():
            raise ValueError('the number of scores (%d) != the number of '
                             'documents (%d)' % (scores.shape[0],
                                                 queries.document_count()))

        values = np.empty(len(queries), dtype=np.float64)

        for i in range(len(queries)):
            s, e = queries.query_indptr[i], queries.query_indptr[i + 1]
            ranked_labels = queries.relevance_scores[s:e][ranksort(scores[s:e])]
            values[i] = self.evaluate(ranked_labels,
                                      None if scale is None else scale[i])

        return values.mean()

    def compute_scale(self, queries):
        '''
        Return the ideal metric value for each query in the specifed
        set of queries. These values can be used as `scale` parameter in
        `evaluation` methods to speed up computation of metrics, which
        need to be normalized.

        Metrics that are not normalized return None.
        '''
        return None


class DiscountedCumulativeGain(AbstractMetric):
    '''
    Discounted Cumulative Gain metric with `2^rel - 1` gain and
    `1 / log2(rank + 1)` discount (ranks starting from 1).

    Arguments:
    ----------
    cutoff: int, optional (default is -1)
        If positive, it denotes the maximum rank of a document
        that will be considered for evaluation.
    '''
    def __init__(self, cutoff=-1):
        super(DiscountedCumulativeGain, self).__init__(cutoff)

    @staticmethod
    def _gains(ranked_labels):
        return np.exp2(ranked_labels) - 1.0

    @staticmethod
    def _discounts(n_documents):
        return 1.0 / np.log2(np.arange(2, n_documents + 2, dtype=np.float64))

    def evaluate(self, ranked_labels, scale=None):
        '''
        Evaluate the DCG metric on the specified ranked list of document
        relevance scores.

        scale: float, optional (default is None)
            Ignored.
        '''
        ranked_labels = _check_labels(ranked_labels)
        cutoff = self._get_cutoff(ranked_labels.shape[0])
        return np.dot(self._gains(ranked_labels[:cutoff]),
                      self._discounts(cutoff))

    def swap_change(self, ranked_labels, scale=None):
        '''
        Compute the change in the DCG metric after swapping each pair of
        documents. Pairs of documents that are both ranked beyond the cutoff
        do not change the metric value.

        scale: float or None, optional (default is None)
            The resulting deltas will be divided by this number. If ideal
            DCG is given, for example, this will effectively result in
            computing delta for NDCG metric.
        '''
        ranked_labels = _check_labels(ranked_labels)

        n_documents = ranked_labels.shape[0]
        cutoff = self._get_cutoff(n_documents)

        gains = self._gains(ranked_labels)
        discounts = self._discounts(n_documents)

        changes = np.subtract.outer(discounts, discounts)
        changes *= np.subtract.outer(gains, gains)
        changes[cutoff:, cutoff:] = 0.0

        if scale is not None:
            if scale > 0.0:
                changes /= scale
            else:
                changes.fill(0.0)

        return changes

    def __str__(self):
        '''
        Return the textual description of the metric.
        '''
        return 'DCG' if self.cutoff < 0 else 'DCG@%d' % self.cutoff


class NormalizedDiscountedCumulativeGain(DiscountedCumulativeGain):
    '''
    Normalized Discounted Cumulative Gain metric, i.e. DCG divided
    by the DCG of the ideal ordering of the documents. A document list
    without any relevant document has NDCG equal to 0.

    Arguments:
    ----------
    cutoff: int, optional (default is -1)
        If positive, it denotes the maximum rank of a document
        that will be considered for evaluation.
    '''
    def __init__(self, cutoff=-1):
        super(NormalizedDiscountedCumulativeGain, self).__init__(cutoff)

    def _ideal_dcg(self, labels):
        return super(NormalizedDiscountedCumulativeGain, self).evaluate(
                   np.sort(labels)[::-1])

    def evaluate(self, ranked_labels, scale=None):
        '''
        Evaluate NDCG metric on the specified ranked list of document
        relevance scores.

        scale: float, optional (default is None)
            The ideal DCG value on the given documents. If None is given
            it will be computed from the document relevance scores.
        '''
        ranked_labels = _check_labels(ranked_labels)

        # Use the ideal DCG score (if given).
        ideal_dcg = self._ideal_dcg(ranked_labels) if scale is None else scale

        if ideal_dcg <= 0.0:
            return 0.0

        dcg = super(NormalizedDiscountedCumulativeGain, self).evaluate(
                  ranked_labels)

        return dcg / ideal_dcg

    def swap_change(self, ranked_labels, scale=None):
        '''
        Compute the change in the NDCG metric after swapping each pair
        of documents.

        scale: float or None, optional (default is None)
            The ideal DCG value for the query the documents are associated
            with. If None is given, the scale will be computed from the
            relevance scores.
        '''
        ranked_labels = _check_labels(ranked_labels)

        if scale is None:
            scale = self._ideal_dcg(ranked_labels)

        return super(NormalizedDiscountedCumulativeGain, self).swap_change(
                   ranked_labels, scale)

    def compute_scale(self, queries):
        '''
        Return the ideal DCG value for each query.
        '''
        return np.array([self._ideal_dcg(queries.relevance_scores[
                             queries.query_indptr[i]:queries.query_indptr[i + 1]])
                         for i in range(len(queries))], dtype=np.float64)

    def __str__(self):
        '''
        Return the textual description of the metric.
        '''
        return 'NDCG' if self.cutoff < 0 else 'NDCG@%d' % self.cutoff


class ExpectedReciprocalRank(AbstractMetric):
    '''
    Expected Reciprocal Rank as described in [1].

    [1] Olivier Chapelle et. al. Expected Reciprocal Rank for Graded
        Relevance, CIKM'2009

    Arguments:
    ----------
    cutoff: int, optional (default is -1)
        If positive, it denotes the maximum rank of a document
        that will be considered for evaluation.

    max_relevance: int, optional (default is 4)
        The maximum relevance score a document can have. It determines
        the stopping probability of a document with the given relevance.
    '''
    def __init__(self, cutoff=-1, max_relevance=4):
        super(ExpectedReciprocalRank, self).__init__(cutoff)
        self.max_relevance = max_relevance

    def evaluate(self, ranked_labels, scale=None):
        '''
        Evaluate ERR metric on the specified ranked list of document
        relevance scores.

        scale: float, optional (default is None)
            Ignored.
        '''
        ranked_labels = _check_labels(ranked_labels)
        cutoff = self._get_cutoff(ranked_labels.shape[0])

        R = (np.exp2(ranked_labels[:cutoff]) - 1.0) / 2.0**self.max_relevance
        P = np.ones_like(R)
        P[1:] -= R[:-1]
        np.cumprod(P, out=P)
        R /= np.arange(1, cutoff + 1, dtype=np.float64)

        return np.dot(R, P)

    def swap_change(self, ranked_labels, scale=None):
        '''
        Compute the change in the ERR metric after swapping each pair of
        documents by re-evaluating the metric on every swapped list.
        '''
        ranked_labels = _check_labels(ranked_labels)

        n_documents = ranked_labels.shape[0]
        cutoff = self._get_cutoff(n_documents)

        changes = np.zeros((n_documents, n_documents), dtype=np.float64)

        value = self.evaluate(ranked_labels)
        swapped = ranked_labels.copy()

        for i in range(cutoff):
            for j in range(i + 1, n_documents):
                if ranked_labels[i] == ranked_labels[j]:
                    continue
                swapped[i], swapped[j] = ranked_labels[j], ranked_labels[i]
                changes[i, j] = changes[j, i] = value - self.evaluate(swapped)
                swapped[i], swapped[j] = ranked_labels[i], ranked_labels[j]

        return changes

    def __str__(self):
        '''
        Return the textual description of the metric.
        '''
        return 'ERR' if self.cutoff < 0 else 'ERR@%d' % self.cutoff


class MetricFactory(object):
    '''
    Create a metric from its name, e.g. 'NDCG@10', 'DCG', or 'ERR@5'.
    A leading 'n' (e.g. 'nDCG@10') denotes the normalized version. Metric
    objects are returned as they are.
    '''
    name2metric = {'DCG': DiscountedCumulativeGain,
                   'NDCG': NormalizedDiscountedCumulativeGain,
                   'ERR': ExpectedReciprocalRank}

    @staticmethod
    def __new__(cls, metric_name, **kwargs):
        if not isinstance(metric_name, str):
            return metric_name

        name, _, cutoff = metric_name.partition('@')

        # Using shortcut specification for normalized metric.
        if name[:1] == 'n':
            name = 'N' + name[1:]

        try:
            cutoff = int(cutoff) if len(cutoff) > 0 else -1
        except ValueError:
            raise ValueError('invalid metric cutoff: %s' % metric_name)

        try:
            return cls.name2metric[name](cutoff, **kwargs)
        except KeyError:
            raise ValueError('unknown metric: %s' % name)
