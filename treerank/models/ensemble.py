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
import xml.etree.ElementTree as ET

from .tree import Split, RegressionTree
from ..utils import format_number


logger = logging.getLogger(__name__)


class ModelFormatError(ValueError):
    '''
    Raised when a model cannot be read from its text representation.
    '''
    pass


def strip_comments(text):
    '''
    Remove the lines starting with '#' (the model header).
    '''
    return '\n'.join(line for line in text.splitlines()
                     if not line.lstrip().startswith('#'))


def parse_header(text):
    '''
    Return the model name and the `## key = value` pairs
    from the header of the model text.
    '''
    name, params = None, {}

    for line in text.splitlines():
        line = line.strip()

        if not line:
            continue

        if not line.startswith('##'):
            break

        key, sep, value = line[2:].partition('=')

        if sep:
            params[key.strip()] = value.strip()
        elif name is None:
            name = key.strip()

    if not name:
        raise ModelFormatError('the model header does not name the model')

    return name, params


def header_value(params, key, parse, default):
    '''
    Return the parsed header value of `key`, or `default` if missing.
    '''
    if key not in params:
        return default
    try:
        return parse(params[key])
    except ValueError as e:
        raise ModelFormatError('invalid header value of "%s": %r'
                               % (key, params[key])) from e


def _write_split(node, indent, lines):
    if node.is_leaf():
        lines.append('%s<output> %s </output>' % (indent,
                                                 format_number(node.output)))
    else:
        lines.append('%s<feature> %d </feature>' % (indent, node.feature))
        lines.append('%s<threshold> %s </threshold>'
                     % (indent, format_number(node.threshold)))
        for pos, child in (('left', node.left), ('right', node.right)):
            lines.append('%s<split pos="%s">' % (indent, pos))
            _write_split(child, indent + '\t', lines)
            lines.append('%s</split>' % indent)


def _read_number(element, tag, parse):
    child = element.find(tag)
    if child is None or child.text is None:
        raise ModelFormatError('missing <%s> element' % tag)
    try:
        return parse(child.text.strip())
    except ValueError as e:
        raise ModelFormatError('invalid <%s> value: %r'
                               % (tag, child.text.strip())) from e


def _read_split(element, features):
    children = list(element)

    if len(children) > 0 and children[0].tag == 'feature':
        fid = _read_number(element, 'feature', int)

        if fid < 1:
            raise ModelFormatError('feature id must be positive: %d' % fid)

        threshold = _read_number(element, 'threshold', float)

        splits = element.findall('split')

        if (len(splits) != 2 or splits[0].get('pos') != 'left' or
                splits[1].get('pos') != 'right'):
            raise ModelFormatError('internal node of feature %d must have '
                                   'a left and a right split' % fid)

        features.add(fid)

        return Split(fid, threshold, left=_read_split(splits[0], features),
                     right=_read_split(splits[1], features))

    return Split(output=_read_number(element, 'output', float))


class Ensemble(object):
    '''
    An additive model made of weighted regression trees: the output
    for a document is the sum of the outputs of the trees multiplied
    by their weights.
    '''
    def __init__(self):
        self.trees = []
        self.weights = []
        self.features = np.array([], dtype=np.intp)

    def add(self, tree, weight):
        self.trees.append(tree)
        self.weights.append(float(weight))

    def remove(self, k):
        del self.trees[k]
        del self.weights[k]

    def truncate(self, n_trees):
        '''
        Keep only the first `n_trees` trees.
        '''
        del self.trees[n_trees:]
        del self.weights[n_trees:]

    def __len__(self):
        return len(self.trees)

    def tree(self, k):
        return self.trees[k]

    def weight(self, k):
        return self.weights[k]

    def leaf_count(self):
        return sum(len(tree.leaves()) for tree in self.trees)

    def variance(self):
        return sum(tree.variance() for tree in self.trees)

    def eval(self, point, missing_zero=False):
        '''
        Return the output of the model for the given DataPoint.
        '''
        return sum(weight * tree.eval(point, missing_zero)
                   for tree, weight in zip(self.trees, self.weights))

    def predict(self, feature_vectors, missing_zero=False):
        '''
        Return the output of the model for each row of the feature matrix.
        '''
        output = np.zeros(np.asarray(feature_vectors).shape[0],
                          dtype=np.float64)
        for tree, weight in zip(self.trees, self.weights):
            output += weight * tree.predict(feature_vectors, missing_zero)
        return output

    def to_text(self):
        '''
        Return the text representation of the ensemble.
        '''
        lines = ['<ensemble>']
        for i, (tree, weight) in enumerate(zip(self.trees, self.weights)):
            lines.append('\t<tree id="%d" weight="%s">'
                         % (i + 1, format_number(weight)))
            lines.append('\t\t<split>')
            _write_split(tree.root, '\t\t\t', lines)
            lines.append('\t\t</split>')
            lines.append('\t</tree>')
        lines.append('</ensemble>')
        return '\n'.join(lines) + '\n'

    @classmethod
    def from_element(cls, element):
        '''
        Create the ensemble from a parsed <ensemble> element.
        '''
        if element.tag != 'ensemble':
            raise ModelFormatError('expected <ensemble> element, got <%s>'
                                   % element.tag)

        ensemble = cls()
        features = set()

        for tree in element:
            if tree.tag != 'tree':
                raise ModelFormatError('unexpected <%s> element in ensemble'
                                       % tree.tag)

            weight = tree.get('weight')

            if weight is None:
                raise ModelFormatError('tree %s has no weight'
                                       % tree.get('id'))
            try:
                weight = float(weight)
            except ValueError as e:
                raise ModelFormatError('invalid weight of tree %s: %r'
                                       % (tree.get('id'), weight)) from e

            root = tree.find('split')

            if root is None:
                raise ModelFormatError('tree %s has no split'
                                       % tree.get('id'))

            ensemble.add(RegressionTree(root=_read_split(root, features)),
                         weight)

        ensemble.features = np.array(sorted(features), dtype=np.intp)

        return ensemble

    @classmethod
    def parse(cls, text):
        '''
        Create the ensemble from its text representation. Lines
        starting with '#' are ignored.
        '''
        try:
            element = ET.fromstring(strip_comments(text))
        except ET.ParseError as e:
            raise ModelFormatError('cannot parse ensemble: %s' % e) from e

        return cls.from_element(element)


def parse_ensembles(text):
    '''
    Parse all <ensemble> blocks of the text (header lines are ignored).
    '''
    try:
        element = ET.fromstring('<model>%s</model>' % strip_comments(text))
    except ET.ParseError as e:
        raise ModelFormatError('cannot parse model: %s' % e) from e

    ensembles = [Ensemble.from_element(child) for child in element]

    if len(ensembles) == 0:
        raise ModelFormatError('the model has no ensemble')

    return ensembles
