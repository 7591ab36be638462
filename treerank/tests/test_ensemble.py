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

from treerank.models import Ensemble, ModelFormatError
from treerank.models import RegressionTree, Split
from treerank.models import load_model_from_text
from treerank.models.ensemble import parse_header, parse_ensembles
from treerank.queries import DataPoint


TREE = '''\
## LambdaMART
## No. of trees = 1
## Learning rate = 0.5

<ensemble>
	<tree id="1" weight="0.5">
		<split>
			<feature> 2 </feature>
			<threshold> %s </threshold>
			<split pos="left">
				<output> -1.0 </output>
			</split>
			<split pos="right">
				%s
			</split>
		</split>
	</tree>
</ensemble>
'''

RIGHT_SPLIT = '''<feature> 4 </feature>
				<threshold> 1.5 </threshold>
				<split pos="left">
					<output> 0.25 </output>
				</split>
				<split pos="right">
					<output> 3.0 </output>
				</split>'''


class TestEnsemble(unittest.TestCase):
    def make_ensemble(self):
        ensemble = Ensemble()
        ensemble.add(RegressionTree(root=Split(1, 0.5,
                                               left=Split(output=1.0),
                                               right=Split(output=-2.0))),
                     0.1)
        ensemble.add(RegressionTree(root=Split(output=0.75)), 1.0)
        return ensemble

    def test_weighted_sum_of_trees(self):
        ensemble = self.make_ensemble()

        np.testing.assert_allclose(
            ensemble.predict(np.array([[0.0], [1.0]])),
            [0.1 * 1.0 + 0.75, 0.1 * -2.0 + 0.75])
        self.assertAlmostEqual(ensemble.eval(DataPoint(0, 1, [0.7])),
                               0.1 * -2.0 + 0.75)
        self.assertEqual(ensemble.leaf_count(), 3)

    def test_text_round_trip(self):
        ensemble = self.make_ensemble()
        text = ensemble.to_text()

        self.assertTrue(text.startswith('<ensemble>\n\t<tree id="1" '
                                        'weight="0.1">\n'))

        parsed = Ensemble.parse(text)

        self.assertEqual(parsed.to_text(), text)
        self.assertEqual(parsed.weights, [0.1, 1.0])
        np.testing.assert_array_equal(parsed.features, [1])

    def test_truncate_and_remove(self):
        ensemble = self.make_ensemble()
        ensemble.add(RegressionTree(root=Split(output=1.0)), 1.0)

        ensemble.remove(1)
        self.assertEqual(len(ensemble), 2)
        self.assertEqual(ensemble.weight(1), 1.0)

        ensemble.truncate(1)
        self.assertEqual(len(ensemble), 1)
        self.assertEqual(ensemble.tree(0).root.feature, 1)

    def test_parse_model(self):
        model = load_model_from_text(TREE % ('0.5', RIGHT_SPLIT))

        self.assertEqual(model.shrinkage, 0.5)
        self.assertEqual(model.n_estimators, 1)
        np.testing.assert_array_equal(model.ensemble_.features, [2, 4])

        point = DataPoint(0, 1, [0.0, 0.7, 0.0, 2.0])
        self.assertAlmostEqual(model.eval(point), 0.5 * 3.0)


class TestHeader(unittest.TestCase):
    def test_parse_header(self):
        name, params = parse_header('## Random Forests\n'
                                    '## No. of bags = 3\n'
                                    '## Learning rate = 0.1\n\n<ensemble/>')
        self.assertEqual(name, 'Random Forests')
        self.assertEqual(params, {'No. of bags': '3', 'Learning rate': '0.1'})

    def test_missing_name(self):
        with self.assertRaises(ModelFormatError):
            parse_header('<ensemble></ensemble>')


class TestMalformedModels(unittest.TestCase):
    def assertMalformed(self, text):
        with self.assertRaises(ModelFormatError) as context:
            load_model_from_text(text)
        self.assertIsInstance(context.exception, ValueError)
        return context.exception

    def test_invalid_number(self):
        error = self.assertMalformed(TREE % ('abc', RIGHT_SPLIT))
        self.assertIsInstance(error.__cause__, ValueError)

    def test_missing_output(self):
        self.assertMalformed(TREE % ('0.5', ''))

    def test_missing_split(self):
        self.assertMalformed((TREE % ('0.5', RIGHT_SPLIT)).replace(
            '<split pos="left">\n\t\t\t\t<output> -1.0 </output>\n'
            '\t\t\t</split>', ''))

    def test_invalid_feature(self):
        self.assertMalformed(TREE.replace('<feature> 2 </feature>',
                                          '<feature> 0 </feature>')
                             % ('0.5', RIGHT_SPLIT))

    def test_missing_weight(self):
        self.assertMalformed(TREE.replace(' weight="0.5"', '')
                             % ('0.5', RIGHT_SPLIT))

    def test_unclosed_element(self):
        self.assertMalformed((TREE % ('0.5', RIGHT_SPLIT))
                             .replace('</ensemble>', ''))

    def test_unknown_model(self):
        self.assertMalformed(TREE.replace('LambdaMART', 'AdaRank')
                             % ('0.5', RIGHT_SPLIT))

    def test_no_ensemble(self):
        with self.assertRaises(ModelFormatError):
            parse_ensembles('## Random Forests\n')


if __name__ == '__main__':
    unittest.main()
