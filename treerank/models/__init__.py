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

from .ensemble import Ensemble, ModelFormatError, parse_header
from .histogram import FeatureHistogram
from .lambdamart import LambdaMART, MART
from .lambdamart import LambdaObjective, ResidualObjective
from .randomforests import RandomForests
from .tree import RegressionTree, Split


MODELS = {'LambdaMART': LambdaMART,
          'MART': MART,
          'Random Forests': RandomForests}


def load_model_from_text(text, **kwargs):
    '''
    Create the model from its text representation. The type of the
    model is determined by the first line of the header.
    '''
    name, _ = parse_header(text)

    try:
        model_class = MODELS[name]
    except KeyError:
        raise ModelFormatError('unknown model type: %s' % name)

    return model_class.from_text(text, **kwargs)
