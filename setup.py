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

from setuptools import setup, find_packages

readme_path = os.path.join(os.path.dirname(__file__), 'README.rst')

setup(
    name = "TreeRank",
    version = '0.1.0',
    author = "TreeRank developers",
    description = ("Gradient boosted regression trees (LambdaMART, MART, Random Forests) for learning to rank in Python."),
    long_description=open(readme_path, 'r').read(),
    keywords = "machine learning, learning to rank, information retrieval, gradient boosting",
    packages=find_packages(exclude=['treerank.tests']),
    install_requires=['numpy', 'scipy', 'scikit-learn', 'joblib'],
    extras_require={'test': ['pytest']},
    python_requires='>=3.6',
    license = "GNU Lesser General Public License v3 or later (LGPLv3+)",
    classifiers=['Development Status :: 3 - Alpha',
                 'Environment :: Console',
                 'Intended Audience :: Science/Research',
                 'License :: OSI Approved :: GNU Lesser General Public License v3 or later (LGPLv3+)',
                 'Operating System :: OS Independent',
                 'Programming Language :: Python :: 3',
                 'Topic :: Scientific/Engineering :: Artificial Intelligence']
)
