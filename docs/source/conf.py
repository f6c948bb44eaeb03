# Configuration file for the Sphinx documentation builder.
#
# For the full list of options see the documentation:
# https://www.sphinx-doc.org/en/master/usage/configuration.html

import os
import sys
sys.path.insert(0, os.path.abspath('../..'))

# -- Project information -----------------------------------------------------

project = 'pipework'
author = 'pipework contributors'

# -- General configuration ---------------------------------------------------

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
]

templates_path = ['_templates']

exclude_patterns = []

# Document members in the order they're defined, so the builder methods on
# Expression stay grouped by stream.
autodoc_default_options = {
    'member-order': 'bysource',
}

master_doc = 'index'
