# Sphinx configuration for the golem-requestor API reference

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / 'src'))

from golem_requestor import __version__  # noqa: E402

project = 'golem-requestor'
author = 'golem-requestor contributors'
copyright = f'2024, {author}'
version = '.'.join(__version__.split('.')[:2])
release = __version__

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx.ext.intersphinx',
    'sphinx_autodoc_typehints',
]

exclude_patterns = ['_build']

html_theme = 'sphinx_rtd_theme'
html_title = f'golem-requestor {release}'
html_theme_options = {
    'navigation_depth': 3,
    'collapse_navigation': False,
}

# Property schemas and pydantic config are implementation details of the models.
autodoc_default_options = {
    'members': True,
    'member-order': 'bysource',
    'show-inheritance': True,
    'exclude-members': 'FIELDS, model_config, model_fields, model_computed_fields',
}
autodoc_type_aliases = {
    'Emitter': 'golem_requestor.events.Emitter',
    'Event': 'golem_requestor.events.Event',
    'CommandEvent': 'golem_requestor.execution.commands.CommandEvent',
    'BindFn': 'golem_requestor.agreements.BindFn',
}
typehints_defaults = 'comma'
always_document_param_types = False

# Docstrings follow the Google style ("Raises:" sections).
napoleon_google_docstring = True
napoleon_numpy_docstring = False
napoleon_use_rtype = False

intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'requests': ('https://requests.readthedocs.io/en/latest', None),
    'pydantic': ('https://docs.pydantic.dev/latest', None),
}
