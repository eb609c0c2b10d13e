"""Requestor-side engine for the Golem compute marketplace.

- an agreement pool negotiating and reusing provider agreements
- a batch pipeline running exe-scripts over long-poll or event-stream results
- work steps compiled into scripts, with content transfer through a storage backend
"""

__version__ = "0.1.0"

from golem_requestor.agreements import AgreementPool
from golem_requestor.config import RequestorSettings
from golem_requestor.work import WorkContext, execute_steps

__all__ = ["__version__", "AgreementPool", "RequestorSettings", "WorkContext", "execute_steps"]
