"""Thin `requests`-based bindings for the yagna market and activity APIs."""

from golem_requestor.rest.activity import Activity, ActivityApi, ExeScriptCommandResult
from golem_requestor.rest.client import ApiClient
from golem_requestor.rest.market import (
    Agreement,
    AgreementDetails,
    AgreementView,
    Market,
    MarketApi,
    OfferProposal,
    Subscription,
)

__all__ = [
    "Activity",
    "ActivityApi",
    "Agreement",
    "AgreementDetails",
    "AgreementView",
    "ApiClient",
    "ExeScriptCommandResult",
    "Market",
    "MarketApi",
    "OfferProposal",
    "Subscription",
]
