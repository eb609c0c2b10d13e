"""Market API: demand subscriptions, offer proposals and agreements."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Mapping
from datetime import UTC, datetime, timedelta
from types import TracebackType
from typing import Any, TypeVar

import requests
from pydantic import BaseModel, ConfigDict, Field

from golem_requestor.errors import (
    AgreementConfirmationFailed,
    AgreementCreationFailed,
    ApiError,
    ApprovalTimeout,
)
from golem_requestor.props.base import PropertyModel, from_properties
from golem_requestor.rest.client import ApiClient

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=PropertyModel)

# Server-side wait for the provider's approval, and the client-side bound on it.
APPROVAL_WAIT_SECONDS = 15
APPROVAL_CLIENT_TIMEOUT_SECONDS = 16.0

COLLECT_TIMEOUT_SECONDS = 10
COLLECT_MAX_EVENTS = 10
COLLECT_RETRY_SECONDS = 1.0

DEFAULT_AGREEMENT_VALIDITY = timedelta(hours=1)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DemandOfferBase(_WireModel):
    properties: dict[str, Any] = Field(default_factory=dict)
    constraints: str = ""


class ProposalData(DemandOfferBase):
    proposal_id: str = Field(alias="proposalId")
    issuer_id: str = Field(alias="issuerId")
    state: str = "Initial"
    prev_proposal_id: str | None = Field(default=None, alias="prevProposalId")


class AgreementData(_WireModel):
    agreement_id: str = Field(alias="agreementId")
    demand: DemandOfferBase
    offer: DemandOfferBase
    state: str | None = None
    valid_to: str | None = Field(default=None, alias="validTo")


class MarketApi(ApiClient):
    """Requestor side of the market REST API."""

    def subscribe_demand(self, *, properties: Mapping[str, Any], constraints: str) -> str:
        body = DemandOfferBase(properties=dict(properties), constraints=constraints)
        resp = self._request("POST", "demands", json=body.model_dump(mode="json"))
        return str(self._json(resp))

    def unsubscribe_demand(self, subscription_id: str) -> None:
        self._request("DELETE", f"demands/{subscription_id}", allowed=frozenset({410}))

    def collect_offers(
        self,
        subscription_id: str,
        *,
        timeout: float = COLLECT_TIMEOUT_SECONDS,
        max_events: int = COLLECT_MAX_EVENTS,
    ) -> list[dict[str, Any]]:
        resp = self._request(
            "GET",
            f"demands/{subscription_id}/events",
            params={"timeout": timeout, "maxEvents": max_events},
            timeout=timeout + self._timeout,
        )
        data = self._json(resp)
        return data if isinstance(data, list) else []

    def counter_proposal(
        self,
        subscription_id: str,
        proposal_id: str,
        *,
        properties: Mapping[str, Any],
        constraints: str,
        timeout: float = 5.0,
    ) -> str:
        body = DemandOfferBase(properties=dict(properties), constraints=constraints)
        resp = self._request(
            "POST",
            f"demands/{subscription_id}/proposals/{proposal_id}",
            json=body.model_dump(mode="json"),
            timeout=timeout,
        )
        return str(self._json(resp))

    def reject_proposal(self, subscription_id: str, proposal_id: str, *, reason: str) -> None:
        self._request(
            "POST",
            f"demands/{subscription_id}/proposals/{proposal_id}/reject",
            json={"message": reason},
        )

    def create_agreement(self, *, proposal_id: str, valid_to: datetime) -> str:
        resp = self._request(
            "POST",
            "agreements",
            json={"proposalId": proposal_id, "validTo": valid_to.isoformat()},
        )
        return str(self._json(resp))

    def get_agreement(self, agreement_id: str) -> AgreementData:
        resp = self._request("GET", f"agreements/{agreement_id}")
        return AgreementData.model_validate(self._json(resp))

    def confirm_agreement(self, agreement_id: str) -> None:
        self._request("POST", f"agreements/{agreement_id}/confirm")

    def wait_for_approval(
        self, agreement_id: str, *, timeout: int, client_timeout: float
    ) -> str | None:
        resp = self._request(
            "POST",
            f"agreements/{agreement_id}/wait",
            params={"timeout": timeout},
            timeout=client_timeout,
        )
        data = self._json(resp)
        return data if isinstance(data, str) else None

    def terminate_agreement(
        self, agreement_id: str, *, reason: Mapping[str, str]
    ) -> requests.Response:
        return self._request(
            "POST",
            f"agreements/{agreement_id}/terminate",
            json=dict(reason),
            allowed=frozenset({410}),
        )


class AgreementView:
    """One side (provider offer or requester demand) of an agreement."""

    def __init__(self, properties: Mapping[str, Any]) -> None:
        self.properties = dict(properties)

    def extract(self, model: type[M]) -> M:
        return from_properties(model, self.properties)


class AgreementDetails:
    def __init__(self, raw: AgreementData) -> None:
        self.raw = raw

    @property
    def provider_view(self) -> AgreementView:
        return AgreementView(self.raw.offer.properties)

    @property
    def requester_view(self) -> AgreementView:
        return AgreementView(self.raw.demand.properties)


class Agreement:
    """Mediator of the negotiated terms between one provider and this requestor."""

    def __init__(self, *, api: MarketApi, agreement_id: str) -> None:
        self._api = api
        self._id = agreement_id

    def __repr__(self) -> str:
        return f"Agreement({self._id!r})"

    @property
    def id(self) -> str:
        return self._id

    def details(self) -> AgreementDetails:
        return AgreementDetails(self._api.get_agreement(self._id))

    def confirm(self) -> None:
        """Confirm the agreement and wait for the provider's approval.

        Raises:
            ApprovalTimeout: approval did not arrive within the client-side bound.
            AgreementConfirmationFailed: the confirm call or the wait was refused.
        """

        try:
            self._api.confirm_agreement(self._id)
        except (ApiError, requests.RequestException) as e:
            logger.debug("Confirm agreement failed", extra={"agreement_id": self._id})
            raise AgreementConfirmationFailed(self._id, str(e)) from e

        try:
            self._api.wait_for_approval(
                self._id,
                timeout=APPROVAL_WAIT_SECONDS,
                client_timeout=APPROVAL_CLIENT_TIMEOUT_SECONDS,
            )
        except requests.Timeout as e:
            logger.debug("Client-side approval timeout", extra={"agreement_id": self._id})
            raise ApprovalTimeout(self._id) from e
        except (ApiError, requests.RequestException) as e:
            logger.debug("Wait for approval failed", extra={"agreement_id": self._id})
            raise AgreementConfirmationFailed(self._id, str(e)) from e

    def terminate(self, reason: Mapping[str, str]) -> bool:
        """Terminate the agreement. Returns False if it was already gone (410)."""

        resp = self._api.terminate_agreement(self._id, reason=reason)
        if resp.status_code == 410:
            message: object = None
            try:
                body = resp.json()
                if isinstance(body, dict):
                    message = body.get("message")
            except ValueError:
                pass
            logger.debug(
                "terminateAgreement returned 410",
                extra={"agreement_id": self._id, "server_message": message},
            )
            return False
        logger.info("terminateAgreement returned successfully", extra={"agreement_id": self._id})
        return True


class OfferProposal:
    """A provider offer received on a demand subscription."""

    def __init__(self, *, subscription: Subscription, data: ProposalData) -> None:
        self._subscription = subscription
        self._data = data

    def __repr__(self) -> str:
        return f"OfferProposal({self.id!r}, {self.state!r}, {self.issuer!r})"

    @property
    def issuer(self) -> str:
        return self._data.issuer_id

    @property
    def id(self) -> str:
        return self._data.proposal_id

    @property
    def state(self) -> str:
        return self._data.state

    @property
    def properties(self) -> dict[str, Any]:
        return self._data.properties

    @property
    def is_draft(self) -> bool:
        return self._data.state.lower() == "draft"

    def reject(self, reason: str = "Rejected") -> None:
        self._subscription.api.reject_proposal(
            self._subscription.id, self.id, reason=reason or "Rejected"
        )

    def respond(self, properties: Mapping[str, Any], constraints: str) -> str:
        """Send a counter-proposal; returns the id of the new demand proposal."""

        return self._subscription.api.counter_proposal(
            self._subscription.id, self.id, properties=properties, constraints=constraints
        )

    def create_agreement(self, timeout: timedelta = DEFAULT_AGREEMENT_VALIDITY) -> Agreement:
        """Create an agreement from this proposal, valid for `timeout`."""

        valid_to = datetime.now(tz=UTC) + timeout
        api = self._subscription.api
        try:
            agreement_id = api.create_agreement(proposal_id=self.id, valid_to=valid_to)
        except (ApiError, requests.RequestException) as e:
            raise AgreementCreationFailed(self.id, str(e)) from e
        return Agreement(api=api, agreement_id=agreement_id)


class Subscription:
    """An open demand subscription on the market."""

    def __init__(self, *, api: MarketApi, subscription_id: str) -> None:
        self.api = api
        self._id = subscription_id
        self._open = True
        self._deleted = False

    @property
    def id(self) -> str:
        return self._id

    def __enter__(self) -> Subscription:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.delete()

    def close(self) -> None:
        self._open = False

    def delete(self) -> None:
        self._open = False
        if not self._deleted:
            self.api.unsubscribe_demand(self._id)
            self._deleted = True

    def events(self, cancel: threading.Event | None = None) -> Iterator[OfferProposal]:
        """Yield offer proposals until the subscription is closed or `cancel` fires."""

        cancel = cancel or threading.Event()
        while self._open and not cancel.is_set():
            try:
                events = self.api.collect_offers(self._id)
            except (ApiError, requests.RequestException):
                logger.debug(
                    "Collecting offers failed, retrying",
                    extra={"subscription_id": self._id},
                    exc_info=True,
                )
                cancel.wait(COLLECT_RETRY_SECONDS)
                continue

            for event in events:
                if event.get("eventType") != "ProposalEvent" or "proposal" not in event:
                    logger.debug(
                        "Skipping market event",
                        extra={"subscription_id": self._id, "event_type": event.get("eventType")},
                    )
                    continue
                data = ProposalData.model_validate(event["proposal"])
                yield OfferProposal(subscription=self, data=data)


class Market:
    def __init__(self, api: MarketApi) -> None:
        self._api = api

    def subscribe(self, properties: Mapping[str, Any], constraints: str) -> Subscription:
        subscription_id = self._api.subscribe_demand(
            properties=properties, constraints=constraints
        )
        logger.info("Demand subscribed", extra={"subscription_id": subscription_id})
        return Subscription(api=self._api, subscription_id=subscription_id)
