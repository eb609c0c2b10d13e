"""Unit tests for the market and activity REST bindings (mocked session)."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from unittest.mock import Mock

import pytest
import requests

from golem_requestor.errors import (
    AgreementConfirmationFailed,
    AgreementCreationFailed,
    ApiError,
    ApprovalTimeout,
    PollTimeout,
)
from golem_requestor.execution import PollingBatch, StreamingBatch
from golem_requestor.props import NodeInfo
from golem_requestor.rest import Activity, ActivityApi, Agreement, Market, MarketApi
from golem_requestor.rest.market import OfferProposal, ProposalData, Subscription

BASE = "http://127.0.0.1:7465/market-api/v1"


@pytest.fixture
def market_api(session: Mock) -> MarketApi:
    return MarketApi(base_url=BASE + "/", app_key="secret", session=session)


@pytest.fixture
def activity_api(session: Mock) -> ActivityApi:
    return ActivityApi(
        base_url="http://127.0.0.1:7465/activity-api/v1", app_key="secret", session=session
    )


def test_client_sets_auth_header_and_requires_key(session: Mock, market_api: MarketApi) -> None:
    assert session.headers["Authorization"] == "Bearer secret"
    assert market_api.base_url == BASE

    with pytest.raises(ValueError):
        MarketApi(base_url=BASE, app_key="", session=session)


def test_error_status_raises_api_error(
    session: Mock, market_api: MarketApi, make_response: Callable[..., Mock]
) -> None:
    session.request.return_value = make_response(500, {"message": "boom"})

    with pytest.raises(ApiError) as exc_info:
        market_api.confirm_agreement("agr-1")

    assert exc_info.value.status_code == 500
    method, url = session.request.call_args.args
    assert (method, url) == ("POST", f"{BASE}/agreements/agr-1/confirm")


def test_subscribe_demand_posts_properties(
    session: Mock, market_api: MarketApi, make_response: Callable[..., Mock]
) -> None:
    session.request.return_value = make_response(201, "sub-1")

    subscription = Market(market_api).subscribe({"golem.node.debug.subnet": "public"}, "()")

    assert subscription.id == "sub-1"
    assert session.request.call_args.kwargs["json"] == {
        "properties": {"golem.node.debug.subnet": "public"},
        "constraints": "()",
    }


def test_subscription_yields_only_proposal_events(
    session: Mock, market_api: MarketApi, make_response: Callable[..., Mock]
) -> None:
    subscription = Subscription(api=market_api, subscription_id="sub-1")
    session.request.return_value = make_response(
        200,
        [
            {"eventType": "ProposalRejectedEvent", "proposalId": "x"},
            {
                "eventType": "ProposalEvent",
                "proposal": {
                    "proposalId": "prop-1",
                    "issuerId": "0xprovider",
                    "state": "Draft",
                    "properties": {"golem.node.id.name": "node-a"},
                    "constraints": "()",
                },
            },
        ],
    )

    proposal = next(subscription.events())

    assert proposal.id == "prop-1"
    assert proposal.issuer == "0xprovider"
    assert proposal.is_draft
    _, kwargs = session.request.call_args
    assert kwargs["params"] == {"timeout": 10, "maxEvents": 10}


def test_subscription_stops_when_cancelled(market_api: MarketApi, session: Mock) -> None:
    subscription = Subscription(api=market_api, subscription_id="sub-1")
    cancel = threading.Event()
    cancel.set()

    assert list(subscription.events(cancel)) == []
    session.request.assert_not_called()


def test_subscription_delete_is_idempotent(
    session: Mock, market_api: MarketApi, make_response: Callable[..., Mock]
) -> None:
    session.request.return_value = make_response(204)

    with Subscription(api=market_api, subscription_id="sub-1") as subscription:
        pass
    subscription.delete()

    session.request.assert_called_once()
    assert session.request.call_args.args == ("DELETE", f"{BASE}/demands/sub-1")


def _proposal(market_api: MarketApi) -> OfferProposal:
    data = ProposalData.model_validate(
        {"proposalId": "prop-1", "issuerId": "0xprovider", "state": "Draft"}
    )
    return OfferProposal(
        subscription=Subscription(api=market_api, subscription_id="sub-1"), data=data
    )


def test_create_agreement_sends_validity(
    session: Mock, market_api: MarketApi, make_response: Callable[..., Mock]
) -> None:
    session.request.return_value = make_response(201, "agr-1")
    before = datetime.now(tz=UTC)

    agreement = _proposal(market_api).create_agreement()

    assert agreement.id == "agr-1"
    body = session.request.call_args.kwargs["json"]
    assert body["proposalId"] == "prop-1"
    assert datetime.fromisoformat(body["validTo"]) > before


def test_create_agreement_failure_is_wrapped(session: Mock, market_api: MarketApi) -> None:
    session.request.side_effect = requests.ConnectionError("refused")

    with pytest.raises(AgreementCreationFailed):
        _proposal(market_api).create_agreement()


def test_agreement_details_expose_both_views(
    session: Mock, market_api: MarketApi, make_response: Callable[..., Mock]
) -> None:
    session.request.return_value = make_response(
        200,
        {
            "agreementId": "agr-1",
            "demand": {"properties": {"golem.srv.caps.multi-activity": True}},
            "offer": {"properties": {"golem.node.id.name": "node-a"}},
        },
    )

    details = Agreement(api=market_api, agreement_id="agr-1").details()

    assert details.provider_view.extract(NodeInfo) == NodeInfo(name="node-a")
    assert details.requester_view.properties == {"golem.srv.caps.multi-activity": True}


def test_confirm_waits_for_approval(
    session: Mock, market_api: MarketApi, make_response: Callable[..., Mock]
) -> None:
    session.request.side_effect = [make_response(204), make_response(200, "Approved")]

    Agreement(api=market_api, agreement_id="agr-1").confirm()

    wait_call = session.request.call_args_list[1]
    assert wait_call.args == ("POST", f"{BASE}/agreements/agr-1/wait")
    assert wait_call.kwargs["params"] == {"timeout": 15}
    assert wait_call.kwargs["timeout"] == 16.0


def test_confirm_maps_client_timeout(
    session: Mock, market_api: MarketApi, make_response: Callable[..., Mock]
) -> None:
    session.request.side_effect = [make_response(204), requests.ReadTimeout("slow")]

    with pytest.raises(ApprovalTimeout):
        Agreement(api=market_api, agreement_id="agr-1").confirm()


def test_confirm_rejection_is_wrapped(
    session: Mock, market_api: MarketApi, make_response: Callable[..., Mock]
) -> None:
    session.request.return_value = make_response(409, {"message": "already confirmed"})

    with pytest.raises(AgreementConfirmationFailed):
        Agreement(api=market_api, agreement_id="agr-1").confirm()


@pytest.mark.parametrize(("status_code", "expected"), [(204, True), (410, False)])
def test_terminate_tolerates_gone(
    session: Mock,
    market_api: MarketApi,
    make_response: Callable[..., Mock],
    status_code: int,
    expected: bool,
) -> None:
    session.request.return_value = make_response(status_code, {"message": "expired"})
    reason = {"message": "Work cancelled", "golem.requestor.code": "Cancelled"}

    assert Agreement(api=market_api, agreement_id="agr-1").terminate(reason) is expected
    assert session.request.call_args.kwargs["json"] == reason


def test_exec_posts_script_as_text(
    session: Mock, activity_api: ActivityApi, make_response: Callable[..., Mock]
) -> None:
    session.request.return_value = make_response(200, "batch-1")
    script = [{"deploy": {}}, {"start": {}}]

    batch = Activity(api=activity_api, activity_id="act-1").send(script)

    assert isinstance(batch, PollingBatch)
    assert batch.id == "batch-1"
    assert json.loads(session.request.call_args.kwargs["json"]["text"]) == script


def test_send_streaming_uses_event_stream_batch(
    session: Mock, activity_api: ActivityApi, make_response: Callable[..., Mock]
) -> None:
    session.request.return_value = make_response(200, {"batchId": "batch-2"})

    batch = Activity(api=activity_api, activity_id="act-1").send([{"deploy": {}}], stream=True)

    assert isinstance(batch, StreamingBatch)
    assert batch.id == "batch-2"


def test_batch_results_are_parsed(
    session: Mock, activity_api: ActivityApi, make_response: Callable[..., Mock]
) -> None:
    session.request.return_value = make_response(
        200, [{"index": 0, "result": "Ok", "isBatchFinished": True, "eventDate": "x"}]
    )

    (result,) = activity_api.get_exec_batch_results("act-1", "batch-1", timeout=5.0, max_count=1)

    assert result.is_batch_finished
    kwargs = session.request.call_args.kwargs
    assert kwargs["params"] == {"timeout": 5.0, "maxCount": 1}
    assert kwargs["timeout"] == 6.0


@pytest.mark.parametrize("failure", ["status", "transport"])
def test_batch_results_poll_timeout(
    session: Mock, activity_api: ActivityApi, make_response: Callable[..., Mock], failure: str
) -> None:
    if failure == "status":
        session.request.return_value = make_response(408)
    else:
        session.request.side_effect = requests.ReadTimeout("no data")

    with pytest.raises(PollTimeout):
        activity_api.get_exec_batch_results("act-1", "batch-1", timeout=5.0)


def test_activity_context_manager_destroys_and_ignores_errors(
    session: Mock, activity_api: ActivityApi, make_response: Callable[..., Mock]
) -> None:
    session.request.side_effect = [
        make_response(201, {"activityId": "act-1"}),
        make_response(500, {"message": "already gone"}),
    ]

    with Activity.create(activity_api, "agr-1") as activity:
        assert activity.id == "act-1"
        assert activity.agreement_id == "agr-1"

    assert session.request.call_args.args == (
        "DELETE",
        "http://127.0.0.1:7465/activity-api/v1/activity/act-1",
    )
