#!/usr/bin/env python3
"""Run one command on the first provider that accepts a demand.

This demonstrates using the requestor components directly:

* load settings from `.env`
* subscribe a demand and buffer the draft proposals it attracts
* negotiate an agreement through the pool and bind a worker to it
* run a command on the provider and print its command events

The task package (e.g. `hash:sha3:<image hash>:<image url>`) is passed as an
argument (not read from `.env`).
"""

from __future__ import annotations

import argparse
import concurrent.futures
import threading
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from golem_requestor import props
from golem_requestor.agreements import AgreementPool
from golem_requestor.config import RequestorSettings
from golem_requestor.events import Event
from golem_requestor.logging import configure_logging
from golem_requestor.props import DemandBuilder, NodeInfo
from golem_requestor.rest.activity import Activity, ActivityApi
from golem_requestor.rest.market import Agreement, Market, MarketApi
from golem_requestor.work import WorkContext, execute_steps


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a command on a provider (example).")
    parser.add_argument("--task-package", required=True, help="Value of golem.srv.comp.task_package")
    parser.add_argument("--subnet", default="public", help="Subnet tag (default: public)")
    parser.add_argument(
        "--wait", type=float, default=30.0, help="Seconds to wait for a proposal (default: 30)"
    )
    parser.add_argument("command", nargs="+", help="Command and arguments to run")
    return parser.parse_args(argv)


def _print_event(event: Event) -> None:
    print(f"event: {event}")


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = RequestorSettings()
    configure_logging(settings.log_level)

    market_api = MarketApi(
        base_url=settings.market_url or "", app_key=settings.app_key, timeout=settings.request_timeout
    )
    activity_api = ActivityApi(
        base_url=settings.activity_url or "",
        app_key=settings.app_key,
        timeout=settings.request_timeout,
    )

    demand = DemandBuilder()
    demand.add(NodeInfo(subnet_tag=args.subnet))
    demand.add(
        props.Activity(expiration=datetime.now(tz=UTC) + timedelta(minutes=30), multi_activity=True)
    )
    demand["golem.srv.comp.task_package"] = args.task_package
    demand.ensure(f"(golem.node.debug.subnet={args.subnet})")

    pool = AgreementPool(emitter=_print_event)
    workers = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="worker")

    def work(agreement: Agreement, node_info: NodeInfo) -> None:
        with Activity.create(activity_api, agreement.id) as activity:
            ctx = WorkContext(f"ctx-{agreement.id[:8]}", node_info, emitter=_print_event)
            ctx.run(args.command[0], *args.command[1:])
            for event in execute_steps(activity, ctx.commit(timedelta(minutes=2))):
                print(f"{ctx.provider_name}: {event}")

    def bind(agreement: Agreement, node_info: NodeInfo) -> concurrent.futures.Future[None]:
        return workers.submit(work, agreement, node_info)

    stop = threading.Event()
    timer = threading.Timer(args.wait, stop.set)
    timer.start()
    try:
        with Market(market_api).subscribe(demand.properties, demand.constraints) as subscription:
            for proposal in subscription.events(stop):
                if proposal.is_draft:
                    pool.add_proposal(1.0, proposal)
                    break
                proposal.respond(demand.properties, demand.constraints)

        if stop.is_set():
            print("No proposal received")
            return 1

        task = pool.use_agreement(bind)
        task.result()
        pool.cycle()
        return 0
    finally:
        timer.cancel()
        pool.terminate_all({"message": "Finished", "golem.requestor.code": "Success"})
        pool.shutdown(timeout=30)
        workers.shutdown()
        market_api.close()
        activity_api.close()


if __name__ == "__main__":
    raise SystemExit(main())
