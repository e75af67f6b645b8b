"""Submit executions to a queue and let a worker run them."""

import asyncio

from tenantflow import FlowService, FlowWorker, InMemoryFlowRepository
from tenantflow.transports import InMemoryTransport


async def main():
    repository = InMemoryFlowRepository()
    transport = InMemoryTransport()
    service = FlowService(repository, repository, transport=transport)

    flow_id = await service.create_flow(
        "acme",
        "nightly-report",
        "",
        [
            {"id": "cron", "type": "trigger", "config": {"triggerType": "schedule"}, "nextSteps": ["report"]},
            {"id": "report", "type": "action", "config": {"actionType": "build_report"}},
        ],
    )

    execution_ids = [
        await service.submit_flow(flow_id, "acme", {"day": day}) for day in ("mon", "tue")
    ]
    print(f"📨 Queued executions: {execution_ids}")

    worker = FlowWorker(transport, service)
    await worker.start(lifespan=1)

    for execution in await service.list_executions("acme", flow_id):
        print(f"✅ {execution.id}: {execution.status} ({execution.context['day']})")


if __name__ == "__main__":
    asyncio.run(main())
