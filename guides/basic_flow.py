"""Define a flow for a tenant and run it in-process."""

import asyncio

from tenantflow import FlowService, InMemoryFlowRepository, StepExecutor


async def main():
    repository = InMemoryFlowRepository()
    executor = StepExecutor()

    async def send_email(step, context):
        print(f"📧 Sending welcome email to {context['email']}")
        return {"delivered": True}

    executor.register_action("send_email", send_email)
    executor.register_condition("is_vip", lambda ctx: ctx.get("plan") == "enterprise")

    service = FlowService(repository, repository, executor=executor)
    flow_id = await service.create_flow(
        "acme",
        "onboarding",
        "Welcome new sign-ups",
        [
            {"id": "signup", "type": "trigger", "config": {"triggerType": "signup"}, "nextSteps": ["pause"]},
            {"id": "pause", "type": "delay", "config": {"delayDuration": 500}, "nextSteps": ["welcome"]},
            {"id": "welcome", "type": "action", "config": {"actionType": "send_email"}, "nextSteps": ["vip"]},
            {"id": "vip", "type": "condition", "config": {"condition": "is_vip"}},
        ],
    )
    print(f"✅ Flow created: {flow_id}")

    execution = await service.execute_flow(
        flow_id, "acme", {"email": "ada@acme.test", "plan": "enterprise"}
    )
    print(f"✅ Execution {execution.id}: {execution.status} in {execution.execution_time} ms")
    print(f"   VIP: {execution.context['conditionMet']}")


if __name__ == "__main__":
    asyncio.run(main())
