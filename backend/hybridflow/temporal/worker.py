import asyncio

from temporalio.client import Client
from temporalio.worker import Worker

from .activities import advance_execution_activity, resume_due_activity
from ..config import TASK_QUEUE, TEMPORAL_ADDRESS
from ..logging_config import get_engine_logger, get_worker_logger
from .workflows import ExecutionAdvanceWorkflow, TimedResumeWorkflow


async def main() -> None:
    logger = get_worker_logger()
    get_engine_logger()
    client = await Client.connect(TEMPORAL_ADDRESS)
    worker = Worker(
        client,
        task_queue=TASK_QUEUE,
        workflows=[ExecutionAdvanceWorkflow, TimedResumeWorkflow],
        activities=[advance_execution_activity, resume_due_activity],
    )
    logger.info(f"Worker listening on {TASK_QUEUE} ({TEMPORAL_ADDRESS})")
    await worker.run()


if __name__ == "__main__":
    asyncio.run(main())
