# backend/workers/side_effect_worker.py
import os

from rq import Worker, SimpleWorker

from backend.logging_config import configure_logging
from backend.rq_connection import get_redis, get_side_effect_queue

if __name__ == "__main__":
    configure_logging()
    worker_cls = Worker if os.name != "nt" else SimpleWorker
    worker = worker_cls([get_side_effect_queue()], connection=get_redis())
    worker.work()
