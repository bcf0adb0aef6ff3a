import multiprocessing, os

wsgi_app = "app:app"
bind = "0.0.0.0:" + os.getenv("PORT", "5000")
workers = int(os.getenv("WEB_CONCURRENCY", str(max(2, multiprocessing.cpu_count()))))
threads = 2
# OpenAI calls are bounded by OPENAI_TIMEOUT, keep headroom above it
timeout = 60
graceful_timeout = 30
keepalive = 5
accesslog = "-"
errorlog = "-"


# The app module is only imported inside workers, so each one opens its own
# MongoClient after the fork.
def post_worker_init(worker):
    from app import data_manager

    try:
        data_manager.ensure_indexes()
    except Exception as e:
        worker.log.error(f"Could not ensure MongoDB indexes: {e}")


def worker_exit(server, worker):
    from app import data_manager

    data_manager.close()
    server.log.info(f"Worker {worker.pid} closed its MongoDB connection")
