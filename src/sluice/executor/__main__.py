import logging.config

import fire

from sluice.config import logging_config
from sluice.executor.worker import Worker


def main(address: str, cores: int = 1, worker_id: str | None = None, claim_interval_sec: float = 1.0) -> None:
    logging.config.dictConfig(logging_config)
    Worker(address, worker_id=worker_id, cores=cores, claim_interval_sec=claim_interval_sec).run()


if __name__ == "__main__":
    fire.Fire(main)
