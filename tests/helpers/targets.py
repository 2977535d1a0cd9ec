"""Process targets for ProcessBackend tests (importable by spawned children)."""

import os
import time

from hotpool.channel import WorkerChannel
from hotpool.protocol import MessageTag


def announce_and_exit(worker_id, conn, code=0):
    """Report ONLINE with the pid, then exit with the given code."""
    channel = WorkerChannel(conn, worker_id)
    channel.announce(MessageTag.ONLINE, pid=os.getpid())
    channel.close()
    raise SystemExit(code)


def sleep_forever(worker_id, conn):
    channel = WorkerChannel(conn, worker_id)
    channel.announce(MessageTag.ONLINE, pid=os.getpid())
    while True:
        time.sleep(1)
