"""
Pytest plugin providing a temporary folder shared by every xdist worker of a session.

The folder holds the state that workers coordinate through: the hive test suite that all
of them report to, and the lock files limiting how many clients run at the same time.
"""

import shutil
import time
from contextlib import contextmanager
from pathlib import Path
from tempfile import gettempdir as get_temp_dir  # noqa: SC200
from typing import Generator, Iterator

import pytest
from filelock import FileLock, Timeout


class ClientSlots:
    """
    A pool of numbered slots guarded by file locks, so that processes sharing the folder
    never hold more slots than there are lock files.
    """

    def __init__(self, folder: Path, count: int, poll_interval: float = 0.5):
        """Initialize the pool; the lock files are created on first use."""
        if count < 1:
            raise ValueError("at least one client slot is required")
        self.folder = folder
        self.count = count
        self.poll_interval = poll_interval

    def lock(self, index: int) -> FileLock:
        """Return the lock guarding a slot."""
        return FileLock(self.folder / f"client_slot_{index}.lock")

    @contextmanager
    def acquire(self, timeout: float | None = None) -> Iterator[int]:
        """Wait for a free slot and hold it for the duration of the block."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            for index in range(self.count):
                lock = self.lock(index)
                try:
                    lock.acquire(timeout=0)
                except Timeout:
                    continue
                try:
                    yield index
                finally:
                    lock.release()
                return
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError(f"no client slot free after {timeout}s")
            time.sleep(self.poll_interval)


@pytest.fixture(scope="session")
def session_temp_folder_name(testrun_uid: str) -> str:  # noqa: SC200
    """
    Name the folder after the xdist run id, which every worker of the session shares.

    `testrun_uid` is provided by pytest-xdist, also when running without workers.
    """
    return f"engine-sim-{testrun_uid}"  # noqa: SC200


@pytest.fixture(scope="session")
def session_temp_folder(
    session_temp_folder_name: str,
) -> Generator[Path, None, None]:
    """
    Create the shared folder, and delete it when the last worker using it is done.

    The number of workers using the folder is kept in the folder itself.
    """
    session_temp_folder = Path(get_temp_dir()) / session_temp_folder_name
    session_temp_folder.mkdir(exist_ok=True)

    folder_users_file = session_temp_folder / "folder_users"
    folder_users_lock = FileLock(session_temp_folder / "folder_users.lock")

    with folder_users_lock:
        folder_users = int(folder_users_file.read_text()) if folder_users_file.exists() else 0
        folder_users_file.write_text(str(folder_users + 1))

    yield session_temp_folder

    with folder_users_lock:
        folder_users = int(folder_users_file.read_text()) - 1
        if folder_users == 0:
            shutil.rmtree(session_temp_folder)
        else:
            folder_users_file.write_text(str(folder_users))

