from __future__ import annotations

import logging
import os
import sys
from typing import Optional

LOG_LEVEL_ENV = "PBRATU_LOG_LEVEL"
PETSC_DEBUG_ENV = "PBRATU_PETSC_DEBUG"

_TRUTHY = {"1", "true", "yes", "on"}
_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_FORMAT_MPI = "%(asctime)s %(levelname)s [rank %(mpi_rank)d] [%(name)s] %(message)s"


def _is_truthy(value: Optional[str]) -> bool:
    return value is not None and str(value).strip().lower() in _TRUTHY


def _parse_level(value, default_level: int) -> int:
    """Accept an int, a digit string or a level name; anything else maps to default_level."""
    if isinstance(value, int):
        return value
    text = "" if value is None else str(value).strip().upper()
    if text.isdigit():
        return int(text)
    resolved = logging.getLevelName(text) if text else None
    return resolved if isinstance(resolved, int) else default_level


def _world_rank_size() -> tuple[int, int]:
    """(rank, size) of COMM_WORLD, only consulting MPI layers that are already imported."""
    if "mpi4py.MPI" in sys.modules:
        from mpi4py import MPI

        return int(MPI.COMM_WORLD.Get_rank()), int(MPI.COMM_WORLD.Get_size())
    if "petsc4py.PETSc" in sys.modules:
        from petsc4py import PETSc

        return int(PETSc.COMM_WORLD.getRank()), int(PETSc.COMM_WORLD.getSize())
    return 0, 1


def world_rank() -> int:
    return _world_rank_size()[0]


def is_root_rank(comm=None) -> bool:
    """
    Return True on rank 0 of comm (or COMM_WORLD); True when no MPI layer is loaded.

    Safe before PETSc initialization: nothing is imported that was not imported already.
    """
    if comm is not None:
        if hasattr(comm, "getRank"):
            return int(comm.getRank()) == 0
        if hasattr(comm, "Get_rank"):
            return int(comm.Get_rank()) == 0
    return _world_rank_size()[0] == 0


def get_log_level_from_env(default: str | int = "INFO") -> int:
    """
    Resolve log level from env (PBRATU_LOG_LEVEL, else DEBUG if PBRATU_PETSC_DEBUG is truthy).
    """
    default_level = _parse_level(default, logging.INFO)
    env_level = os.environ.get(LOG_LEVEL_ENV)
    if env_level:
        return _parse_level(env_level, default_level)
    if _is_truthy(os.environ.get(PETSC_DEBUG_ENV)):
        return logging.DEBUG
    return default_level


class _RankFilter(logging.Filter):
    def __init__(self, rank: int) -> None:
        super().__init__()
        self.rank = int(rank)

    def filter(self, record: logging.LogRecord) -> bool:
        record.mpi_rank = self.rank
        return True


def setup_logging(rank: int, *, level: int, quiet_nonroot: bool = True) -> None:
    """
    Configure root logging once; console handlers on non-root ranks only pass warnings.

    Under MPI (size > 1) the rank is stamped into every console line.
    """
    root = logging.getLogger()
    if not root.handlers:
        _, size = _world_rank_size()
        handler = logging.StreamHandler()
        if size > 1:
            handler.addFilter(_RankFilter(rank))
            handler.setFormatter(logging.Formatter(_FORMAT_MPI))
        else:
            handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
    root.setLevel(level)

    console_level = max(level, logging.WARNING) if (quiet_nonroot and rank != 0) else level
    for handler in root.handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(console_level)
