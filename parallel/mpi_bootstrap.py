"""
Import-order and argv handling for mpi4py / petsc4py.

mpi4py must initialize MPI before petsc4py, and petsc4py.init() only sees the
argv it is handed on the first call. The driver consumes its own options and
records the remainder here; PETSc then reads them as -snes_* / -ksp_* / -pc_*.
"""

from __future__ import annotations

import os
import sys
from typing import Optional, Sequence

_MPI_READY = False
_PETSC_READY = False
_PETSC_ARGV: Optional[list[str]] = None


def set_petsc_argv(argv: Sequence[str]) -> None:
    """Options for the PETSc database (without program name); used on first init only."""
    global _PETSC_ARGV
    _PETSC_ARGV = [str(a) for a in argv]


def petsc_argv() -> list[str]:
    """argv that petsc4py.init() receives: recorded options, none under pytest, else sys.argv."""
    if _PETSC_ARGV is not None:
        return [sys.argv[0] if sys.argv else "pbratu2d", *_PETSC_ARGV]
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return []
    return list(sys.argv)


def bootstrap_mpi() -> None:
    """
    Ensure mpi4py initializes before petsc4py (no-op without mpi4py).
    """
    global _MPI_READY
    if _MPI_READY:
        return
    _MPI_READY = True

    try:
        from mpi4py import MPI  # noqa: F401
    except ImportError:
        return


def bootstrap_mpi_before_petsc() -> None:
    """
    Initialize MPI, then petsc4py with petsc_argv(); raises ImportError without petsc4py.
    """
    global _PETSC_READY
    bootstrap_mpi()
    if _PETSC_READY:
        return

    import petsc4py

    _PETSC_READY = True
    try:
        petsc4py.init(petsc_argv())
    except Exception:
        # PETSc was already initialized by an earlier `from petsc4py import PETSc`.
        pass
