"""
Nonlinear solve dispatcher for SciPy/PETSc backends.
"""

from __future__ import annotations

from core.types import CaseConfig
from solvers.nonlinear_types import NonlinearBackend, NonlinearSolveResult

_BACKEND_ALIAS = {
    "petsc": "petsc",
    "snes": "petsc",
    "petsc_snes": "petsc",
    "petsc_serial": "petsc",
    "petsc_mpi": "petsc",
    "scipy": "scipy",
    "newton": "scipy",
}


def normalize_backend(backend) -> str:
    if isinstance(backend, NonlinearBackend):
        backend = backend.value
    backend = str(backend).strip().lower()
    return _BACKEND_ALIAS.get(backend, backend)


def solve_nonlinear(cfg: CaseConfig) -> NonlinearSolveResult:
    """Dispatch to the SciPy or PETSc nonlinear solver based on cfg.nonlinear.backend."""
    backend = normalize_backend(cfg.nonlinear.backend)

    if backend == "scipy":
        from solvers.newton_scipy import solve_nonlinear_scipy
        from solvers.nonlinear_context import build_nonlinear_context

        ctx, u0 = build_nonlinear_context(cfg)
        return solve_nonlinear_scipy(ctx, u0)
    if backend == "petsc":
        from solvers.petsc_snes import solve_nonlinear_petsc

        return solve_nonlinear_petsc(cfg)

    raise ValueError(f"Unknown nonlinear backend: {backend!r}")
