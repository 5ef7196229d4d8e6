# -*- coding: utf-8 -*-
"""
PETSc SNES nonlinear solver wrapper (serial + MPI) on a 2D DMDA.

- The residual callback scatters the global iterate to a ghosted local vector
  and evaluates assembly.residual_local on the owned block of each rank.
- With cfg.jacobian.use_analytic the Jacobian callback assembles into a matrix
  preallocated from the BOX DMDA (or the STAR one with allocate_star);
  otherwise SNES builds a finite-difference Jacobian (-snes_fd).
- Runtime PETSc options (-snes_*, -ksp_*, -pc_*) apply through setFromOptions.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import numpy as np

from assembly.jacobian_local import form_jacobian_local
from assembly.residual_local import form_function_local
from assembly.stencil_matrix import PetscStencilMatrix
from core.logging_utils import is_root_rank
from core.types import CaseConfig
from physics.initial import build_initial_guess
from solvers.nonlinear_types import NonlinearDiagnostics, NonlinearSolveResult

logger = logging.getLogger(__name__)


def _get_petsc():
    """
    Import petsc4py.PETSc with MPI bootstrap.
    """
    try:
        from parallel.mpi_bootstrap import bootstrap_mpi_before_petsc

        bootstrap_mpi_before_petsc()
        from petsc4py import PETSc
    except Exception as exc:  # pragma: no cover
        raise RuntimeError("petsc4py is required for PETSc SNES backend.") from exc
    return PETSc


def _normalize_options_prefix(prefix: Optional[str]) -> str:
    if not prefix:
        return ""
    p = str(prefix)
    if not p.endswith("_"):
        p += "_"
    return p


def _enable_snes_fd_jacobian(snes, prefix: str) -> None:
    """
    Let SNES approximate the Jacobian by finite differences.

    Priority:
    1) snes.setUseFD(True) if available;
    2) otherwise set the -<prefix>snes_fd option.
    """
    PETSc = _get_petsc()
    if hasattr(snes, "setUseFD"):
        snes.setUseFD(True)
        return
    opts = PETSc.Options(prefix)
    opts["snes_fd"] = "1"


def _converged_reason_name(PETSc, reason: int) -> str:
    table = PETSc.SNES.ConvergedReason
    for name in dir(table):
        if name.startswith("_"):
            continue
        if getattr(table, name) == reason:
            return name
    return str(reason)


def solve_nonlinear_petsc(cfg: CaseConfig, u0: Optional[np.ndarray] = None, comm=None) -> NonlinearSolveResult:
    """
    Solve the p-Bratu problem with PETSc SNES.

    u0, if given, is a full (mx, my) initial guess; each rank copies its owned
    block. Otherwise the bump initial guess is used.
    """
    PETSc = _get_petsc()
    from parallel.dm_manager import (
        build_dm,
        create_jacobian,
        gather_natural,
        get_local_info,
        global_to_ghosted,
        write_owned,
    )

    params = cfg.params()
    mgr = build_dm(cfg.grid.mx, cfg.grid.my, comm=comm, allocate_star=bool(cfg.jacobian.allocate_star))
    info = get_local_info(mgr.dm)
    prefix = _normalize_options_prefix(cfg.petsc.options_prefix)
    root = is_root_rank(mgr.comm)

    ctr: Dict[str, int] = {"n_func_eval": 0, "n_jac_eval": 0}
    history: list[float] = []
    Xl = mgr.dm.createLocalVec()

    def snes_func(snes, Xg, Fg):
        ctr["n_func_eval"] += 1
        x = global_to_ghosted(mgr, Xg, info, Xl)
        write_owned(info, Fg, form_function_local(info, x, params))

    def snes_jac(snes, Xg, J, P):
        ctr["n_jac_eval"] += 1
        x = global_to_ghosted(mgr, Xg, info, Xl)
        form_jacobian_local(info, x, PetscStencilMatrix(P, mgr.stencil), params)
        if J.handle != P.handle:
            J.assemble()

    def snes_monitor(snes, its, fnorm):
        history.append(float(fnorm))
        if root:
            logger.info("%3d SNES Function norm %.12e", its, fnorm)

    snes = PETSc.SNES().create(comm=mgr.comm)
    snes.setOptionsPrefix(prefix)
    snes.setDM(mgr.dm)

    F = mgr.dm.createGlobalVec()
    snes.setFunction(snes_func, F)

    J = None
    if cfg.jacobian.use_analytic:
        J = create_jacobian(mgr)
        snes.setJacobian(snes_jac, J, J)
    else:
        _enable_snes_fd_jacobian(snes, prefix)

    nl = cfg.nonlinear
    snes.setTolerances(rtol=float(nl.f_rtol), atol=float(nl.f_atol), max_it=int(nl.max_iter))
    snes.setMonitor(snes_monitor)
    snes.setFromOptions()

    X = mgr.dm.createGlobalVec()
    if u0 is None:
        x0_owned = build_initial_guess(info)
    else:
        u0 = np.asarray(u0, dtype=np.float64)
        if u0.shape != (info.mx, info.my):
            raise ValueError(f"u0 shape {u0.shape} != grid ({info.mx}, {info.my})")
        x0_owned = u0[info.xs : info.xs + info.xm, info.ys : info.ys + info.ym]
    write_owned(info, X, x0_owned)

    snes.solve(None, X)

    reason = int(snes.getConvergedReason())
    reason_str = _converged_reason_name(PETSc, reason)
    n_iter = int(snes.getIterationNumber())

    snes.computeFunction(X, F)
    res_norm_2 = float(F.norm(PETSc.NormType.NORM_2))
    res_norm_inf = float(F.norm(PETSc.NormType.NORM_INFINITY))

    u_full = gather_natural(mgr, X)
    if u_full is None:
        u_full = np.empty((0, 0), dtype=np.float64)

    extra: Dict[str, Any] = {
        "snes_type": snes.getType(),
        "ksp_type": snes.getKSP().getType(),
        "pc_type": snes.getKSP().getPC().getType(),
        "stencil": mgr.stencil.value,
        "comm_size": int(mgr.comm.getSize()),
        "n_func_eval": int(ctr["n_func_eval"]),
        "n_jac_eval": int(ctr["n_jac_eval"]),
    }
    diag = NonlinearDiagnostics(
        converged=reason > 0,
        method=f"snes_{snes.getType()}",
        n_iter=n_iter,
        res_norm_2=res_norm_2,
        res_norm_inf=res_norm_inf,
        reason=reason_str,
        history_res_2=history,
        extra=extra,
    )

    snes.destroy()
    if J is not None:
        J.destroy()
    return NonlinearSolveResult(u=u_full, diag=diag)
