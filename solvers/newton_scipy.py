"""
SciPy-based serial Newton solver.

This module only coordinates solver calls; residual and Jacobian assembly are
handled in assembly/. With the analytic Jacobian the linearised systems are
solved with scipy.sparse.linalg.spsolve; without it scipy.optimize.newton_krylov
approximates Jacobian-vector products by finite differences.
"""

from __future__ import annotations

import logging
from typing import List

import numpy as np
from scipy import optimize
from scipy.sparse import linalg as spla

from solvers.nonlinear_context import NonlinearContext
from solvers.nonlinear_types import NonlinearDiagnostics, NonlinearSolveResult

logger = logging.getLogger(__name__)

_MAX_BACKTRACK = 10


def _newton_analytic(ctx: NonlinearContext, u0: np.ndarray):
    nl = ctx.cfg.nonlinear
    max_iter = int(nl.max_iter)
    f_rtol = float(nl.f_rtol)
    f_atol = float(nl.f_atol)

    u = np.asarray(u0, dtype=np.float64).copy()
    F = ctx.residual(u)
    fnorm0 = float(np.linalg.norm(F))
    fnorm = fnorm0
    history: List[float] = [fnorm]
    logger.info("%3d SNES Function norm %.12e", 0, fnorm)

    reason = "DIVERGED_MAX_IT"
    n_iter = 0
    for it in range(1, max_iter + 1):
        if fnorm <= f_atol:
            reason = "CONVERGED_FNORM_ABS"
            break
        if fnorm <= f_rtol * fnorm0:
            reason = "CONVERGED_FNORM_RELATIVE"
            break

        J = ctx.jacobian(u).to_csr()
        du = spla.spsolve(J.tocsc(), -F)
        if not np.all(np.isfinite(du)):
            reason = "DIVERGED_LINEAR_SOLVE"
            break

        # Backtracking on the residual norm (halve until it decreases).
        step = 1.0
        for _ in range(_MAX_BACKTRACK):
            u_trial = u + step * du
            F_trial = ctx.residual(u_trial)
            fnorm_trial = float(np.linalg.norm(F_trial))
            if np.isfinite(fnorm_trial) and fnorm_trial < fnorm:
                break
            step *= 0.5
        else:
            reason = "DIVERGED_LINE_SEARCH"
            break

        u, F, fnorm = u_trial, F_trial, fnorm_trial
        n_iter = it
        history.append(fnorm)
        logger.info("%3d SNES Function norm %.12e (step %.3g)", it, fnorm, step)
    else:
        if fnorm <= f_atol:
            reason = "CONVERGED_FNORM_ABS"
        elif fnorm <= f_rtol * fnorm0:
            reason = "CONVERGED_FNORM_RELATIVE"

    return u, reason, n_iter, history, None


def _newton_krylov_fd(ctx: NonlinearContext, u0: np.ndarray):
    nl = ctx.cfg.nonlinear
    u0 = np.asarray(u0, dtype=np.float64)
    history: List[float] = [float(np.linalg.norm(ctx.residual(u0)))]
    message = None
    logger.info("%3d SNES Function norm %.12e", 0, history[0])

    def _monitor(x: np.ndarray, f: np.ndarray) -> None:
        history.append(float(np.linalg.norm(f)))
        logger.info("%3d SNES Function norm %.12e", len(history) - 1, history[-1])

    try:
        u = optimize.newton_krylov(
            ctx.residual,
            u0,
            method=str(nl.krylov_method),
            maxiter=int(nl.max_iter),
            f_rtol=float(nl.f_rtol),
            f_tol=float(nl.f_atol),
            callback=_monitor,
        )
        reason = "CONVERGED_FNORM_ABS"
    except optimize.NoConvergence as exc:
        u_raw = exc.args[0] if exc.args else u0
        u = np.asarray(u_raw, dtype=np.float64)
        reason = "DIVERGED_MAX_IT"
        message = str(exc.args[1]) if len(exc.args) > 1 else "newton_krylov did not converge"
        logger.warning("newton_krylov did not converge: %s", message)
    return np.asarray(u, dtype=np.float64), reason, len(history) - 1, history, message


def solve_nonlinear_scipy(ctx: NonlinearContext, u0: np.ndarray) -> NonlinearSolveResult:
    """
    Solve F(u) = 0 on a single partition.

    u0 is the flat initial guess in natural ordering; the result holds the
    (mx, my) solution.
    """
    use_analytic = bool(ctx.cfg.jacobian.use_analytic)
    if use_analytic:
        u, reason, n_iter, history, message = _newton_analytic(ctx, u0)
        method = f"newton_jtype{int(ctx.params.jtype)}"
    else:
        u, reason, n_iter, history, message = _newton_krylov_fd(ctx, u0)
        method = f"newton_krylov_{ctx.cfg.nonlinear.krylov_method}"

    res_final = ctx.residual(u)
    diag = NonlinearDiagnostics(
        converged=reason.startswith("CONVERGED"),
        method=method,
        n_iter=n_iter,
        res_norm_2=float(np.linalg.norm(res_final)),
        res_norm_inf=float(np.linalg.norm(res_final, ord=np.inf)),
        reason=reason,
        history_res_2=history,
        message=message,
        extra={
            "n_func_eval": int(ctx.meta.get("n_func_eval", 0)),
            "n_jac_eval": int(ctx.meta.get("n_jac_eval", 0)),
        },
    )
    return NonlinearSolveResult(u=np.array(ctx.to_grid(u)), diag=diag)
