"""
Serial SciPy Newton backend.

Tests:
1. Full Newton (jtype 4) converges for p = 2 and p = 3
2. Picard and star Newton still drive the residual down for p != 2 (inexact Newton)
3. Finite-difference (newton_krylov) path converges without the analytic Jacobian
   and reports outer Newton iterations, not residual evaluations
4. The context reuses one preallocated matrix across Newton steps
5. Backend dispatch aliases
"""

from __future__ import annotations

import numpy as np
import pytest

from core.types import CaseConfig, CaseGrid, CaseJacobian, CaseNonlinear, CaseProblem
from solvers.newton_scipy import solve_nonlinear_scipy
from solvers.nonlinear_context import build_nonlinear_context
from solvers.solver_nonlinear import normalize_backend, solve_nonlinear


def _cfg(mx=8, my=8, lam=6.0, p=2.0, epsilon=1.0e-5, jtype=4, use_analytic=True, max_iter=50) -> CaseConfig:
    return CaseConfig(
        grid=CaseGrid(mx=mx, my=my),
        problem=CaseProblem(lam=lam, p=p, epsilon=epsilon),
        jacobian=CaseJacobian(jtype=jtype, use_analytic=use_analytic),
        nonlinear=CaseNonlinear(backend="scipy", max_iter=max_iter, f_rtol=1.0e-10, f_atol=1.0e-10),
    )


@pytest.mark.parametrize("p", [2.0, 3.0])
def test_full_newton_converges(p):
    ctx, u0 = build_nonlinear_context(_cfg(p=p, lam=2.0))
    res = solve_nonlinear_scipy(ctx, u0)

    assert res.diag.converged, res.diag.reason
    assert res.diag.reason.startswith("CONVERGED")
    assert res.diag.res_norm_2 < 1e-8
    assert res.u.shape == (8, 8)
    assert res.diag.history_res_2[0] > res.diag.history_res_2[-1]
    assert res.diag.n_iter == len(res.diag.history_res_2) - 1
    assert res.diag.n_iter < 30


def test_linear_p_newton_is_quadratic():
    ctx, u0 = build_nonlinear_context(_cfg(p=2.0, lam=6.0, jtype=4))
    res = solve_nonlinear_scipy(ctx, u0)

    assert res.diag.converged
    h = res.diag.history_res_2
    # last steps shrink much faster than linearly
    assert h[-1] < 1e-3 * h[-2] or h[-1] < 1e-12


@pytest.mark.parametrize("jtype", [2, 3])
def test_reduced_jacobians_reduce_residual(jtype):
    ctx, u0 = build_nonlinear_context(_cfg(p=3.0, lam=1.0, jtype=jtype, max_iter=8))
    res = solve_nonlinear_scipy(ctx, u0)

    assert res.diag.history_res_2[-1] < res.diag.history_res_2[0]
    assert res.diag.method == f"newton_jtype{jtype}"


def test_finite_difference_path():
    ctx, u0 = build_nonlinear_context(_cfg(mx=6, my=6, lam=3.0, use_analytic=False))
    res = solve_nonlinear_scipy(ctx, u0)

    assert res.diag.converged, res.diag.reason
    assert res.diag.method.startswith("newton_krylov")
    assert res.diag.res_norm_2 < 1e-6
    assert ctx.jac is None

    ref_ctx, ref_u0 = build_nonlinear_context(_cfg(mx=6, my=6, lam=3.0))
    ref = solve_nonlinear_scipy(ref_ctx, ref_u0)
    np.testing.assert_allclose(res.u, ref.u, atol=1e-6)


def test_finite_difference_iteration_count():
    ctx, u0 = build_nonlinear_context(_cfg(mx=6, my=6, lam=3.0, use_analytic=False))
    res = solve_nonlinear_scipy(ctx, u0)

    ref_ctx, ref_u0 = build_nonlinear_context(_cfg(mx=6, my=6, lam=3.0))
    ref = solve_nonlinear_scipy(ref_ctx, ref_u0)

    assert res.diag.converged, res.diag.reason
    assert 1 <= res.diag.n_iter <= 3 * ref.diag.n_iter
    assert res.diag.n_iter == len(res.diag.history_res_2) - 1
    assert res.diag.history_res_2[-1] < 1e-6 < res.diag.history_res_2[0]
    assert res.diag.extra["n_func_eval"] > res.diag.n_iter + 1
    assert f"Number of Newton iterations = {res.diag.n_iter}" in res.diag.summary()


def test_context_reuses_locked_matrix():
    ctx, u0 = build_nonlinear_context(_cfg(p=3.0, lam=2.0))
    res = solve_nonlinear_scipy(ctx, u0)

    assert ctx.jac is not None
    assert ctx.jac.locked
    assert ctx.jac.n_assemblies == ctx.meta["n_jac_eval"] == res.diag.extra["n_jac_eval"]
    assert res.diag.extra["n_func_eval"] >= res.diag.n_iter + 1


def test_backend_dispatch():
    assert normalize_backend("SNES") == "petsc"
    assert normalize_backend(" newton ") == "scipy"

    cfg = _cfg(mx=5, my=5, lam=1.0)
    res = solve_nonlinear(cfg)
    assert res.diag.converged

    cfg.nonlinear.backend = "trilinos"
    with pytest.raises(ValueError, match="Unknown nonlinear backend"):
        solve_nonlinear(cfg)
