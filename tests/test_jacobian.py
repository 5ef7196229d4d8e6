"""
Local Jacobian assembly against the residual.

Tests:
1. jtype 4 matches a central-difference Jacobian for p in {2, 1.5, 3, 4}
2. jtypes 1-3 match it for p = 2, where they are exact
3. jtype 2 reproduces the residual as a frozen-coefficient operator
4. jtype 3 agrees with jtype 4 on the 5-point positions; they differ only on the corners
5. jtype 1 ignores p
6. Boundary rows are identity rows; the matrix is assembled and locked afterwards
7. Unsupported jtype fails before any entry is written
8. Reassembly into a locked matrix reuses the pattern
9. Switching jtype on one BOX matrix leaves no corner entries from the previous assembly
"""

from __future__ import annotations

import numpy as np
import pytest

from assembly.jacobian_local import JACOBIAN_STRATEGIES, form_jacobian_local
from assembly.residual_local import form_function_local
from assembly.stencil_matrix import PatternMatrix
from core.grid import GhostedArray, boundary_mask, natural_index, serial_local_info
from core.types import JacobianType, PBratuParams, StencilType, UnsupportedJacobianTypeError

MX, MY = 6, 5


def _field(mx: int = MX, my: int = MY, seed: int = 11) -> np.ndarray:
    rng = np.random.default_rng(seed)
    ii = np.linspace(-1.0, 1.0, mx)[:, None]
    jj = np.linspace(-1.0, 1.0, my)[None, :]
    u = (1.0 - ii * ii) * (1.0 - jj * jj) + 0.3 * rng.uniform(0.1, 1.0, size=(mx, my))
    u[0, :] = u[-1, :] = 0.0
    u[:, 0] = u[:, -1] = 0.0
    return u


def _to_flat(u: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(u.T).ravel()


def _to_grid(v: np.ndarray, mx: int, my: int) -> np.ndarray:
    return v.reshape((my, mx)).T


def _residual_flat(v: np.ndarray, mx: int, my: int, params: PBratuParams) -> np.ndarray:
    info = serial_local_info(mx, my)
    x = GhostedArray.from_local_info(info, _to_grid(v, mx, my))
    return _to_flat(form_function_local(info, x, params))


def _assembled(u: np.ndarray, params: PBratuParams, stencil: StencilType = StencilType.BOX) -> PatternMatrix:
    info = serial_local_info(*u.shape)
    B = PatternMatrix(info.mx, info.my, stencil)
    form_jacobian_local(info, GhostedArray.from_local_info(info, u), B, params)
    return B


def _fd_jacobian(u: np.ndarray, params: PBratuParams, h: float = 1.0e-7) -> np.ndarray:
    mx, my = u.shape
    v0 = _to_flat(u)
    n = v0.size
    J = np.zeros((n, n))
    for k in range(n):
        vp = v0.copy()
        vm = v0.copy()
        vp[k] += h
        vm[k] -= h
        J[:, k] = (_residual_flat(vp, mx, my, params) - _residual_flat(vm, mx, my, params)) / (2.0 * h)
    return J


@pytest.mark.parametrize("p", [2.0, 1.5, 3.0, 4.0])
def test_full_newton_matches_finite_differences(p):
    u = _field()
    params = PBratuParams(lam=5.0, p=p, epsilon=0.1, jtype=4)

    J = _assembled(u, params).to_dense()
    J_fd = _fd_jacobian(u, params)

    np.testing.assert_allclose(J, J_fd, rtol=1e-4, atol=1e-5)


@pytest.mark.parametrize("jtype", [1, 2, 3])
def test_reduced_jacobians_exact_for_linear_case(jtype):
    u = _field(seed=5)
    params = PBratuParams(lam=5.0, p=2.0, epsilon=1.0e-5, jtype=jtype)

    J = _assembled(u, params).to_dense()
    J_fd = _fd_jacobian(u, params)

    np.testing.assert_allclose(J, J_fd, rtol=1e-4, atol=1e-5)


@pytest.mark.parametrize("p", [1.5, 3.0])
def test_picard_is_frozen_coefficient_operator(p):
    u = _field(seed=2)
    params = PBratuParams(lam=4.0, p=p, epsilon=1.0e-2, jtype=2)
    info = serial_local_info(*u.shape)
    sc = info.hx * info.hy * params.lam

    J2 = _assembled(u, params).to_csr()
    v = _to_flat(u)
    F = _residual_flat(v, *u.shape, params)
    interior = ~_to_flat(boundary_mask(info))

    # diagonal carries -sc*exp(u); add it back and subtract the reaction itself
    recon = J2 @ v + sc * np.exp(v) * v - sc * np.exp(v)
    np.testing.assert_allclose(recon[interior], F[interior], rtol=1e-10, atol=1e-12)


@pytest.mark.parametrize("p", [1.5, 3.0, 4.0])
def test_star_newton_matches_full_newton_on_axis_entries(p):
    u = _field(seed=9)
    info = serial_local_info(*u.shape)
    J3 = _assembled(u, PBratuParams(lam=3.0, p=p, epsilon=1.0e-2, jtype=3)).to_dense()
    J4 = _assembled(u, PBratuParams(lam=3.0, p=p, epsilon=1.0e-2, jtype=4)).to_dense()

    diff = J4 - J3
    for j in range(1, info.my - 1):
        for i in range(1, info.mx - 1):
            row = natural_index(info, i, j)
            for di, dj in ((0, -1), (-1, 0), (0, 0), (1, 0), (0, 1)):
                assert diff[row, natural_index(info, i + di, j + dj)] == pytest.approx(0.0, abs=1e-12)
    corners = [
        diff[natural_index(info, i, j), natural_index(info, i + di, j + dj)]
        for j in range(1, info.my - 1)
        for i in range(1, info.mx - 1)
        for di, dj in ((-1, -1), (1, -1), (-1, 1), (1, 1))
    ]
    assert np.max(np.abs(corners)) > 0.0


def test_plain_jacobian_ignores_p():
    u = _field(seed=4)
    J_a = _assembled(u, PBratuParams(lam=2.0, p=2.0, jtype=1)).to_dense()
    J_b = _assembled(u, PBratuParams(lam=2.0, p=3.5, epsilon=0.3, jtype=1)).to_dense()
    np.testing.assert_array_equal(J_a, J_b)


@pytest.mark.parametrize("jtype", [1, 2, 3, 4])
def test_boundary_rows_are_identity(jtype):
    u = _field()
    info = serial_local_info(*u.shape)
    B = _assembled(u, PBratuParams(lam=1.0, p=3.0, epsilon=1.0e-2, jtype=jtype))
    J = B.to_dense()

    assert B.assembled
    assert B.locked
    for j in range(info.my):
        for i in range(info.mx):
            if not info.is_boundary(i, j):
                continue
            row = natural_index(info, i, j)
            expected = np.zeros(info.mx * info.my)
            expected[row] = 1.0
            np.testing.assert_array_equal(J[row], expected)


@pytest.mark.parametrize("jtype", [0, 5, -1, "newton", 2.5])
def test_unsupported_jtype(jtype):
    u = _field()
    info = serial_local_info(*u.shape)
    B = PatternMatrix(info.mx, info.my, StencilType.BOX)
    params = PBratuParams(jtype=jtype)

    with pytest.raises(UnsupportedJacobianTypeError, match="not implemented"):
        form_jacobian_local(info, GhostedArray.from_local_info(info, u), B, params)
    assert B.n_assemblies == 0
    assert not B.assembled


def test_reassembly_into_locked_matrix():
    u = _field()
    info = serial_local_info(*u.shape)
    params = PBratuParams(lam=2.0, p=1.5, epsilon=1.0e-2, jtype=4)
    B = PatternMatrix(info.mx, info.my, StencilType.BOX)

    form_jacobian_local(info, GhostedArray.from_local_info(info, u), B, params)
    nnz_first = B.nnz()
    J_first = B.to_dense()
    form_jacobian_local(info, GhostedArray.from_local_info(info, 0.5 * u), B, params)

    assert B.n_assemblies == 2
    assert B.nnz() == nnz_first
    assert not np.allclose(B.to_dense(), J_first)


@pytest.mark.parametrize("p", [1.5, 3.0])
def test_switching_jtype_on_one_matrix_leaves_no_stale_entries(p):
    u = _field()
    info = serial_local_info(*u.shape)
    x = GhostedArray.from_local_info(info, u)
    B = PatternMatrix(info.mx, info.my, StencilType.BOX)

    form_jacobian_local(info, x, B, PBratuParams(lam=2.0, p=p, epsilon=1.0e-2, jtype=4))
    form_jacobian_local(info, x, B, PBratuParams(lam=2.0, p=p, epsilon=1.0e-2, jtype=3))

    fresh = _assembled(u, PBratuParams(lam=2.0, p=p, epsilon=1.0e-2, jtype=3))
    np.testing.assert_array_equal(B.to_dense(), fresh.to_dense())


def test_every_jacobian_type_has_a_strategy():
    assert set(JACOBIAN_STRATEGIES) == set(JacobianType)
