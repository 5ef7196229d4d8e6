"""
Local residual evaluator.

Tests:
1. Boundary rows return u for arbitrary interior data
2. Zero field on a 4x4 grid: 0 on the boundary, -hx*hy*lambda inside
3. p=2 matches a hand-written 5-point stencil
4. A buffer passed in is overwritten in place; a wrong shape is rejected
5. Partitioned evaluation (ghosted sub-blocks) reproduces the serial residual
"""

from __future__ import annotations

import numpy as np
import pytest

from assembly.residual_local import form_function_local
from core.grid import GhostedArray, boundary_mask, serial_local_info
from core.types import LocalInfo, PBratuParams


def _random_field(mx: int, my: int, seed: int = 1) -> np.ndarray:
    rng = np.random.default_rng(seed)
    u = rng.uniform(0.1, 1.0, size=(mx, my))
    return u


def _residual(u: np.ndarray, params: PBratuParams) -> np.ndarray:
    info = serial_local_info(*u.shape)
    return form_function_local(info, GhostedArray.from_local_info(info, u), params)


@pytest.mark.parametrize("p", [2.0, 1.5, 3.0, 4.0])
def test_boundary_rows_equal_u(p):
    u = _random_field(6, 5)
    info = serial_local_info(6, 5)
    f = _residual(u, PBratuParams(lam=3.0, p=p, epsilon=1.0e-3))
    mask = boundary_mask(info)

    np.testing.assert_array_equal(f[mask], u[mask])


def test_zero_field_on_4x4():
    params = PBratuParams(lam=6.0, p=2.0, epsilon=1.0e-5, jtype=1)
    info = serial_local_info(4, 4)
    f = _residual(np.zeros((4, 4)), params)

    sc = info.hx * info.hy * params.lam
    mask = boundary_mask(info)
    assert np.all(f[mask] == 0.0)
    np.testing.assert_allclose(f[~mask], -sc, rtol=1e-14)


def test_linear_case_matches_five_point_stencil():
    mx, my = 4, 5
    u = _random_field(mx, my, seed=7)
    u[0, :] = u[-1, :] = 0.0
    u[:, 0] = u[:, -1] = 0.0
    params = PBratuParams(lam=2.5, p=2.0, epsilon=1.0e-5)
    info = serial_local_info(mx, my)
    hx, hy = info.hx, info.hy
    sc = hx * hy * params.lam

    f = _residual(u, params)

    for i in range(1, mx - 1):
        for j in range(1, my - 1):
            uxx = (2.0 * u[i, j] - u[i - 1, j] - u[i + 1, j]) * hy / hx
            uyy = (2.0 * u[i, j] - u[i, j - 1] - u[i, j + 1]) * hx / hy
            expected = uxx + uyy - sc * np.exp(u[i, j])
            assert f[i, j] == pytest.approx(expected, rel=1e-12, abs=1e-14)


def test_output_buffer_is_overwritten():
    info = serial_local_info(5, 5)
    u = _random_field(5, 5)
    x = GhostedArray.from_local_info(info, u)
    params = PBratuParams(lam=1.0, p=3.0, epsilon=1.0e-2)

    buf = np.full(info.owned_shape, np.nan)
    out = form_function_local(info, x, params, buf)
    assert out is buf
    assert np.all(np.isfinite(buf))

    with pytest.raises(ValueError, match="residual buffer shape"):
        form_function_local(info, x, params, np.zeros((4, 5)))


@pytest.mark.parametrize("p", [2.0, 1.5, 4.0])
def test_partitioned_evaluation_matches_serial(p):
    mx, my = 7, 6
    u = _random_field(mx, my, seed=3)
    params = PBratuParams(lam=4.0, p=p, epsilon=1.0e-2)
    f_serial = _residual(u, params)

    # 2 x 2 partition with a one-point halo clipped at the physical boundary.
    for xs, xm in ((0, 3), (3, 4)):
        for ys, ym in ((0, 4), (4, 2)):
            gxs, gys = max(xs - 1, 0), max(ys - 1, 0)
            gxe, gye = min(xs + xm + 1, mx), min(ys + ym + 1, my)
            info = LocalInfo(
                mx=mx, my=my, xs=xs, ys=ys, xm=xm, ym=ym,
                gxs=gxs, gys=gys, gxm=gxe - gxs, gym=gye - gys,
            )
            x = GhostedArray.from_local_info(info, u[gxs:gxe, gys:gye])
            f_local = form_function_local(info, x, params)
            np.testing.assert_allclose(f_local, f_serial[xs : xs + xm, ys : ys + ym], rtol=1e-12, atol=1e-12)
