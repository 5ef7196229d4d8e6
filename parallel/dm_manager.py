"""
2D DMDA management: partitioned structured grid, ghost exchange, matrix preallocation.

Two DMDAs with identical sizes and partitioning are kept: a BOX one that owns
vectors and callbacks, and a STAR one used only when a 5-point matrix
preallocation is requested.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from core.grid import GhostedArray
from core.types import LocalInfo, StencilType
from parallel.mpi_bootstrap import bootstrap_mpi_before_petsc

bootstrap_mpi_before_petsc()

from petsc4py import PETSc


@dataclass(slots=True)
class DMManager:
    comm: PETSc.Comm
    dm: PETSc.DM
    dm_star: PETSc.DM
    mx: int
    my: int
    stencil: StencilType


def _create_dmda_2d(comm, mx: int, my: int, stencil: StencilType, sw: int = 1) -> PETSc.DM:
    if mx < 2 or my < 2:
        raise ValueError(f"DMDA requires mx, my >= 2, got mx={mx}, my={my}")
    if comm.getSize() > mx * my:
        raise ValueError(
            f"DMDA setup fails: {mx}x{my} grid < nproc={comm.getSize()} (More processes than data points)."
        )
    stype = PETSc.DMDA.StencilType.STAR if stencil is StencilType.STAR else PETSc.DMDA.StencilType.BOX
    dm = PETSc.DMDA().create(
        dim=2,
        sizes=(mx, my),
        dof=1,
        stencil_width=sw,
        boundary_type=(PETSc.DMDA.BoundaryType.NONE, PETSc.DMDA.BoundaryType.NONE),
        stencil_type=stype,
        comm=comm,
    )
    dm.setUp()
    return dm


def build_dm(mx: int, my: int, comm: Optional[PETSc.Comm] = None, *, allocate_star: bool = False) -> DMManager:
    comm = PETSc.COMM_WORLD if comm is None else comm
    dm = _create_dmda_2d(comm, int(mx), int(my), StencilType.BOX)
    dm_star = _create_dmda_2d(comm, int(mx), int(my), StencilType.STAR)
    return DMManager(
        comm=comm,
        dm=dm,
        dm_star=dm_star,
        mx=int(mx),
        my=int(my),
        stencil=StencilType.STAR if allocate_star else StencilType.BOX,
    )


def _pair(val) -> Tuple[int, int]:
    return int(val[0]), int(val[1])


def get_local_info(dm: PETSc.DM) -> LocalInfo:
    mx, my = _pair(dm.getSizes())
    (xs, ys), (xm, ym) = (_pair(v) for v in dm.getCorners())
    (gxs, gys), (gxm, gym) = (_pair(v) for v in dm.getGhostCorners())
    return LocalInfo(mx=mx, my=my, xs=xs, ys=ys, xm=xm, ym=ym, gxs=gxs, gys=gys, gxm=gxm, gym=gym)


def create_jacobian(mgr: DMManager) -> PETSc.Mat:
    """Matrix preallocated for the configured stencil (STAR or BOX)."""
    dm = mgr.dm_star if mgr.stencil is StencilType.STAR else mgr.dm
    return dm.createMatrix()


def _read_array(vec: PETSc.Vec) -> np.ndarray:
    try:
        return np.asarray(vec.getArray(readonly=True), dtype=np.float64)
    except TypeError:
        return np.asarray(vec.getArray(), dtype=np.float64)


def global_to_ghosted(mgr: DMManager, Xg: PETSc.Vec, info: LocalInfo, Xl: Optional[PETSc.Vec] = None) -> GhostedArray:
    """Scatter the global field into a local ghosted vector and wrap it for stencil reads."""
    if Xl is None:
        Xl = mgr.dm.createLocalVec()
    mgr.dm.globalToLocal(Xg, Xl, addv=PETSc.InsertMode.INSERT_VALUES)
    # DMDA local vectors are stored with i fastest.
    data = _read_array(Xl).reshape((info.gym, info.gxm)).T.copy()
    return GhostedArray.from_local_info(info, data)


def read_owned(info: LocalInfo, Xg: PETSc.Vec) -> np.ndarray:
    """Owned part of a global vector as an (xm, ym) array copy."""
    return _read_array(Xg).reshape((info.ym, info.xm)).T.copy()


def write_owned(info: LocalInfo, Xg: PETSc.Vec, values: np.ndarray) -> None:
    """Overwrite the owned part of a global vector from an (xm, ym) array."""
    vals = np.asarray(values, dtype=np.float64)
    if vals.shape != info.owned_shape:
        raise ValueError(f"owned values shape {vals.shape} != {info.owned_shape}")
    arr = Xg.getArray()
    arr[:] = vals.T.ravel()


def gather_natural(mgr: DMManager, Xg: PETSc.Vec) -> Optional[np.ndarray]:
    """Full (mx, my) field on rank 0, None on other ranks."""
    Xnat = mgr.dm.createNaturalVec()
    mgr.dm.globalToNatural(Xg, Xnat, addv=PETSc.InsertMode.INSERT_VALUES)
    scatter, Xseq = PETSc.Scatter.toZero(Xnat)
    scatter.scatter(Xnat, Xseq, addv=PETSc.InsertMode.INSERT_VALUES, mode=PETSc.ScatterMode.FORWARD)
    out = None
    if mgr.comm.getRank() == 0:
        out = _read_array(Xseq).reshape((mgr.my, mgr.mx)).T.copy()
    scatter.destroy()
    Xseq.destroy()
    Xnat.destroy()
    return out
