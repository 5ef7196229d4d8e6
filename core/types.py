"""
Strongly typed containers for problem parameters, grid ownership and case configuration.

Global shape and index conventions (law of the land):
- The global grid has mx x my points; i runs along x (0..mx-1), j along y (0..my-1)
- hx = 1/(mx-1), hy = 1/(my-1); the domain is the unit square
- Grid arrays are indexed [i, j]; ghosted arrays are addressed by *global* (i, j)
- Natural ordering of unknowns: row = j*mx + i  (i fastest, as in a DMDA)
- Boundary points (i == 0, j == 0, i == mx-1, j == my-1) carry homogeneous Dirichlet rows
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
from numpy.typing import NDArray

FloatArray = NDArray[np.float64]

# Bratu stability window for the linear (p=2) problem.
LAMBDA_MIN = 0.0
LAMBDA_MAX = 6.81


class UnsupportedJacobianTypeError(ValueError):
    """Raised when a Jacobian type outside {1, 2, 3, 4} is requested."""


class JacobianType(IntEnum):
    """Jacobian fidelity selector (``jtype``)."""

    PLAIN = 1
    PICARD = 2
    STAR_NEWTON = 3
    FULL_NEWTON = 4

    @classmethod
    def parse(cls, value) -> "JacobianType":
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise UnsupportedJacobianTypeError(f"Jacobian type {value!r} not implemented")
        try:
            ival = int(value)
        except (TypeError, ValueError) as exc:
            raise UnsupportedJacobianTypeError(f"Jacobian type {value!r} not implemented") from exc
        if isinstance(value, float) and float(ival) != value:
            raise UnsupportedJacobianTypeError(f"Jacobian type {value!r} not implemented")
        try:
            return cls(ival)
        except ValueError:
            raise UnsupportedJacobianTypeError(f"Jacobian type {ival} not implemented") from None

    @property
    def needs_box(self) -> bool:
        """True when the assembled rows reach the diagonal neighbours."""
        return self is JacobianType.FULL_NEWTON


class StencilType(str, Enum):
    STAR = "star"
    BOX = "box"


@dataclass(frozen=True, slots=True)
class PBratuParams:
    """Problem parameters, immutable for the lifetime of a solve.

    Attributes
    ----------
    lam : float
        Bratu reaction coefficient ``lambda``.
    p : float
        Exponent of the p-Laplacian; ``p == 2`` is the linear Laplacian.
    epsilon : float
        Strain regularization, must be > 0 (not checked here).
    jtype : int
        Jacobian type, see :class:`JacobianType`.
    """

    lam: float = 6.0
    p: float = 2.0
    epsilon: float = 1.0e-5
    jtype: int = 4

    def lambda_in_range(self) -> bool:
        return LAMBDA_MIN <= self.lam <= LAMBDA_MAX


@dataclass(frozen=True, slots=True)
class LocalInfo:
    """Ownership record of one grid partition (mirrors DMDALocalInfo)."""

    mx: int
    my: int
    xs: int
    ys: int
    xm: int
    ym: int
    gxs: int
    gys: int
    gxm: int
    gym: int

    @property
    def hx(self) -> float:
        return 1.0 / float(self.mx - 1)

    @property
    def hy(self) -> float:
        return 1.0 / float(self.my - 1)

    @property
    def owned_shape(self) -> Tuple[int, int]:
        return (self.xm, self.ym)

    @property
    def ghosted_shape(self) -> Tuple[int, int]:
        return (self.gxm, self.gym)

    def is_boundary(self, i: int, j: int) -> bool:
        return i == 0 or j == 0 or i == self.mx - 1 or j == self.my - 1

    def interior_ranges(self) -> Tuple[int, int, int, int]:
        """Owned interior points as half-open ranges (ilo, ihi, jlo, jhi).

        The ranges are empty (lo >= hi) when the partition holds no interior point.
        """
        ilo = max(self.xs, 1)
        ihi = min(self.xs + self.xm, self.mx - 1)
        jlo = max(self.ys, 1)
        jhi = min(self.ys + self.ym, self.my - 1)
        return ilo, ihi, jlo, jhi


# -----------------------------------------------------------------------------
# Case configuration (YAML-aligned)
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class CaseMeta:
    id: str = "pbratu"
    title: str = "p-Bratu 2D"
    notes: Optional[str] = None


@dataclass(slots=True)
class CaseGrid:
    mx: int = 4
    my: int = 4

    def __post_init__(self) -> None:
        if int(self.mx) < 2 or int(self.my) < 2:
            raise ValueError(f"grid needs mx, my >= 2, got mx={self.mx}, my={self.my}")


@dataclass(slots=True)
class CaseProblem:
    lam: float = 6.0
    p: float = 2.0
    epsilon: float = 1.0e-5

    def __post_init__(self) -> None:
        if not np.isfinite(self.epsilon) or self.epsilon <= 0.0:
            raise ValueError(f"epsilon must be > 0, got {self.epsilon!r}")


@dataclass(slots=True)
class CaseJacobian:
    """Jacobian assembly options.

    ``use_analytic`` False hands the Jacobian to a finite-difference approximation;
    ``allocate_star`` preallocates a 5-point pattern (incompatible with jtype 4).
    """

    jtype: int = 4
    use_analytic: bool = True
    allocate_star: bool = False


@dataclass(slots=True)
class CaseNonlinear:
    backend: str = "scipy"
    max_iter: int = 50
    f_rtol: float = 1.0e-8
    f_atol: float = 1.0e-10
    krylov_method: str = "lgmres"


@dataclass(slots=True)
class CasePETSc:
    options_prefix: str = ""


@dataclass(slots=True)
class CaseOutput:
    path: Optional[Path] = None


@dataclass(slots=True)
class CaseConfig:
    case: CaseMeta = field(default_factory=CaseMeta)
    grid: CaseGrid = field(default_factory=CaseGrid)
    problem: CaseProblem = field(default_factory=CaseProblem)
    jacobian: CaseJacobian = field(default_factory=CaseJacobian)
    nonlinear: CaseNonlinear = field(default_factory=CaseNonlinear)
    petsc: CasePETSc = field(default_factory=CasePETSc)
    output: CaseOutput = field(default_factory=CaseOutput)

    def params(self) -> PBratuParams:
        return PBratuParams(
            lam=float(self.problem.lam),
            p=float(self.problem.p),
            epsilon=float(self.problem.epsilon),
            jtype=int(self.jacobian.jtype),
        )

    @property
    def stencil_type(self) -> StencilType:
        return StencilType.STAR if self.jacobian.allocate_star else StencilType.BOX
