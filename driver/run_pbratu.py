"""
Driver for the 2D p-Bratu problem across SciPy / PETSc backends.

Responsibilities:
- Load CaseConfig from YAML (optional) and apply command-line overrides.
- Forward unrecognised command-line options to the PETSc options database.
- Warn when lambda lies outside the p=2 Bratu stability window.
- Solve, log the convergence summary and optionally save the solution.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Tuple

import numpy as np
import yaml

from core.logging_utils import get_log_level_from_env, is_root_rank, setup_logging, world_rank
from core.types import (
    LAMBDA_MAX,
    LAMBDA_MIN,
    CaseConfig,
    CaseGrid,
    CaseJacobian,
    CaseMeta,
    CaseNonlinear,
    CaseOutput,
    CasePETSc,
    CaseProblem,
    JacobianType,
    PBratuParams,
)
from parallel.mpi_bootstrap import bootstrap_mpi_before_petsc, set_petsc_argv
from solvers.nonlinear_types import NonlinearSolveResult
from solvers.solver_nonlinear import normalize_backend, solve_nonlinear

logger = logging.getLogger(__name__)

_ALLOWED_KEYS = {
    "case": {"id", "title", "notes"},
    "grid": {"mx", "my"},
    "problem": {"lambda", "p", "epsilon"},
    "jacobian": {"jtype", "use_analytic", "allocate_star"},
    "nonlinear": {"backend", "max_iter", "f_rtol", "f_atol", "krylov_method"},
    "petsc": {"options_prefix"},
    "output": {"path"},
}


def _read_yaml_text(cfg_file: Path) -> str:
    try:
        return cfg_file.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError:
        return cfg_file.read_text()


def _resolve_path(base: Path, value: str | Path) -> Path:
    """Resolve a possibly relative path against base."""
    path = Path(value)
    return path if path.is_absolute() else (base / path).resolve()


def _check_keys(raw: Mapping[str, Any]) -> None:
    unknown_sections = set(raw.keys()) - set(_ALLOWED_KEYS)
    if unknown_sections:
        raise ValueError(f"Unsupported config sections: {sorted(unknown_sections)}")
    for section, allowed in _ALLOWED_KEYS.items():
        body = raw.get(section) or {}
        if not isinstance(body, Mapping):
            raise ValueError(f"Config section {section!r} must be a mapping, got {type(body).__name__}")
        unknown = set(body.keys()) - allowed
        if unknown:
            raise ValueError(f"Unsupported keys in {section}: {sorted(unknown)}")


def _as_bool(section: str, key: str, value: Any) -> bool:
    # YAML strings such as "false" would be truthy under bool().
    if not isinstance(value, bool):
        raise ValueError(f"{section}.{key} must be a boolean, got {value!r}")
    return value


def build_case_config(raw: Optional[Mapping[str, Any]] = None, base: Optional[Path] = None) -> CaseConfig:
    """Build CaseConfig from a raw YAML mapping; missing entries take their defaults."""
    raw = dict(raw or {})
    _check_keys(raw)
    base = Path.cwd() if base is None else base

    case_raw = raw.get("case") or {}
    grid_raw = raw.get("grid") or {}
    prob_raw = raw.get("problem") or {}
    jac_raw = raw.get("jacobian") or {}
    nl_raw = raw.get("nonlinear") or {}
    petsc_raw = raw.get("petsc") or {}
    out_raw = raw.get("output") or {}

    jtype = JacobianType.parse(jac_raw.get("jtype", 4))

    out_path = out_raw.get("path")
    return CaseConfig(
        case=CaseMeta(
            id=str(case_raw.get("id", "pbratu")),
            title=str(case_raw.get("title", "p-Bratu 2D")),
            notes=case_raw.get("notes"),
        ),
        grid=CaseGrid(mx=int(grid_raw.get("mx", 4)), my=int(grid_raw.get("my", 4))),
        problem=CaseProblem(
            lam=float(prob_raw.get("lambda", 6.0)),
            p=float(prob_raw.get("p", 2.0)),
            epsilon=float(prob_raw.get("epsilon", 1.0e-5)),
        ),
        jacobian=CaseJacobian(
            jtype=int(jtype),
            use_analytic=_as_bool("jacobian", "use_analytic", jac_raw.get("use_analytic", True)),
            allocate_star=_as_bool("jacobian", "allocate_star", jac_raw.get("allocate_star", False)),
        ),
        nonlinear=CaseNonlinear(
            backend=str(nl_raw.get("backend", "scipy")),
            max_iter=int(nl_raw.get("max_iter", 50)),
            f_rtol=float(nl_raw.get("f_rtol", 1.0e-8)),
            f_atol=float(nl_raw.get("f_atol", 1.0e-10)),
            krylov_method=str(nl_raw.get("krylov_method", "lgmres")),
        ),
        petsc=CasePETSc(options_prefix=str(petsc_raw.get("options_prefix", "") or "")),
        output=CaseOutput(path=_resolve_path(base, out_path) if out_path else None),
    )


def load_case_config(cfg_path: str | Path) -> CaseConfig:
    """Load YAML file into CaseConfig with nested dataclasses."""
    cfg_file = Path(cfg_path).expanduser().resolve()
    raw = yaml.safe_load(_read_yaml_text(cfg_file)) or {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"{cfg_file}: top level of a case file must be a mapping")
    return build_case_config(raw, base=cfg_file.parent)


def apply_cli_overrides(cfg: CaseConfig, args: argparse.Namespace) -> CaseConfig:
    """Rebuild cfg with command-line values taking precedence over YAML."""
    raw: dict = {
        "case": {"id": cfg.case.id, "title": cfg.case.title, "notes": cfg.case.notes},
        "grid": {"mx": cfg.grid.mx, "my": cfg.grid.my},
        "problem": {"lambda": cfg.problem.lam, "p": cfg.problem.p, "epsilon": cfg.problem.epsilon},
        "jacobian": {
            "jtype": cfg.jacobian.jtype,
            "use_analytic": cfg.jacobian.use_analytic,
            "allocate_star": cfg.jacobian.allocate_star,
        },
        "nonlinear": {
            "backend": cfg.nonlinear.backend,
            "max_iter": cfg.nonlinear.max_iter,
            "f_rtol": cfg.nonlinear.f_rtol,
            "f_atol": cfg.nonlinear.f_atol,
            "krylov_method": cfg.nonlinear.krylov_method,
        },
        "petsc": {"options_prefix": cfg.petsc.options_prefix},
        "output": {"path": str(cfg.output.path) if cfg.output.path else None},
    }
    overrides = {
        ("grid", "mx"): args.mx,
        ("grid", "my"): args.my,
        ("problem", "lambda"): args.lam,
        ("problem", "p"): args.p,
        ("problem", "epsilon"): args.epsilon,
        ("jacobian", "jtype"): args.jtype,
        ("nonlinear", "backend"): args.backend,
        ("nonlinear", "max_iter"): args.max_iter,
        ("petsc", "options_prefix"): args.prefix,
        ("output", "path"): args.output,
    }
    for (section, key), value in overrides.items():
        if value is not None:
            raw[section][key] = value
    if args.no_analytic_jacobian:
        raw["jacobian"]["use_analytic"] = False
    if args.alloc_star:
        raw["jacobian"]["allocate_star"] = True
    return build_case_config(raw)


def check_lambda_range(params: PBratuParams) -> bool:
    """Warn (do not fail) when lambda leaves the p=2 stability window."""
    if params.lambda_in_range():
        return True
    logger.warning(
        "lambda %g out of range for p=2 (expected %g <= lambda <= %g)",
        params.lam,
        LAMBDA_MIN,
        LAMBDA_MAX,
    )
    return False


def save_solution(path: Path, cfg: CaseConfig, result: NonlinearSolveResult) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    d = result.diag
    np.savez(
        path,
        u=result.u,
        mx=cfg.grid.mx,
        my=cfg.grid.my,
        lam=cfg.problem.lam,
        p=cfg.problem.p,
        epsilon=cfg.problem.epsilon,
        jtype=cfg.jacobian.jtype,
        converged=d.converged,
        n_iter=d.n_iter,
        res_norm_2=d.res_norm_2,
        history_res_2=np.asarray(d.history_res_2, dtype=np.float64),
    )
    return path


def run_case(cfg: CaseConfig, *, dry_run: bool = False) -> Optional[NonlinearSolveResult]:
    params = cfg.params()
    check_lambda_range(params)
    logger.info(
        "p-Bratu %s: grid %dx%d lambda=%g p=%g epsilon=%g jtype=%d analytic_J=%s alloc=%s backend=%s",
        cfg.case.id,
        cfg.grid.mx,
        cfg.grid.my,
        params.lam,
        params.p,
        params.epsilon,
        params.jtype,
        cfg.jacobian.use_analytic,
        cfg.stencil_type.value,
        cfg.nonlinear.backend,
    )
    if dry_run:
        return None

    result = solve_nonlinear(cfg)
    d = result.diag
    if is_root_rank():
        logger.info("%s", d.summary())
        logger.info("final residual: ||F||_2=%.6e ||F||_inf=%.6e", d.res_norm_2, d.res_norm_inf)
        if cfg.output.path is not None:
            out = save_solution(cfg.output.path, cfg, result)
            logger.info("solution written to %s", out)
    return result


def _parse_args(argv: Optional[Sequence[str]] = None) -> Tuple[argparse.Namespace, list[str]]:
    parser = argparse.ArgumentParser(description="p-Bratu nonlinear PDE in 2d.")
    parser.add_argument("case_yaml", nargs="?", default=None, help="Path to case YAML file.")
    parser.add_argument("--mx", type=int, default=None, help="Grid points in x.")
    parser.add_argument("--my", type=int, default=None, help="Grid points in y.")
    parser.add_argument("--lambda", dest="lam", type=float, default=None, help="Bratu parameter.")
    parser.add_argument("--p", type=float, default=None, help="Exponent `p' in p-Laplacian.")
    parser.add_argument("--epsilon", type=float, default=None, help="Strain-regularization in p-Laplacian.")
    parser.add_argument(
        "--jtype",
        type=int,
        default=None,
        help="Jacobian type, 1=plain, 2=first term, 3=star, 4=full.",
    )
    parser.add_argument(
        "--no-analytic-jacobian",
        action="store_true",
        help="Do not provide the analytic Jacobian; use finite differences.",
    )
    parser.add_argument("--alloc-star", action="store_true", help="Allocate for STAR stencil (5-point).")
    parser.add_argument("--backend", choices=("scipy", "petsc"), default=None, help="Nonlinear backend.")
    parser.add_argument("--max-iter", type=int, default=None, help="Maximum Newton iterations.")
    parser.add_argument("--prefix", default=None, help="PETSc options prefix.")
    parser.add_argument("--output", default=None, help="Write the solution to this .npz file.")
    parser.add_argument("--dry-run", action="store_true", help="Load config only; skip the solve.")
    args, unknown = parser.parse_known_args(argv)
    return args, list(unknown)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args, petsc_args = _parse_args(argv)
    # PETSc only sees the options the driver did not consume.
    set_petsc_argv(petsc_args)

    cfg = load_case_config(args.case_yaml) if args.case_yaml else build_case_config()
    cfg = apply_cli_overrides(cfg, args)

    if normalize_backend(cfg.nonlinear.backend) == "petsc" and not args.dry_run:
        bootstrap_mpi_before_petsc()
    setup_logging(world_rank(), level=get_log_level_from_env())

    result = run_case(cfg, dry_run=args.dry_run)
    if result is None:
        return 0
    return 0 if result.diag.converged else 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
