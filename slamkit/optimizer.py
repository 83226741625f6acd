"""Levenberg-Marquardt refinement of a single camera pose."""

from __future__ import annotations

import math
from typing import Iterable

import numpy as np

from slamkit.edges import PoseVertex

_TAU = 1e-5
_MAX_TRIALS = 10


def _total_chi2(edges) -> float:
    total = 0.0
    for edge in edges:
        err = edge.compute_error()
        total += float(err @ edge.information @ err)
    return total


def optimize_pose(pose: PoseVertex, edges: Iterable, iterations: int = 10) -> float:
    """Refine ``pose`` in place against unary edges; return the final chi-square.

    Every edge must constrain ``pose`` and provide ``compute_error`` and
    ``linearize_oplus`` returning the Jacobian of its error with respect to
    a (rotation, translation) pose update.
    """
    if iterations < 0:
        raise ValueError("iterations must not be negative")
    edges = list(edges)
    if any(edge.pose is not pose for edge in edges):
        raise ValueError("every edge must constrain the pose being optimised")

    chi2 = _total_chi2(edges)
    if pose.fixed or not edges:
        return chi2

    lam: float | None = None
    nu = 2.0
    for _ in range(iterations):
        hessian = np.zeros((6, 6))
        gradient = np.zeros(6)
        for edge in edges:
            err = edge.compute_error()
            jac = edge.linearize_oplus()
            omega = edge.information
            hessian += jac.T @ omega @ jac
            gradient -= jac.T @ omega @ err

        if lam is None:
            peak = float(np.max(np.diag(hessian)))
            lam = _TAU * peak if peak > 0.0 else _TAU

        improved = False
        for _trial in range(_MAX_TRIALS):
            try:
                dx = np.linalg.solve(hessian + lam * np.eye(6), gradient)
            except np.linalg.LinAlgError:
                lam *= nu
                nu *= 2.0
                continue
            backup = pose.estimate
            pose.oplus(dx)
            new_chi2 = _total_chi2(edges)
            predicted = float(dx @ (lam * dx + gradient))
            rho = (chi2 - new_chi2) / predicted if predicted > 0.0 else -1.0
            if math.isfinite(new_chi2) and rho > 0.0:
                chi2 = new_chi2
                lam *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                nu = 2.0
                improved = True
                break
            pose.estimate = backup
            lam *= nu
            nu *= 2.0
        if not improved:
            break

    return _total_chi2(edges)