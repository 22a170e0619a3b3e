"""Receding-horizon trajectory optimisation over a kinematic bicycle model."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import casadi as ca
import numpy as np
from scipy.optimize import Bounds, minimize

from configuration import ControllerConfig
from pipeline.errors import SolverNonconvergence

logger = logging.getLogger(__name__)

NX = 4  # x, y, heading, speed
NU = 2  # steering angle, acceleration

BACKENDS = ("ipopt", "slsqp")


@dataclass
class SolverResult:
    """Optimised state and control sequences for one tick."""

    success: bool
    states: np.ndarray
    controls: np.ndarray
    cost: float = float("nan")
    iterations: int = 0
    message: str = ""

    @property
    def first_control(self) -> np.ndarray:
        return self.controls[0]

    def raise_for_failure(self) -> None:
        if not self.success or not np.isfinite(self.controls).all():
            raise SolverNonconvergence(self.message or "trajectory optimisation failed")


def bicycle_step(state: np.ndarray, control: np.ndarray, dt: float, wheelbase: float) -> np.ndarray:
    """Advance ``[x, y, heading, v]`` by one explicit Euler step."""

    x, y, heading, v = state
    steer, accel = control
    return np.array(
        [
            x + v * np.cos(heading) * dt,
            y + v * np.sin(heading) * dt,
            heading + v / wheelbase * np.tan(steer) * dt,
            v + accel * dt,
        ],
        dtype=float,
    )


class RecedingHorizonSolver:
    """
    Finite-horizon NLP solved every controller tick.

    The problem is formulated once with CasADi symbols: decision vector
    ``[vec(X); vec(U)]`` with ``X`` the 4 x (H+1) state trajectory and ``U`` the
    2 x H control sequence, parameters ``[x0; vec(ref); v_ref; u_prev]``.
    Gradients and Jacobians come from CasADi's automatic differentiation and
    are handed either to IPOPT (``nlpsol``) or to SciPy's SLSQP.
    """

    def __init__(self, config: ControllerConfig) -> None:
        if config.horizon < 1:
            raise ValueError("horizon must be at least 1")
        if config.step_duration <= 0.0:
            raise ValueError("step_duration must be positive")
        if config.wheelbase <= 0.0:
            raise ValueError("wheelbase must be positive")
        backend = config.solver.backend
        if backend not in BACKENDS:
            raise ValueError(f"Unknown solver backend {backend!r}; expected one of {BACKENDS}")

        self.config = config
        self.horizon = int(config.horizon)
        self.dt = float(config.step_duration)
        self.wheelbase = float(config.wheelbase)
        self.backend = backend

        self._build_problem()
        if backend == "ipopt":
            self._build_ipopt()
        else:
            self._build_slsqp()

    # ------------------------------------------------------------------
    # Formulation
    # ------------------------------------------------------------------

    def _dynamics(self, state, control):
        dt, L = self.dt, self.wheelbase
        return ca.vertcat(
            state[0] + state[3] * ca.cos(state[2]) * dt,
            state[1] + state[3] * ca.sin(state[2]) * dt,
            state[2] + state[3] / L * ca.tan(control[0]) * dt,
            state[3] + control[1] * dt,
        )

    def _build_problem(self) -> None:
        H = self.horizon
        cfg = self.config
        weights = cfg.weights

        X = ca.SX.sym("X", NX, H + 1)
        U = ca.SX.sym("U", NU, H)
        x0 = ca.SX.sym("x0", NX)
        ref = ca.SX.sym("ref", 3, H)
        v_ref = ca.SX.sym("v_ref", H)
        u_prev = ca.SX.sym("u_prev", NU)

        cost = 0
        for k in range(H):
            state = X[:, k + 1]
            rx, ry, rth = ref[0, k], ref[1, k], ref[2, k]
            dx = state[0] - rx
            dy = state[1] - ry
            cross_track = -ca.sin(rth) * dx + ca.cos(rth) * dy
            along_track = ca.cos(rth) * dx + ca.sin(rth) * dy

            cost += weights.cross_track * cross_track ** 2
            cost += weights.along_track * along_track ** 2
            cost += weights.heading * (1.0 - ca.cos(state[2] - rth))
            cost += weights.velocity * (state[3] - v_ref[k]) ** 2

            cost += weights.steering * U[0, k] ** 2
            cost += weights.acceleration * U[1, k] ** 2
            previous = u_prev if k == 0 else U[:, k - 1]
            cost += weights.steering_rate * (U[0, k] - previous[0]) ** 2
            cost += weights.acceleration_rate * (U[1, k] - previous[1]) ** 2

        constraints = [X[:, 0] - x0]
        lbg = [np.zeros(NX)]
        ubg = [np.zeros(NX)]
        for k in range(H):
            constraints.append(X[:, k + 1] - self._dynamics(X[:, k], U[:, k]))
            lbg.append(np.zeros(NX))
            ubg.append(np.zeros(NX))

        # Optional actuator rate limits, relative to the command applied last tick.
        for channel, limit in ((0, cfg.max_steering_rate), (1, cfg.max_jerk)):
            if limit is None:
                continue
            step_limit = abs(float(limit)) * self.dt
            for k in range(H):
                previous = u_prev[channel] if k == 0 else U[channel, k - 1]
                constraints.append(U[channel, k] - previous)
                lbg.append(np.array([-step_limit]))
                ubg.append(np.array([step_limit]))

        self._w = ca.vertcat(ca.vec(X), ca.vec(U))
        self._p = ca.vertcat(x0, ca.vec(ref), v_ref, u_prev)
        self._cost = cost
        self._g = ca.vertcat(*constraints)
        self._lbg = np.concatenate(lbg)
        self._ubg = np.concatenate(ubg)

        state_lb = np.array([-np.inf, -np.inf, -np.inf, cfg.min_speed])
        state_ub = np.array([np.inf, np.inf, np.inf, cfg.max_speed])
        control_lb = np.array([-cfg.max_steering_angle, cfg.min_acceleration])
        control_ub = np.array([cfg.max_steering_angle, cfg.max_acceleration])
        self._lbw = np.concatenate([np.tile(state_lb, H + 1), np.tile(control_lb, H)])
        self._ubw = np.concatenate([np.tile(state_ub, H + 1), np.tile(control_ub, H)])

    def _build_ipopt(self) -> None:
        nlp = {"x": self._w, "p": self._p, "f": self._cost, "g": self._g}
        opts = {
            "ipopt.max_iter": int(self.config.solver.max_iter),
            "ipopt.tol": float(self.config.solver.tolerance),
            "ipopt.print_level": 0,
            "ipopt.sb": "yes",
            "print_time": False,
        }
        self._nlpsol = ca.nlpsol("trajectory_nlp", "ipopt", nlp, opts)

    def _build_slsqp(self) -> None:
        self._f_fun = ca.Function("cost", [self._w, self._p], [self._cost])
        self._grad_fun = ca.Function("cost_grad", [self._w, self._p], [ca.gradient(self._cost, self._w)])
        self._g_fun = ca.Function("constraints", [self._w, self._p], [self._g])
        self._jac_fun = ca.Function("constraints_jac", [self._w, self._p], [ca.jacobian(self._g, self._w)])

        is_eq = self._lbg == self._ubg
        self._eq_rows = np.flatnonzero(is_eq)
        self._lower_rows = np.flatnonzero(~is_eq & np.isfinite(self._lbg))
        self._upper_rows = np.flatnonzero(~is_eq & np.isfinite(self._ubg))

    # ------------------------------------------------------------------
    # Packing helpers
    # ------------------------------------------------------------------

    @property
    def num_variables(self) -> int:
        return NX * (self.horizon + 1) + NU * self.horizon

    def pack(self, states: np.ndarray, controls: np.ndarray) -> np.ndarray:
        return np.concatenate([np.asarray(states, dtype=float).ravel(), np.asarray(controls, dtype=float).ravel()])

    def unpack(self, w: np.ndarray):
        split = NX * (self.horizon + 1)
        states = np.asarray(w[:split], dtype=float).reshape(self.horizon + 1, NX)
        controls = np.asarray(w[split:], dtype=float).reshape(self.horizon, NU)
        return states, controls

    def rollout(self, x0: np.ndarray, controls: np.ndarray) -> np.ndarray:
        states = np.zeros((self.horizon + 1, NX), dtype=float)
        states[0] = x0
        for k in range(self.horizon):
            states[k + 1] = bicycle_step(states[k], controls[k], self.dt, self.wheelbase)
        return states

    def neutral_guess(self, x0: np.ndarray) -> np.ndarray:
        """Zero controls with the state propagated at constant speed."""

        controls = np.zeros((self.horizon, NU), dtype=float)
        return self.pack(self.rollout(x0, controls), controls)

    def shift(self, result: SolverResult, x0: np.ndarray) -> np.ndarray:
        """Warm start for the next tick: drop the executed step, repeat the last one."""

        states = np.vstack([result.states[1:], result.states[-1:]])
        controls = np.vstack([result.controls[1:], result.controls[-1:]])
        states[0] = x0
        return self.pack(states, controls)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def solve(
        self,
        x0: np.ndarray,
        reference: np.ndarray,
        v_ref: np.ndarray,
        u_prev: np.ndarray,
        warm_start: Optional[np.ndarray] = None,
    ) -> SolverResult:
        """
        Optimise the horizon starting from ``x0``.

        Args:
            x0: Current ``[x, y, heading, v]``; the speed is clipped to the speed bounds.
            reference: ``[H, 3]`` reference ``(x, y, heading)`` for steps 1..H.
            v_ref: ``[H]`` reference speeds.
            u_prev: Command applied on the previous tick ``[steering, acceleration]``.
            warm_start: Decision vector to start from; a neutral guess when ``None``.

        Returns:
            :class:`SolverResult`; ``success`` is ``False`` on non-convergence or
            non-finite output.
        """

        x0 = np.asarray(x0, dtype=float).copy()
        x0[3] = float(np.clip(x0[3], self.config.min_speed, self.config.max_speed))
        reference = np.asarray(reference, dtype=float).reshape(self.horizon, 3)
        v_ref = np.asarray(v_ref, dtype=float).reshape(self.horizon)
        u_prev = np.clip(
            np.asarray(u_prev, dtype=float).reshape(NU),
            [-self.config.max_steering_angle, self.config.min_acceleration],
            [self.config.max_steering_angle, self.config.max_acceleration],
        )
        params = np.concatenate([x0, reference.ravel(), v_ref, u_prev])

        if warm_start is None or np.shape(warm_start) != (self.num_variables,) or not np.isfinite(warm_start).all():
            guess = self.neutral_guess(x0)
        else:
            guess = np.asarray(warm_start, dtype=float)
        guess = np.clip(guess, self._lbw, self._ubw)

        if self.backend == "ipopt":
            w_opt, cost, success, iterations, message = self._solve_ipopt(guess, params)
        else:
            w_opt, cost, success, iterations, message = self._solve_slsqp(guess, params)

        if w_opt is None or not np.isfinite(w_opt).all():
            success = False
            w_opt = guess
        states, controls = self.unpack(w_opt)
        return SolverResult(
            success=bool(success),
            states=states,
            controls=controls,
            cost=float(cost),
            iterations=int(iterations),
            message=str(message),
        )

    def _solve_ipopt(self, guess: np.ndarray, params: np.ndarray):
        try:
            sol = self._nlpsol(
                x0=guess,
                p=params,
                lbx=self._lbw,
                ubx=self._ubw,
                lbg=self._lbg,
                ubg=self._ubg,
            )
        except RuntimeError as exc:
            logger.debug("IPOPT raised: %s", exc)
            return None, float("nan"), False, 0, str(exc)

        stats = self._nlpsol.stats()
        w_opt = np.asarray(sol["x"].full(), dtype=float).ravel()
        cost = float(sol["f"])
        return (
            w_opt,
            cost,
            bool(stats.get("success", False)),
            int(stats.get("iter_count", 0)),
            str(stats.get("return_status", "")),
        )

    def _solve_slsqp(self, guess: np.ndarray, params: np.ndarray):
        lbg, ubg = self._lbg, self._ubg
        eq, lower, upper = self._eq_rows, self._lower_rows, self._upper_rows

        def cost(z):
            return float(self._f_fun(z, params))

        def gradient(z):
            return self._grad_fun(z, params).full().ravel()

        def g(z):
            return self._g_fun(z, params).full().ravel()

        def jac(z):
            return self._jac_fun(z, params).full()

        constraints = [
            {
                "type": "eq",
                "fun": lambda z: g(z)[eq] - lbg[eq],
                "jac": lambda z: jac(z)[eq],
            }
        ]
        if lower.size or upper.size:
            constraints.append(
                {
                    "type": "ineq",
                    "fun": lambda z: np.concatenate([g(z)[lower] - lbg[lower], ubg[upper] - g(z)[upper]]),
                    "jac": lambda z: np.vstack([jac(z)[lower], -jac(z)[upper]]),
                }
            )

        res = minimize(
            cost,
            guess,
            jac=gradient,
            method="SLSQP",
            bounds=Bounds(self._lbw, self._ubw),
            constraints=constraints,
            options={"maxiter": int(self.config.solver.max_iter), "ftol": float(self.config.solver.tolerance)},
        )
        return np.asarray(res.x, dtype=float), float(res.fun), bool(res.success), int(res.nit), str(res.message)
