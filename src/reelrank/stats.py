"""
Welch's two-sample t-test with a dependency-light p-value.

The default backend computes the two-sided Student-t p-value from the
regularized incomplete beta function (Lanczos log-gamma plus a Lentz continued
fraction), switching to the normal approximation above 100 degrees of freedom.
``method="scipy"`` uses ``scipy.stats.t`` instead.
"""

import logging
import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .config import AB_CONFIDENCE_Z, AB_MIN_SAMPLES, AB_NORMAL_APPROX_DF, AB_PVALUE_METHOD

logger = logging.getLogger(__name__)

_LANCZOS_G = 7
_LANCZOS_COEFFS = (
    0.99999999999980993,
    676.5203681218851,
    -1259.1392167224028,
    771.32342877765313,
    -176.61502916214059,
    12.507343278686905,
    -0.13857109526572012,
    9.9843695780195716e-6,
    1.5056327351493116e-7,
)

_CF_MAX_ITER = 200
_CF_EPS = 3e-14
_CF_FPMIN = 1e-300


@dataclass
class WelchResult:
    t_statistic: float
    degrees_of_freedom: float
    p_value: float
    mean_a: float
    mean_b: float
    mean_diff: float
    standard_error: float
    ci_lower: float
    ci_upper: float


def normal_cdf(x: float) -> float:
    return 0.5 * math.erfc(-x / math.sqrt(2.0))


def log_gamma(x: float) -> float:
    """ln(Gamma(x)) for x > 0 via the Lanczos approximation (g=7, n=9)."""
    if x <= 0:
        raise ValueError(f"log_gamma requires x > 0, got {x}")
    if x < 0.5:
        # Reflection formula
        return math.log(math.pi / abs(math.sin(math.pi * x))) - log_gamma(1.0 - x)
    x -= 1.0
    a = _LANCZOS_COEFFS[0]
    t = x + _LANCZOS_G + 0.5
    for i in range(1, len(_LANCZOS_COEFFS)):
        a += _LANCZOS_COEFFS[i] / (x + i)
    return 0.5 * math.log(2 * math.pi) + (x + 0.5) * math.log(t) - t + math.log(a)


def _beta_continued_fraction(x: float, a: float, b: float) -> float:
    """Modified Lentz evaluation of the incomplete beta continued fraction."""
    qab = a + b
    qap = a + 1.0
    qam = a - 1.0
    c = 1.0
    d = 1.0 - qab * x / qap
    if abs(d) < _CF_FPMIN:
        d = _CF_FPMIN
    d = 1.0 / d
    h = d
    for m in range(1, _CF_MAX_ITER + 1):
        m2 = 2 * m
        aa = m * (b - m) * x / ((qam + m2) * (a + m2))
        d = 1.0 + aa * d
        if abs(d) < _CF_FPMIN:
            d = _CF_FPMIN
        c = 1.0 + aa / c
        if abs(c) < _CF_FPMIN:
            c = _CF_FPMIN
        d = 1.0 / d
        h *= d * c

        aa = -(a + m) * (qab + m) * x / ((a + m2) * (qap + m2))
        d = 1.0 + aa * d
        if abs(d) < _CF_FPMIN:
            d = _CF_FPMIN
        c = 1.0 + aa / c
        if abs(c) < _CF_FPMIN:
            c = _CF_FPMIN
        d = 1.0 / d
        delta = d * c
        h *= delta
        if abs(delta - 1.0) < _CF_EPS:
            return h
    logger.debug(f"Incomplete beta continued fraction did not converge (x={x}, a={a}, b={b})")
    return h


def incomplete_beta(x: float, a: float, b: float) -> float:
    """Regularized incomplete beta I_x(a, b)."""
    if x <= 0.0:
        return 0.0
    if x >= 1.0:
        return 1.0
    ln_front = (
        log_gamma(a + b) - log_gamma(a) - log_gamma(b)
        + a * math.log(x) + b * math.log(1.0 - x)
    )
    front = math.exp(ln_front)
    if x < (a + 1.0) / (a + b + 2.0):
        return front * _beta_continued_fraction(x, a, b) / a
    return 1.0 - front * _beta_continued_fraction(1.0 - x, b, a) / b


def student_t_p_value(t: float, df: float) -> float:
    """Two-sided p-value for a t statistic."""
    if math.isinf(t):
        return 0.0
    if df > AB_NORMAL_APPROX_DF:
        return 2.0 * (1.0 - normal_cdf(abs(t)))
    x = df / (df + t * t)
    return incomplete_beta(x, df / 2.0, 0.5)


def scipy_t_p_value(t: float, df: float) -> float:
    from scipy import stats

    return float(2.0 * stats.t.sf(abs(t), df))


def p_value(t: float, df: float, method: str | None = None) -> float:
    method = method or AB_PVALUE_METHOD
    if method == "scipy":
        return scipy_t_p_value(t, df)
    if method != "approx":
        raise ValueError(f"Unknown p-value method: {method!r}")
    return student_t_p_value(t, df)


def welch_t_test(
    variant: Sequence[float],
    control: Sequence[float],
    method: str | None = None,
) -> WelchResult | None:
    """
    Welch's unequal-variance t-test of ``variant`` against ``control``.

    Uses sample variances (n - 1). Returns None, rather than a NaN-laden result,
    when either group has fewer than 2 observations or both variances are zero.
    """
    a = np.asarray(variant, dtype=float)
    b = np.asarray(control, dtype=float)
    if len(a) < AB_MIN_SAMPLES or len(b) < AB_MIN_SAMPLES:
        return None

    var_a = float(a.var(ddof=1))
    var_b = float(b.var(ddof=1))
    if var_a == 0.0 and var_b == 0.0:
        return None

    mean_a = float(a.mean())
    mean_b = float(b.mean())
    se_a = var_a / len(a)
    se_b = var_b / len(b)
    se = math.sqrt(se_a + se_b)
    diff = mean_a - mean_b
    t = diff / se

    df = (se_a + se_b) ** 2 / (se_a ** 2 / (len(a) - 1) + se_b ** 2 / (len(b) - 1))

    return WelchResult(
        t_statistic=t,
        degrees_of_freedom=df,
        p_value=p_value(t, df, method),
        mean_a=mean_a,
        mean_b=mean_b,
        mean_diff=diff,
        standard_error=se,
        ci_lower=diff - AB_CONFIDENCE_Z * se,
        ci_upper=diff + AB_CONFIDENCE_Z * se,
    )
