"""
Numeric routines shared by the volume-profile and sinc-filter indicators:
Lanczos gamma, truncated Student's t distribution, sinc kernels and
simple smoothing passes.
"""
import math
from typing import List, Sequence

import numpy as np

# Lanczos series, g = 10.900511, 11 terms
GAMMA_DK = (
    2.48574089138753565546e-5,
    1.0514237858172197421,
    -3.45687097222016235469,
    4.512277094668948237,
    -2.98285225323576655721,
    1.05639711577126713077,
    -1.95428773191645869583e-1,
    1.70970543404441224307e-2,
    -5.71926117404305781283e-4,
    4.63399473359905636708e-6,
    -2.71994908488607703910e-9,
)
GAMMA_N = 10
GAMMA_R = 10.900511
TWO_SQRT_E_OVER_PI = 1.8603827342052657


def gamma(z: float) -> float:
    if z < 0.5:
        if float(z).is_integer():
            raise ValueError(f"gamma has a pole at {z}")
        # reflection: gamma(z) * gamma(1 - z) = pi / sin(pi z)
        return math.pi / (math.sin(math.pi * z) * gamma(1 - z))

    s = GAMMA_DK[0]
    for i in range(1, GAMMA_N + 1):
        s += GAMMA_DK[i] / (z + i - 1.0)
    return s * TWO_SQRT_E_OVER_PI * math.pow((z - 0.5 + GAMMA_R) / math.e, z - 0.5)


def rising_factorial(c: float, n: int) -> float:
    """c * (c+1) * ... * (c+n-1)"""
    product = 1.0
    for i in range(n):
        product *= c + i
    return product


def hypergeometric(a: float, b: float, c: float, z: float, terms: int = 3) -> float:
    # Truncated 2F1; the i-th denominator uses rising_factorial(i, i).
    total = 0.0
    for i in range(terms):
        total += (rising_factorial(a, i) * rising_factorial(b, i) * math.pow(z, i)) \
            / (rising_factorial(c, i) * rising_factorial(i, i))
    return total


def t_dist_pdf(x: float, v: float) -> float:
    if v <= 0:
        return 0.0
    return (gamma((v + 1) / 2) / (math.sqrt(v * math.pi) * gamma(v / 2))) \
        * math.pow(1 + x * x / v, -(v + 1) / 2)


def t_dist_cdf(x: float, v: float) -> float:
    return 0.5 + x * gamma((v + 1) / 2) * (
        hypergeometric(0.5, (v + 1) / 2, 1.5, x * x / v) / (math.sqrt(v * math.pi) * gamma(v / 2))
    )


def t_inv(p: float, df: float, iterations: int = 100, tolerance: float = 1e-6) -> float:
    """Bisection over [-100, 100] for t with t_dist_cdf(t, df) ~= p."""
    lower, upper = -100.0, 100.0
    mid = (lower + upper) / 2
    for _ in range(iterations):
        cdf = t_dist_cdf(mid, df)
        if abs(cdf - p) < tolerance:
            break
        if cdf > p:
            upper = mid
        else:
            lower = mid
        mid = (lower + upper) / 2
    return mid


def sinc(x: float, bandwidth: float = 1.0) -> float:
    if x == 0:
        return 1.0
    v = math.pi * x / bandwidth
    return math.sin(v) / v


def sinc_kernel_smooth(source: Sequence[float], bandwidth: float) -> List[float]:
    """Normalized sinc-kernel regression; negative results clamp to 0."""
    values = np.asarray(source, dtype=float)
    n = len(values)
    if n == 0:
        return []
    diff = np.subtract.outer(np.arange(n), np.arange(n)).astype(float)
    arg = np.pi * diff / bandwidth
    with np.errstate(divide="ignore", invalid="ignore"):
        weights = np.where(diff == 0, 1.0, np.sin(arg) / arg)
    sums = weights @ values
    sumw = weights.sum(axis=1)
    smoothed = np.where(sumw > 0, np.maximum(sums / np.where(sumw > 0, sumw, 1.0), 0.0), 0.0)
    return smoothed.tolist()


def blackman(n: float, size: int) -> float:
    return 0.42 - 0.5 * math.cos(2 * math.pi * n / (size - 1)) \
        + 0.08 * math.cos(4 * math.pi * n / (size - 1))


def sinc_coefficients(length: int, fc: float) -> List[float]:
    """Blackman-windowed sinc low-pass taps with cutoff 1/fc."""
    mid = (length - 1) // 2
    cutoff = 1 / fc
    even = length % 2 == 0
    taps = []
    for k in range(length):
        window = blackman(k + 0.5, length) if even else blackman(k, length)
        taps.append(sinc(2 * cutoff * (k - mid)) * window)
    return taps


def ema_smooth(values: Sequence[float], length: float) -> List[float]:
    """EMA seeded from the first value."""
    if not values:
        return []
    alpha = 2.0 / (length + 1)
    result = [values[0]]
    for value in values[1:]:
        result.append(alpha * value + (1 - alpha) * result[-1])
    return result


def wma_smooth(values: Sequence[float], length: int) -> List[float]:
    result = []
    weight_sum = length * (length + 1) / 2
    for i in range(len(values)):
        if i < length - 1:
            # warmup: weight every available value
            total = 0.0
            ws = 0.0
            for j in range(i + 1):
                w = i - j + 1
                total += values[j] * w
                ws += w
            result.append(total / ws if ws > 0 else values[i])
        else:
            total = sum(values[i - j] * (length - j) for j in range(length))
            result.append(total / weight_sum)
    return result
