"""
Per-bin comparison statistics.

A comparison statistic combines the simulated content, the simulated
statistical error and the compared (data) content of one bin into a
fit-quality contribution. The sample set sums it over every bin.
"""

from __future__ import annotations

import math
from collections.abc import Callable

from pybinfit.exceptions import UnknownStatisticError

ComparisonStatistic = Callable[[float, float, float], float]


def poisson_llh(mc_content: float, mc_error: float, data_content: float) -> float:  # noqa: ARG001
    r"""
    Poisson log-likelihood ratio, ignoring the simulated statistical error.

    .. math::

        -2 \ln \lambda = 2 \left( \mu - n + n \ln \frac{n}{\mu} \right)

    Bins with no simulated content contribute zero.

    Examples:
        >>> poisson_llh(10.0, 3.0, 10.0)
        0.0
    """
    if mc_content <= 0.0:
        return 0.0
    chi2 = 2.0 * (mc_content - data_content)
    if data_content > 0.0:
        chi2 += 2.0 * data_content * math.log(data_content / mc_content)
    return max(chi2, 0.0)


def chi2(mc_content: float, mc_error: float, data_content: float) -> float:
    r"""
    Pearson-like chi-square including the simulated statistical error.

    .. math::

        \chi^2 = \frac{(\mu - n)^2}{n + \sigma_\mu^2}

    Bins with a vanishing denominator contribute zero.

    Examples:
        >>> chi2(12.0, 0.0, 8.0)
        2.0
    """
    variance = data_content + mc_error**2
    if variance <= 0.0:
        return 0.0
    return (mc_content - data_content) ** 2 / variance


registered_statistics: dict[str, ComparisonStatistic] = {
    "PoissonLLH": poisson_llh,
    "Chi2": chi2,
}


def get_statistic(statistic: str | ComparisonStatistic) -> ComparisonStatistic:
    """
    Resolve a comparison statistic by name, or pass a callable through.

    Raises:
        UnknownStatisticError: if the name is not registered.
    """
    if callable(statistic):
        return statistic
    try:
        return registered_statistics[statistic]
    except KeyError:
        msg = f'Unknown comparison statistic "{statistic}". Expected one of: {list(registered_statistics)}'
        raise UnknownStatisticError(msg) from None


__all__ = (
    "ComparisonStatistic",
    "chi2",
    "get_statistic",
    "poisson_llh",
    "registered_statistics",
)
