"""
Exception hierarchy for the precision EKF.

Three failure classes are distinguished by where they are handled:

    ConfigurationError  - raised at construction/configuration time; fatal
    InputError          - invalid timestep or sensor value; rejected at the
                          call boundary before any state is mutated
    NumericalError      - singular or ill-conditioned innovation covariance;
                          the correction is skipped and the filter continues
"""


class EstimatorError(Exception):
    """Base class for all estimator errors."""


class ConfigurationError(EstimatorError, ValueError):
    """Invalid variant, channel combination, noise parameter or prior."""


class InputError(EstimatorError, ValueError):
    """Non-positive timestep or non-finite sensor value."""


class NumericalError(EstimatorError, ArithmeticError):
    """Innovation covariance could not be inverted reliably."""
