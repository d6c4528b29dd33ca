"""
Admission policies for the generation endpoint.

The generation endpoint emulates an overloaded downstream model by
refusing a fraction of valid requests with HTTP 429
(``service_overloaded``).  The accept/reject decision lives behind a small
policy object rather than inline randomness so that the behaviour can be
replaced wholesale: the probabilistic policy in production, a fixed policy
in tests or when an operator disables the simulation.

Usage in the generation service::

    generation_studio.admission_control.admit_or_reject(admission_policy)

The rejection happens after request validation and before any artifact
write or record creation, so a rejected request has no side effects.
"""

import random
import typing

import structlog

import generation_studio.exceptions

logger = structlog.get_logger()


class AdmissionPolicy(typing.Protocol):
    """Decides, per request, whether the simulated model accepts work."""

    def should_reject(self) -> bool: ...


class ProbabilisticAdmissionPolicy:
    """
    Rejects each request independently with a fixed probability.

    The random source is injectable so that tests can seed it.
    """

    def __init__(
        self,
        rejection_probability: float = 0.2,
        random_source: random.Random | None = None,
    ) -> None:
        if not 0.0 <= rejection_probability <= 1.0:
            raise ValueError("rejection_probability must be between 0 and 1.")
        self._rejection_probability = rejection_probability
        self._random_source = random_source or random.Random()

    @property
    def rejection_probability(self) -> float:
        return self._rejection_probability

    def should_reject(self) -> bool:
        return self._random_source.random() < self._rejection_probability


class FixedAdmissionPolicy:
    """Always accepts, or always rejects, every request."""

    def __init__(self, reject: bool = False) -> None:
        self._reject = reject

    def should_reject(self) -> bool:
        return self._reject


def build_admission_policy(simulated_overload_enabled: bool, rejection_probability: float) -> AdmissionPolicy:
    """
    Build the policy described by the operator configuration.

    Disabling the simulated overload yields a policy that admits every
    request, which makes the endpoint deterministic.
    """
    if not simulated_overload_enabled:
        return FixedAdmissionPolicy(reject=False)
    return ProbabilisticAdmissionPolicy(rejection_probability=rejection_probability)


def admit_or_reject(admission_policy: AdmissionPolicy) -> None:
    """
    Consult the policy and raise when it refuses the request.

    Raises:
        generation_studio.exceptions.ServiceOverloadedError:
            When the policy rejects the request.
    """
    if admission_policy.should_reject():
        logger.warning("generation_rejected_overloaded")
        raise generation_studio.exceptions.ServiceOverloadedError()
