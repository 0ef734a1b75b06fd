"""Fit amplitude models to event data and generate events from them.

`compwa` converts four-momentum data to kinematic variables with a
`.HelicityKinematics`, evaluates an `.Intensity` over those variables through a
memoized `.FunctionTree`, and fits its parameters with an `.Optimizer` that
minimizes an `.UnbinnedLogLikelihood`. With the same ingredients, the
:mod:`.generate` module creates phase space and intensity-based event samples.
"""

from compwa.data import DataSet, Event, EventList, Particle, convert_events_to_dataset
from compwa.estimator import create_unbinned_log_likelihood_function_tree_estimator
from compwa.intensity import FunctionTreeIntensity, create_intensity
from compwa.kinematics import HelicityKinematics, SubSystem
from compwa.optimizer import FitResult, Optimizer, initialize_with_fit_result
from compwa.parameter import FitParameter, ParameterList

__all__ = [
    "DataSet",
    "Event",
    "EventList",
    "FitParameter",
    "FitResult",
    "FunctionTreeIntensity",
    "HelicityKinematics",
    "Optimizer",
    "ParameterList",
    "Particle",
    "SubSystem",
    "convert_events_to_dataset",
    "create_intensity",
    "create_unbinned_log_likelihood_function_tree_estimator",
    "initialize_with_fit_result",
]
