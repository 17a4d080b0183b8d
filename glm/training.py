"""
Train one generalized linear model from a TrainConfig.

    stats = FeatureDataStatistics.compute(data)        # only when normalizing
    norm  = NormalizationContext.build(type, stats)
    problem = OptimizationProblem(optimizer(norm), objective, model_class, variances)
    model = problem.run(data, initial_model)           # normalized space
    model -> original space

The returned model always acts on raw features.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional, Tuple

from functions.objective import GLMObjective, SmoothedHingeObjective
from functions.pointwise_loss import LogisticLossFunction, PoissonLossFunction, SquaredLossFunction
from glm.models import (Coefficients, GeneralizedLinearModel, LinearRegressionModel, LogisticRegressionModel,
                        PoissonRegressionModel, SmoothedHingeLossLinearSVMModel)
from glm.normalization import NO_NORMALIZATION, NormalizationContext, NormalizationType
from glm.problem import OptimizationProblem
from glm.statistics import FeatureDataStatistics
from glm.train_config import OptimizerType, TaskType, TrainConfig
from optimizers.lbfgs import LBFGS
from optimizers.states_tracker import OptimizationStatesTracker
from optimizers.tron import TRON
from utilities.misc import jsonable

log = logging.getLogger(__name__)

_MODEL_CLASSES = {
    TaskType.LOGISTIC_REGRESSION: LogisticRegressionModel,
    TaskType.LINEAR_REGRESSION: LinearRegressionModel,
    TaskType.POISSON_REGRESSION: PoissonRegressionModel,
    TaskType.SMOOTHED_HINGE_LOSS_LINEAR_SVM: SmoothedHingeLossLinearSVMModel,
}

_LOSS_FUNCTIONS = {
    TaskType.LOGISTIC_REGRESSION: LogisticLossFunction,
    TaskType.LINEAR_REGRESSION: SquaredLossFunction,
    TaskType.POISSON_REGRESSION: PoissonLossFunction,
}


def build_objective(config: TrainConfig):
    if config.task_type == TaskType.SMOOTHED_HINGE_LOSS_LINEAR_SVM:
        return SmoothedHingeObjective(config.tree_aggregate_depth, config.num_shards)
    return GLMObjective(_LOSS_FUNCTIONS[config.task_type](), config.tree_aggregate_depth, config.num_shards)


def build_optimizer(config: TrainConfig, normalization: NormalizationContext = NO_NORMALIZATION):
    common = dict(tolerance=config.tolerance, max_iterations=config.max_iterations, normalization=normalization,
                  track_state=config.track_state, verbose=config.verbose)
    if config.optimizer_type == OptimizerType.LBFGS:
        return LBFGS(m=config.memory, line_search=config.line_search, powell_damping=config.powell_damping, **common)
    if config.optimizer_type == OptimizerType.TRON:
        return TRON(max_cg_iterations=config.max_cg_iterations, **common)
    raise ValueError(f"Unknown optimizer type: {config.optimizer_type}")


def build_normalization(data, config: TrainConfig) -> NormalizationContext:
    if config.normalization_type == NormalizationType.NONE:
        return NO_NORMALIZATION
    statistics = FeatureDataStatistics.compute(data, config.intercept_index, depth=config.tree_aggregate_depth)
    return NormalizationContext.build(config.normalization_type, statistics)


def train_generalized_linear_model(data, config: TrainConfig, initial_model: Optional[GeneralizedLinearModel] = None
                                   ) -> Tuple[GeneralizedLinearModel, Optional[OptimizationStatesTracker]]:
    """
    Fit the model described by ``config`` on ``data`` (local iterable or dask bag).

    ``initial_model`` is given in the original feature space; zeros by default.
    Returns the fitted model in the original space and the optimizer's state
    tracker (None when state tracking is off).
    """
    log.info("Training %s", config)
    model_class = _MODEL_CLASSES[config.task_type]
    objective = build_objective(config)
    normalization = build_normalization(data, config)
    optimizer = build_optimizer(config, normalization)

    if initial_model is None:
        initial_model = model_class(Coefficients.zeros(objective.domain_dimension(data)))
    start = normalization.model_to_transformed_space(initial_model.coefficients.means)

    problem = OptimizationProblem(optimizer, objective, model_class, config.variance_computation_type)
    fitted = problem.run(data, model_class(Coefficients(start)))

    coefficients = Coefficients(normalization.model_to_original_space(fitted.coefficients.means),
                                normalization.variances_to_original_space(fitted.coefficients.variances,
                                                                            problem.covariance))
    model = fitted.update_coefficients(coefficients)
    tracker = optimizer.state_tracker

    if config.model_dir is not None:
        out_dir = Path(config.model_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        with open(out_dir / "hyperparams.json", "w") as f:
            json.dump({"train": config.get_config(), "optimizer": jsonable(optimizer),
                       "normalization": {"factors": jsonable(normalization.factors),
                                         "shifts": jsonable(normalization.shifts),
                                         "intercept_index": normalization.intercept_index}}, f, indent=2)
        if tracker is not None:
            tracker.to_csv(out_dir / config.log_csv)
    return model, tracker
