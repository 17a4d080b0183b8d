import json

import dask.bag as db
import numpy as np
import pytest

from glm.models import Coefficients, LogisticRegressionModel, PoissonRegressionModel, SmoothedHingeLossLinearSVMModel
from glm.normalization import NormalizationType
from glm.problem import VarianceComputationType
from glm.train_config import OptimizerType, TaskType, TrainConfig
from glm.training import train_generalized_linear_model

INTERCEPT = 2


def accuracy(model, data):
    return np.mean([model.predict_class(p.features) == p.label for p in data])


@pytest.mark.parametrize("optimizer_type", [OptimizerType.LBFGS, OptimizerType.TRON])
def test_separable_data_with_and_without_standardization(logistic_data, optimizer_type):
    train = logistic_data(n=200, separable=True, gap=0.3)
    held_out = logistic_data(n=200, separable=True, gap=0.3)
    models = {}
    for normalization_type in (NormalizationType.NONE, NormalizationType.STANDARDIZATION):
        config = TrainConfig(optimizer_type=optimizer_type, tolerance=1e-5, max_iterations=100,
                             normalization_type=normalization_type, intercept_index=INTERCEPT)
        model, tracker = train_generalized_linear_model(train, config)
        assert isinstance(model, LogisticRegressionModel)
        assert tracker.last_state is not None
        models[normalization_type] = model

    plain, standardized = models[NormalizationType.NONE], models[NormalizationType.STANDARDIZATION]
    assert accuracy(plain, train) == 1.0
    assert [plain.predict_class(p.features) for p in train] == [standardized.predict_class(p.features) for p in train]
    assert accuracy(plain, held_out) >= 0.95
    assert accuracy(standardized, held_out) >= 0.95


@pytest.mark.parametrize("normalization_type", [NormalizationType.SCALE_WITH_STANDARD_DEVIATION,
                                                NormalizationType.SCALE_WITH_MAX_MAGNITUDE,
                                                NormalizationType.STANDARDIZATION])
def test_normalized_fit_maps_back_to_plain_fit(logistic_data, normalization_type):
    data = logistic_data(n=400)
    fits = []
    for nt in (NormalizationType.NONE, normalization_type):
        config = TrainConfig(optimizer_type=OptimizerType.TRON, tolerance=1e-10, max_iterations=100,
                             normalization_type=nt, intercept_index=INTERCEPT)
        fits.append(train_generalized_linear_model(data, config)[0].coefficients.means)
    np.testing.assert_allclose(fits[1], fits[0], rtol=1e-3, atol=1e-5)


@pytest.mark.parametrize("normalization_type", [NormalizationType.SCALE_WITH_STANDARD_DEVIATION,
                                                NormalizationType.STANDARDIZATION])
def test_variances_in_original_space(logistic_data, normalization_type):
    data = logistic_data(n=300)
    variances = {}
    for nt in (NormalizationType.NONE, normalization_type):
        config = TrainConfig(optimizer_type=OptimizerType.TRON, tolerance=1e-10, normalization_type=nt,
                             variance_computation_type=VarianceComputationType.FULL, intercept_index=INTERCEPT)
        variances[nt] = train_generalized_linear_model(data, config)[0].coefficients.variances
    # w = J w' is linear, so the inverse Hessian maps back exactly as J C Jᵀ
    np.testing.assert_allclose(variances[normalization_type],
                               variances[NormalizationType.NONE], rtol=1e-3)
    assert np.all(variances[NormalizationType.NONE] > 0)


def test_bag_input_with_tree_depth(logistic_data):
    data = logistic_data(n=240)
    config = TrainConfig(tolerance=1e-8, tree_aggregate_depth=2, normalization_type=NormalizationType.STANDARDIZATION,
                         intercept_index=INTERCEPT, variance_computation_type=VarianceComputationType.SIMPLE)
    from_bag, _ = train_generalized_linear_model(db.from_sequence(data, npartitions=8), config)
    from_list, _ = train_generalized_linear_model(data, config)
    np.testing.assert_allclose(from_bag.coefficients.means, from_list.coefficients.means, rtol=1e-3, atol=1e-4)
    assert from_bag.coefficients.variances is not None


def test_smoothed_hinge_svm(logistic_data):
    data = logistic_data(n=200, separable=True, gap=0.3)
    config = TrainConfig(task_type=TaskType.SMOOTHED_HINGE_LOSS_LINEAR_SVM, max_iterations=200,
                         normalization_type=NormalizationType.STANDARDIZATION, intercept_index=INTERCEPT,
                         variance_computation_type=VarianceComputationType.FULL)
    model, _ = train_generalized_linear_model(data, config)
    assert isinstance(model, SmoothedHingeLossLinearSVMModel)
    # first order objective: no variances whatever was asked
    assert model.coefficients.variances is None
    assert accuracy(model, data) >= 0.98
    with pytest.raises(ValueError):
        TrainConfig(task_type=TaskType.SMOOTHED_HINGE_LOSS_LINEAR_SVM, optimizer_type=OptimizerType.TRON)


def test_poisson_regression_recovers_coefficients(regression_data):
    w = np.array([0.3, -0.2, 0.1])
    data = regression_data(n=2000, w=w, poisson=True)
    config = TrainConfig(task_type=TaskType.POISSON_REGRESSION, optimizer_type=OptimizerType.TRON, tolerance=1e-8)
    model, _ = train_generalized_linear_model(data, config)
    assert isinstance(model, PoissonRegressionModel)
    np.testing.assert_allclose(model.coefficients.means, w, atol=0.1)


def test_warm_start_and_outputs(logistic_data, tmp_path):
    data = logistic_data(n=150)
    config = TrainConfig(tolerance=1e-8, normalization_type="standardization", intercept_index=INTERCEPT,
                         model_dir=str(tmp_path))
    cold, cold_tracker = train_generalized_linear_model(data, config)
    warm, warm_tracker = train_generalized_linear_model(data, config, LogisticRegressionModel(cold.coefficients))
    np.testing.assert_allclose(warm.coefficients.means, cold.coefficients.means, rtol=1e-3, atol=1e-4)
    assert len(warm_tracker.tracked_states) <= len(cold_tracker.tracked_states)

    saved = json.loads((tmp_path / "hyperparams.json").read_text())
    assert saved["train"]["normalization_type"] == "standardization"
    assert saved["normalization"]["intercept_index"] == INTERCEPT
    assert saved["optimizer"]["m"] == 10
    lines = (tmp_path / "training_log.csv").read_text().strip().splitlines()
    assert lines[0].startswith("iteration")
    assert len(lines) == len(warm_tracker.tracked_states) + 1


def test_model_predictions():
    model = LogisticRegressionModel(Coefficients(np.array([2.0, -1.0])))
    assert model.compute_mean([0.0, 0.0]) == pytest.approx(0.5)
    assert model.predict_class([1.0, 0.0]) == 1.0
    assert model.predict_class([0.0, 1.0]) == 0.0
    assert model.predict_class([0.0, 1.0], offset=2.0) == 1.0
    svm = SmoothedHingeLossLinearSVMModel(Coefficients(np.array([1.0, 1.0])))
    assert svm.predict_class([-0.2, 0.1]) == 0.0
    assert svm.predict_class([0.2, 0.1]) == 1.0
    assert model.update_coefficients(Coefficients(np.ones(2))).coefficients.means.tolist() == [1.0, 1.0]
