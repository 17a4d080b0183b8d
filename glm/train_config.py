from enum import Enum

from glm.normalization import NormalizationType
from glm.problem import VarianceComputationType


class TaskType(Enum):
    LOGISTIC_REGRESSION = "logistic_regression"
    LINEAR_REGRESSION = "linear_regression"
    POISSON_REGRESSION = "poisson_regression"
    SMOOTHED_HINGE_LOSS_LINEAR_SVM = "smoothed_hinge_loss_linear_svm"


class OptimizerType(Enum):
    LBFGS = "lbfgs"
    TRON = "tron"


class TrainConfig:
    def __init__(
            self,
            task_type: TaskType = TaskType.LOGISTIC_REGRESSION,
            optimizer_type: OptimizerType = OptimizerType.LBFGS,
            tolerance: float = 1e-6,
            max_iterations: int = 100,
            normalization_type: NormalizationType = NormalizationType.NONE,
            variance_computation_type: VarianceComputationType = VarianceComputationType.NONE,
            intercept_index: int = None,  # column holding the constant 1, needed by STANDARDIZATION

            # aggregation
            tree_aggregate_depth: int = 1,  # dask.bag input only
            num_shards: int = 1,  # local input: >1 folds shards through dask

            # limited memory BFGS
            memory: int = 10,
            line_search: str = "strong_wolfe",  # strong_wolfe|nonmonotone_armijo
            powell_damping: bool = False,

            # trust region newton
            max_cg_iterations: int = 20,

            # outputs
            track_state: bool = True,
            verbose: bool = False,
            model_dir: str = None,  # None: nothing written
            log_csv: str = "training_log.csv",
    ):
        self.task_type = TaskType(task_type)
        self.optimizer_type = OptimizerType(optimizer_type)
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.normalization_type = NormalizationType(normalization_type)
        self.variance_computation_type = VarianceComputationType(variance_computation_type)
        self.intercept_index = intercept_index
        self.tree_aggregate_depth = tree_aggregate_depth
        self.num_shards = num_shards
        self.memory = memory
        self.line_search = line_search
        self.powell_damping = powell_damping
        self.max_cg_iterations = max_cg_iterations
        self.track_state = track_state
        self.verbose = verbose
        self.model_dir = model_dir
        self.log_csv = log_csv

        if self.task_type == TaskType.SMOOTHED_HINGE_LOSS_LINEAR_SVM and self.optimizer_type == OptimizerType.TRON:
            raise ValueError("TRON needs a twice differentiable loss; use LBFGS for the smoothed hinge SVM")

    def get_config(self) -> dict:
        """Return configuration as a plain dictionary (safe for JSON)."""
        return {k: (v.value if isinstance(v, Enum) else v) for k, v in self.__dict__.items()}

    def __repr__(self):
        return f"TrainConfig({self.get_config()})"
