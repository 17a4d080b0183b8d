import os, sys

# ------------------------------------------------------------------------
# Configure tensorflow
# ------------------------------------------------------------------------

# Instructions:
# Call configure once, before anything imports tensorflow, e.g. at the top of a
# training script. The optimizers keep their iterates as tf tensors of
# dtype OPT_DTYPE; the data pass itself runs in numpy and is not affected.
#
# ------------------------------------------------------------------------
# Example:
#
# import utilities.tensorflow_config as tf_cfg
# if __name__ == "__main__":
#    tf_cfg.configure(mode="eager", seed=1)
#    from glm.training import train_generalized_linear_model
#    ...
# ------------------------------------------------------------------------

_MODE = "graph"
_REDUCE_RETRACING = True
_JIT_DEFAULT = False
OPT_DTYPE = "float64"


# ---------- Public API ----------

def configure(*,
              mode: str = "eager",
              use_onednn: bool = True,
              use_gpu: bool = False,
              reduce_retracing: bool = True,
              jit_compile: bool = False,
              log_level: str = "2",
              precision: str = "float64",  # "float32" | "float64"
              num_threads_CPU: int = None,
              deterministic_ops: bool = True,
              seed: int = 0):
    """
    Global TensorFlow runtime configuration for the optimizers.

    :param mode: 'eager' (use for debugging), 'graph' (small helpers wrapped in tf.function), 'graph_xla'
    :param use_onednn: True to apply intel OneDNN on CPU
    :param use_gpu: False hides every GPU; optimizer vectors are small and CPU is usually faster
    :param reduce_retracing: passed to tf.function
    :param jit_compile: passed to tf.function
    :param log_level: TF_CPP_MIN_LOG_LEVEL
    :param precision: dtype of the optimizer iterates, "float64" (default) or "float32"
    :param num_threads_CPU: limit intra/inter op threads
    :param deterministic_ops: reproducible kernels
    :param seed: int (-1 for no seed) for numpy, tensorflow and random
    """
    global _REDUCE_RETRACING, _JIT_DEFAULT, OPT_DTYPE
    _REDUCE_RETRACING = reduce_retracing
    _JIT_DEFAULT = bool(jit_compile) or (mode == "graph_xla")

    if "tensorflow" in sys.modules:
        raise RuntimeError("configure() must run before importing TensorFlow")
    if precision not in ("float32", "float64"):
        raise ValueError("precision must be 'float32' or 'float64'")
    OPT_DTYPE = precision

    # ---- Env flags (must be set before TF import) ----
    if use_onednn:
        os.environ["TF_ENABLE_ONEDNN_OPTS"] = "1"
    else:
        os.environ.pop("TF_ENABLE_ONEDNN_OPTS", None)
    os.environ.setdefault("TF_CPP_MIN_LOG_LEVEL", log_level)
    if deterministic_ops:
        os.environ["TF_DETERMINISTIC_OPS"] = "1"
    else:
        os.environ.pop("TF_DETERMINISTIC_OPS", None)

    # ---- Import TF AFTER env flags ----
    import tensorflow as tf

    if not use_gpu:
        tf.config.set_visible_devices([], "GPU")

    set_tf_mode(mode)

    if num_threads_CPU is not None:
        tf.config.threading.set_intra_op_parallelism_threads(num_threads_CPU)
        tf.config.threading.set_inter_op_parallelism_threads(num_threads_CPU)

    if seed != -1:
        import random, numpy as np
        random.seed(seed)
        np.random.seed(seed)
        tf.random.set_seed(seed)

    print_tf_summary(seed)


def print_tf_summary(seed_used: int = -1):
    import tensorflow as tf
    py_ver = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    gpus = tf.config.get_visible_devices("GPU")
    det_ops = os.environ.get("TF_DETERMINISTIC_OPS", "0")
    seed_str = f"{seed_used}" if seed_used != -1 else "None"
    print(f"[TF] py={py_ver} tf={tf.__version__} | opt_dtype={OPT_DTYPE} | GPUs={len(gpus)} | "
          f"exec={_MODE} (eager_flag={tf.config.functions_run_eagerly()}) | det_ops={det_ops} | seed={seed_str}")


def set_tf_mode(mode: str):
    import tensorflow as tf
    global _MODE
    if mode not in {"eager", "graph", "graph_xla"}:
        raise ValueError("mode must be 'eager', 'graph', or 'graph_xla'")
    _MODE = mode
    tf.config.run_functions_eagerly(mode == "eager")


def opt_dtype():
    import tensorflow as tf
    return tf.as_dtype(OPT_DTYPE)


def tf_compile(fn=None, *, reduce_retracing=None, jit=None):
    """
        Decorator: uses per-function overrides if provided, else global defaults.
        - reduce_retracing: True/False or None (use global)
        - jit: True/False or None (use global)
    """

    def _wrap(f):
        import tensorflow as tf  # deferred import
        if _MODE == "eager":
            return f
        rr = _REDUCE_RETRACING if (reduce_retracing is None) else bool(reduce_retracing)
        jc = _JIT_DEFAULT if (jit is None) else bool(jit)
        return tf.function(f, reduce_retracing=rr, jit_compile=jc)

    return _wrap(fn) if fn is not None else _wrap

