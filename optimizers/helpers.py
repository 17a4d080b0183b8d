import numpy as np
import tensorflow as tf
from utilities.tensorflow_config import tf_compile, opt_dtype


# ======================= small math helpers ==================================

@tf_compile
def _dot(a, b):
    return tf.tensordot(a, b, axes=1)


@tf_compile
def _norm(a):
    return tf.sqrt(tf.maximum(tf.constant(0., a.dtype), _dot(a, a)))


def to_tensor(x) -> tf.Tensor:
    return tf.constant(np.asarray(x, dtype=np.float64), dtype=opt_dtype())


def to_numpy(x: tf.Tensor) -> np.ndarray:
    return np.asarray(x.numpy(), dtype=np.float64)
