"""Weight penalties applied to the loss and to the gradients."""

from guided_sgd.regularization.l2 import (
    SUPPORTED_REGULARIZERS,
    RegularizerL2,
    create_regularizer,
)

__all__ = [
    "SUPPORTED_REGULARIZERS",
    "RegularizerL2",
    "create_regularizer",
]
