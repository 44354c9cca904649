"""Guided SGD: mini-batch gradient descent with consistency-guided batch replay.

Modules:
    config: Training options, enums and configuration errors
    schedule: Learning rate schedules (none, piecewise, cosine)
    regularization: L2 weight penalty on loss and gradients
    clipping: Gradient thresholding (l2norm, global-l2norm, absolute-value)
    solvers: Update rules (SGD with momentum, ADAM, RMSProp)
    network: Learnable parameters, network protocol, dense reference network
    data: Mini-batch dispatchers
    reporting: Progress, validation, checkpoint and history reporters
    training: Trainer with plain and guided (GSGD) modes
"""

__version__ = "0.1.0"
