"""
Probabilistic models as directed acyclic graphs of nodes.
"""

from .__version__ import __version__, __version_info__  # isort: skip

from . import backend, config, constraints, dag, distributions, functions, nodes
from .backend import BroadcastError, ValidationError
from .config import data_as_constants
from .dag import Dag, Environment
from .distributions import (
    bernoulli,
    beta,
    binomial,
    cauchy,
    exponential,
    gamma,
    lkj_correlation,
    lognormal,
    normal,
    poisson,
    student,
    uniform,
    wishart,
)
from .functions import (
    exp,
    ilogit,
    log,
    matmul,
    mean,
    sigmoid,
    softplus,
    sqrt,
    square,
    tanh,
    transpose,
)
from .logging import reset_logger, setup_logger
from .nodes import (
    DataNode,
    DistributionNode,
    Node,
    OperationNode,
    VariableNode,
    as_data,
    distrib,
    observe,
    op,
    to_node,
    variable,
    vble,
)
from .unknowns import Unknowns, unknowns

# because logger setup takes place after importing the submodules, it only affects
# log messages emitted at runtime
setup_logger()
