from .config import OptimizationOptions, SolverOptions, load_options
from .manager import CalculationManager
from .models import Boundary, DataError, Network
from .optimizer import OptimizationResult, OptimizerState, Outcome, PressureOptimizer, optimize
from .physics import Fluid
from .projector import NetworkResults, ResultProjector, format_summary, project
from .solver import HydraulicSolver, SolvedState, StopReason, solve
from .topology import NetworkGraph
