"""
ProcOpt Custom Exceptions
Standardized exception hierarchy for the optimizer
"""


class OptimizerError(Exception):
    """Base exception for all ProcOpt errors"""
    pass


class ConfigurationError(OptimizerError):
    """Invalid optimizer configuration (raised at construction time only)"""

    def __init__(self, message: str, config_key: str = None):
        super().__init__(message)
        self.message = message
        self.config_key = config_key


class ResourceError(OptimizerError):
    """Resource pool errors"""
    pass


class UnknownPoolError(ResourceError):
    """Requested resource pool is not defined"""

    def __init__(self, pool_name: str):
        super().__init__(f"Unknown resource pool: {pool_name}")
        self.pool_name = pool_name


class CircuitOpenError(OptimizerError):
    """Execution short-circuited because the circuit breaker is open"""
    pass


class HistoryError(OptimizerError):
    """Optimizer history persistence errors"""
    pass
