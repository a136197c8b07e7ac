"""
Simulation Errors
=================
Typed failures raised by the simulation core:
- ValidationError: malformed tick or non-positive price/quantity
- AdmissionRejected: risk manager refused a new position
- ExecutionFailed: simulated order was rejected
- InvariantViolation: caller tried something the ledger forbids
- TransportError: feed, alert store or notification sink unreachable
"""


class SimulationError(Exception):
    """Base class for all simulation core errors"""


class ValidationError(SimulationError):
    """Input rejected at ingestion; no state was changed"""


class AdmissionRejected(SimulationError):
    """Raised by RiskManager.require_admission when a position may not be opened"""

    def __init__(self, symbol: str, reason: str):
        self.symbol = symbol
        self.reason = reason
        super().__init__(f"{symbol}: {reason}")


class ExecutionFailed(SimulationError):
    """Simulated order was rejected by the execution model"""

    def __init__(self, symbol: str, message: str = "Order rejected"):
        self.symbol = symbol
        super().__init__(f"{symbol}: {message}")


class InvariantViolation(SimulationError):
    """Ledger invariant would be broken, e.g. a second position on one symbol"""


class TransportError(SimulationError):
    """External collaborator failed or timed out"""
