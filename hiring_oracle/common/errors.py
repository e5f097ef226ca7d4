from __future__ import annotations


class OracleError(Exception):
    """Base type for errors raised by the forecasting engine."""


class InvalidParameter(OracleError, ValueError):
    """A caller passed a value the engine cannot compute with."""


class InsufficientData(OracleError):
    """Not enough historical signal to produce an estimate."""


class EmptySimulation(OracleError):
    """A statistic was requested from a simulation with no successful samples."""
