"""
Command Execution Module
"""
from .runner import LOCALHOST, CommandResult, CommandRunner

__all__ = ["LOCALHOST", "CommandResult", "CommandRunner"]
