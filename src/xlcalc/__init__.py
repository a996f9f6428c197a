"""xlcalc: agent-first spreadsheet sessions with live formula evaluation."""

__version__ = "0.1.0"
