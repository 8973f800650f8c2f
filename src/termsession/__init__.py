"""termsession — PTY-backed terminal sessions and one-off command execution for tool-calling agents."""

__version__ = "0.1.0"
