from .severity import SeverityLevel, SeverityResult, calculate

__all__ = ["SeverityLevel", "SeverityResult", "calculate"]
