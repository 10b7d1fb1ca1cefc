"""
Custom exception hierarchy for the Candidate Election ML pipeline.
"""

class ElectionMLException(Exception):
    """Base exception for all system errors."""
    pass

class ConfigurationError(ElectionMLException):
    """Configuration validation failed."""
    pass

class UnknownOptimizerError(ConfigurationError):
    """Optimizer identifier is not in the recognized set."""
    pass

class DataValidationError(ElectionMLException):
    """Data validation failed."""
    pass

class TrainingFailure(ElectionMLException):
    """Model fitting or evaluation failed."""
    pass

class SearchCancelled(ElectionMLException):
    """Search was cancelled or ran past its deadline."""
    pass
