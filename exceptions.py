class CSVParseError(ValueError):
    """Raised when an uploaded CSV cannot be turned into portfolio series"""
    pass

class InsufficientDataError(ValueError):
    """Raised when a period has too few observations to analyze"""
    pass

class MarketDataError(Exception):
    """Raised when benchmark or T-Bill data cannot be fetched"""
    pass

class StoreError(Exception):
    """Raised when the metrics store rejects a read or write"""
    pass

class GoalInputError(ValueError):
    """Raised when goal analysis input is missing or invalid"""
    pass
