from cryptosignal.config import Settings
from cryptosignal.service import TradingService

__all__ = ["Settings", "TradingService", "__version__"]

__version__ = "0.1.0"
