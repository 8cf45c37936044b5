import logging
from contextlib import contextmanager

from fastapi import HTTPException

from perpsim.core.exceptions import TradingError

logger = logging.getLogger(__name__)


@contextmanager
def trading_errors(action: str):
    """Map domain errors to their HTTP status; anything else is logged and becomes a 500"""
    try:
        yield
    except HTTPException:
        raise
    except TradingError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception:
        logger.exception(f"Error trying to {action}")
        raise HTTPException(status_code=500, detail=f"Failed to {action}")
