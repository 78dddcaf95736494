from backend.common.logging_setup import get_logger

logger = get_logger("grocer.middlewares")
