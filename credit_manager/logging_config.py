import logging

from .config import Config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Component loggers: auth, credit, ai, security
COMPONENTS = ("auth", "credit", "ai", "security")


def configure_logging(level: str = None):
    logging.basicConfig(level=(level or Config.LOG_LEVEL).upper(), format=LOG_FORMAT)


def get_component_logger(component: str) -> logging.Logger:
    if component not in COMPONENTS:
        raise ValueError(f"Unknown logging component '{component}'")
    return logging.getLogger(f"credit_manager.{component}")
