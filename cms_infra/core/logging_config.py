import logging

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO"):
    """Configures root logging once for the web app and the standalone dispatcher."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # Keep ORM chatter at INFO even when the app runs at DEBUG
    logging.getLogger('tortoise').setLevel(logging.INFO)
