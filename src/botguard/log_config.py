import logging


def setup_logging(level: int | str = logging.INFO) -> logging.Logger:
    """
    Configure console logging for the botguard service.
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(
        logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )
    root_logger.addHandler(console_handler)
    root_logger.setLevel(level)

    # Access logs are noisy next to detection decisions
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return logging.getLogger("botguard")
