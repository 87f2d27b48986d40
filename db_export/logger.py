import logging
import logging.config
import tomllib
from pathlib import Path
from typing import Optional


def setup_logging(config_path: Optional[Path] = None, verbose: bool = False):
    """
    Configures logging from a TOML dictConfig file, falling back to basicConfig.

    Args:
        config_path: Location of the logging configuration.
        verbose: Lower the root level to INFO regardless of the file.
    """
    try:
        if config_path is None:
            raise FileNotFoundError("No logging configuration given")
        with open(config_path, "rb") as f:
            config_dict = tomllib.load(f)

        for handler, config in config_dict.get("handlers", {}).items():
            if "filename" in config:
                Path(config["filename"]).parent.mkdir(parents=True, exist_ok=True)

        logging.config.dictConfig(config_dict)
        logging.info("Log configuration loaded from TOML file")

    except FileNotFoundError:
        logging.basicConfig(
            level=logging.WARNING,
            format=("%(asctime)s - %(levelname)s - %(message)s"),
        )
        logging.info("Logger configuration not found. Using default.")

    if verbose:
        logging.getLogger().setLevel(logging.INFO)


def get_logger(name) -> logging.Logger:
    return logging.getLogger(name)
