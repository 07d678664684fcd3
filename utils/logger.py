import logging
import logging.config

def setup_logging(app_config) -> logging.Logger:
    """Применить dictConfig из конфигурации приложения и вернуть корневой логгер"""
    if app_config.log_to_file:
        app_config.log_dir.mkdir(exist_ok=True, parents=True)
    logging.config.dictConfig(app_config.get_logging_config())
    return logging.getLogger()
