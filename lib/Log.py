"""
Logging Module

This module builds the application logger shared by every service
class, and optionally attaches a handler persisting log records into
a database table through SQLAlchemy.
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, Text, create_engine

## application log format
LOG_FORMAT = '%(asctime)s [%(process)d] %(levelname)s %(name)s %(module)s.%(funcName)s:%(lineno)d %(message)s'

class SQLHandler(logging.Handler):
    """
    Logging handler writing records into a database table.

    Any SQLAlchemy URL works; MySQL needs the PyMySQL driver
    (mysql+pymysql://...).
    """

    def __init__(self, url: str, table: str) -> None:
        """
        Initialize the handler and create the log table if missing.

        Args:
            url (str): SQLAlchemy database URL
            table (str): Log table name

        Returns:
            None
        """

        super().__init__()
        self.engine = create_engine(url)
        metadata = MetaData()
        self.table = Table(
            table,
            metadata,
            Column('id', Integer, primary_key = True, autoincrement = True),
            Column('insert_time', DateTime, nullable = False),
            Column('pid', Integer),
            Column('level', String(16)),
            Column('name', String(128)),
            Column('func', String(128)),
            Column('message', Text),
        )
        metadata.create_all(self.engine)

    def emit(self, record):
        try:
            with self.engine.begin() as conn:
                conn.execute(self.table.insert().values(
                    insert_time = datetime.fromtimestamp(record.created, timezone.utc).replace(tzinfo = None),
                    pid = record.process,
                    level = record.levelname,
                    name = record.name,
                    func = '%s.%s' % (record.module, record.funcName),
                    message = record.getMessage(),
                ))

        except Exception:
            ## a failing log sink must not interrupt scheduling
            self.handleError(record)

    def close(self):
        try:
            self.engine.dispose()

        finally:
            super().close()

class Log(object):
    """
    Application logger factory.

    Attributes:
        logger (logging.Logger): Configured application logger
    """

    def __init__(self, config: dict) -> None:
        """
        Build the application logger from the configuration.

        Args:
            config (dict): Configuration, uses the "log" section and "name"

        Returns:
            None
        """

        self.config = config
        log_config = config.get('log', {})

        self.logger = logging.getLogger(config.get('name', 'JobKit'))
        self.logger.setLevel(log_config.get('level', 'INFO'))
        self.logger.propagate = False

        ## drop handlers from a previous init of the same logger
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        self.formatter = logging.Formatter(LOG_FORMAT)

        stream = logging.StreamHandler()
        stream.setFormatter(self.formatter)
        self.logger.addHandler(stream)

        if log_config.get('path'):
            rotating = RotatingFileHandler(
                log_config['path'],
                maxBytes = log_config.get('max_bytes', 0),
                backupCount = log_config.get('backup_count', 0),
                encoding = 'utf-8',
            )
            rotating.setFormatter(self.formatter)
            self.logger.addHandler(rotating)

    def add_sql_handler(self, url: str, table: str) -> SQLHandler:
        """
        Persist log records into a database table.

        Args:
            url (str): SQLAlchemy database URL
            table (str): Log table name

        Returns:
            SQLHandler: The attached handler
        """

        handler = SQLHandler(url, table)
        handler.setFormatter(self.formatter)
        self.logger.addHandler(handler)
        return handler
