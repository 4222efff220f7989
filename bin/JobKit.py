"""
Job Kit Service Entry Point

This module provides the main entry point for initializing and running
the Job Kit service. It is responsible for:

- Loading configuration
- Initializing logging
- Attaching database-backed logging when configured
- Building job definitions from configuration
- Starting the JobManager runtime
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import build in pkgs
import re
import os
import sys
import argparse

## Resolve project root directory
workpath = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))

## Extend Python module search path for project libraries
sys.path.append("%s/lib" % (workpath))

## import private pkgs
from Log import Log
from Config import Config
from Job import Job
from JobManager import JobManager

class JobKit(object):
    """
    Core Job Kit controller.

    This class bootstraps the subsystems needed by the Job Kit
    service: configuration, logging and job definitions.

    Lifecycle:
        1. Load configuration
        2. Initialize logging
        3. Attach database-backed logging
        4. Build jobs from configuration
        5. Start JobManager
    """

    def __init__(self, config_path: str = None) -> None:
        """
        Initialize the Job Kit runtime environment.

        Args:
            config_path (str): Config file, defaults to etc/JobKit.json under the project root
        """

        ## set private values
        self.config = Config(workpath, config_path).config
        self.config['pid'] = os.getpid()
        self.config['pname'] = os.path.basename(__file__)
        self.config['name'] = re.sub(r'\..*$', '', self.config['pname'])

        ## logger init
        self.loggerObj = Log(self.config)
        self.logger = self.loggerObj.logger

        ## prt log to database
        if self.config['log']['db_url']:
            self.loggerObj.add_sql_handler(self.config['log']['db_url'], self.config['log']['table'])

        self.logger.debug({'status': 'start'})

        ## build job definitions
        timezone = self.config['jobkit']['timezone']
        self.jobs = [Job.from_dict(item, timezone = timezone) for item in self.config['jobs']]
        self.logger.debug({'jobs': [job.name for job in self.jobs]})

        self.logger.debug({'status': 'end'})

    def build(self) -> JobManager:
        """
        Build the JobManager from configuration values.

        Returns:
            JobManager: Job manager, not started
        """

        settings = self.config['jobkit']
        return JobManager(self.logger,
                          self.jobs,
                          max_log_bytes = int(settings['max_log_bytes']),
                          max_history = int(settings['max_history']),
                          cancel_grace = float(settings['cancel_grace']),
                          shutdown_grace = float(settings['shutdown_grace']),
                          status_interval = float(settings['status_interval']),
                          )

    def run(self) -> bool:
        """
        Start the Job Kit service in blocking mode.

        Returns:
            bool: True once the service has stopped
        """

        self.logger.debug({'status': 'start'})

        ## run until signalled
        self.build().serve_forever()

        self.logger.debug({'status': 'end'})
        return True

def main(argv: list = None) -> None:
    """
    Application entry point.
    """

    parser = argparse.ArgumentParser(description = 'Run scheduled jobs.')
    parser.add_argument('-c', '--config', default = None, help = 'config file (JSON)')
    args = parser.parse_args(argv)

    jbkObj = JobKit(args.config)
    jbkObj.run()

if __name__ == "__main__":
    """
    Command-line entry point.
    """

    main()
