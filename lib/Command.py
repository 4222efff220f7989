"""
Shell Command Action Module

This module provides an action that executes a shell command as
a job. Output is streamed into the invocation's log buffer and the
child process is terminated when the run is cancelled or times out.

Responsibilities:
- Execute shell commands as job actions
- Capture combined stdout/stderr into the run output
- Honor cooperative cancellation by stopping the child process
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
import os
import signal
import subprocess
from threading import Thread

## import private pkgs
from Errors import CommandError, JobCancelledError

## suffix asking for output to be discarded
DEVNULL_SUFFIX = '&> /dev/null'

class Command(object):
    """
    Shell command action.

    Instances are callables taking a JobContext, so they can be used
    directly as a Job action.
    """

    def __init__(self, command: str, poll_interval: float = 0.1, kill_grace: float = 5.0) -> None:
        """
        Initialize the command action.

        Args:
            command (str): Shell command to execute
            poll_interval (float): How often to check for cancellation, in seconds
            kill_grace (float): Wait after SIGTERM before sending SIGKILL, in seconds

        Returns:
            None
        """

        self.command = command
        self.poll_interval = poll_interval
        self.kill_grace = kill_grace

    def __repr__(self) -> str:
        return 'Command(%r)' % (self.command)

    def __call__(self, ctx) -> None:
        """
        Execute the command.

        Args:
            ctx (JobContext): Run context

        Returns:
            None
        """

        cmd = self.command
        ctx.logger.info({'cmd': cmd})

        ## suppress output when redirecting to /dev/null
        quiet = cmd.endswith(DEVNULL_SUFFIX)
        if quiet:
            cmd = cmd.removesuffix(DEVNULL_SUFFIX).strip()

        ## run cmd
        proc = subprocess.Popen(
            cmd,
            shell = True,
            stdin = subprocess.DEVNULL,
            stdout = subprocess.DEVNULL if quiet else subprocess.PIPE,
            stderr = subprocess.DEVNULL if quiet else subprocess.STDOUT,
            start_new_session = True,
        )

        ## copy output into the run log while the command runs
        reader = None
        if not quiet:
            reader = Thread(target = self._pump, args = (proc.stdout, ctx), daemon = True)
            reader.start()

        try:
            returncode = self._wait(proc, ctx)

        finally:
            if reader is not None:
                reader.join(self.kill_grace)

        if returncode != 0:
            raise CommandError(self.command, returncode)

    def _wait(self, proc, ctx) -> int:
        while True:
            try:
                return proc.wait(timeout = self.poll_interval)

            except subprocess.TimeoutExpired:
                if ctx.cancelled:
                    self._stop(proc)
                    raise JobCancelledError('command stopped: %s' % (self.command))

    def _stop(self, proc) -> None:
        ## terminate the whole process group politely first, then kill
        self._signal(proc, signal.SIGTERM)
        try:
            proc.wait(timeout = self.kill_grace)

        except subprocess.TimeoutExpired:
            self._signal(proc, signal.SIGKILL)
            proc.wait()

    @staticmethod
    def _signal(proc, signum: int) -> None:
        try:
            os.killpg(proc.pid, signum)

        except ProcessLookupError:
            ## already gone
            pass

    @staticmethod
    def _pump(stream, ctx) -> None:
        with stream:
            for line in iter(stream.readline, b''):
                ctx.write(line)
