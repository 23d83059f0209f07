#!/usr/bin/env python3
"""
Name: xargs
Description: construct argument list(s) and execute utility
Author: Gurusamy Sarathy, gsar@umich.edu (Original Perl Author)
License: perl

Reads whitespace-separated words from standard input and runs the utility
with as many of them as fit in the maximum command-line size, possibly
several times.
"""

import sys
import os
import argparse
import subprocess
import shlex

__version__ = "1.1"

# Constants
EX_SUCCESS = 0
EX_FAILURE = 1
PROGRAM = 'xargs'
BUF_SIZE = 8192

# ASCII whitespace: space, tab, LF, FF, CR. Vertical tab is a word character.
WHITESPACE = frozenset(b' \t\n\x0c\r')


class XargsError(Exception):
    """A failure reported to the user as 'xargs: <message>'."""


class Batcher:
    """
    Breaks incoming bytes into whitespace-separated words and accumulates
    them until adding one more would exceed max_len bytes.

    Every completed batch is handed to `submit`, a callable taking a list of
    byte strings. Whatever `submit` raises propagates to the caller.

    The size of a batch counts one separator byte between adjacent words.
    A single word longer than max_len is still passed on, alone in its batch.
    """

    def __init__(self, max_len, submit, max_args=None):
        if max_len < 1:
            raise ValueError(f"max_len must be at least 1, not {max_len}")
        if max_args is not None and max_args < 1:
            raise ValueError(f"max_args must be at least 1, not {max_args}")
        self.max_len = max_len
        self.max_args = max_args
        self.submit = submit
        self.args = []
        self.size = 0
        self.arg = bytearray()

    def handle_byte(self, byte):
        """Parses one incoming byte (an int, as yielded by iterating bytes)."""
        if byte in WHITESPACE:
            self._handle_space()
        else:
            self.arg.append(byte)

    def handle_bytes(self, data):
        """Parses a chunk of incoming bytes."""
        for byte in data:
            self.handle_byte(byte)

    def handle_eof(self):
        """Flushes the accumulated words at end of input."""
        self._handle_space()
        if self.args:
            self._flush()

    def _handle_space(self):
        if self.args and self._is_break_down_needed():
            self._flush()
        if self.arg:
            self._append_arg()

    def _is_break_down_needed(self):
        if self.max_args is not None and len(self.args) >= self.max_args:
            return True
        separator_len = 1 if self.args else 0
        return self.size + separator_len + len(self.arg) > self.max_len

    def _append_arg(self):
        if self.args:
            self.size += 1
        self.args.append(bytes(self.arg))
        self.size += len(self.arg)
        self.arg.clear()

    def _flush(self):
        # Reset before submit() so a batch whose submit() failed is
        # never resubmitted.
        args = self.args
        self.args = []
        self.size = 0
        self.submit(args)


class ProcessPool:
    """
    Runs `cmd initial_args... args...` for each submitted batch, keeping at
    most max_procs children alive at a time.

    Every child that was started is waited on, either to make room for a
    new one, by wait_all(), or when the pool is used as a context manager
    and the `with` block is left.
    """

    def __init__(self, max_procs, cmd, initial_args=(), trace=False):
        if max_procs < 1:
            raise ValueError(f"max_procs must be at least 1, not {max_procs}")
        self.max_procs = max_procs
        self.cmd = cmd
        self.initial_args = list(initial_args)
        self.trace = trace
        self.children = []

    def __len__(self):
        return len(self.children)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False

    def submit(self, args):
        """
        Starts a child with `args` appended to the initial arguments.
        May block until a running child exits if the pool is full.
        """
        if len(self.children) >= self.max_procs:
            # Not necessarily the child that will finish first.
            self._wait(self.children.pop(0))

        command = [self.cmd, *self.initial_args, *args]
        if self.trace:
            shown = shlex.join(os.fsdecode(word) for word in command)
            print(f"exec: {shown}", file=sys.stderr, flush=True)

        try:
            child = subprocess.Popen(command, stdin=subprocess.DEVNULL)
        except (OSError, ValueError) as e:
            raise XargsError(f"cannot start child process: {e}") from e
        self.children.append(child)

    def wait_all(self):
        """
        Waits for every running child. All of them are waited on even if one
        wait fails; the first failure is raised afterwards.
        """
        children, self.children = self.children, []
        error = None
        for child in children:
            try:
                self._wait(child)
            except XargsError as e:
                if error is None:
                    error = e
        if error is not None:
            raise error

    def close(self):
        """
        Drains the pool. There is nobody left to report a failure to here,
        so it ends the program.
        """
        if not self.children:
            return
        try:
            self.wait_all()
        except XargsError as e:
            sys.stderr.write(f"{PROGRAM}: {e}\n")
            sys.exit(EX_FAILURE)

    @staticmethod
    def _wait(child):
        # Exit status is not inspected.
        try:
            child.wait()
        except OSError as e:
            raise XargsError(f"waiting for child process failed: {e}") from e


def initial_cmd_line_len(cmd, args) -> int:
    """Returns the length in bytes of `cmd` and `args`, one separator per arg."""
    length = len(os.fsencode(cmd))
    for arg in args:
        length += len(os.fsencode(arg)) + 1
    return length


def max_os_cmd_line_len() -> int:
    """
    Returns the maximum command-line length supported by the OS.

    ARG_MAX covers both argv and the environment. The environment size is
    not computed, so half of it is kept in reserve.
    """
    try:
        arg_max = os.sysconf('SC_ARG_MAX')
    except (ValueError, OSError, AttributeError) as e:
        raise XargsError(f"cannot get maximum command-line length: {e}") from e
    if arg_max == -1:
        raise XargsError("cannot get maximum command-line length")
    return arg_max // 2


def remaining_args_len(max_cmd_line_len: int, cmd, initial_args) -> int:
    """Returns the byte budget left for words read from input."""
    initial_len = initial_cmd_line_len(cmd, initial_args)
    remaining = max_cmd_line_len - initial_len - 1
    if remaining < 1:
        raise XargsError(
            f"initial command line length ({initial_len}) too big for "
            f"selected maximum size ({max_cmd_line_len})"
        )
    return remaining


def xargs(stream, cmd='echo', initial_args=(), max_bytes=None,
          max_procs=1, max_args=None, trace=False):
    """
    Feeds the binary `stream` to a Batcher whose batches are run by a
    ProcessPool. Raises XargsError on the first failure.
    """
    if max_bytes is None:
        max_bytes = max_os_cmd_line_len()
    max_len = remaining_args_len(max_bytes, cmd, initial_args)

    # read1() returns whatever is available instead of waiting for a full buffer.
    read = getattr(stream, 'read1', None) or stream.read

    with ProcessPool(max_procs, cmd, initial_args, trace=trace) as pool:
        batcher = Batcher(max_len, pool.submit, max_args=max_args)
        while True:
            try:
                data = read(BUF_SIZE)
            except OSError as e:
                raise XargsError(f"failed to read from stdin: {e}") from e
            if not data:
                break
            batcher.handle_bytes(data)
        batcher.handle_eof()
        pool.wait_all()


def count(minimum):
    """Returns an argparse type accepting integers >= minimum."""
    def parse(value):
        try:
            number = int(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"invalid number '{value}'")
        if number < minimum:
            raise argparse.ArgumentTypeError(f"number must be >= {minimum}")
        return number
    return parse


def parse_args(argv):
    """Parses command-line arguments."""
    parser = argparse.ArgumentParser(
        prog=PROGRAM,
        description="Construct argument lists and execute utility.",
        usage="%(prog)s [-t] [-n max-args] [-P max-procs] [-s size] [utility [argument ...]]"
    )
    parser.add_argument('-s', dest='max_bytes', metavar='size', type=count(0),
                        help='maximum size of command line passed to utility in bytes')
    parser.add_argument('-n', dest='max_args', metavar='max-args', type=count(1),
                        help='use at most max-args arguments per command line')
    parser.add_argument('-P', dest='max_procs', metavar='max-procs', type=count(1),
                        default=1, help='run up to max-procs processes at a time')
    parser.add_argument('-t', dest='trace', action='store_true',
                        help='print commands to stderr before running them')
    parser.add_argument('-V', '--version', action='version',
                        version=f'%(prog)s {__version__}')
    # Everything from the utility on is passed through untouched.
    parser.add_argument('command', nargs=argparse.REMAINDER,
                        help='utility to run (default: echo) and its initial arguments')
    return parser.parse_args(argv)


def main():
    """Main function to parse args and run the xargs logic."""
    options = parse_args(sys.argv[1:])
    command = options.command or ['echo']

    try:
        xargs(sys.stdin.buffer, command[0], command[1:],
              max_bytes=options.max_bytes,
              max_procs=options.max_procs,
              max_args=options.max_args,
              trace=options.trace)
    except XargsError as e:
        sys.stderr.write(f"{PROGRAM}: {e}\n")
        sys.exit(EX_FAILURE)

    sys.exit(EX_SUCCESS)


if __name__ == "__main__":
    main()
